# src/protrusionquant/config.py
from __future__ import annotations

# General imports (stdlib)
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple

# Local imports
from .exceptions import ConfigError, DataNotFound


PRUNE_MODES = ("none", "size")
THRESHOLD_UNITS = ("physical", "pixel")
REGION_SOURCES = ("auto", "rois")
GLOBAL_METHODS = ("otsu", "isodata", "li", "triangle", "yen", "mean")
LOCAL_METHODS = ("bernsen", "mean", "niblack", "sauvola")


@dataclass(frozen=True)
class Pathing:
    input_dir: Path = Path(".")                                                  # Root folder walked recursively for images
    output_dir: Optional[Path] = None                                            # Output root (None: <input_dir>/Processed)
    file_suffix: str = ".nd2"                                                    # Only files ending with this suffix are processed
    channel: int = 1                                                             # 1-based analysis channel index
    cell_roi_suffix: str = ""                                                    # Optional: file suffix for operator-drawn cell ROIs (e.g. "_cells.zip")


@dataclass(frozen=True)
class Processing:
    use_cell_masking: bool = False                                               # Exclude cell bodies from the protrusion mask
    cell_region_source: str = "auto"                                             # auto | rois (regions used for masking)
    compute_median: bool = True                                                  # Report median branch length per image
    visualize: bool = True                                                       # Toggle per-image QC figure generation


@dataclass(frozen=True)
class Preprocessing:
    use_top_hat: bool = False                                                    # White top-hat before tube enhancement
    top_hat_radius: int = 10                                                     # Top-hat disk radius (pixels)
    blur_sigma: float = 0.0                                                      # Gaussian sigma for the working copy (pixels, 0 disables)


@dataclass(frozen=True)
class CellBodies:
    threshold_method: str = "otsu"                                               # Global automatic threshold (dark background)
    opening_iterations: int = 5                                                  # Erosions followed by as many dilations
    min_area: float = 100.0                                                      # Minimum cell body area (pixels²)
    watershed: bool = True                                                       # Split touching cell bodies
    watershed_tolerance: float = 0.5                                             # Minimum peak prominence of the distance map (pixels)


@dataclass(frozen=True)
class Protrusions:
    local_method: str = "bernsen"                                                # Local adaptive threshold method
    local_radius: int = 15                                                       # Local threshold window radius (pixels)
    local_parameter_1: float = 0.0                                               # Method parameter 1 (bernsen: contrast threshold, niblack/sauvola: k, mean: offset; 0 = method default)
    local_parameter_2: float = 0.0                                               # Method parameter 2 (niblack: offset, sauvola: r; 0 = method default)
    vesselness_scales: Tuple[float, ...] = (1.0, 2.0)                            # Tube-enhancement scales (in units of vesselness_spacing)
    vesselness_spacing: float = 1.0                                              # Pixel spacing handed to the tube-enhancement filter
    vesselness_smoothing: bool = False                                           # Pre-smooth at the smallest scale before enhancement
    exclusion_margin: int = 3                                                    # Dilation of cell regions before exclusion (pixels)
    foreground_fraction: float = 0.5                                             # Fraction of pixels allowed above the percentile threshold
    min_area: float = 150.0                                                      # Minimum protrusion area (pixels²)
    min_circularity: float = 0.0                                                 # Lower circularity bound
    max_circularity: float = 0.5                                                 # Upper circularity bound (rejects round blobs)


@dataclass(frozen=True)
class Skeletons:
    prune_mode: str = "size"                                                     # none | size
    min_fragment_area: float = 10.0                                              # Minimum skeleton fragment size (pixels) in size mode
    length_threshold: float = 0.0                                                # Minimum component length (0 disables)
    threshold_unit: str = "physical"                                             # physical | pixel


@dataclass(frozen=True)
class Display:
    dpi: int = 200                                                               # Output resolution in dots-per-inch
    image_format: str = "png"                                                    # File format for the QC figure
    skeleton_color: Tuple[int, int, int] = (255, 0, 0)                           # RGB color for the skeleton
    outline_color: Tuple[int, int, int] = (0, 255, 255)                          # RGB color for cell body outlines


@dataclass(frozen=True)
class Config:
    pathing: Pathing = Pathing()                                                 # File/directory locations and naming conventions
    processing: Processing = Processing()                                        # High-level processing toggles
    preprocessing: Preprocessing = Preprocessing()                               # Working-copy conditioning
    cell_bodies: CellBodies = CellBodies()                                       # Cell body segmentation parameters
    protrusions: Protrusions = Protrusions()                                     # Protrusion segmentation parameters
    skeletons: Skeletons = Skeletons()                                           # Skeleton extraction and pruning
    display: Display = Display()                                                 # QC figure settings

    @property
    def output_dir(self) -> Path:
        """Resolved output root."""
        if self.pathing.output_dir is not None:
            return Path(self.pathing.output_dir)
        return Path(self.pathing.input_dir) / "Processed"


def _require_choice(value: str, allowed: Tuple[str, ...], name: str) -> None:
    if value not in allowed:
        raise ConfigError(f"Config: '{name}' must be one of {allowed}, got {value!r}.")


def make_config(cfg: Optional[Config] = None) -> Config:
    """
    Build and validate a Config object for a protrusion analysis run.

    Use:
        Start from `cfg` (or the dataclass defaults), validate that the input
        directory exists and that every enumerated option is legal, then return
        a normalized copy.

    Args:
        cfg (Optional[Config]): Configuration to validate; defaults to `Config()`.

    Returns:
        Config: Fully-initialized configuration with absolute input/output paths.

    Raises:
        DataNotFound: If pathing.input_dir does not exist or is not a directory.
        ConfigError: If any option is out of range, or if ROI-based masking is
            requested without a cell ROI suffix.
    """
    cfg = cfg or Config()
    p = cfg.pathing

    # Validate that the configured directory exists on disk
    if not Path(p.input_dir).is_dir():
        raise DataNotFound(f"directory not found: {p.input_dir}")

    # Validate file matching
    suffix = str(p.file_suffix).strip()
    if not suffix:
        raise ConfigError("Config: 'pathing.file_suffix' is empty. Set it to e.g. '.nd2' or '.tif'.")
    if p.channel < 1:
        raise ConfigError(f"Config: 'pathing.channel' is 1-based, got {p.channel}.")

    # Normalize paths so downstream relative_to() calls are well-defined
    input_dir = Path(p.input_dir).resolve()
    output_dir = Path(p.output_dir).resolve() if p.output_dir is not None else input_dir / "Processed"
    cfg = replace(cfg, pathing=replace(p, input_dir=input_dir, output_dir=output_dir, file_suffix=suffix))

    # Validate enumerated options
    _require_choice(cfg.processing.cell_region_source, REGION_SOURCES, "processing.cell_region_source")
    _require_choice(cfg.cell_bodies.threshold_method, GLOBAL_METHODS, "cell_bodies.threshold_method")
    _require_choice(cfg.protrusions.local_method, LOCAL_METHODS, "protrusions.local_method")
    _require_choice(cfg.skeletons.prune_mode, PRUNE_MODES, "skeletons.prune_mode")
    _require_choice(cfg.skeletons.threshold_unit, THRESHOLD_UNITS, "skeletons.threshold_unit")

    # Validate shape filter bounds
    prot = cfg.protrusions
    if not (0.0 <= prot.min_circularity <= prot.max_circularity <= 1.0):
        raise ConfigError(
            "Config: circularity bounds must satisfy 0 <= min_circularity <= max_circularity <= 1, "
            f"got [{prot.min_circularity}, {prot.max_circularity}]."
        )
    if not (0.0 < prot.foreground_fraction <= 1.0):
        raise ConfigError(f"Config: 'protrusions.foreground_fraction' must be in (0, 1], got {prot.foreground_fraction}.")
    if not prot.vesselness_scales or any(s <= 0 for s in prot.vesselness_scales):
        raise ConfigError("Config: 'protrusions.vesselness_scales' must be a non-empty tuple of positive scales.")
    if prot.vesselness_spacing <= 0:
        raise ConfigError("Config: 'protrusions.vesselness_spacing' must be positive.")
    if cfg.skeletons.length_threshold < 0:
        raise ConfigError("Config: 'skeletons.length_threshold' must be >= 0.")

    # Validate toggle-dependent configuration for operator-drawn regions
    if cfg.processing.cell_region_source == "rois" and not str(cfg.pathing.cell_roi_suffix).strip():
        raise ConfigError(
            "Config: 'processing.cell_region_source' is 'rois' but 'pathing.cell_roi_suffix' is empty. "
            "Either set cell_roi_suffix (e.g. '_cells.zip') or use cell_region_source='auto'."
        )

    return cfg
