# src/protrusionquant/io.py
from __future__ import annotations

# General imports (stdlib)
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

# Third-party imports
import numpy as np
import pandas as pd
import czifile
import nd2
import tifffile as tiff
from readlif.reader import LifFile, LifImage
from roifile import ImagejRoi

# Local imports
from .exceptions import DataNotFound, ImageIOError


TIFF_EXTENSIONS = (".tif", ".tiff")
_MICRON_ALIASES = {"micron", "microns", "um", "µm", "μm", "\\u00B5m", "micrometer"}


@dataclass(frozen=True)
class SourceImage:
    """
    One decoded input image.

    Attributes:
        path (Path): File the image was read from.
        data (np.ndarray): Pixel data as (C, Y, X). Z-stacks are already
            projected and only the first timepoint is kept.
        pixel_size (Optional[float]): Physical units per pixel, None if uncalibrated.
        unit (str): Physical unit of `pixel_size` ("pixel" when uncalibrated).
        channel_names (Tuple[str, ...]): Per-channel names reported by the reader.
        n_slices (int): Z-slices in the original file (before projection).
        n_frames (int): Timepoints in the original file.
    """
    path: Path
    data: np.ndarray
    pixel_size: Optional[float] = None
    unit: str = "pixel"
    channel_names: Tuple[str, ...] = field(default_factory=tuple)
    n_slices: int = 1
    n_frames: int = 1

    @property
    def title(self) -> str:
        return self.path.stem

    @property
    def n_channels(self) -> int:
        return int(self.data.shape[0])

    @property
    def height(self) -> int:
        return int(self.data.shape[1])

    @property
    def width(self) -> int:
        return int(self.data.shape[2])

    @property
    def calibrated(self) -> bool:
        return self.pixel_size is not None and self.pixel_size > 0


def _normalize_unit(unit: Any) -> str:
    text = str(unit).strip()
    return "µm" if text.lower() in _MICRON_ALIASES or text in _MICRON_ALIASES else text


def _to_cyx(data: np.ndarray, axes: str) -> Tuple[np.ndarray, int, int]:
    """
    Reorder an array with labelled axes to (C, Y, X).

    Time axes keep the first frame, Z-like axes are max-projected, RGB samples
    become channels and any other leading axis keeps its first index.

    Returns:
        Tuple[np.ndarray, int, int]: (cyx_data, n_slices, n_frames)
    """
    axes = axes.upper()
    n_slices, n_frames = 1, 1

    # Keep the first timepoint only
    if "T" in axes:
        n_frames = data.shape[axes.index("T")]
        data = np.take(data, 0, axis=axes.index("T"))
        axes = axes.replace("T", "")

    # Project z-like axes
    for ax in "ZQI":
        if ax in axes:
            n_slices *= data.shape[axes.index(ax)]
            data = data.max(axis=axes.index(ax))
            axes = axes.replace(ax, "")

    # RGB samples act as channels when no channel axis exists
    if "S" in axes:
        if "C" in axes:
            data = np.take(data, 0, axis=axes.index("S"))
            axes = axes.replace("S", "")
        else:
            axes = axes.replace("S", "C")

    # Drop anything else that is not C/Y/X
    for ax in list(axes):
        if ax not in "CYX":
            data = np.take(data, 0, axis=axes.index(ax))
            axes = axes.replace(ax, "")

    if "Y" not in axes or "X" not in axes:
        raise ImageIOError(f"image has no 2D plane (axes '{axes}')")

    if "C" not in axes:
        data = data[np.newaxis, ...]
        axes = "C" + axes

    data = np.transpose(data, [axes.index(a) for a in "CYX"])
    return np.ascontiguousarray(data), n_slices, n_frames


def _tiff_calibration(tif: tiff.TiffFile) -> Tuple[Optional[float], str]:
    """Pixel size and unit from OME or ImageJ metadata; (None, "pixel") if absent."""
    # OME-TIFF carries explicit physical sizes
    if tif.is_ome and tif.ome_metadata:
        ome = tiff.xml2dict(tif.ome_metadata).get("OME", {})
        image = ome.get("Image", {})
        image = image[0] if isinstance(image, list) else image
        pixels = image.get("Pixels", {}) if isinstance(image, dict) else {}
        size_x = pixels.get("PhysicalSizeX")
        if size_x:
            return float(size_x), _normalize_unit(pixels.get("PhysicalSizeXUnit", "µm"))

    # ImageJ stores the unit in its description and the scale in XResolution
    ij = tif.imagej_metadata or {}
    unit = ij.get("unit")
    if unit and str(unit).lower() not in ("pixel", "pixels"):
        tag = tif.pages[0].tags.get("XResolution")
        if tag is not None:
            num, den = tag.value
            if num > 0 and den > 0:
                return float(den) / float(num), _normalize_unit(unit)

    return None, "pixel"


def _read_tiff(path: Path) -> SourceImage:
    with tiff.TiffFile(str(path)) as tif:
        series = tif.series[0]
        raw = series.asarray()
        axes = series.axes
        pixel_size, unit = _tiff_calibration(tif)
    data, n_slices, n_frames = _to_cyx(raw, axes)
    return SourceImage(
        path=path,
        data=data,
        pixel_size=pixel_size,
        unit=unit,
        channel_names=tuple(f"C{i + 1}" for i in range(data.shape[0])),
        n_slices=n_slices,
        n_frames=n_frames,
    )


def _read_nd2(path: Path) -> SourceImage:
    with nd2.ND2File(str(path)) as f:
        raw = f.asarray()
        axes = "".join(f.sizes.keys())
        # nd2 reports 1.0 when the file carries no calibration
        size_x = f.voxel_size().x
        names = tuple(ch.channel.name for ch in (f.metadata.channels or []))
    data, n_slices, n_frames = _to_cyx(raw, axes)
    return SourceImage(
        path=path,
        data=data,
        pixel_size=float(size_x) if size_x and size_x != 1.0 else None,
        unit="µm" if size_x and size_x != 1.0 else "pixel",
        channel_names=names,
        n_slices=n_slices,
        n_frames=n_frames,
    )


def _read_lif(path: Path) -> SourceImage:
    # First series, first timepoint; Z layers are read one by one
    stack: LifImage = LifFile(str(path)).get_image(0)
    n_slices, n_frames = int(stack.dims.z), int(stack.dims.t)
    planes = [
        np.stack([np.asarray(layer) for layer in stack.get_iter_z(t=0, c=c)]).max(axis=0)
        for c in range(stack.channels)
    ]
    scale_x = stack.scale[0] if stack.scale else None
    return SourceImage(
        path=path,
        data=np.ascontiguousarray(np.stack(planes)),
        pixel_size=1.0 / float(scale_x) if scale_x else None,
        unit="µm" if scale_x else "pixel",
        channel_names=tuple(f"C{i + 1}" for i in range(len(planes))),
        n_slices=n_slices,
        n_frames=n_frames,
    )


def _czi_pixel_size(czi: czifile.CziFile) -> Optional[float]:
    """X scaling from the CZI metadata, converted from metres to µm."""
    meta = czi.metadata(raw=False) or {}
    items = (
        meta.get("ImageDocument", {}).get("Metadata", {})
            .get("Scaling", {}).get("Items", {}).get("Distance", [])
    )
    items = items if isinstance(items, list) else [items]
    for item in items:
        if isinstance(item, dict) and item.get("Id") == "X" and item.get("Value"):
            return float(item["Value"]) * 1e6
    return None


def _read_czi(path: Path) -> SourceImage:
    with czifile.CziFile(str(path)) as czi:
        raw = czi.asarray()
        axes = czi.axes
        pixel_size = _czi_pixel_size(czi)
    data, n_slices, n_frames = _to_cyx(raw, axes)
    return SourceImage(
        path=path,
        data=data,
        pixel_size=pixel_size,
        unit="µm" if pixel_size else "pixel",
        channel_names=tuple(f"C{i + 1}" for i in range(data.shape[0])),
        n_slices=n_slices,
        n_frames=n_frames,
    )


CONTAINER_READERS: Dict[str, Callable[[Path], SourceImage]] = {
    ".nd2": _read_nd2,
    ".lif": _read_lif,
    ".czi": _read_czi,
}


def open_image(path: Path) -> SourceImage:
    """
    Decode a microscope image into a SourceImage.

    Use:
        TIFF / OME-TIFF / ImageJ hyperstacks are read with tifffile; Nikon
        .nd2, Leica .lif and Zeiss .czi containers with their own readers.
        The pixel data is always returned as (C, Y, X).

    Args:
        path (Path): Image file on disk.

    Returns:
        SourceImage: Decoded image with calibration (if any).

    Raises:
        ImageIOError: If the file cannot be read or decoded.
    """
    path = Path(path)
    try:
        if path.suffix.lower() in TIFF_EXTENSIONS:
            return _read_tiff(path)
        reader = CONTAINER_READERS.get(path.suffix.lower())
        if reader is None:
            raise ImageIOError(f"Unsupported image format: '{path.suffix}'")
        return reader(path)
    except ImageIOError:
        raise
    except Exception as e:
        raise ImageIOError(f"Failed to open image '{path}': {e}") from e


def discover_images(
    directory: Path,
    suffix: str,
    exclude: Optional[Path] = None,
) -> List[Path]:
    """
    Recursively collect image files, depth-first, in sorted order.

    Use:
        At every folder level, entries are visited in sorted name order;
        sub-folders are descended into where they occur in that order. Hidden
        entries (leading ".") and the `exclude` folder are skipped. The
        position of a path in the returned list is its file index.

    Args:
        directory (Path): Root directory to search.
        suffix (str): Filename suffix to match (case-sensitive, e.g. ".nd2").
        exclude (Optional[Path]): Folder to skip (e.g. an output folder nested
            inside the input folder).

    Returns:
        List[Path]: Matching files in traversal order.

    Raises:
        DataNotFound: If the root does not exist or no file matches.
    """
    root = Path(directory)
    if not root.is_dir():
        raise DataNotFound(f"Directory not found: {root}")
    excluded = Path(exclude).resolve() if exclude is not None else None

    def walk(folder: Path) -> Iterator[Path]:
        for name in sorted(os.listdir(folder)):
            if name.startswith("."):
                continue
            path = folder / name
            if path.is_dir():
                if excluded is not None and path.resolve() == excluded:
                    continue
                yield from walk(path)
            elif path.is_file() and name.endswith(suffix):
                yield path

    files = list(walk(root))
    if not files:
        raise DataNotFound(f"No '*{suffix}' files found under: '{root}'")
    return files


def find_rois_for_image(folder: Path, image_stem: str, suffix: str) -> Dict[str, ImagejRoi]:
    """
    Locate and load ImageJ ROIs drawn for a given image.

    Use:
        In `folder`, find the first file named f"{image_stem}{suffix}" (or
        starting with it) and return its ROIs keyed by name. Unnamed ROIs get
        generated keys like "<roi_file_stem>-0000".

    Args:
        folder (Path): Directory in which to search for the ROI file.
        image_stem (str): Image stem used to match ROI filenames.
        suffix (str): Suffix following the stem, including extension
            (e.g. "_cells.zip", "_cells.roi").

    Returns:
        Dict[str, ImagejRoi]: Mapping from ROI name (or generated key) to ROI.

    Raises:
        FileNotFoundError: If no matching ROI file is found in the folder.
    """
    for f in sorted(Path(folder).iterdir()):
        if f.is_file() and f.name.startswith(f"{image_stem}{suffix}"):
            rois = ImagejRoi.fromfile(str(f))

            # Normalize singleton ROI into a list
            rois = rois if isinstance(rois, list) else [rois]
            stem = f.stem
            return {
                (roi.name or f"{stem}-{i:04d}"): roi
                for i, roi in enumerate(rois)
            }

    raise FileNotFoundError(
        f"No ROI file with suffix {suffix} for base {image_stem} in {folder}"
    )


def _atomic_target(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    return path.with_name(path.name + ".tmp")


def write_tiff(
    path: Path,
    data: np.ndarray,
    pixel_size: Optional[float] = None,
    unit: str = "pixel",
    *,
    axes: str = "YX",
    luts: Optional[List[np.ndarray]] = None,
) -> None:
    """
    Write an ImageJ-compatible TIFF atomically (temp file + replace).

    Calibration is stored as XResolution/YResolution plus the ImageJ unit;
    `luts` turns a multi-channel image into an ImageJ composite.
    """
    path = Path(path)
    tmp = _atomic_target(path)
    metadata: Dict[str, Any] = {"axes": axes}
    resolution = None
    if pixel_size:
        resolution = (1.0 / pixel_size, 1.0 / pixel_size)
        metadata["unit"] = "micron" if unit == "µm" else unit
    if luts is not None:
        metadata["mode"] = "composite"
        metadata["LUTs"] = luts
    tiff.imwrite(str(tmp), data, imagej=True, resolution=resolution, metadata=metadata)
    os.replace(tmp, path)


def write_csv(df: pd.DataFrame, path: Path) -> None:
    """
    Save a DataFrame to CSV atomically.

    Use:
        Write to a sibling temp file and move it into place, so a crash never
        leaves a truncated table behind. NaN is written as "NaN".
    """
    path = Path(path)
    tmp = _atomic_target(path)
    df.to_csv(tmp, sep=",", decimal=".", index=False, float_format="%.6f", na_rep="NaN")
    os.replace(tmp, path)
