# src/protrusionquant/visualization.py
from __future__ import annotations

# General imports (stdlib)
from pathlib import Path
from typing import List, Optional, Tuple

# General imports (third-party)
import matplotlib
matplotlib.use("Agg")  # non-GUI backend for CLI usage
import matplotlib.pyplot as plt
import numpy as np

# Local imports
from .config import Display
from .exceptions import VisualizationError


def compose_overlay(original: np.ndarray, skeleton: np.ndarray) -> np.ndarray:
    """
    Stack the skeleton and the original channel into a (2, Y, X) uint8 composite.

    Channel 0 holds the skeleton (255 on skeleton pixels), channel 1 the
    8-bit original.
    """
    skel = (np.asarray(skeleton) > 0).astype(np.uint8) * 255
    return np.stack([skel, np.asarray(original, dtype=np.uint8)], axis=0)


def composite_luts() -> List[np.ndarray]:
    """ImageJ LUTs for `compose_overlay`: red skeleton, grey original."""
    ramp = np.arange(256, dtype=np.uint8)
    zeros = np.zeros(256, dtype=np.uint8)
    red = np.stack([ramp, zeros, zeros])
    grey = np.stack([ramp, ramp, ramp])
    return [red, grey]


def render_rgb(
    original: np.ndarray,
    skeleton: np.ndarray,
    outlines: Optional[np.ndarray] = None,
    skeleton_color: Tuple[int, int, int] = (255, 0, 0),
    outline_color: Tuple[int, int, int] = (0, 255, 255),
) -> np.ndarray:
    """
    Flatten original, cell outlines and skeleton into an RGB image.

    Skeleton pixels are painted last so they stay visible over outlines.
    """
    base = np.asarray(original, dtype=np.uint8)
    rgb = np.repeat(base[..., None], 3, axis=2)
    if outlines is not None:
        rgb[np.asarray(outlines) > 0] = outline_color
    rgb[np.asarray(skeleton) > 0] = skeleton_color
    return rgb


def save_qc_figure(
    save_file_path: Path,
    rgb: np.ndarray,
    title: str,
    display: Display,
    pixel_size: float = 1.0,
    unit: str = "pixel",
) -> None:
    """
    Save a QC figure of the rendered overlay.

    Args:
        save_file_path (Path): Output path without extension.
        rgb (np.ndarray): H×W×3 uint8 overlay from `render_rgb`.
        title (str): Figure title (image id and key metrics).
        display (Display): dpi and image format.
        pixel_size (float): Physical units per pixel, used for axis extents.
        unit (str): Axis unit label.

    Raises:
        VisualizationError: If rendering or saving fails.
    """
    output_file = f"{save_file_path}.{display.image_format}"
    h, w = rgb.shape[:2]
    fig, ax = plt.subplots(figsize=(8, 8 * h / max(w, 1)))
    try:
        ax.imshow(rgb, extent=[0, w * pixel_size, h * pixel_size, 0], interpolation="nearest")
        ax.set_title(title, fontsize=8)
        ax.set_xlabel(unit, fontsize=7)
        ax.tick_params(labelsize=6)
        fig.tight_layout()
        fig.savefig(output_file, dpi=display.dpi)
    except Exception as e:
        plt.close(fig)
        raise VisualizationError(f"Failed to save QC figure to {output_file}: {e}") from e
    else:
        plt.close(fig)
