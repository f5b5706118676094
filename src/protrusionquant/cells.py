# src/protrusionquant/cells.py
from __future__ import annotations

# General imports (stdlib)
from pathlib import Path
from typing import Any, Callable, Dict, Tuple

# Third-party imports
import numpy as np
from affine import Affine
from rasterio.features import rasterize
from scipy import ndimage
from shapely.geometry import Polygon
from skimage import filters, measure, morphology, segmentation

# Local imports
from .config import CellBodies
from .exceptions import MissingRegionsError
from .io import find_rois_for_image
from .particles import RegionSet, select_regions


GLOBAL_THRESHOLDS: Dict[str, Callable[[np.ndarray], float]] = {
    "otsu": filters.threshold_otsu,
    "isodata": filters.threshold_isodata,
    "li": filters.threshold_li,
    "triangle": filters.threshold_triangle,
    "yen": filters.threshold_yen,
    "mean": filters.threshold_mean,
}


def global_threshold(pixels: np.ndarray, method: str, dark_background: bool = True) -> np.ndarray:
    """
    Binarize with a global automatic threshold.

    A constant image has no meaningful threshold and yields an empty mask.
    """
    pixels = np.asarray(pixels)
    if pixels.min() == pixels.max():
        return np.zeros(pixels.shape, dtype=bool)
    t = GLOBAL_THRESHOLDS[method](pixels)
    return pixels > t if dark_background else pixels <= t


def open_mask(mask: np.ndarray, iterations: int) -> np.ndarray:
    """`iterations` erosions followed by as many dilations with a 3×3 square."""
    if iterations <= 0:
        return mask.astype(bool)
    return ndimage.binary_opening(mask, structure=np.ones((3, 3), dtype=bool), iterations=iterations)


def watershed_labels(mask: np.ndarray, tolerance: float = 0.5) -> np.ndarray:
    """
    Split touching bodies along the valleys of the distance map.

    Every distance-map maximum more prominent than `tolerance` seeds one
    region; flat maxima produce a single seed.
    """
    if not mask.any():
        return np.zeros(mask.shape, dtype=np.int32)
    distance = ndimage.distance_transform_edt(mask)
    peaks = morphology.h_maxima(distance, tolerance).astype(bool) & mask
    markers = measure.label(peaks, connectivity=2)
    return segmentation.watershed(-distance, markers, mask=mask).astype(np.int32)


def segment_cell_bodies(pixels: np.ndarray, params: CellBodies) -> RegionSet:
    """
    Segment cell bodies on the unfiltered 8-bit analysis channel.

    Pipeline:
      1) Global automatic threshold (dark background)
      2) Morphological opening to remove noise and thin protrusions
      3) Watershed separation of touching bodies (optional)
      4) Keep regions with area >= params.min_area

    Args:
        pixels (np.ndarray): Original (unconditioned) 8-bit channel.
        params (CellBodies): Segmentation parameters.

    Returns:
        RegionSet: One region per cell body; `count` is the cell number.
    """
    binary = global_threshold(pixels, params.threshold_method, dark_background=True)
    opened = open_mask(binary, params.opening_iterations)

    if params.watershed:
        labels = watershed_labels(opened, params.watershed_tolerance)
    else:
        labels = measure.label(opened, connectivity=2).astype(np.int32)

    return select_regions(labels, min_area=params.min_area)


def polygon_to_pixels(polygon: Polygon, image_shape: Tuple[int, int]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Rasterize a Shapely polygon onto a pixel grid.

    Use:
        Return the row and column indices of all pixels whose unit square
        intersects the polygon, clipped to an (H, W) image.

    Args:
        polygon (shapely.Polygon): Polygon in (x, y) pixel space.
        image_shape (Tuple[int, int]): Target image shape as (height, width).

    Returns:
        Tuple[np.ndarray, np.ndarray]: (rr, cc) absolute pixel indices.
    """
    # Restrict the scan to the polygon's bounding box, clipped to image bounds
    min_x, min_y, max_x, max_y = polygon.bounds
    h, w = int(image_shape[0]), int(image_shape[1])
    min_col = max(0, int(np.floor(min_x)))
    max_col = min(w, int(np.ceil(max_x)))
    min_row = max(0, int(np.floor(min_y)))
    max_row = min(h, int(np.ceil(max_y)))

    win_w = max_col - min_col
    win_h = max_row - min_row
    if win_w <= 0 or win_h <= 0:
        return np.empty(0, dtype=int), np.empty(0, dtype=int)

    # Rasterize within the local bounding window, then shift back to image indices
    mask = rasterize(
        [(polygon, 1)],
        out_shape=(win_h, win_w),
        transform=Affine.translation(min_col, min_row),
        fill=0,
        default_value=1,
        all_touched=True,
        dtype=np.uint8,
    )
    rr_rel, cc_rel = np.nonzero(mask)
    return (rr_rel + min_row).astype(int), (cc_rel + min_col).astype(int)


def roi_polygon(roi: Any) -> Polygon:
    """Polygon (x, y pixel space) for an ImageJ ROI; empty if it has < 3 vertices."""
    coords = np.asarray(roi.coordinates(), dtype=float)
    if coords.ndim != 2 or len(coords) < 3:
        return Polygon()
    return Polygon(coords[:, :2]).buffer(0)


def regions_from_rois(rois: Dict[str, Any], image_shape: Tuple[int, int]) -> RegionSet:
    """Rasterize ROIs into a RegionSet, one label per non-empty ROI (later ROIs win overlaps)."""
    labels = np.zeros(image_shape, dtype=np.int32)
    next_label = 1
    for roi in rois.values():
        polygon = roi_polygon(roi)
        if polygon.is_empty:
            continue
        rr, cc = polygon_to_pixels(polygon, image_shape)
        if rr.size == 0:
            continue
        labels[rr, cc] = next_label
        next_label += 1
    return select_regions(labels)


def load_cell_regions(image_path: Path, suffix: str, image_shape: Tuple[int, int]) -> RegionSet:
    """
    Load operator-drawn cell regions saved next to `image_path`.

    Raises:
        MissingRegionsError: If no ROI file exists or it holds no usable region.
    """
    image_path = Path(image_path)
    instruction = (
        f"Draw the cell body regions for '{image_path.name}' in ImageJ/Fiji and save them "
        f"as '{image_path.stem}{suffix}' in '{image_path.parent}', then re-run."
    )
    try:
        rois = find_rois_for_image(image_path.parent, image_path.stem, suffix)
    except FileNotFoundError as e:
        raise MissingRegionsError(f"{e}. {instruction}") from e

    regions = regions_from_rois(rois, image_shape)
    if regions.count == 0:
        raise MissingRegionsError(f"ROI file for '{image_path.name}' contains no usable regions. {instruction}")
    return regions
