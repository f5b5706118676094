# src/protrusionquant/skeleton.py
from __future__ import annotations

# General imports (stdlib)
from dataclasses import dataclass
from typing import Optional, Tuple

# Third-party imports
import numpy as np
from skimage import measure, morphology

# Local imports
from .config import Skeletons
from .particles import analyze_particles
from .units import resolve_length_threshold


@dataclass(frozen=True)
class SkeletonResult:
    """
    Skeleton of the protrusion mask before and after pruning.

    Attributes:
        mask (np.ndarray): Pruned unit-width skeleton (bool).
        raw (np.ndarray): Skeleton straight out of thinning (bool).
        prune_mode (str): "none" or "size".
        threshold_px (float): Length threshold applied, in pixels.
        removed_components (int): Components dropped by pruning.
    """
    mask: np.ndarray
    raw: np.ndarray
    prune_mode: str
    threshold_px: float
    removed_components: int


def skeletonize_mask(mask: np.ndarray) -> np.ndarray:
    """Thin a binary mask to a 1-pixel-wide topological skeleton."""
    return morphology.skeletonize(np.asarray(mask) > 0)


def count_components(mask: np.ndarray) -> int:
    """Number of 8-connected components."""
    return int(measure.label(np.asarray(mask) > 0, connectivity=2).max())


def prune_short_components(skeleton: np.ndarray, min_length_px: float) -> Tuple[np.ndarray, int]:
    """
    Remove skeleton components whose path length is below `min_length_px`.

    The path length of a unit-width component is its pixel count. Components
    shorter than the threshold are removed; components exactly at the
    threshold are kept.

    Returns:
        Tuple[np.ndarray, int]: (pruned skeleton, number of removed components)
    """
    skeleton = np.asarray(skeleton) > 0
    if min_length_px <= 0 or not skeleton.any():
        return skeleton.copy(), 0

    labels = measure.label(skeleton, connectivity=2)
    sizes = np.bincount(labels.ravel())
    short = sizes < min_length_px
    short[0] = False

    return skeleton & ~short[labels], int(short.sum())


def extract_skeleton(
    mask: np.ndarray,
    params: Skeletons,
    pixel_size: Optional[float] = None,
) -> SkeletonResult:
    """
    Skeletonize the protrusion mask and prune it according to `params.prune_mode`.

    Use:
        "none" keeps the raw skeleton. "size" first drops skeleton fragments
        smaller than `params.min_fragment_area`, then removes components
        shorter than the length threshold (converted to pixels with the image
        calibration when `params.threshold_unit` is "physical").

    Args:
        mask (np.ndarray): Filled protrusion mask.
        params (Skeletons): Pruning configuration.
        pixel_size (Optional[float]): Physical units per pixel (None if uncalibrated).

    Returns:
        SkeletonResult: Pruned skeleton plus diagnostics.
    """
    raw = skeletonize_mask(mask)
    threshold_px = resolve_length_threshold(params.length_threshold, params.threshold_unit, pixel_size)

    if params.prune_mode == "none":
        return SkeletonResult(raw, raw, "none", threshold_px, 0)

    # Isolated noise fragments first, then the physical length threshold
    fragments = analyze_particles(raw, min_area=params.min_fragment_area, min_circularity=0.0, max_circularity=1.0)
    n_fragments = count_components(raw) - fragments.count
    pruned, n_short = prune_short_components(fragments.mask, threshold_px)

    return SkeletonResult(pruned, raw, "size", threshold_px, n_fragments + n_short)
