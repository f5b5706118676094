# src/protrusionquant/protrusion.py
from __future__ import annotations

# General imports (stdlib)
from dataclasses import dataclass
from typing import Optional, Sequence

# Third-party imports
import numpy as np
from scipy import ndimage
from skimage import filters, morphology

# Local imports
from .config import Protrusions
from .exceptions import MissingRegionsError
from .particles import RegionSet, analyze_particles, fill_holes
from .preprocess import to_8bit


# Defaults used when a method parameter is left at 0 (ImageJ Auto Local Threshold convention)
BERNSEN_CONTRAST = 15.0
NIBLACK_K = 0.2
SAUVOLA_K = 0.5
SAUVOLA_R = 128.0


@dataclass(frozen=True)
class ProtrusionSegmentation:
    """
    Intermediate and final masks of the protrusion segmenter.

    Attributes:
        local_mask (np.ndarray): Output of the local adaptive threshold.
        enhanced (np.ndarray): 8-bit tube-enhanced image (after cell exclusion).
        binary (np.ndarray): Percentile-thresholded enhanced image.
        particles (RegionSet): Components passing the area/circularity filter.
        mask (np.ndarray): Final protrusion mask with holes filled.
    """
    local_mask: np.ndarray
    enhanced: np.ndarray
    binary: np.ndarray
    particles: RegionSet
    mask: np.ndarray


def local_threshold(
    pixels: np.ndarray,
    method: str,
    radius: int,
    parameter_1: float = 0.0,
    parameter_2: float = 0.0,
) -> np.ndarray:
    """
    Local adaptive threshold of an 8-bit image (foreground = bright).

    Methods:
        bernsen: object if pixel >= local mid-grey; where local contrast is
            below parameter_1, object if mid-grey >= 128.
        mean: object if pixel > local mean - parameter_1.
        niblack: object if pixel > mean + k*std - offset (k=parameter_1, offset=parameter_2).
        sauvola: skimage Sauvola with k=parameter_1 and r=parameter_2.

    Args:
        pixels (np.ndarray): 2D 8-bit image.
        method (str): One of "bernsen", "mean", "niblack", "sauvola".
        radius (int): Window radius in pixels.
        parameter_1 (float): First method parameter (0 = method default).
        parameter_2 (float): Second method parameter (0 = method default).

    Returns:
        np.ndarray: Boolean mask.
    """
    img = np.asarray(pixels, dtype=np.float64)
    window = 2 * int(radius) + 1

    if method == "bernsen":
        footprint = morphology.disk(int(radius))
        local_max = ndimage.maximum_filter(img, footprint=footprint, mode="reflect")
        local_min = ndimage.minimum_filter(img, footprint=footprint, mode="reflect")
        contrast = local_max - local_min
        mid_grey = (local_max + local_min) / 2.0
        threshold = parameter_1 or BERNSEN_CONTRAST
        return np.where(contrast < threshold, mid_grey >= 128, img >= mid_grey)

    if method == "mean":
        t = filters.threshold_local(img, block_size=window, method="mean", offset=parameter_1, mode="reflect")
        return img > t

    if method == "niblack":
        k = parameter_1 or NIBLACK_K
        # skimage computes mean - k*std
        t = filters.threshold_niblack(img, window_size=window, k=-k) - parameter_2
        return img > t

    if method == "sauvola":
        t = filters.threshold_sauvola(
            img,
            window_size=window,
            k=parameter_1 or SAUVOLA_K,
            r=parameter_2 or SAUVOLA_R,
        )
        return img > t

    raise ValueError(f"unknown local threshold method: {method!r}")


def enhance_tubes(
    image: np.ndarray,
    scales: Sequence[float],
    pixel_spacing: float = 1.0,
    smoothing: bool = False,
) -> np.ndarray:
    """
    Multiscale Frangi vesselness for bright tube-like structures.

    Args:
        image (np.ndarray): 2D image or mask.
        scales (Sequence[float]): Scales in the units of `pixel_spacing`.
        pixel_spacing (float): Physical size of one pixel for `scales`.
        smoothing (bool): Gaussian pre-smoothing at the smallest scale.

    Returns:
        np.ndarray: float vesselness response (0 on background).
    """
    img = np.asarray(image, dtype=np.float64)
    sigmas = [float(s) / float(pixel_spacing) for s in scales]
    if smoothing:
        img = filters.gaussian(img, sigma=min(sigmas))
    return filters.frangi(img, sigmas=sigmas, black_ridges=False)


def exclude_regions(image: np.ndarray, regions: Optional[RegionSet], margin: int) -> np.ndarray:
    """
    Zero `image` inside every region grown by `margin` pixels.

    Raises:
        MissingRegionsError: If no region is supplied; masking never invents regions.
    """
    if regions is None or regions.count == 0:
        raise MissingRegionsError(
            "Cell masking is enabled but no cell regions are available. Provide cell regions "
            "(draw and save ROIs, or check the cell body segmentation) or disable cell masking."
        )
    grown = regions.mask
    if margin > 0:
        grown = ndimage.binary_dilation(grown, structure=morphology.disk(int(margin)))
    out = np.array(image, copy=True)
    out[grown] = 0
    return out


def percentile_threshold(image: np.ndarray, foreground_fraction: float = 0.5) -> np.ndarray:
    """
    Keep pixels strictly above the (1 - foreground_fraction) percentile.

    At most `foreground_fraction` of the pixels become foreground; pixels tied
    with the threshold value (e.g. a zero background) stay background.
    """
    image = np.asarray(image)
    t = np.percentile(image, 100.0 * (1.0 - foreground_fraction))
    return image > t


def segment_protrusions(
    pixels: np.ndarray,
    params: Protrusions,
    regions: Optional[RegionSet] = None,
    use_cell_masking: bool = False,
) -> ProtrusionSegmentation:
    """
    Isolate protrusion-like structures from the working channel.

    Pipeline:
      1) Local adaptive threshold to equalize uneven background
      2) Tube enhancement (Frangi vesselness) of the local mask
      3) Optional exclusion of cell body regions (dilated by a margin)
      4) Percentile threshold of the 8-bit enhanced image
      5) Keep components with area >= min_area and circularity in range
      6) Fill interior holes

    Args:
        pixels (np.ndarray): Working 8-bit channel.
        params (Protrusions): Segmentation parameters.
        regions (Optional[RegionSet]): Cell regions used when masking.
        use_cell_masking (bool): Apply step 3.

    Returns:
        ProtrusionSegmentation: All stage outputs; `.mask` is the final mask.

    Raises:
        MissingRegionsError: If masking is requested without regions.
    """
    local_mask = local_threshold(
        pixels,
        params.local_method,
        params.local_radius,
        params.local_parameter_1,
        params.local_parameter_2,
    )

    response = enhance_tubes(
        local_mask,
        params.vesselness_scales,
        params.vesselness_spacing,
        params.vesselness_smoothing,
    )
    enhanced = to_8bit(response)

    if use_cell_masking:
        enhanced = exclude_regions(enhanced, regions, params.exclusion_margin)

    binary = percentile_threshold(enhanced, params.foreground_fraction)

    particles = analyze_particles(
        binary,
        min_area=params.min_area,
        min_circularity=params.min_circularity,
        max_circularity=params.max_circularity,
    )

    return ProtrusionSegmentation(
        local_mask=local_mask,
        enhanced=enhanced,
        binary=binary,
        particles=particles,
        mask=fill_holes(particles.mask),
    )
