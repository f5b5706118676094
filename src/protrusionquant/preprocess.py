# src/protrusionquant/preprocess.py
from __future__ import annotations

# General imports (stdlib)
from dataclasses import dataclass
from typing import Optional, Tuple

# Third-party imports
import numpy as np
from skimage import exposure, filters, morphology

# Local imports
from .config import Preprocessing
from .exceptions import SegmentationError
from .io import SourceImage


@dataclass(frozen=True)
class AnalysisChannel:
    """
    A single 2D channel taken from a SourceImage.

    Attributes:
        name (str): "C<index>-<title>" for multichannel sources, else the title.
        pixels (np.ndarray): 2D pixel array (Y, X).
        pixel_size (Optional[float]): Calibration inherited from the source.
        unit (str): Calibration unit inherited from the source.
    """
    name: str
    pixels: np.ndarray
    pixel_size: Optional[float]
    unit: str

    def with_pixels(self, pixels: np.ndarray) -> "AnalysisChannel":
        return AnalysisChannel(self.name, pixels, self.pixel_size, self.unit)


def select_channel(source: SourceImage, channel: int) -> AnalysisChannel:
    """
    Pick the 1-based `channel` from `source`.

    Single-channel images pass through unchanged (whatever `channel` is).

    Raises:
        SegmentationError: If `channel` exceeds the channel count.
    """
    if source.n_channels == 1:
        return AnalysisChannel(source.title, source.data[0], source.pixel_size, source.unit)
    if not 1 <= channel <= source.n_channels:
        raise SegmentationError(
            f"channel {channel} requested but '{source.path.name}' has {source.n_channels} channels"
        )
    return AnalysisChannel(
        f"C{channel}-{source.title}",
        source.data[channel - 1],
        source.pixel_size,
        source.unit,
    )


def to_8bit(pixels: np.ndarray) -> np.ndarray:
    """
    Rescale the intensity range to 0–255 and convert to uint8.

    Constant images map to all zeros.
    """
    pixels = np.asarray(pixels, dtype=np.float64)
    lo, hi = float(np.min(pixels)), float(np.max(pixels))
    if hi <= lo:
        return np.zeros(pixels.shape, dtype=np.uint8)
    scaled = exposure.rescale_intensity(pixels, in_range=(lo, hi), out_range=(0.0, 255.0))
    return scaled.astype(np.uint8)


def top_hat(pixels: np.ndarray, radius: int) -> np.ndarray:
    """White top-hat with a disk footprint; removes structures wider than the disk."""
    return morphology.white_tophat(pixels, morphology.disk(int(radius)))


def gaussian_blur(pixels: np.ndarray, sigma: float) -> np.ndarray:
    """Gaussian smoothing that keeps the 8-bit range and dtype."""
    smoothed = filters.gaussian(pixels, sigma=sigma, preserve_range=True)
    return np.clip(np.rint(smoothed), 0, 255).astype(np.uint8)


def prepare_channels(
    source: SourceImage,
    channel: int,
    params: Preprocessing,
) -> Tuple[AnalysisChannel, AnalysisChannel]:
    """
    Build the "original" and "working" 8-bit copies of the analysis channel.

    Use:
        The original copy is only bit-depth normalized; it feeds cell body
        segmentation and the overlay. The working copy additionally receives
        the optional top-hat and Gaussian conditioning before protrusion
        segmentation.

    Args:
        source (SourceImage): Decoded input image.
        channel (int): 1-based analysis channel.
        params (Preprocessing): Top-hat / blur configuration.

    Returns:
        Tuple[AnalysisChannel, AnalysisChannel]: (original, working)
    """
    selected = select_channel(source, channel)
    original = selected.with_pixels(to_8bit(selected.pixels))

    working = original.pixels.copy()
    if params.use_top_hat:
        working = top_hat(working, params.top_hat_radius)
    if params.blur_sigma > 0:
        working = gaussian_blur(working, params.blur_sigma)

    return original, original.with_pixels(working)
