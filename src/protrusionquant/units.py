# src/protrusionquant/units.py
from __future__ import annotations

# General imports (stdlib)
from typing import Optional


def effective_pixel_size(pixel_size: Optional[float]) -> float:
    """
    Return the calibrated pixel size, or 1.0 when the image is uncalibrated.

    A missing or non-positive pixel size means lengths are interpreted in
    pixels. Callers are responsible for surfacing this in logs and outputs.
    """
    if pixel_size is None or not pixel_size > 0:
        return 1.0
    return float(pixel_size)


def length_to_pixels(length: float, pixel_size: Optional[float]) -> float:
    """
    Convert a physical length threshold to pixels.

    Args:
        length (float): Threshold in physical units (e.g. µm).
        pixel_size (Optional[float]): Physical units per pixel, None if uncalibrated.

    Returns:
        float: `length / pixel_size`, or `length` unchanged when uncalibrated.
    """
    return float(length) / effective_pixel_size(pixel_size)


def resolve_length_threshold(length: float, unit: str, pixel_size: Optional[float]) -> float:
    """Pixel threshold for `length` given in `unit` ("physical" or "pixel")."""
    if unit == "pixel":
        return float(length)
    return length_to_pixels(length, pixel_size)
