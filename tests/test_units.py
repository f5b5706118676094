# tests/test_units.py
import pytest

from protrusionquant.units import effective_pixel_size, length_to_pixels, resolve_length_threshold


def test_uncalibrated_pixel_size_is_one():
    assert effective_pixel_size(None) == 1.0
    assert effective_pixel_size(0.0) == 1.0
    assert effective_pixel_size(0.25) == 0.25


def test_length_to_pixels():
    assert length_to_pixels(3.0, 0.5) == pytest.approx(6.0)
    assert length_to_pixels(3.0, None) == pytest.approx(3.0)


def test_pixel_unit_ignores_calibration():
    assert resolve_length_threshold(4.0, "pixel", 0.5) == 4.0
    assert resolve_length_threshold(4.0, "physical", 0.5) == 8.0
