# tests/test_skeleton.py
from dataclasses import replace

import numpy as np

from protrusionquant.config import Skeletons
from protrusionquant.skeleton import count_components, extract_skeleton, prune_short_components
from protrusionquant.units import length_to_pixels


def three_lines() -> np.ndarray:
    skel = np.zeros((12, 20), dtype=bool)
    skel[1, 1:6] = True    # 5 px
    skel[5, 1:7] = True    # 6 px
    skel[9, 1:8] = True    # 7 px
    return skel


def test_components_below_threshold_are_removed():
    threshold = length_to_pixels(3.0, 0.5)
    pruned, removed = prune_short_components(three_lines(), threshold)
    assert removed == 1
    assert count_components(pruned) == 2
    assert int(pruned.sum()) == 13
    # Exactly-at-threshold component survives
    assert pruned[5, 1:7].all()
    assert not pruned[1].any()


def test_zero_threshold_keeps_everything():
    pruned, removed = prune_short_components(three_lines(), 0.0)
    assert removed == 0
    assert int(pruned.sum()) == 18


def test_extract_skeleton_none_mode_keeps_raw():
    mask = np.zeros((20, 60), dtype=bool)
    mask[8:12, 5:55] = True
    result = extract_skeleton(mask, replace(Skeletons(), prune_mode="none", length_threshold=100.0))
    assert result.removed_components == 0
    assert np.array_equal(result.mask, result.raw)


def test_extract_skeleton_size_mode_uses_calibration():
    mask = np.zeros((30, 80), dtype=bool)
    mask[4:8, 5:75] = True     # long bar
    mask[20:24, 5:25] = True   # short bar
    params = replace(Skeletons(), length_threshold=15.0, threshold_unit="physical")
    result = extract_skeleton(mask, params, pixel_size=0.5)
    assert result.threshold_px == 30.0
    assert count_components(result.raw) == 2
    assert count_components(result.mask) == 1
    assert result.removed_components == 1
    assert result.mask[:12].any()
    assert not result.mask[12:].any()
