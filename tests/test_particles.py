# tests/test_particles.py
import numpy as np
from skimage import draw

from protrusionquant.particles import RegionSet, analyze_particles, circularity, fill_holes


def disc_and_bar() -> np.ndarray:
    mask = np.zeros((80, 160), dtype=bool)
    rr, cc = draw.disk((40, 30), 15, shape=mask.shape)
    mask[rr, cc] = True
    mask[38:43, 55:155] = True
    return mask


def test_circularity_separates_round_from_elongated():
    regions = analyze_particles(disc_and_bar())
    table = regions.table.sort_values("area")
    bar, disc = table.iloc[0], table.iloc[1]
    assert disc["circularity"] > 0.8
    assert bar["circularity"] < 0.3


def test_circularity_bounds():
    assert circularity(np.array([1.0]), np.array([0.0]))[0] == 1.0
    assert 0.0 <= circularity(np.array([10.0]), np.array([1.0]))[0] <= 1.0


def test_max_circularity_rejects_round_blobs():
    regions = analyze_particles(disc_and_bar(), max_circularity=0.5)
    assert regions.count == 1
    assert regions.mask[40, 100]
    assert not regions.mask[40, 30]


def test_min_area_is_inclusive():
    mask = np.zeros((10, 10), dtype=bool)
    mask[2:4, 2:7] = True   # area 10
    assert analyze_particles(mask, min_area=10).count == 1
    assert analyze_particles(mask, min_area=11).count == 0


def test_filtering_twice_changes_nothing():
    params = dict(min_area=150, max_circularity=0.5)
    once = analyze_particles(disc_and_bar(), **params)
    twice = analyze_particles(once.mask, **params)
    assert np.array_equal(once.mask, twice.mask)


def test_labels_are_sequential():
    regions = analyze_particles(disc_and_bar())
    assert sorted(np.unique(regions.labels)) == [0, 1, 2]
    assert regions.labels.dtype == np.int32


def test_empty_region_set():
    empty = RegionSet.empty((5, 5))
    assert empty.count == 0
    assert not empty.mask.any()
    assert analyze_particles(np.zeros((5, 5), dtype=bool)).count == 0


def test_fill_holes():
    ring = np.zeros((9, 9), dtype=bool)
    ring[2:7, 2:7] = True
    ring[4, 4] = False
    assert fill_holes(ring)[4, 4]
