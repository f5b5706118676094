# tests/test_protrusion.py
import numpy as np
import pytest

from protrusionquant.cells import segment_cell_bodies
from protrusionquant.config import CellBodies, Protrusions
from protrusionquant.exceptions import MissingRegionsError
from protrusionquant.particles import RegionSet
from protrusionquant.protrusion import (
    exclude_regions,
    local_threshold,
    percentile_threshold,
    segment_protrusions,
)

from conftest import cell_with_protrusion


def test_percentile_threshold_keeps_upper_fraction():
    image = np.arange(100, dtype=np.uint8).reshape(10, 10)
    binary = percentile_threshold(image, 0.5)
    assert binary.sum() == 50
    assert binary[9, 9] and not binary[0, 0]


def test_percentile_threshold_never_keeps_tied_background():
    image = np.zeros((10, 10), dtype=np.uint8)
    image[0, :3] = 200
    assert percentile_threshold(image, 0.5).sum() == 3


def test_bernsen_ignores_flat_background():
    mask = local_threshold(cell_with_protrusion(), "bernsen", 15)
    assert mask[32, 200]
    assert not mask[5, 200]


@pytest.mark.parametrize("method", ["mean", "niblack", "sauvola"])
def test_other_local_methods_find_the_arm(method):
    mask = local_threshold(cell_with_protrusion(), method, 15)
    assert mask[32, 200]


def test_exclusion_requires_regions():
    image = np.ones((10, 10), dtype=np.uint8)
    with pytest.raises(MissingRegionsError):
        exclude_regions(image, None, 3)
    with pytest.raises(MissingRegionsError):
        exclude_regions(image, RegionSet.empty((10, 10)), 3)


def test_exclusion_zeroes_grown_regions():
    img = cell_with_protrusion()
    regions = segment_cell_bodies(img, CellBodies())
    out = exclude_regions(np.full(img.shape, 7, dtype=np.uint8), regions, 3)
    assert out[32, 20] == 0
    assert out[32, 300] == 7


def test_arm_survives_and_background_stays_empty():
    seg = segment_protrusions(cell_with_protrusion(), Protrusions())
    assert seg.particles.count >= 1
    assert seg.mask[32, 200]
    assert not seg.mask[5, 300]
    assert seg.enhanced.dtype == np.uint8


def test_masking_without_cells_fails():
    img = cell_with_protrusion()
    with pytest.raises(MissingRegionsError):
        segment_protrusions(img, Protrusions(), regions=RegionSet.empty(img.shape), use_cell_masking=True)
