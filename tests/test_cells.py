# tests/test_cells.py
import numpy as np
import pytest
from roifile import ImagejRoi

from protrusionquant.cells import global_threshold, load_cell_regions, segment_cell_bodies
from protrusionquant.config import CellBodies
from protrusionquant.exceptions import ConfigError, MissingRegionsError

from conftest import cell_with_protrusion, touching_discs


def test_one_body_and_its_protrusion():
    regions = segment_cell_bodies(cell_with_protrusion(), CellBodies())
    assert regions.count == 1
    # The thin arm is opened away
    assert not regions.mask[32, 200]
    assert regions.mask[32, 20]


def test_touching_bodies_are_split():
    assert segment_cell_bodies(touching_discs(), CellBodies()).count == 2


def test_without_watershed_touching_bodies_merge():
    assert segment_cell_bodies(touching_discs(), CellBodies(watershed=False)).count == 1


def test_empty_image_has_no_cells():
    img = np.zeros((40, 40), dtype=np.uint8)
    assert not global_threshold(img, "otsu").any()
    assert segment_cell_bodies(img, CellBodies()).count == 0


def test_small_bodies_are_rejected():
    assert segment_cell_bodies(touching_discs(), CellBodies(min_area=10_000)).count == 0


def test_regions_from_roi_file(tmp_path):
    image_path = tmp_path / "img.tif"
    roi = ImagejRoi.frompoints([[10, 10], [30, 10], [30, 30], [10, 30]])
    roi.tofile(str(tmp_path / "img_cells.roi"))

    regions = load_cell_regions(image_path, "_cells.roi", (64, 64))
    assert regions.count == 1
    assert regions.table["area"].iloc[0] > 300
    assert regions.mask[20, 20]
    assert not regions.mask[50, 50]


def test_missing_roi_file_is_a_config_error(tmp_path):
    with pytest.raises(MissingRegionsError) as info:
        load_cell_regions(tmp_path / "img.tif", "_cells.zip", (64, 64))
    assert isinstance(info.value, ConfigError)
    assert "img_cells.zip" in str(info.value)
