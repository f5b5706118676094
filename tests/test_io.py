# tests/test_io.py
import numpy as np
import pandas as pd
import pytest
import tifffile

from protrusionquant.exceptions import DataNotFound, ImageIOError
from protrusionquant.io import _to_cyx, discover_images, open_image, write_csv, write_tiff


def test_calibration_round_trip(tmp_path):
    data = np.arange(200, dtype=np.uint8).reshape(10, 20)
    path = tmp_path / "calibrated.tif"
    write_tiff(path, data, 0.5, "µm")

    image = open_image(path)
    assert image.data.shape == (1, 10, 20)
    assert image.calibrated
    assert image.pixel_size == pytest.approx(0.5)
    assert image.unit == "µm"
    assert np.array_equal(image.data[0], data)


def test_uncalibrated_tiff(tmp_path):
    path = tmp_path / "plain.tif"
    tifffile.imwrite(str(path), np.zeros((8, 8), dtype=np.uint16))
    image = open_image(path)
    assert not image.calibrated
    assert image.unit == "pixel"
    assert image.title == "plain"


def test_corrupt_file_raises_image_error(tmp_path):
    path = tmp_path / "broken.tif"
    path.write_bytes(b"definitely not a tiff")
    with pytest.raises(ImageIOError):
        open_image(path)


def test_z_stacks_are_max_projected():
    data = np.zeros((3, 2, 4, 5), dtype=np.uint8)   # ZCYX
    data[1, 0, 2, 3] = 9
    data[2, 1, 0, 0] = 4
    cyx, n_slices, n_frames = _to_cyx(data, "ZCYX")
    assert cyx.shape == (2, 4, 5)
    assert cyx[0, 2, 3] == 9
    assert cyx[1, 0, 0] == 4
    assert (n_slices, n_frames) == (3, 1)


def test_first_timepoint_only():
    data = np.stack([np.zeros((4, 4)), np.ones((4, 4))])   # TYX
    cyx, _, n_frames = _to_cyx(data, "TYX")
    assert cyx.shape == (1, 4, 4)
    assert not cyx.any()
    assert n_frames == 2


def test_discovery_is_sorted_depth_first(tmp_path):
    for rel in ["b/x.nd2", "a/y.nd2", "a/z.tif", "c.nd2", ".hidden/h.nd2", "Processed/p.nd2"]:
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()

    files = discover_images(tmp_path, ".nd2", exclude=tmp_path / "Processed")
    assert [f.relative_to(tmp_path).as_posix() for f in files] == ["a/y.nd2", "b/x.nd2", "c.nd2"]


def test_discovery_without_matches(tmp_path):
    (tmp_path / "a.tif").touch()
    with pytest.raises(DataNotFound):
        discover_images(tmp_path, ".nd2")


def test_csv_writes_nan_marker(tmp_path):
    path = tmp_path / "out" / "table.csv"
    write_csv(pd.DataFrame({"a": [1.0, float("nan")]}), path)
    text = path.read_text()
    assert "NaN" in text
    assert not (tmp_path / "out" / "table.csv.tmp").exists()


def test_unsupported_format(tmp_path):
    path = tmp_path / "image.png"
    path.write_bytes(b"\x89PNG")
    with pytest.raises(ImageIOError):
        open_image(path)
