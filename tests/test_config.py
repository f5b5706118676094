# tests/test_config.py
from dataclasses import replace

import pytest

from protrusionquant.config import Config, make_config
from protrusionquant.exceptions import ConfigError, DataNotFound


def with_input(tmp_path, **sections) -> Config:
    cfg = Config()
    cfg = replace(cfg, pathing=replace(cfg.pathing, input_dir=tmp_path))
    return replace(cfg, **sections)


def test_defaults(tmp_path):
    cfg = make_config(with_input(tmp_path))
    assert cfg.output_dir == tmp_path.resolve() / "Processed"
    assert cfg.pathing.file_suffix == ".nd2"
    assert cfg.skeletons.prune_mode == "size"
    assert cfg.protrusions.max_circularity == 0.5


def test_missing_input_dir(tmp_path):
    with pytest.raises(DataNotFound):
        make_config(with_input(tmp_path / "nope"))


def test_rejects_unknown_prune_mode(tmp_path):
    cfg = with_input(tmp_path)
    with pytest.raises(ConfigError):
        make_config(replace(cfg, skeletons=replace(cfg.skeletons, prune_mode="branch")))


def test_rejects_inverted_circularity_bounds(tmp_path):
    cfg = with_input(tmp_path)
    with pytest.raises(ConfigError):
        make_config(replace(cfg, protrusions=replace(cfg.protrusions, min_circularity=0.8, max_circularity=0.2)))


def test_rejects_negative_length_threshold(tmp_path):
    cfg = with_input(tmp_path)
    with pytest.raises(ConfigError):
        make_config(replace(cfg, skeletons=replace(cfg.skeletons, length_threshold=-1.0)))


def test_roi_regions_need_a_suffix(tmp_path):
    cfg = with_input(tmp_path)
    with pytest.raises(ConfigError):
        make_config(replace(cfg, processing=replace(cfg.processing, cell_region_source="rois")))


def test_channel_is_one_based(tmp_path):
    cfg = with_input(tmp_path)
    with pytest.raises(ConfigError):
        make_config(replace(cfg, pathing=replace(cfg.pathing, channel=0)))
