# tests/conftest.py
from __future__ import annotations

# General imports (stdlib)
from dataclasses import replace
from pathlib import Path

# Third-party imports
import numpy as np
import pytest
from skimage import draw

# Local imports
from protrusionquant.config import Config, make_config
from protrusionquant.io import write_tiff


def cell_with_protrusion(height: int = 64, width: int = 460, arm_end: int = 428) -> np.ndarray:
    """One bright ~200 px² disc with a straight 3 px thick arm running to `arm_end`."""
    img = np.zeros((height, width), dtype=np.uint8)
    rr, cc = draw.disk((32, 20), 8, shape=img.shape)
    img[rr, cc] = 255
    img[31:34, 28:arm_end] = 255
    return img


def touching_discs() -> np.ndarray:
    img = np.zeros((64, 80), dtype=np.uint8)
    for center in ((32, 30), (32, 50)):
        rr, cc = draw.disk(center, 12, shape=img.shape)
        img[rr, cc] = 255
    return img


@pytest.fixture
def synthetic_image() -> np.ndarray:
    return cell_with_protrusion()


@pytest.fixture
def make_batch_config():
    """Validated config for a folder of .tif images with figures disabled."""
    def _make(input_dir: Path, **sections) -> Config:
        cfg = Config()
        cfg = replace(
            cfg,
            pathing=replace(cfg.pathing, input_dir=input_dir, file_suffix=".tif"),
            processing=replace(cfg.processing, visualize=False),
        )
        if sections:
            cfg = replace(cfg, **sections)
        return make_config(cfg)
    return _make


@pytest.fixture
def write_image():
    def _write(path: Path, data: np.ndarray, pixel_size=None, unit: str = "pixel") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        write_tiff(path, data, pixel_size, unit)
        return path
    return _write
