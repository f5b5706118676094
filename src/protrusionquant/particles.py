# src/protrusionquant/particles.py
from __future__ import annotations

# General imports (stdlib)
from dataclasses import dataclass
from typing import Tuple

# Third-party imports
import numpy as np
import pandas as pd
from scipy import ndimage
from skimage import measure, segmentation


REGION_COLUMNS = [
    "label",
    "area",
    "centroid_y",
    "centroid_x",
    "perimeter",
    "circularity",
    "solidity",
    "eccentricity",
]


@dataclass(frozen=True)
class RegionSet:
    """
    Disjoint labelled foreground regions with per-region measurements.

    Attributes:
        labels (np.ndarray): int32 label image, 0 = background, 1..n = regions.
        table (pd.DataFrame): One row per region (see REGION_COLUMNS).
    """
    labels: np.ndarray
    table: pd.DataFrame

    @property
    def count(self) -> int:
        return int(len(self.table))

    @property
    def mask(self) -> np.ndarray:
        return self.labels > 0

    def boundaries(self) -> np.ndarray:
        """Inner boundary pixels of every region (for overlays)."""
        return segmentation.find_boundaries(self.labels, mode="inner")

    @classmethod
    def empty(cls, shape: Tuple[int, int]) -> "RegionSet":
        return cls(np.zeros(shape, dtype=np.int32), pd.DataFrame(columns=REGION_COLUMNS))


def circularity(area: np.ndarray, perimeter: np.ndarray) -> np.ndarray:
    """
    4π·area / perimeter², clipped to [0, 1].

    Zero-perimeter regions (single pixels) are treated as perfectly round.
    """
    area = np.asarray(area, dtype=float)
    perimeter = np.asarray(perimeter, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        circ = 4.0 * np.pi * area / perimeter ** 2
    circ = np.where(perimeter > 0, circ, 1.0)
    return np.clip(circ, 0.0, 1.0)


def measure_regions(labels: np.ndarray) -> pd.DataFrame:
    """Area, centroid and shape descriptors for every label in `labels`."""
    props = measure.regionprops_table(
        labels,
        properties=("label", "area", "centroid", "perimeter", "solidity", "eccentricity"),
    )
    df = pd.DataFrame(props).rename(columns={"centroid-0": "centroid_y", "centroid-1": "centroid_x"})
    df["circularity"] = circularity(df["area"].to_numpy(), df["perimeter"].to_numpy())
    return df.reindex(columns=REGION_COLUMNS).reset_index(drop=True)


def analyze_particles(
    mask: np.ndarray,
    min_area: float = 0.0,
    max_area: float = np.inf,
    min_circularity: float = 0.0,
    max_circularity: float = 1.0,
) -> RegionSet:
    """
    Keep 8-connected components whose area and circularity fall in range.

    Use:
        Label the mask, measure every component and drop whole components that
        fail the area or circularity bounds. Surviving components are never
        altered, so filtering an already filtered mask returns it unchanged.

    Args:
        mask (np.ndarray): Binary mask (any dtype; non-zero is foreground).
        min_area (float): Minimum area in pixels (inclusive).
        max_area (float): Maximum area in pixels (inclusive).
        min_circularity (float): Lower circularity bound (inclusive).
        max_circularity (float): Upper circularity bound (inclusive).

    Returns:
        RegionSet: Retained components, relabelled 1..n in scan order.
    """
    labels = measure.label(np.asarray(mask) > 0, connectivity=2)
    return select_regions(labels, min_area, max_area, min_circularity, max_circularity)


def select_regions(
    labels: np.ndarray,
    min_area: float = 0.0,
    max_area: float = np.inf,
    min_circularity: float = 0.0,
    max_circularity: float = 1.0,
) -> RegionSet:
    """Keep labelled regions whose area and circularity fall in range (bounds inclusive)."""
    table = measure_regions(labels)

    keep = (
        (table["area"] >= min_area)
        & (table["area"] <= max_area)
        & (table["circularity"] >= min_circularity)
        & (table["circularity"] <= max_circularity)
    )

    # Zero out rejected components and close the label gaps
    filtered = np.where(np.isin(labels, table.loc[keep, "label"].to_numpy()), labels, 0)
    relabelled, _, _ = segmentation.relabel_sequential(filtered)
    relabelled = relabelled.astype(np.int32)

    return RegionSet(relabelled, measure_regions(relabelled))


def fill_holes(mask: np.ndarray) -> np.ndarray:
    """Fill enclosed background holes of a binary mask."""
    return ndimage.binary_fill_holes(np.asarray(mask) > 0)
