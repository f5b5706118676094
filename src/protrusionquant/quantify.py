# src/protrusionquant/quantify.py
from __future__ import annotations

# General imports (stdlib)
from dataclasses import dataclass
from typing import Iterable, Tuple

# Third-party imports
import numpy as np
import pandas as pd
from scipy import ndimage
from skan import Skeleton, summarize

# Local imports
from .exceptions import MetricComputationError


BRANCH_TYPES = {
    0: "endpoint-endpoint",
    1: "junction-endpoint",
    2: "junction-junction",
    3: "cycle",
}

BRANCH_COLUMNS = [
    "skeleton_id",
    "branch_id",
    "branch_length",
    "branch_type",
    "euclidean_distance",
    "node_src",
    "node_dst",
    "y_src",
    "x_src",
    "y_dst",
    "x_dst",
]

SKELETON_COLUMNS = [
    "skeleton_id",
    "n_branches",
    "n_junctions",
    "n_endpoints",
    "average_branch_length",
    "maximum_branch_length",
    "total_length",
]


@dataclass(frozen=True)
class SkeletonQuantification:
    """
    Measurements of one image's pruned skeleton.

    Attributes:
        skeletons (pd.DataFrame): One row per connected skeleton (SKELETON_COLUMNS).
        branches (pd.DataFrame): One row per branch (BRANCH_COLUMNS).
        total_length (float): Sum of per-skeleton total lengths.
        median_branch_length (float): Median over all branches (NaN if not requested or no branches).
    """
    skeletons: pd.DataFrame
    branches: pd.DataFrame
    total_length: float
    median_branch_length: float

    @property
    def n_skeletons(self) -> int:
        return int(len(self.skeletons))

    @property
    def n_branches(self) -> int:
        return int(len(self.branches))


def total_length(branch_count: int, average_branch_length: float) -> float:
    """Per-skeleton total length, defined as branch count × average branch length."""
    return float(branch_count) * float(average_branch_length)


def median_branch_length(values: Iterable[float]) -> float:
    """
    Median by the sorted-midpoint rule.

    For n sorted values: x[n//2] if n is odd, else (x[n//2] + x[n//2 - 1]) / 2.
    An empty sequence has no median and returns NaN.
    """
    xs = sorted(float(v) for v in values)
    n = len(xs)
    if n == 0:
        return float("nan")
    if n % 2 == 1:
        return xs[n // 2]
    return (xs[n // 2] + xs[n // 2 - 1]) / 2.0


def normalize_length(length: float, cell_count: int) -> float:
    """Length per cell; NaN when no cell was detected."""
    if cell_count <= 0:
        return float("nan")
    return float(length) / float(cell_count)


def remove_isolated_pixels(skeleton: np.ndarray) -> np.ndarray:
    """Drop skeleton pixels without any 8-neighbour (they carry no path)."""
    skeleton = np.asarray(skeleton) > 0
    neighbours = ndimage.convolve(skeleton.astype(np.uint8), np.ones((3, 3), dtype=np.uint8), mode="constant")
    return skeleton & (neighbours > 1)


def summarize_skeletons(branches: pd.DataFrame) -> pd.DataFrame:
    """
    Collapse a branch table into one row per skeleton.

    Junctions are nodes shared by three or more branches, endpoints are nodes
    used by exactly one. The average branch length is the mean over exactly
    the branches listed, so total_length equals their sum.
    """
    rows = []
    for sid, grp in branches.groupby("skeleton_id", sort=True):
        degree = pd.concat([grp["node_src"], grp["node_dst"]]).value_counts()
        n_branches = int(len(grp))
        average = float(grp["branch_length"].mean())
        rows.append({
            "skeleton_id": int(sid),
            "n_branches": n_branches,
            "n_junctions": int((degree >= 3).sum()),
            "n_endpoints": int((degree == 1).sum()),
            "average_branch_length": average,
            "maximum_branch_length": float(grp["branch_length"].max()),
            "total_length": total_length(n_branches, average),
        })
    return pd.DataFrame(rows, columns=SKELETON_COLUMNS)


def analyze_skeleton(skeleton: np.ndarray, spacing: float = 1.0) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Decompose a skeleton into branches and per-skeleton summaries.

    Use:
        Build a skan pixel graph (with `spacing` physical units per pixel) and
        read its branch table. Skeleton ids are renumbered 1..n and branch ids
        follow discovery order.

    Args:
        skeleton (np.ndarray): Unit-width skeleton mask.
        spacing (float): Physical size of one pixel.

    Returns:
        Tuple[pd.DataFrame, pd.DataFrame]: (skeleton summary rows, branch rows)

    Raises:
        MetricComputationError: If the skeleton graph cannot be analysed.
    """
    skel = remove_isolated_pixels(skeleton)
    if not skel.any():
        return pd.DataFrame(columns=SKELETON_COLUMNS), pd.DataFrame(columns=BRANCH_COLUMNS)

    try:
        raw = summarize(Skeleton(skel, spacing=spacing), separator="_")
    except Exception as e:
        raise MetricComputationError(f"Skeleton analysis failed: {e}") from e

    branches = pd.DataFrame({
        "skeleton_id": pd.factorize(raw["skeleton_id"], sort=True)[0] + 1,
        "branch_id": np.arange(1, len(raw) + 1),
        "branch_length": raw["branch_distance"].astype(float).to_numpy(),
        "branch_type": raw["branch_type"].map(BRANCH_TYPES).fillna("unknown").to_numpy(),
        "euclidean_distance": raw["euclidean_distance"].astype(float).to_numpy(),
        "node_src": raw["node_id_src"].to_numpy(),
        "node_dst": raw["node_id_dst"].to_numpy(),
        "y_src": raw["image_coord_src_0"].to_numpy(),
        "x_src": raw["image_coord_src_1"].to_numpy(),
        "y_dst": raw["image_coord_dst_0"].to_numpy(),
        "x_dst": raw["image_coord_dst_1"].to_numpy(),
    }, columns=BRANCH_COLUMNS)

    return summarize_skeletons(branches), branches


def quantify_skeleton(
    skeleton: np.ndarray,
    pixel_size: float = 1.0,
    compute_median: bool = True,
) -> SkeletonQuantification:
    """
    Measure a pruned skeleton.

    Args:
        skeleton (np.ndarray): Pruned unit-width skeleton.
        pixel_size (float): Physical units per pixel (1.0 for pixel units).
        compute_median (bool): Also compute the median branch length.

    Returns:
        SkeletonQuantification: Tables plus total and median length.
    """
    skeletons, branches = analyze_skeleton(skeleton, spacing=pixel_size)
    total = float(skeletons["total_length"].sum()) if len(skeletons) else 0.0
    median = median_branch_length(branches["branch_length"]) if compute_median else float("nan")
    return SkeletonQuantification(skeletons, branches, total, median)
