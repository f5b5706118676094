# tests/test_quantify.py
import math

import numpy as np
import pandas as pd
import pytest

from protrusionquant.quantify import (
    analyze_skeleton,
    median_branch_length,
    normalize_length,
    quantify_skeleton,
    remove_isolated_pixels,
    summarize_skeletons,
    total_length,
)


def test_median_odd_and_even_counts():
    assert median_branch_length([3.0, 1.0, 2.0]) == 2.0
    assert median_branch_length([4.0, 1.0, 3.0, 2.0]) == 2.5


def test_median_of_nothing_is_nan():
    assert math.isnan(median_branch_length([]))


def test_total_length_is_count_times_average():
    assert total_length(4, 2.5) == 10.0
    assert total_length(0, 0.0) == 0.0


def test_normalize_length():
    assert normalize_length(100.0, 4) == 25.0
    assert math.isnan(normalize_length(100.0, 0))


def test_summarize_skeletons_counts_nodes():
    # Three branches meeting at node 0 (a "Y")
    branches = pd.DataFrame({
        "skeleton_id": [1, 1, 1],
        "branch_length": [2.0, 4.0, 6.0],
        "node_src": [0, 0, 0],
        "node_dst": [1, 2, 3],
    })
    summary = summarize_skeletons(branches)
    row = summary.iloc[0]
    assert row["n_branches"] == 3
    assert row["n_junctions"] == 1
    assert row["n_endpoints"] == 3
    assert row["average_branch_length"] == pytest.approx(4.0)
    assert row["total_length"] == pytest.approx(12.0)


def test_isolated_pixels_are_dropped():
    skel = np.zeros((5, 5), dtype=bool)
    skel[2, 2] = True
    assert not remove_isolated_pixels(skel).any()


def test_straight_line_is_one_branch():
    skel = np.zeros((7, 20), dtype=bool)
    skel[3, 2:13] = True
    skeletons, branches = analyze_skeleton(skel)
    assert len(skeletons) == 1
    assert len(branches) == 1
    assert branches["branch_length"].iloc[0] == pytest.approx(10.0)
    assert branches["branch_type"].iloc[0] == "endpoint-endpoint"
    assert skeletons["n_endpoints"].iloc[0] == 2
    assert skeletons["n_junctions"].iloc[0] == 0


def test_branch_table_uses_underscore_columns(recwarn):
    skel = np.zeros((7, 20), dtype=bool)
    skel[3, 2:13] = True
    analyze_skeleton(skel)
    assert not [w for w in recwarn if "separator" in str(w.message)]


def test_calibration_scales_lengths():
    skel = np.zeros((7, 20), dtype=bool)
    skel[3, 2:13] = True
    result = quantify_skeleton(skel, pixel_size=0.5)
    assert result.total_length == pytest.approx(5.0)
    assert result.median_branch_length == pytest.approx(5.0)


def test_two_skeletons_sum():
    skel = np.zeros((10, 20), dtype=bool)
    skel[2, 2:7] = True
    skel[7, 2:12] = True
    result = quantify_skeleton(skel)
    assert result.n_skeletons == 2
    assert result.total_length == pytest.approx(4.0 + 9.0)
    assert result.median_branch_length == pytest.approx(6.5)


def test_empty_skeleton():
    result = quantify_skeleton(np.zeros((8, 8), dtype=bool))
    assert result.total_length == 0.0
    assert result.n_branches == 0
    assert math.isnan(result.median_branch_length)


def test_median_can_be_skipped():
    skel = np.zeros((7, 20), dtype=bool)
    skel[3, 2:13] = True
    assert math.isnan(quantify_skeleton(skel, compute_median=False).median_branch_length)
