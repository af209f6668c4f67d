import math
import os

import numpy as np
import pytest

from slablab.histogram import (
    Histogram1D,
    Histogram2D,
    Histogram2DAgent,
    Multi2DHistogram,
    Multi2DHistogramAgent,
    bin_count,
    divide_by_right_sine,
)


def test_bin_count_rounds():
    assert bin_count(-20.0, 10.0, 0.2) == 150
    assert bin_count(0.0, 180.0, 1.0) == 180
    with pytest.raises(ValueError):
        bin_count(0.0, 1.0, 0.0)


def test_1d_counts_are_conserved_with_out_of_range_values():
    hist = Histogram1D(0.0, 10.0, 1.0)
    values = [-100.0, -0.1, 0.0, 3.5, 9.99, 10.0, 1e6, float("inf"), float("-inf")]
    hist.add_many(values)

    assert hist.total == len(values)
    assert hist.counts[0] == 4
    assert hist.counts[3] == 1
    assert hist.counts[-1] == 4


def test_2d_counts_are_conserved():
    rng = np.random.default_rng(3)
    hist = Histogram2D((-5.0, 0.0), (5.0, 180.0), (0.5, 2.0))
    samples = rng.uniform(-50.0, 250.0, size=(500, 2))
    for v1, v2 in samples:
        hist.add(v1, v2)

    assert hist.shape == (20, 90)
    assert hist.total == 500


def test_multi2d_slice_selection_clamps():
    multi = Multi2DHistogram((-12.0, 4.0, 2.0), (0.0, 0.0), (180.0, 180.0), (4.0, 4.0))
    assert multi.n_slices == 8
    assert multi.slice_index(-100.0) == 0
    assert multi.slice_index(-11.0) == 0
    assert multi.slice_index(-9.5) == 1
    assert multi.slice_index(3.9) == 7
    assert multi.slice_index(50.0) == 7

    for depth in (-100.0, -9.5, 0.0, 50.0):
        multi.add(depth, 90.0, 45.0)
    assert multi.total == 4
    assert multi.slices[7].total == 1
    assert multi.slices[0].total == 1


def test_transform_is_output_only():
    hist = Histogram2D((0.0, 0.0), (2.0, 180.0), (1.0, 90.0))
    hist.add(0.5, 30.0)
    hist.add(0.5, 30.0)
    before = hist.counts.copy()

    rows = hist.rows(divide_by_right_sine)
    # Bin (0, 0) has its centre at 45 degrees on the angle axis.
    assert rows[0] == (0.0, 0.0, pytest.approx(2.0 / math.sin(math.radians(45.0))))
    np.testing.assert_array_equal(hist.counts, before)
    assert hist.rows()[0][2] == 2


def test_write_rows_use_lower_bin_edges(tmp_path):
    hist = Histogram1D(-1.0, 1.0, 0.5)
    hist.add(-0.9)
    hist.add(0.6)
    path = tmp_path / "out" / "hist.dat"
    hist.write(str(path))

    lines = path.read_text().splitlines()
    assert lines == ["-1.0000 1", "-0.5000 0", "0.0000 0", "0.5000 1"]
    assert not os.path.exists(str(path) + ".tmp")


def test_agents_write_2d_and_sliced_files(tmp_path):
    agent = Histogram2DAgent(str(tmp_path / "h2d.dat"), Histogram2D((0.0, 0.0), (2.0, 2.0), (1.0, 1.0)))
    agent.add(1.5, 0.5)
    agent.write()
    rows = [line.split() for line in (tmp_path / "h2d.dat").read_text().splitlines()]
    assert len(rows) == 4
    assert rows[2] == ["1.0000", "0.0000", "1"]

    multi = Multi2DHistogramAgent(
        str(tmp_path / "tilt.{pos}.dat"),
        Multi2DHistogram((-4.0, 0.0, 2.0), (0.0, 0.0), (180.0, 180.0), (90.0, 90.0)),
    )
    multi.add(-1.0, 10.0, 100.0)
    multi.write()
    assert sorted(os.listdir(tmp_path)) == ["h2d.dat", "tilt.-2.dat", "tilt.-4.dat"]


def test_write_matrix_layout(tmp_path):
    hist = Histogram2D((0.0, 0.0), (3.0, 2.0), (1.0, 1.0))
    hist.add(2.5, 1.5)
    path = tmp_path / "matrix.dat"
    hist.write_matrix(str(path))
    assert path.read_text().splitlines() == ["0 0", "0 0", "0 1"]
