"""Fixed-resolution histograms with edge clamping and output-time transforms."""
from __future__ import annotations

import math
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from slablab.export import write_text_atomic

Transform1D = Callable[[float, float], float]
Transform2D = Callable[[float, float, float], float]


def bin_count(minimum: float, maximum: float, resolution: float) -> int:
    if resolution <= 0:
        raise ValueError("Histogram resolution must be positive")
    if maximum <= minimum:
        raise ValueError("Histogram maximum must exceed its minimum")
    return max(int(round((maximum - minimum) / resolution)), 1)


def clamped_index(value: float, minimum: float, resolution: float, bins: int) -> int:
    """Bin index of ``value``; anything outside the range lands in an edge bin."""
    if not math.isfinite(value):
        return 0 if value < 0 or math.isnan(value) else bins - 1
    index = int(math.floor((value - minimum) / resolution))
    return min(max(index, 0), bins - 1)


def _sine(angle_deg: float) -> float:
    return math.sin(math.radians(angle_deg))


# Transforms receive bin centres so the sine at a 0 or 180 degree edge never divides by zero.
def identity_1d(axis: float, population: float) -> float:
    return population


def divide_by_sine(axis: float, population: float) -> float:
    return population / _sine(axis)


def identity(axis1: float, axis2: float, population: float) -> float:
    return population


def divide_by_left_sine(axis1: float, axis2: float, population: float) -> float:
    return population / _sine(axis1)


def divide_by_right_sine(axis1: float, axis2: float, population: float) -> float:
    return population / _sine(axis2)


def divide_by_both_sine(axis1: float, axis2: float, population: float) -> float:
    return population / _sine(axis1) / _sine(axis2)


TRANSFORMS_1D: Dict[str, Transform1D] = {
    "identity": identity_1d,
    "divide_by_sine": divide_by_sine,
}

TRANSFORMS_2D: Dict[str, Transform2D] = {
    "identity": identity,
    "divide_by_left_sine": divide_by_left_sine,
    "divide_by_right_sine": divide_by_right_sine,
    "divide_by_both_sine": divide_by_both_sine,
}


def _format_value(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.6g}"


class Histogram1D:
    def __init__(self, minimum: float, maximum: float, resolution: float):
        self.minimum = float(minimum)
        self.maximum = float(maximum)
        self.resolution = float(resolution)
        self.bins = bin_count(self.minimum, self.maximum, self.resolution)
        self.counts = np.zeros(self.bins, dtype=np.int64)

    def index(self, value: float) -> int:
        return clamped_index(float(value), self.minimum, self.resolution, self.bins)

    def add(self, value: float) -> None:
        self.counts[self.index(value)] += 1

    def add_many(self, values: Iterable[float]) -> None:
        for value in values:
            self.add(value)

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    @property
    def edges(self) -> np.ndarray:
        return self.minimum + self.resolution * np.arange(self.bins)

    def reset(self) -> None:
        self.counts[:] = 0

    def rows(self, transform: Optional[Transform1D] = None) -> List[Tuple[float, float]]:
        transform = transform or identity_1d
        half = self.resolution / 2.0
        rows = []
        for edge, population in zip(self.edges, self.counts):
            rows.append((float(edge), transform(float(edge) + half, float(population))))
        return rows

    def lines(self, transform: Optional[Transform1D] = None) -> List[str]:
        return [f"{axis:.4f} {_format_value(pop)}" for axis, pop in self.rows(transform)]

    def write(self, path: str, transform: Optional[Transform1D] = None) -> None:
        write_text_atomic(path, self.lines(transform))


class Histogram2D:
    def __init__(
        self,
        minimum: Sequence[float],
        maximum: Sequence[float],
        resolution: Sequence[float],
    ):
        self.minimum = (float(minimum[0]), float(minimum[1]))
        self.maximum = (float(maximum[0]), float(maximum[1]))
        self.resolution = (float(resolution[0]), float(resolution[1]))
        self.shape = (
            bin_count(self.minimum[0], self.maximum[0], self.resolution[0]),
            bin_count(self.minimum[1], self.maximum[1], self.resolution[1]),
        )
        self.counts = np.zeros(self.shape, dtype=np.int64)

    def index(self, value1: float, value2: float) -> Tuple[int, int]:
        return (
            clamped_index(float(value1), self.minimum[0], self.resolution[0], self.shape[0]),
            clamped_index(float(value2), self.minimum[1], self.resolution[1], self.shape[1]),
        )

    def add(self, value1: float, value2: float) -> None:
        self.counts[self.index(value1, value2)] += 1

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def edges(self, axis: int) -> np.ndarray:
        return self.minimum[axis] + self.resolution[axis] * np.arange(self.shape[axis])

    def reset(self) -> None:
        self.counts[:] = 0

    def rows(self, transform: Optional[Transform2D] = None) -> List[Tuple[float, float, float]]:
        transform = transform or identity
        half1 = self.resolution[0] / 2.0
        half2 = self.resolution[1] / 2.0
        edges1 = self.edges(0)
        edges2 = self.edges(1)
        rows = []
        for i, edge1 in enumerate(edges1):
            for j, edge2 in enumerate(edges2):
                population = float(self.counts[i, j])
                rows.append(
                    (float(edge1), float(edge2), transform(edge1 + half1, edge2 + half2, population))
                )
        return rows

    def lines(self, transform: Optional[Transform2D] = None) -> List[str]:
        return [f"{a:.4f} {b:.4f} {_format_value(pop)}" for a, b, pop in self.rows(transform)]

    def write(self, path: str, transform: Optional[Transform2D] = None) -> None:
        write_text_atomic(path, self.lines(transform))

    def write_matrix(self, path: str, transform: Optional[Transform2D] = None) -> None:
        """Dense layout: one line per first-axis bin, populations across the second axis."""
        values = np.array([pop for _, _, pop in self.rows(transform)]).reshape(self.shape)
        write_text_atomic(path, (" ".join(_format_value(v) for v in row) for row in values))


class Multi2DHistogram:
    """One :class:`Histogram2D` per slice of a third coordinate."""

    def __init__(
        self,
        slice_range: Sequence[float],
        minimum: Sequence[float],
        maximum: Sequence[float],
        resolution: Sequence[float],
    ):
        self.slice_min, self.slice_max, self.slice_res = (float(v) for v in slice_range)
        self.n_slices = bin_count(self.slice_min, self.slice_max, self.slice_res)
        self.slices = [Histogram2D(minimum, maximum, resolution) for _ in range(self.n_slices)]

    def slice_index(self, value3: float) -> int:
        return clamped_index(float(value3), self.slice_min, self.slice_res, self.n_slices)

    def add(self, value3: float, value1: float, value2: float) -> None:
        self.slices[self.slice_index(value3)].add(value1, value2)

    @property
    def total(self) -> int:
        return sum(hist.total for hist in self.slices)

    def slice_edges(self) -> np.ndarray:
        return self.slice_min + self.slice_res * np.arange(self.n_slices)

    def reset(self) -> None:
        for hist in self.slices:
            hist.reset()


class Histogram1DAgent:
    """A histogram together with where and how it is written."""

    def __init__(self, filename: str, histogram: Histogram1D, transform: str = "identity"):
        self.filename = filename
        self.histogram = histogram
        self.transform = TRANSFORMS_1D[transform]

    def add(self, value: float) -> None:
        self.histogram.add(value)

    def write(self) -> None:
        if self.filename:
            self.histogram.write(self.filename, self.transform)


class Histogram2DAgent:
    def __init__(self, filename: str, histogram: Histogram2D, transform: str = "identity"):
        self.filename = filename
        self.histogram = histogram
        self.transform = TRANSFORMS_2D[transform]

    def add(self, value1: float, value2: float) -> None:
        self.histogram.add(value1, value2)

    def write(self) -> None:
        if self.filename:
            self.histogram.write(self.filename, self.transform)


class Multi2DHistogramAgent:
    """Writes each slice to ``pattern`` formatted with the slice's lower edge as ``pos``."""

    def __init__(self, pattern: str, histogram: Multi2DHistogram, transform: str = "identity"):
        self.pattern = pattern
        self.histogram = histogram
        self.transform = TRANSFORMS_2D[transform]

    def add(self, value3: float, value1: float, value2: float) -> None:
        self.histogram.add(value3, value1, value2)

    def filenames(self) -> List[str]:
        return [self.pattern.format(pos=f"{edge:g}") for edge in self.histogram.slice_edges()]

    def write(self) -> None:
        if not self.pattern:
            return
        for path, hist in zip(self.filenames(), self.histogram.slices):
            hist.write(path, self.transform)
