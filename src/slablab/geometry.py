"""Vector helpers with periodic minimum-image handling."""
from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from MDAnalysis.lib import distances

UNIT_AXES = {
    0: np.array([1.0, 0.0, 0.0]),
    1: np.array([0.0, 1.0, 0.0]),
    2: np.array([0.0, 0.0, 1.0]),
}


def mda_box(box: Optional[Sequence[float]]) -> Optional[np.ndarray]:
    """Convert three box lengths into the six-element MDAnalysis box (orthorhombic)."""
    if box is None:
        return None
    values = np.asarray(box, dtype=np.float32)
    if values.size == 6:
        return values
    if values.size != 3:
        raise ValueError(f"Box must hold 3 lengths (or 6 MDAnalysis dimensions), got {values.size}")
    return np.concatenate([values, np.array([90.0, 90.0, 90.0], dtype=np.float32)])


def min_image(vectors, box: Optional[Sequence[float]] = None) -> np.ndarray:
    """Apply the minimum-image convention to one vector or an (n, 3) array of vectors."""
    arr = np.asarray(vectors, dtype=np.float64)
    if box is None:
        return arr.copy()
    single = arr.ndim == 1
    work = np.ascontiguousarray(np.atleast_2d(arr))
    reduced = distances.minimize_vectors(work, mda_box(box)).astype(np.float64)
    return reduced[0] if single else reduced


def bond_vector(origin, target, box: Optional[Sequence[float]] = None) -> np.ndarray:
    """Minimum-image vector pointing from ``origin`` to ``target``."""
    return min_image(np.asarray(target, dtype=np.float64) - np.asarray(origin, dtype=np.float64), box)


def unit(vector) -> np.ndarray:
    vec = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(vec)
    if norm == 0.0:
        raise ValueError("Cannot normalize a zero-length vector")
    return vec / norm


def distance(a, b, box: Optional[Sequence[float]] = None) -> float:
    return float(np.linalg.norm(bond_vector(a, b, box)))


def angle_between(v1, v2) -> float:
    """Angle between two vectors in degrees, clipped against round-off."""
    cosine = float(np.dot(unit(v1), unit(v2)))
    return float(np.degrees(np.arccos(np.clip(cosine, -1.0, 1.0))))

