"""Molecular reference frames: bisectors, dihedrals, tilt and twist.

Everything here is a pure function of the positions it is handed. Vectors
between atoms go through the minimum-image convention when a box is given,
so molecules split across a periodic boundary still produce sane frames.
Angles are returned in degrees.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from MDAnalysis.lib import distances

from slablab.geometry import angle_between, bond_vector, mda_box, unit


@dataclass(frozen=True)
class MolecularFrame:
    """Right-handed molecular axes: z along the bisector, y normal to the molecular plane."""
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray

    def as_matrix(self) -> np.ndarray:
        return np.vstack([self.x, self.y, self.z])


def bisector(center, a, b, box: Optional[Sequence[float]] = None) -> np.ndarray:
    """Normalized sum of the unit vectors center->a and center->b."""
    va = unit(bond_vector(center, a, box))
    vb = unit(bond_vector(center, b, box))
    return unit(va + vb)


def dihedral_from_bonds(b1, b2, b3) -> float:
    """Signed dihedral defined by three consecutive bond vectors.

    Uses atan2(|b2| b1.(b2 x b3), (b1 x b2).(b2 x b3)), which keeps the sign over
    the full circle. The result lies in (-180, 180].
    """
    b1 = np.asarray(b1, dtype=np.float64)
    b2 = np.asarray(b2, dtype=np.float64)
    b3 = np.asarray(b3, dtype=np.float64)
    n1 = np.cross(b1, b2)
    n2 = np.cross(b2, b3)
    y = np.linalg.norm(b2) * np.dot(b1, n2)
    x = np.dot(n1, n2)
    angle = float(np.degrees(np.arctan2(y, x)))
    if angle <= -180.0:
        angle += 360.0
    return angle


def dihedral(p1, p2, p3, p4, box: Optional[Sequence[float]] = None) -> float:
    """Signed dihedral p1-p2-p3-p4 in degrees."""
    return dihedral_from_bonds(
        bond_vector(p1, p2, box),
        bond_vector(p2, p3, box),
        bond_vector(p3, p4, box),
    )


def tilt(vector, axis) -> float:
    return angle_between(vector, axis)


def bond_angle(a, center, b, box: Optional[Sequence[float]] = None) -> float:
    """Angle a-center-b in degrees."""
    angles = distances.calc_angles(
        np.atleast_2d(np.asarray(a, dtype=np.float32)),
        np.atleast_2d(np.asarray(center, dtype=np.float32)),
        np.atleast_2d(np.asarray(b, dtype=np.float32)),
        box=mda_box(box),
    )
    return float(np.degrees(np.atleast_1d(angles)[0]))


def molecular_frame(center, a, b, box: Optional[Sequence[float]] = None) -> MolecularFrame:
    """Frame of a bent triatomic such as H2O or SO2 with ``center`` as apex."""
    va = bond_vector(center, a, box)
    vb = bond_vector(center, b, box)
    z = unit(unit(va) + unit(vb))
    y = unit(np.cross(va, vb))
    x = np.cross(y, z)
    return MolecularFrame(x=x, y=y, z=z)


def oh_axis_cosines(oxygen, hydrogens, axis, box: Optional[Sequence[float]] = None) -> Tuple[float, ...]:
    """Cosine between each O->H bond and the reference axis."""
    ref = unit(axis)
    return tuple(float(np.dot(unit(bond_vector(oxygen, h, box)), ref)) for h in hydrogens)


def carbonyl_tilt_twist(
    carbon,
    oxygen_a,
    oxygen_b,
    carbonyl_oxygen,
    axis,
    box: Optional[Sequence[float]] = None,
) -> Tuple[float, float]:
    """Tilt and twist of a carboxylic O-C-O group against ``axis``.

    Tilt is the angle between the O-C-O bisector and the axis. Twist is the
    dihedral formed by the axis, the bisector, and the C=O bond.
    """
    ref = unit(axis)
    bis = bisector(carbon, oxygen_a, oxygen_b, box)
    to_carbonyl = bond_vector(carbon, carbonyl_oxygen, box)
    twist = dihedral_from_bonds(ref, bis, to_carbonyl)
    return tilt(bis, ref), twist


def backbone_theta_phi(
    end_a,
    middle,
    end_b,
    axis,
    box: Optional[Sequence[float]] = None,
) -> Tuple[float, float]:
    """Orientation of a C-C-C backbone.

    Theta is the tilt of the backbone bisector from ``axis``. Phi is the unsigned
    twist of the first C-C bond about the bisector, folded into [0, 90].
    """
    ref = unit(axis)
    bis = bisector(middle, end_a, end_b, box)
    bond = bond_vector(middle, end_a, box)
    theta = tilt(bis, ref)
    phi = abs(dihedral_from_bonds(ref, bis, bond))
    if phi > 90.0:
        phi = 180.0 - phi
    return theta, phi
