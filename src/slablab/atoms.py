"""Atom arena: flat per-atom arrays shared by every molecule of a run."""
from __future__ import annotations

import logging
from typing import Iterator, Optional, Sequence

import numpy as np
from MDAnalysis.exceptions import NoDataError

from slablab.geometry import bond_vector

logger = logging.getLogger("slablab")

ELEMENT_MASSES = {
    "H": 1.008,
    "C": 12.011,
    "N": 14.007,
    "O": 15.999,
    "S": 32.06,
    "Na": 22.990,
    "Cl": 35.45,
}

# Ion names; anything else falls back to its first letter.
_TWO_LETTER = {"CL": "Cl", "NA": "Na"}


def element_from_name(name: str) -> str:
    stripped = "".join(ch for ch in name.strip() if ch.isalpha())
    if not stripped:
        return ""
    upper = stripped.upper()
    if upper in _TWO_LETTER:
        return _TWO_LETTER[upper]
    return upper[0]


class Atom:
    """Lightweight view of one arena slot."""

    __slots__ = ("arena", "index")

    def __init__(self, arena: "AtomArena", index: int):
        self.arena = arena
        self.index = int(index)

    @property
    def element(self) -> str:
        return self.arena.elements[self.index]

    @property
    def name(self) -> str:
        return self.arena.names[self.index]

    @property
    def residue(self) -> str:
        return self.arena.residues[self.index]

    @property
    def mass(self) -> float:
        return float(self.arena.masses[self.index])

    @property
    def position(self) -> np.ndarray:
        return self.arena.positions[self.index]

    @property
    def parent(self) -> Optional[int]:
        value = int(self.arena.parents[self.index])
        return None if value < 0 else value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Atom) and other.arena is self.arena and other.index == self.index

    def __hash__(self) -> int:
        return hash((id(self.arena), self.index))

    def __repr__(self) -> str:
        x, y, z = self.position
        return f"Atom({self.index} {self.name}/{self.element} res={self.residue} pos=({x:.3f}, {y:.3f}, {z:.3f}))"


class AtomArena:
    """Owns atom identity arrays for the lifetime of a run.

    Identity fields (names, elements, residues, masses) are fixed when the
    arena is created. Positions are overwritten by :meth:`update_positions`,
    which also bumps ``generation`` so molecules can detect stale derived data.
    """

    def __init__(
        self,
        names: Sequence[str],
        elements: Sequence[str],
        residues: Optional[Sequence[str]] = None,
        masses: Optional[Sequence[float]] = None,
        positions=None,
        box: Optional[Sequence[float]] = None,
    ):
        n_atoms = len(names)
        if len(elements) != n_atoms:
            raise ValueError("names and elements must have the same length")
        self.names = [str(name) for name in names]
        self.elements = [str(elem).strip().capitalize() for elem in elements]
        self.residues = [str(res).lower() for res in residues] if residues is not None else [""] * n_atoms
        if masses is None:
            masses = [ELEMENT_MASSES.get(elem, 0.0) for elem in self.elements]
        self.masses = np.asarray(masses, dtype=np.float64)
        self.positions = np.zeros((n_atoms, 3), dtype=np.float64)
        self.parents = np.full(n_atoms, -1, dtype=np.int64)
        self.box = np.asarray(box, dtype=np.float64) if box is not None else None
        self.generation = 0
        if positions is not None:
            self.update_positions(positions)

    @classmethod
    def from_universe(cls, universe, box: Optional[Sequence[float]] = None) -> "AtomArena":
        atoms = universe.atoms
        names = list(atoms.names)
        try:
            elements = [str(elem) for elem in atoms.elements]
        except NoDataError:
            elements = []
        if not elements or any(not elem for elem in elements):
            logger.info("Elements missing from topology; guessing from atom names.")
            elements = [element_from_name(name) for name in names]
        try:
            residues = list(atoms.resnames)
        except NoDataError:
            residues = None
        if box is None:
            dims = universe.trajectory.ts.dimensions
            if dims is not None and np.all(np.asarray(dims[:3]) > 0):
                box = [float(v) for v in dims[:3]]
        return cls(names, elements, residues=residues, positions=atoms.positions, box=box)

    def __len__(self) -> int:
        return len(self.names)

    def __iter__(self) -> Iterator[Atom]:
        for index in range(len(self)):
            yield Atom(self, index)

    def __getitem__(self, index: int) -> Atom:
        if index < 0 or index >= len(self):
            raise IndexError(f"Atom index {index} out of range")
        return Atom(self, index)

    def update_positions(self, positions) -> None:
        arr = np.asarray(positions, dtype=np.float64)
        if arr.shape != self.positions.shape:
            raise ValueError(f"Expected positions of shape {self.positions.shape}, got {arr.shape}")
        self.positions[:] = arr
        self.generation += 1

    def vector(self, origin: int, target: int) -> np.ndarray:
        return bond_vector(self.positions[origin], self.positions[target], self.box)

    def clear_parents(self) -> None:
        self.parents[:] = -1
