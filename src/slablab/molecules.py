"""Molecule kinds assembled from the atom arena."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Sequence, Type

import numpy as np

from slablab.atoms import Atom, AtomArena
from slablab.errors import StaleMoleculeError
from slablab.frames import MolecularFrame, molecular_frame


class MoleculeKind(str, Enum):
    WATER = "water"
    HYDRONIUM = "hydronium"
    HYDROXIDE = "hydroxide"
    SO2 = "so2"
    NITRATE = "nitrate"
    NITRIC_ACID = "nitric_acid"
    SUCCINIC_ACID = "succinic_acid"
    MALONIC_ACID = "malonic_acid"
    MALONATE = "malonate"
    DIMALONATE = "dimalonate"
    FORMALDEHYDE = "formaldehyde"
    GENERIC = "generic"


class Molecule:
    """Ordered atom indices into an arena plus derived quantities.

    Derived quantities are computed by :meth:`set_atoms` and are only valid
    until the arena positions change; reading them afterwards raises
    :class:`StaleMoleculeError`.
    """

    kind = MoleculeKind.GENERIC

    def __init__(
        self,
        arena: AtomArena,
        atom_indices: Sequence[int],
        mol_id: int = 0,
        name: Optional[str] = None,
        roles: Optional[Dict[str, int]] = None,
        kind: Optional[MoleculeKind] = None,
    ):
        self.arena = arena
        self.atom_indices = [int(idx) for idx in atom_indices]
        self.mol_id = int(mol_id)
        if kind is not None:
            self.kind = MoleculeKind(kind)
        self.name = name or self.kind.value
        self.roles = dict(roles or {})
        self._generation: Optional[int] = None
        self._center_of_mass: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return len(self.atom_indices)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.mol_id}, kind={self.kind.value}, atoms={self.atom_indices})"

    @property
    def atoms(self) -> List[Atom]:
        return [Atom(self.arena, idx) for idx in self.atom_indices]

    @property
    def positions(self) -> np.ndarray:
        return self.arena.positions[self.atom_indices]

    def role(self, name: str) -> int:
        try:
            return self.roles[name]
        except KeyError as exc:
            raise KeyError(f"{self.name} molecule {self.mol_id} has no atom role {name!r}") from exc

    def position_of(self, role: str) -> np.ndarray:
        return self.arena.positions[self.role(role)]

    def atoms_of(self, element: str) -> List[int]:
        element = element.capitalize()
        return [idx for idx in self.atom_indices if self.arena.elements[idx] == element]

    @property
    def reference_index(self) -> Optional[int]:
        """Atom that stands for the molecule's position, or None for the center of mass."""
        return None

    def set_atoms(self) -> "Molecule":
        """Recompute derived quantities from current arena positions."""
        for idx in self.atom_indices:
            self.arena.parents[idx] = self.mol_id
        masses = self.arena.masses[self.atom_indices]
        positions = self._unwrapped_positions()
        total = masses.sum()
        if total > 0:
            self._center_of_mass = (positions * masses[:, None]).sum(axis=0) / total
        else:
            self._center_of_mass = positions.mean(axis=0)
        self._compute()
        self._generation = self.arena.generation
        return self

    def _compute(self) -> None:
        pass

    def _unwrapped_positions(self) -> np.ndarray:
        """Positions of all atoms made whole around the first atom."""
        first = self.atom_indices[0]
        origin = self.arena.positions[first]
        return np.array([origin + self.arena.vector(first, idx) for idx in self.atom_indices])

    def _require_fresh(self) -> None:
        if self._generation is None or self._generation != self.arena.generation:
            raise StaleMoleculeError(
                f"{self.name} molecule {self.mol_id}: derived data used after positions changed; "
                "call set_atoms() first"
            )

    @property
    def is_fresh(self) -> bool:
        return self._generation is not None and self._generation == self.arena.generation

    @property
    def center_of_mass(self) -> np.ndarray:
        self._require_fresh()
        return self._center_of_mass

    @property
    def reference_position(self) -> np.ndarray:
        if self.reference_index is not None:
            return self.arena.positions[self.reference_index]
        return self.center_of_mass


class BentTriatomic(Molecule):
    """Shared frame logic for X-Y-X molecules stored as [outer, outer, central]."""

    def __init__(self, arena: AtomArena, atom_indices: Sequence[int], mol_id: int = 0, **kwargs):
        super().__init__(arena, atom_indices, mol_id, **kwargs)
        if len(self.atom_indices) != 3:
            raise ValueError(f"{self.kind.value} needs exactly 3 atoms, got {len(self.atom_indices)}")
        self._frame: Optional[MolecularFrame] = None

    @property
    def central(self) -> int:
        return self.atom_indices[2]

    @property
    def outers(self) -> List[int]:
        return self.atom_indices[:2]

    @property
    def reference_index(self) -> int:
        return self.central

    def _compute(self) -> None:
        pos = self.arena.positions
        self._frame = molecular_frame(
            pos[self.central], pos[self.outers[0]], pos[self.outers[1]], self.arena.box
        )

    @property
    def frame(self) -> MolecularFrame:
        self._require_fresh()
        return self._frame

    @property
    def bisector(self) -> np.ndarray:
        return self.frame.z

    @property
    def plane_normal(self) -> np.ndarray:
        return self.frame.y


class Water(BentTriatomic):
    kind = MoleculeKind.WATER

    @property
    def oxygen(self) -> int:
        return self.central

    @property
    def hydrogens(self) -> List[int]:
        return self.outers


class SulfurDioxide(BentTriatomic):
    kind = MoleculeKind.SO2

    @property
    def sulfur(self) -> int:
        return self.central

    @property
    def oxygens(self) -> List[int]:
        return self.outers


class Hydronium(Molecule):
    kind = MoleculeKind.HYDRONIUM

    @property
    def reference_index(self) -> int:
        return self.atom_indices[-1]


class Hydroxide(Hydronium):
    kind = MoleculeKind.HYDROXIDE


class Nitrate(Molecule):
    """Stored as [O, O, O, N] with an optional trailing acid H."""
    kind = MoleculeKind.NITRATE

    @property
    def reference_index(self) -> int:
        return self.atom_indices[3]


class NitricAcid(Nitrate):
    kind = MoleculeKind.NITRIC_ACID


class CarbonChain(Molecule):
    """Carboxylic acids and aldehydes; roles are assigned by the assembler.

    ``carbons`` lists the backbone in bonding order.
    """

    def __init__(
        self,
        arena: AtomArena,
        atom_indices: Sequence[int],
        mol_id: int = 0,
        carbons: Optional[Sequence[int]] = None,
        **kwargs,
    ):
        super().__init__(arena, atom_indices, mol_id, **kwargs)
        self.carbons = [int(c) for c in (carbons or self.atoms_of("C"))]


class SuccinicAcid(CarbonChain):
    """Backbone roles C1..C4; carboxyl oxygens O1/OH1 on C1 and O4/OH4 on C4."""
    kind = MoleculeKind.SUCCINIC_ACID

    def carbonyl_groups(self) -> List[Dict[str, int]]:
        """Both carboxylic ends as role maps {carbon, carbonyl, hydroxyl}."""
        groups = []
        for end in ("1", "4"):
            groups.append(
                {
                    "carbon": self.role(f"C{end}"),
                    "carbonyl": self.role(f"O{end}"),
                    "hydroxyl": self.role(f"OH{end}"),
                }
            )
        return groups


class MalonicAcid(CarbonChain):
    """Malonic acid and its deprotonated forms: roles C1, CM, C2, O1, O2, OH1, OH2."""
    kind = MoleculeKind.MALONIC_ACID


class Formaldehyde(CarbonChain):
    kind = MoleculeKind.FORMALDEHYDE


class GenericMolecule(CarbonChain):
    kind = MoleculeKind.GENERIC


MOLECULE_CLASSES: Dict[MoleculeKind, Type[Molecule]] = {
    MoleculeKind.WATER: Water,
    MoleculeKind.HYDRONIUM: Hydronium,
    MoleculeKind.HYDROXIDE: Hydroxide,
    MoleculeKind.SO2: SulfurDioxide,
    MoleculeKind.NITRATE: Nitrate,
    MoleculeKind.NITRIC_ACID: NitricAcid,
    MoleculeKind.SUCCINIC_ACID: SuccinicAcid,
    MoleculeKind.MALONIC_ACID: MalonicAcid,
    MoleculeKind.MALONATE: MalonicAcid,
    MoleculeKind.DIMALONATE: MalonicAcid,
    MoleculeKind.FORMALDEHYDE: Formaldehyde,
    MoleculeKind.GENERIC: GenericMolecule,
}


def create_molecule(
    kind,
    arena: AtomArena,
    atom_indices: Sequence[int],
    mol_id: int = 0,
    **kwargs,
) -> Molecule:
    """Build the molecule class registered for ``kind``."""
    kind = MoleculeKind(kind)
    cls = MOLECULE_CLASSES[kind]
    if cls.kind != kind:
        kwargs.setdefault("kind", kind)
    return cls(arena, atom_indices, mol_id, **kwargs)
