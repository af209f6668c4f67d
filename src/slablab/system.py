"""Frame source and the per-run system shared by all analyses."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

import MDAnalysis as mda
import numpy as np

from slablab.assembler import MoleculeAssembler
from slablab.atoms import Atom, AtomArena
from slablab.bondgraph import BondGraph
from slablab.geometry import UNIT_AXES
from slablab.models import InputConfig, ProjectConfig
from slablab.molecules import Molecule, MoleculeKind, Water
from slablab.surface import SurfaceLocator, SurfaceState

logger = logging.getLogger("slablab")


@dataclass
class FrameLoadResult:
    ok: bool
    frame: Optional[int] = None
    eof: bool = False
    error: Optional[str] = None


def load_universe(inputs: InputConfig) -> mda.Universe:
    if inputs.trajectory:
        return mda.Universe(inputs.topology, inputs.trajectory)
    return mda.Universe(inputs.topology)


class UniverseFrameSource:
    """Steps through an MDAnalysis trajectory one frame at a time.

    The first :meth:`load_next` (and the first after :meth:`rewind`) yields
    frame 0; later calls advance. End of trajectory is reported, not raised.
    """

    def __init__(self, universe: mda.Universe, box: Optional[Sequence[float]] = None):
        self.universe = universe
        self.box = box
        self._started = False

    @property
    def n_frames(self) -> int:
        return len(self.universe.trajectory)

    @property
    def frame(self) -> int:
        return int(self.universe.trajectory.ts.frame)

    def positions(self) -> np.ndarray:
        return self.universe.atoms.positions

    def load_next(self) -> FrameLoadResult:
        trajectory = self.universe.trajectory
        try:
            if not self._started:
                trajectory.rewind()
                self._started = True
            else:
                trajectory.next()
        except StopIteration:
            return FrameLoadResult(ok=False, eof=True)
        except (OSError, ValueError, EOFError) as exc:
            return FrameLoadResult(ok=False, error=f"{type(exc).__name__}: {exc}")
        return FrameLoadResult(ok=True, frame=self.frame)

    def rewind(self) -> None:
        self.universe.trajectory.rewind()
        self._started = False


Entity = Union[Atom, Molecule, float, np.ndarray]


class SlabSystem:
    """Atoms, molecules and the surface for the frame currently loaded."""

    def __init__(self, project: ProjectConfig, universe: mda.Universe, source=None):
        self.project = project
        self.universe = universe
        self.source = source or UniverseFrameSource(universe, project.system.box)
        self.arena = AtomArena.from_universe(universe, project.system.box)
        self.axis = project.system.axis_index
        self.pbc_flip = project.system.pbc_flip
        self.assembler = MoleculeAssembler(project.assembler)
        self.surface = SurfaceLocator(project.surface, axis=self.axis, unwrap=self.unwrap)
        self.rewind_requested = False
        self.frames_loaded = 0

    @property
    def axis_vector(self) -> np.ndarray:
        return UNIT_AXES[self.axis]

    @property
    def surface_axis(self) -> np.ndarray:
        """Reference axis pointing from the liquid into the vapor."""
        return self.axis_vector if self.surface.top_surface else -self.axis_vector

    @property
    def box_length(self) -> Optional[float]:
        if self.arena.box is None:
            return None
        return float(self.arena.box[self.axis])

    @property
    def molecules(self) -> List[Molecule]:
        return self.assembler.molecules

    def atoms(self) -> Iterable[Atom]:
        return iter(self.arena)

    def of_kind(self, *kinds: MoleculeKind) -> List[Molecule]:
        return self.assembler.of_kind(*kinds)

    def waters(self) -> List[Water]:
        return self.assembler.of_kind(MoleculeKind.WATER)

    def load_next(self) -> FrameLoadResult:
        result = self.source.load_next()
        if result.ok:
            self.arena.update_positions(self.source.positions())
            self.frames_loaded += 1
        return result

    def build_graph(self, atoms=None) -> BondGraph:
        return BondGraph(self.arena, self.project.bonds).update_graph(atoms)

    def update_molecules(self, timestep: int) -> List[Molecule]:
        return self.assembler.update(self.arena, self.build_graph, timestep)

    def unwrap(self, value: float) -> float:
        """Shift positions below the flip threshold up by one box length."""
        length = self.box_length
        if length is not None and value < self.pbc_flip:
            return value + length
        return value

    def position(self, entity: Entity) -> float:
        """Unwrapped coordinate of an atom, molecule, 3-vector or raw value along the axis.

        Plain numbers are coordinates, never atom ids; wrap an id as ``arena[index]``.
        """
        if isinstance(entity, Molecule):
            value = entity.reference_position[self.axis]
        elif isinstance(entity, Atom):
            value = entity.position[self.axis]
        elif isinstance(entity, np.ndarray) and entity.ndim == 1 and entity.size == 3:
            value = entity[self.axis]
        else:
            value = entity
        return self.unwrap(float(value))

    def locate_surface(self) -> SurfaceState:
        """Locate the surface once per frame; repeated calls reuse the result."""
        state = self.surface.state
        if state.location is not None and state.generation == self.arena.generation:
            return state
        return self.surface.find_water_surface_location(self.waters())

    def distance_to_surface(self, entity: Entity) -> float:
        self.locate_surface()
        return self.surface.distance_to_surface(self.position(entity))

    def request_rewind(self) -> None:
        self.rewind_requested = True

    def rewind(self) -> None:
        logger.info("Rewinding trajectory to frame 0")
        self.source.rewind()
        self.assembler.last_parse = None
        self.rewind_requested = False
