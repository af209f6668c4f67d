"""Analyses run by the timestep driver, registered by name."""
from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Tuple, Type

import numpy as np
import pandas as pd
from MDAnalysis.lib import distances

from slablab.bondgraph import BondKind
from slablab.errors import OutputError
from slablab.export import write_dataframe
from slablab.frames import (
    backbone_theta_phi,
    bond_angle,
    carbonyl_tilt_twist,
    dihedral,
    oh_axis_cosines,
    tilt,
)
from slablab.geometry import distance, mda_box
from slablab.histogram import (
    Histogram1D,
    Histogram1DAgent,
    Histogram2D,
    Histogram2DAgent,
    Multi2DHistogram,
    Multi2DHistogramAgent,
)
from slablab.models import ProjectConfig
from slablab.molecules import MoleculeKind, SulfurDioxide, Water
from slablab.system import SlabSystem

logger = logging.getLogger("slablab")

_ANALYSIS_REGISTRY: Dict[str, Type["Analysis"]] = {}

COSINE_RANGE = (-1.0, 1.0, 0.02)
ABS_COSINE_RANGE = (0.0, 1.0, 0.01)
CARBONYL_SLICES = (-12.0, 4.0, 2.0)
CARBONYL_ANGLES = (0.0, 180.0, 4.0)
ADSORPTION_SHORTLIST = 10


def register_analysis(cls: Type["Analysis"]) -> Type["Analysis"]:
    """Class decorator adding an analysis to the registry under ``cls.name``."""
    if cls.name in _ANALYSIS_REGISTRY:
        logger.warning(
            "Overriding existing analysis %s: %s -> %s",
            cls.name,
            _ANALYSIS_REGISTRY[cls.name].__name__,
            cls.__name__,
        )
    _ANALYSIS_REGISTRY[cls.name] = cls
    return cls


def get_analysis_registry() -> Dict[str, Type["Analysis"]]:
    return dict(_ANALYSIS_REGISTRY)


def create_analyses(project: ProjectConfig) -> List["Analysis"]:
    analyses = []
    for name in project.analysis.analyses:
        cls = _ANALYSIS_REGISTRY.get(name)
        if cls is None:
            available = ", ".join(sorted(_ANALYSIS_REGISTRY))
            raise ValueError(f"Unknown analysis '{name}'. Available: {available}")
        analyses.append(cls(project))
    return analyses


class Analysis:
    """Common setup/analyze/flush/post_process interface.

    ``filename`` names a text stream opened in :meth:`setup`; analyses that
    only write histogram files leave it empty. A ``two_pass`` analysis gets a
    scan pass to itself and may request one rewind; the others only see the
    frames after it.
    """

    name = ""
    description = ""
    filename = ""
    two_pass = False

    def __init__(self, project: ProjectConfig):
        self.project = project
        self.options = project.analysis
        self.output_dir = project.outputs.output_dir
        self.stream = None

    def output_path(self, filename: str) -> str:
        return self.project.outputs.path(filename)

    def polar_range(self) -> Tuple[float, float, float]:
        """Tilt axis for sine-corrected output: always [0, 180] at the configured resolution."""
        return (0.0, 180.0, self.options.angle_range[2])

    def setup(self, system: SlabSystem) -> None:
        try:
            os.makedirs(self.output_dir, exist_ok=True)
        except OSError as exc:
            raise OutputError(f"{self.name}: cannot create output directory {self.output_dir}: {exc}") from exc
        if self.filename:
            path = self.output_path(self.filename)
            try:
                self.stream = open(path, "w", encoding="utf-8")
            except OSError as exc:
                raise OutputError(f"{self.name}: cannot open output {path}: {exc}") from exc

    def analyze(self, system: SlabSystem, timestep: int) -> None:
        raise NotImplementedError

    def agents(self) -> list:
        return []

    def flush(self) -> None:
        for agent in self.agents():
            agent.write()
        if self.stream is not None:
            self.stream.flush()

    def post_process(self) -> None:
        pass

    def close(self) -> None:
        if self.stream is not None:
            self.stream.close()
            self.stream = None


@register_analysis
class SurfaceStatistics(Analysis):
    name = "surface-statistics"
    description = "Per-step surface location and width"

    def __init__(self, project: ProjectConfig):
        super().__init__(project)
        self.rows: List[Dict[str, object]] = []
        self.width_hist = Histogram1DAgent(
            self.output_path("surface-width.dat"), Histogram1D(0.0, 5.0, 0.05)
        )

    def analyze(self, system: SlabSystem, timestep: int) -> None:
        state = system.locate_surface()
        self.width_hist.add(state.width)
        self.rows.append(
            {
                "timestep": timestep,
                "frame": system.source.frame,
                "location": state.location,
                "width": state.width,
                "anomalous": state.anomalous,
                "n_waters": len(system.waters()),
            }
        )

    def agents(self) -> list:
        return [self.width_hist]

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.rows, columns=["timestep", "frame", "location", "width", "anomalous", "n_waters"]
        )

    def flush(self) -> None:
        super().flush()
        write_dataframe(self.to_dataframe(), self.output_path("surface_statistics.csv"))

    def post_process(self) -> None:
        df = self.to_dataframe()
        if df.empty:
            return
        logger.info(
            "Surface location %.3f +/- %.3f over %d steps (%d anomalous)",
            df["location"].mean(),
            df["location"].std(ddof=0),
            len(df),
            int(df["anomalous"].sum()),
        )


@register_analysis
class H2OAngles(Analysis):
    name = "h2o-angles"
    description = "Water bisector tilt and plane-normal orientation vs depth"

    def __init__(self, project: ProjectConfig):
        super().__init__(project)
        low, high, res = self.options.position_range
        self.alpha = Histogram2DAgent(
            self.output_path("alpha.dat"),
            Histogram2D((low, COSINE_RANGE[0]), (high, COSINE_RANGE[1]), (res, COSINE_RANGE[2])),
        )
        self.beta = Histogram2DAgent(
            self.output_path("beta.dat"),
            Histogram2D((low, ABS_COSINE_RANGE[0]), (high, ABS_COSINE_RANGE[1]), (res, ABS_COSINE_RANGE[2])),
        )

    def analyze(self, system: SlabSystem, timestep: int) -> None:
        system.locate_surface()
        axis = system.surface_axis
        for water in system.waters():
            depth = system.distance_to_surface(water)
            self.alpha.add(depth, float(np.dot(water.bisector, axis)))
            self.beta.add(depth, abs(float(np.dot(water.plane_normal, axis))))

    def agents(self) -> list:
        return [self.alpha, self.beta]


@register_analysis
class WaterOHAngles(Analysis):
    name = "water-oh-angles"
    description = "Water O-H bond cosines vs depth"

    def __init__(self, project: ProjectConfig):
        super().__init__(project)
        low, high, res = self.options.position_range
        self.oh = Histogram2DAgent(
            self.output_path("oh-angles.dat"),
            Histogram2D((low, COSINE_RANGE[0]), (high, COSINE_RANGE[1]), (res, COSINE_RANGE[2])),
        )

    def analyze(self, system: SlabSystem, timestep: int) -> None:
        system.locate_surface()
        positions = system.arena.positions
        for water in system.waters():
            depth = system.distance_to_surface(water)
            cosines = oh_axis_cosines(
                positions[water.oxygen],
                [positions[h] for h in water.hydrogens],
                system.surface_axis,
                system.arena.box,
            )
            for cosine in cosines:
                self.oh.add(depth, cosine)

    def agents(self) -> list:
        return [self.oh]


@register_analysis
class SO2Angles(Analysis):
    name = "so2-angles"
    description = "SO2 bisector tilt and plane-normal tilt vs depth"

    def __init__(self, project: ProjectConfig):
        super().__init__(project)
        low, high, res = self.options.position_range
        a_low, a_high, a_res = self.polar_range()
        self.theta = Histogram2DAgent(
            self.output_path("so2-theta.dat"),
            Histogram2D((low, a_low), (high, a_high), (res, a_res)),
            transform="divide_by_right_sine",
        )
        self.phi = Histogram2DAgent(
            self.output_path("so2-phi.dat"),
            Histogram2D((low, a_low), (high, a_high), (res, a_res)),
            transform="divide_by_right_sine",
        )

    def analyze(self, system: SlabSystem, timestep: int) -> None:
        system.locate_surface()
        axis = system.surface_axis
        for so2 in system.of_kind(MoleculeKind.SO2):
            depth = system.distance_to_surface(so2)
            self.theta.add(depth, tilt(so2.bisector, axis))
            self.phi.add(depth, tilt(so2.plane_normal, axis))

    def agents(self) -> list:
        return [self.theta, self.phi]


@register_analysis
class SO2Adsorption(Analysis):
    """Two-pass scan around the first water that binds the SO2.

    Pass one looks for a water interacting with the sulfur or donating an
    H-bond to an SO2 oxygen. Once found, the trajectory is rewound and pass
    two records the pair geometry at every step.
    """

    name = "so2-adsorption"
    description = "SO2 adsorption onto the first bound water (two passes)"
    filename = "so2-adsorption.dat"
    two_pass = True
    columns = ["timestep", "so2_depth", "s_o_distance", "surface_width", "water_depth", "water_tilt", "alignment"]

    def __init__(self, project: ProjectConfig):
        super().__init__(project)
        self.first_bound_water: Optional[int] = None
        self.second_pass = False
        self.bound_at: Optional[int] = None
        self.scan_done = False
        self._last_timestep = -1
        self.rows: List[Dict[str, float]] = []

    def setup(self, system: SlabSystem) -> None:
        super().setup(system)
        self.stream.write("# " + " ".join(self.columns) + "\n")

    def _first_so2(self, system: SlabSystem) -> Optional[SulfurDioxide]:
        found = system.of_kind(MoleculeKind.SO2)
        return found[0] if found else None

    def _find_bound_water(self, system: SlabSystem, so2: SulfurDioxide) -> Optional[int]:
        waters = system.waters()
        if not waters:
            return None
        arena = system.arena
        oxygens = np.array([w.oxygen for w in waters])
        dists = distances.distance_array(
            arena.positions[so2.sulfur][None, :].astype(np.float32),
            arena.positions[oxygens].astype(np.float32),
            box=mda_box(arena.box),
        )[0]
        nearest = [waters[i] for i in np.argsort(dists)[:ADSORPTION_SHORTLIST]]
        shortlist = list(so2.atom_indices)
        for water in nearest:
            shortlist.extend(water.atom_indices)
        graph = system.build_graph(shortlist)

        bound = graph.bonded_atoms(so2.sulfur, BondKind.INTERACTION, "O")
        for oxygen in so2.oxygens:
            bound.extend(graph.bonded_atoms(oxygen, BondKind.HBOND, "H"))
        for idx in sorted(bound):
            parent = arena.parents[idx]
            if parent < 0:
                continue
            molecule = system.molecules[parent]
            if isinstance(molecule, Water):
                return molecule.oxygen
        return None

    def _water_for_oxygen(self, system: SlabSystem, oxygen: int) -> Optional[Water]:
        parent = system.arena.parents[oxygen]
        if parent < 0:
            return None
        molecule = system.molecules[parent]
        return molecule if isinstance(molecule, Water) else None

    def analyze(self, system: SlabSystem, timestep: int) -> None:
        so2 = self._first_so2(system)
        if so2 is None:
            return
        if timestep <= self._last_timestep and not self.second_pass:
            # Replay after a scan that never bound: nothing left to look for.
            self.scan_done = True
        self._last_timestep = timestep
        if not self.second_pass:
            if self.scan_done or self.first_bound_water is not None:
                return
            oxygen = self._find_bound_water(system, so2)
            if oxygen is not None:
                logger.info("SO2 bound to water oxygen %d at timestep %d; rewinding", oxygen, timestep)
                self.first_bound_water = oxygen
                self.bound_at = timestep
                self.second_pass = True
                system.request_rewind()
            return

        water = self._water_for_oxygen(system, self.first_bound_water)
        if water is None:
            return
        state = system.locate_surface()
        positions = system.arena.positions
        row = {
            "timestep": timestep,
            "so2_depth": system.distance_to_surface(so2),
            "s_o_distance": distance(positions[so2.sulfur], positions[water.oxygen], system.arena.box),
            "surface_width": state.width,
            "water_depth": system.distance_to_surface(water),
            "water_tilt": float(np.dot(water.bisector, system.surface_axis)),
            "alignment": float(np.dot(water.bisector, so2.bisector)),
        }
        self.rows.append(row)
        self.stream.write(
            f"{timestep:d} " + " ".join(f"{row[col]:.5f}" for col in self.columns[1:]) + "\n"
        )

    def post_process(self) -> None:
        if self.first_bound_water is None:
            logger.warning("so2-adsorption: no water bound to the SO2 during the run")
            return
        write_dataframe(pd.DataFrame(self.rows, columns=self.columns), self.output_path("so2_adsorption.csv"))


@register_analysis
class SuccinicTiltTwist(Analysis):
    name = "succinic-tilt-twist"
    description = "Carboxyl tilt/twist of succinic acid, sliced by depth"

    def __init__(self, project: ProjectConfig):
        super().__init__(project)
        a_low, a_high, a_res = CARBONYL_ANGLES
        self.tilt_twist = Multi2DHistogramAgent(
            self.output_path("carbonyl-tilt-twist.{pos}.dat"),
            Multi2DHistogram(CARBONYL_SLICES, (a_low, a_low), (a_high, a_high), (a_res, a_res)),
            transform="divide_by_left_sine",
        )

    def analyze(self, system: SlabSystem, timestep: int) -> None:
        system.locate_surface()
        positions = system.arena.positions
        box = system.arena.box
        for acid in system.of_kind(MoleculeKind.SUCCINIC_ACID):
            depth = system.distance_to_surface(acid)
            for group in acid.carbonyl_groups():
                tilt_angle, twist = carbonyl_tilt_twist(
                    positions[group["carbon"]],
                    positions[group["carbonyl"]],
                    positions[group["hydroxyl"]],
                    positions[group["carbonyl"]],
                    system.surface_axis,
                    box,
                )
                self.tilt_twist.add(depth, tilt_angle, abs(twist))

    def agents(self) -> list:
        return [self.tilt_twist]


@register_analysis
class SuccinicChainDihedral(Analysis):
    name = "succinic-chain-dihedral"
    description = "Succinic C1-C2-C3-C4 dihedral and backbone bond angles"

    def __init__(self, project: ProjectConfig):
        super().__init__(project)
        low, high, res = self.options.position_range
        a_res = self.options.angle_range[2]
        self.dihedral = Histogram2DAgent(
            self.output_path("succinic-dihedral.dat"),
            Histogram2D((low, -180.0), (high, 180.0), (res, a_res)),
        )
        self.bond_angles = Histogram1DAgent(
            self.output_path("succinic-bond-angles.dat"),
            Histogram1D(*self.polar_range()),
            transform="divide_by_sine",
        )

    def analyze(self, system: SlabSystem, timestep: int) -> None:
        system.locate_surface()
        box = system.arena.box
        for acid in system.of_kind(MoleculeKind.SUCCINIC_ACID):
            c1, c2, c3, c4 = (acid.position_of(f"C{n}") for n in range(1, 5))
            self.dihedral.add(system.distance_to_surface(acid), dihedral(c1, c2, c3, c4, box))
            self.bond_angles.add(bond_angle(c1, c2, c3, box))
            self.bond_angles.add(bond_angle(c2, c3, c4, box))

    def agents(self) -> list:
        return [self.dihedral, self.bond_angles]


@register_analysis
class MalonicThetaPhi(Analysis):
    name = "malonic-theta-phi"
    description = "Malonic C-C-C backbone tilt (theta) and twist (phi)"

    def __init__(self, project: ProjectConfig):
        super().__init__(project)
        low, high, res = self.options.position_range
        a_res = self.options.angle_range[2]
        self.theta_phi = Histogram2DAgent(
            self.output_path("malonic-theta-phi.dat"),
            Histogram2D((0.0, 0.0), (180.0, 90.0), (a_res, a_res)),
            transform="divide_by_left_sine",
        )
        self.theta_depth = Histogram2DAgent(
            self.output_path("malonic-theta-depth.dat"),
            Histogram2D((low, 0.0), (high, 180.0), (res, a_res)),
            transform="divide_by_right_sine",
        )

    def analyze(self, system: SlabSystem, timestep: int) -> None:
        system.locate_surface()
        kinds = (MoleculeKind.MALONIC_ACID, MoleculeKind.MALONATE, MoleculeKind.DIMALONATE)
        for acid in system.of_kind(*kinds):
            theta, phi = backbone_theta_phi(
                acid.position_of("C1"),
                acid.position_of("CM"),
                acid.position_of("C2"),
                system.surface_axis,
                system.arena.box,
            )
            self.theta_phi.add(theta, phi)
            self.theta_depth.add(system.distance_to_surface(acid), theta)

    def agents(self) -> list:
        return [self.theta_phi, self.theta_depth]
