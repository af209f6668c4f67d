"""Data models for SlabLab project and analysis configuration."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

AXIS_INDEX = {"x": 0, "y": 1, "z": 2}


def _range_tuple(value: Any, default: Tuple[float, float, float]) -> Tuple[float, float, float]:
    if value is None:
        return default
    if isinstance(value, dict):
        return (float(value["min"]), float(value["max"]), float(value["resolution"]))
    items = [float(item) for item in value]
    if len(items) != 3:
        raise ValueError(f"Range must be [min, max, resolution], got {value!r}")
    return (items[0], items[1], items[2])


def _check_range(label: str, values: Tuple[float, float, float]) -> None:
    low, high, res = values
    if res <= 0:
        raise ValueError(f"{label}: resolution must be positive")
    if high <= low:
        raise ValueError(f"{label}: max must be greater than min")


def pair_key(elem_a: str, elem_b: str) -> str:
    """Order-insensitive key for element-pair tables, e.g. ``H-O``."""
    first, second = sorted((elem_a.strip().capitalize(), elem_b.strip().capitalize()))
    return f"{first}-{second}"


def _normalize_pair_table(table: Dict[str, Any]) -> Dict[str, float]:
    normalized: Dict[str, float] = {}
    for key, value in (table or {}).items():
        parts = str(key).replace(" ", "").split("-")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Element pair keys must look like 'H-O', got {key!r}")
        normalized[pair_key(parts[0], parts[1])] = float(value)
    return normalized


@dataclass
class InputConfig:
    topology: str
    trajectory: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topology": self.topology,
            "trajectory": self.trajectory,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InputConfig":
        return cls(
            topology=data.get("topology", ""),
            trajectory=data.get("trajectory"),
        )


@dataclass
class SystemConfig:
    """Geometry of the simulation cell and the run length."""
    axis: str = "y"
    box: Optional[List[float]] = None
    pbc_flip: float = 0.0
    timesteps: Optional[int] = None

    def __post_init__(self) -> None:
        self.axis = self.axis.strip().lower()
        if self.axis not in AXIS_INDEX:
            raise ValueError(f"Unsupported reference axis: {self.axis}")
        if self.box is not None:
            if len(self.box) != 3 or any(float(v) <= 0 for v in self.box):
                raise ValueError("system.box must hold three positive lengths")
            self.box = [float(v) for v in self.box]

    @property
    def axis_index(self) -> int:
        return AXIS_INDEX[self.axis]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "axis": self.axis,
            "box": self.box,
            "pbc_flip": self.pbc_flip,
            "timesteps": self.timesteps,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemConfig":
        timesteps = data.get("timesteps")
        return cls(
            axis=str(data.get("axis", "y")),
            box=data.get("box"),
            pbc_flip=float(data.get("pbc_flip", data.get("pbc-flip", 0.0))),
            timesteps=int(timesteps) if timesteps is not None else None,
        )


@dataclass
class BondCriteria:
    """Distance/angle criteria used to build the bond graph."""
    covalent: Dict[str, float] = field(
        default_factory=lambda: {
            "H-O": 1.2,
            "O-S": 1.7,
            "C-O": 1.6,
            "C-C": 1.7,
            "C-H": 1.2,
            "N-O": 1.6,
            "H-N": 1.2,
        }
    )
    hbond_distance: float = 2.46
    hbond_angle: float = 150.0
    donors: List[str] = field(default_factory=lambda: ["O", "N"])
    acceptors: List[str] = field(default_factory=lambda: ["O", "N"])
    interaction: Dict[str, float] = field(default_factory=lambda: {"O-S": 3.4})

    def __post_init__(self) -> None:
        self.covalent = _normalize_pair_table(self.covalent)
        self.interaction = _normalize_pair_table(self.interaction)
        self.donors = [elem.strip().capitalize() for elem in self.donors]
        self.acceptors = [elem.strip().capitalize() for elem in self.acceptors]

    def covalent_threshold(self, elem_a: str, elem_b: str) -> Optional[float]:
        return self.covalent.get(pair_key(elem_a, elem_b))

    def interaction_threshold(self, elem_a: str, elem_b: str) -> Optional[float]:
        return self.interaction.get(pair_key(elem_a, elem_b))

    @property
    def max_cutoff(self) -> float:
        values = list(self.covalent.values()) + list(self.interaction.values()) + [self.hbond_distance]
        return max(values) if values else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "covalent": dict(self.covalent),
            "hbond_distance": self.hbond_distance,
            "hbond_angle": self.hbond_angle,
            "donors": list(self.donors),
            "acceptors": list(self.acceptors),
            "interaction": dict(self.interaction),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BondCriteria":
        defaults = cls()
        return cls(
            covalent=dict(data.get("covalent", defaults.covalent)),
            hbond_distance=float(data.get("hbond_distance", defaults.hbond_distance)),
            hbond_angle=float(data.get("hbond_angle", defaults.hbond_angle)),
            donors=list(data.get("donors", defaults.donors)),
            acceptors=list(data.get("acceptors", defaults.acceptors)),
            interaction=dict(data.get("interaction", defaults.interaction)),
        )


@dataclass
class MoleculeTemplate:
    """A central atom with a fixed number of covalently bound outer atoms."""
    name: str
    central: str
    outer: str
    count: int
    kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "central": self.central,
            "outer": self.outer,
            "count": self.count,
            "kind": self.kind,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MoleculeTemplate":
        return cls(
            name=data.get("name", data.get("kind", "generic")),
            central=str(data["central"]).capitalize(),
            outer=str(data["outer"]).capitalize(),
            count=int(data["count"]),
            kind=str(data.get("kind", "generic")),
        )


def _default_templates() -> List[MoleculeTemplate]:
    return [
        MoleculeTemplate(name="h2o", central="O", outer="H", count=2, kind="water"),
        MoleculeTemplate(name="so2", central="S", outer="O", count=2, kind="so2"),
    ]


SPECIALIZED_PARSERS = ("alkanes", "nitrates", "protons")


@dataclass
class AssemblerConfig:
    templates: List[MoleculeTemplate] = field(default_factory=_default_templates)
    parsers: List[str] = field(default_factory=lambda: list(SPECIALIZED_PARSERS))
    reparse_limit: int = 1

    def __post_init__(self) -> None:
        if self.reparse_limit < 1:
            raise ValueError("assembler.reparse_limit must be at least 1")
        unknown = [name for name in self.parsers if name not in SPECIALIZED_PARSERS]
        if unknown:
            raise ValueError(f"Unknown molecule parsers: {', '.join(unknown)}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "templates": [template.to_dict() for template in self.templates],
            "parsers": list(self.parsers),
            "reparse_limit": self.reparse_limit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssemblerConfig":
        templates_raw = data.get("templates")
        templates = (
            [MoleculeTemplate.from_dict(item) for item in templates_raw]
            if templates_raw is not None
            else _default_templates()
        )
        return cls(
            templates=templates,
            parsers=list(data.get("parsers", SPECIALIZED_PARSERS)),
            reparse_limit=int(data.get("reparse_limit", 1)),
        )


@dataclass
class SurfaceConfig:
    number_surface_waters: int = 70
    reference_point: float = 0.0
    top_surface: bool = True
    width_threshold: float = 2.0

    def __post_init__(self) -> None:
        if self.number_surface_waters < 2:
            raise ValueError("surface.number_surface_waters must be at least 2")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number_surface_waters": self.number_surface_waters,
            "reference_point": self.reference_point,
            "top_surface": self.top_surface,
            "width_threshold": self.width_threshold,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SurfaceConfig":
        return cls(
            number_surface_waters=int(data.get("number_surface_waters", 70)),
            reference_point=float(data.get("reference_point", data.get("reference_location", 0.0))),
            top_surface=bool(data.get("top_surface", True)),
            width_threshold=float(data.get("width_threshold", 2.0)),
        )


@dataclass
class AnalysisOptions:
    analyses: List[str] = field(default_factory=lambda: ["surface-statistics"])
    position_range: Tuple[float, float, float] = (-20.0, 10.0, 0.2)
    angle_range: Tuple[float, float, float] = (0.0, 180.0, 1.0)
    output_frequency: int = 10
    strict: bool = False

    def __post_init__(self) -> None:
        self.position_range = _range_tuple(self.position_range, (-20.0, 10.0, 0.2))
        self.angle_range = _range_tuple(self.angle_range, (0.0, 180.0, 1.0))
        _check_range("analysis.position_range", self.position_range)
        _check_range("analysis.angle_range", self.angle_range)
        if self.output_frequency < 1:
            raise ValueError("analysis.output_frequency must be at least 1")

    @property
    def checkpoint_interval(self) -> int:
        return self.output_frequency * 10

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analyses": list(self.analyses),
            "position_range": list(self.position_range),
            "angle_range": list(self.angle_range),
            "output_frequency": self.output_frequency,
            "strict": self.strict,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisOptions":
        analyses = data.get("analyses", ["surface-statistics"])
        if isinstance(analyses, str):
            analyses = [analyses]
        return cls(
            analyses=list(analyses),
            position_range=_range_tuple(data.get("position_range"), (-20.0, 10.0, 0.2)),
            angle_range=_range_tuple(data.get("angle_range"), (0.0, 180.0, 1.0)),
            output_frequency=int(data.get("output_frequency", 10)),
            strict=bool(data.get("strict", False)),
        )


@dataclass
class OutputConfig:
    output_dir: str = "results"

    def path(self, filename: str) -> str:
        if not filename or os.path.isabs(filename):
            return filename
        return os.path.join(self.output_dir, filename)

    def to_dict(self) -> Dict[str, Any]:
        return {"output_dir": self.output_dir}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutputConfig":
        return cls(output_dir=data.get("output_dir", "results"))


@dataclass
class ProjectConfig:
    inputs: InputConfig
    system: SystemConfig = field(default_factory=SystemConfig)
    bonds: BondCriteria = field(default_factory=BondCriteria)
    assembler: AssemblerConfig = field(default_factory=AssemblerConfig)
    surface: SurfaceConfig = field(default_factory=SurfaceConfig)
    analysis: AnalysisOptions = field(default_factory=AnalysisOptions)
    outputs: OutputConfig = field(default_factory=OutputConfig)
    version: str = "1.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "inputs": self.inputs.to_dict(),
            "system": self.system.to_dict(),
            "bonds": self.bonds.to_dict(),
            "assembler": self.assembler.to_dict(),
            "surface": self.surface.to_dict(),
            "analysis": self.analysis.to_dict(),
            "outputs": self.outputs.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectConfig":
        return cls(
            inputs=InputConfig.from_dict(data.get("inputs", {})),
            system=SystemConfig.from_dict(data.get("system", {})),
            bonds=BondCriteria.from_dict(data.get("bonds", {})),
            assembler=AssemblerConfig.from_dict(data.get("assembler", {})),
            surface=SurfaceConfig.from_dict(data.get("surface", {})),
            analysis=AnalysisOptions.from_dict(data.get("analysis", {})),
            outputs=OutputConfig.from_dict(data.get("outputs", {})),
            version=data.get("version", "1.0"),
        )


def default_project(topology: str, trajectory: Optional[str] = None) -> ProjectConfig:
    return ProjectConfig(inputs=InputConfig(topology=topology, trajectory=trajectory))


def write_project(project: ProjectConfig, path: str) -> None:
    dirpath = os.path.dirname(path)
    if dirpath:
        os.makedirs(dirpath, exist_ok=True)
    data = project.to_dict()
    if path.endswith((".yaml", ".yml")):
        with open(path, "w", encoding="utf-8") as handle:
            yaml.safe_dump(data, handle, sort_keys=False)
    else:
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)


def load_project(path: str) -> ProjectConfig:
    with open(path, "r", encoding="utf-8") as handle:
        if path.endswith((".yaml", ".yml")):
            data = yaml.safe_load(handle)
        else:
            data = json.load(handle)
    return ProjectConfig.from_dict(data or {})
