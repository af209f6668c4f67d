"""Pre-flight checks for SlabLab runs."""
from __future__ import annotations

import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List

import MDAnalysis as mda
import numpy as np
from MDAnalysis.exceptions import NoDataError

from slablab.atoms import ELEMENT_MASSES, element_from_name
from slablab.models import ProjectConfig

logger = logging.getLogger("slablab")


@dataclass
class PreflightReport:
    ok: bool
    errors: List[str]
    warnings: List[str]
    trajectory_summary: Dict[str, object] = field(default_factory=dict)
    element_counts: Dict[str, int] = field(default_factory=dict)
    pbc_summary: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "errors": self.errors,
            "warnings": self.warnings,
            "trajectory_summary": self.trajectory_summary,
            "element_counts": self.element_counts,
            "pbc_summary": self.pbc_summary,
        }


def _universe_elements(universe: mda.Universe) -> List[str]:
    try:
        elements = [str(elem).strip().capitalize() for elem in universe.atoms.elements]
    except NoDataError:
        elements = []
    if not elements or any(not elem for elem in elements):
        elements = [element_from_name(name) for name in universe.atoms.names]
    return elements


def run_preflight(project: ProjectConfig, universe: mda.Universe) -> PreflightReport:
    errors: List[str] = []
    warnings: List[str] = []

    # Trajectory sanity
    traj = universe.trajectory
    n_atoms = len(universe.atoms)
    n_frames = len(traj)
    if n_atoms == 0:
        errors.append("Topology contains 0 atoms.")
    if n_frames == 0:
        errors.append("Trajectory contains 0 frames.")
    timesteps = project.system.timesteps
    if timesteps is not None and n_frames < timesteps:
        message = f"Trajectory has {n_frames} frame(s) but {timesteps} timesteps were requested."
        if project.analysis.strict:
            errors.append(message)
        else:
            warnings.append(message)

    trajectory_summary = {
        "n_atoms": n_atoms,
        "n_frames": n_frames,
        "input_topology": project.inputs.topology,
        "input_trajectory": project.inputs.trajectory,
        "timesteps": timesteps,
    }

    # Elements must be known to the bond tables
    elements = _universe_elements(universe)
    element_counts = dict(sorted(Counter(elements).items()))
    unknown = sorted(elem for elem in element_counts if elem not in ELEMENT_MASSES)
    if unknown:
        errors.append(f"Unrecognized elements in topology: {', '.join(unknown)}")
    if "O" not in element_counts or "H" not in element_counts:
        warnings.append("No water-like O/H atoms found; the surface cannot be located.")

    # Periodic box
    box = project.system.box
    source = "config"
    if box is None:
        source = "trajectory"
        dims = traj.ts.dimensions
        if dims is not None and np.all(np.asarray(dims[:3]) > 0):
            box = [float(v) for v in dims[:3]]
            if not np.allclose(np.asarray(dims[3:6], dtype=float), 90.0):
                warnings.append("Box is not orthorhombic; unwrapping uses the box lengths only.")
    if box is None:
        errors.append("No valid box found in config or trajectory; periodic unwrapping is impossible.")
    else:
        axis_length = box[project.system.axis_index]
        if project.system.pbc_flip > axis_length:
            warnings.append(
                f"pbc_flip {project.system.pbc_flip:g} exceeds the box length {axis_length:g} along {project.system.axis}."
            )
        low, high, _ = project.analysis.position_range
        if high - low > axis_length:
            warnings.append(
                f"Position range [{low:g}, {high:g}] is wider than the box along {project.system.axis} ({axis_length:g})."
            )
    pbc_summary = {"box": box, "source": source, "axis": project.system.axis}

    # Surface waters
    n_oxygen = element_counts.get("O", 0)
    if n_oxygen and n_oxygen < project.surface.number_surface_waters:
        errors.append(
            f"Only {n_oxygen} oxygen atoms present; number_surface_waters is {project.surface.number_surface_waters}."
        )

    # Output directory
    output_dir = project.outputs.output_dir
    parent = os.path.dirname(os.path.abspath(output_dir))
    if os.path.exists(output_dir) and not os.path.isdir(output_dir):
        errors.append(f"Output path {output_dir} exists and is not a directory.")
    elif not os.path.exists(output_dir) and not os.access(parent, os.W_OK):
        errors.append(f"Cannot create output directory {output_dir}.")

    for message in warnings:
        logger.warning("Preflight: %s", message)
    return PreflightReport(
        ok=not errors,
        errors=errors,
        warnings=warnings,
        trajectory_summary=trajectory_summary,
        element_counts=element_counts,
        pbc_summary=pbc_summary,
    )
