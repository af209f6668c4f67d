import os
import sys

import numpy as np
import pytest

# Add src (library) and the repo root (cli) to path for all tests
root_path = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
src_path = os.path.join(root_path, "src")
for path in (src_path, root_path):
    if path not in sys.path:
        sys.path.insert(0, path)

# Water hydrogens relative to the oxygen: O-H 0.957, H-O-H about 104.5 degrees.
H_OFFSETS = np.array([[0.757, 0.586, 0.0], [-0.757, 0.586, 0.0]])


def water_atoms(oxygen):
    """Atom records (name, element, resname, position) for one water."""
    oxygen = np.asarray(oxygen, dtype=float)
    return [
        ("HW1", "H", "SOL", oxygen + H_OFFSETS[0]),
        ("HW2", "H", "SOL", oxygen + H_OFFSETS[1]),
        ("OW", "O", "SOL", oxygen),
    ]


def build_universe(frames, names, elements, resnames, box=(30.0, 30.0, 30.0)):
    """In-memory universe with one residue per atom and the given box."""
    import MDAnalysis as mda

    coords = np.asarray(frames, dtype=np.float32)
    n_atoms = coords.shape[1]
    u = mda.Universe.empty(n_atoms, n_residues=n_atoms, atom_resindex=list(range(n_atoms)), trajectory=True)
    u.add_TopologyAttr("names", list(names))
    u.add_TopologyAttr("elements", list(elements))
    u.add_TopologyAttr("resnames", list(resnames))
    dims = None
    if box is not None:
        dims = np.array(list(box) + [90.0, 90.0, 90.0], dtype=np.float32)
    u.load_new(coords, order="fac", dimensions=dims)
    return u


def records_universe(frames_records, box=(30.0, 30.0, 30.0)):
    """Universe from a list of frames, each a list of (name, element, resname, position)."""
    first = frames_records[0]
    names = [rec[0] for rec in first]
    elements = [rec[1] for rec in first]
    resnames = [rec[2] for rec in first]
    frames = [[rec[3] for rec in frame] for frame in frames_records]
    return build_universe(frames, names, elements, resnames, box=box)


def three_water_frames(shift=0.5):
    """Two frames of three waters; oxygens at y=10, 11, 12 then moved up by ``shift``."""
    oxygens = np.array([[5.0, 10.0, 5.0], [9.0, 11.0, 5.0], [13.0, 12.0, 5.0]])
    frames = []
    for offset in (0.0, shift):
        records = []
        for oxygen in oxygens:
            records.extend(water_atoms(oxygen + np.array([0.0, offset, 0.0])))
        frames.append(records)
    return frames


@pytest.fixture
def three_water_universe():
    return records_universe(three_water_frames())


@pytest.fixture
def water_project(tmp_path):
    """Project tuned for the three-water system: top surface along y."""
    from slablab.models import (
        AnalysisOptions,
        BondCriteria,
        InputConfig,
        OutputConfig,
        ProjectConfig,
        SurfaceConfig,
        SystemConfig,
    )

    return ProjectConfig(
        inputs=InputConfig(topology="memory"),
        system=SystemConfig(axis="y"),
        bonds=BondCriteria(covalent={"H-O": 1.2, "O-S": 1.7}),
        surface=SurfaceConfig(number_surface_waters=3, reference_point=25.0, top_surface=True),
        analysis=AnalysisOptions(analyses=["surface-statistics"], output_frequency=1),
        outputs=OutputConfig(output_dir=str(tmp_path / "results")),
    )
