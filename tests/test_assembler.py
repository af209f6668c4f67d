import numpy as np
import pytest

from conftest import water_atoms
from slablab.assembler import MoleculeAssembler
from slablab.atoms import AtomArena
from slablab.bondgraph import BondGraph
from slablab.errors import TopologyError
from slablab.models import AssemblerConfig
from slablab.molecules import (
    Formaldehyde,
    GenericMolecule,
    MalonicAcid,
    MoleculeKind,
    Nitrate,
    NitricAcid,
    SuccinicAcid,
    SulfurDioxide,
    Water,
)

SO2_RECORDS = [
    ("S", "S", "SO2", np.array([15.0, 15.0, 15.0])),
    ("O1", "O", "SO2", np.array([16.24, 15.7, 15.0])),
    ("O2", "O", "SO2", np.array([13.76, 15.7, 15.0])),
]

# Malonic acid: C1-CM-C2 backbone with a COOH group on each end.
MALONIC_RECORDS = [
    ("C1", "C", "MAL", (0.0, 0.0, 0.0)),
    ("CM", "C", "MAL", (1.5, 0.0, 0.0)),
    ("C2", "C", "MAL", (3.0, 0.0, 0.0)),
    ("O1", "O", "MAL", (-0.7, 1.0, 0.0)),
    ("OH1", "O", "MAL", (-0.7, -1.0, 0.0)),
    ("O2", "O", "MAL", (3.7, 1.0, 0.0)),
    ("OH2", "O", "MAL", (3.7, -1.0, 0.0)),
    ("H1", "H", "MAL", (-1.6, -1.0, 0.0)),
    ("H2", "H", "MAL", (4.6, -1.0, 0.0)),
    ("HA", "H", "MAL", (1.5, 0.9, 0.6)),
    ("HB", "H", "MAL", (1.5, -0.9, 0.6)),
]


# Succinic acid: zigzag C1-C2-C3-C4 with CH2 hydrogens and one OH on each end.
SUCCINIC_RECORDS = [
    ("C1", "C", "SUC", (2.0, 14.0, 20.0)),
    ("C2", "C", "SUC", (3.0, 14.9, 20.0)),
    ("C3", "C", "SUC", (4.0, 14.0, 20.0)),
    ("C4", "C", "SUC", (5.0, 14.9, 20.0)),
    ("O1", "O", "SUC", (1.3, 14.9, 20.0)),
    ("OH1", "O", "SUC", (1.6, 12.9, 20.0)),
    ("O4", "O", "SUC", (5.7, 14.0, 20.0)),
    ("OH4", "O", "SUC", (5.4, 16.0, 20.0)),
    ("HO1", "H", "SUC", (1.0, 12.2, 20.0)),
    ("H2A", "H", "SUC", (3.0, 15.5, 20.85)),
    ("H2B", "H", "SUC", (3.0, 15.5, 19.15)),
    ("H3A", "H", "SUC", (4.0, 13.4, 20.85)),
    ("H3B", "H", "SUC", (4.0, 13.4, 19.15)),
    ("HO4", "H", "SUC", (6.0, 16.7, 20.0)),
]


def _nitrate(center, protonated=False):
    """Trigonal NO3 with N-O 1.25; a protonated one carries H on its first oxygen."""
    center = np.asarray(center, dtype=float)
    records = [
        ("O1", "O", "NO3", center + [1.25, 0.0, 0.0]),
        ("O2", "O", "NO3", center + [-0.625, 1.0825, 0.0]),
        ("O3", "O", "NO3", center + [-0.625, -1.0825, 0.0]),
        ("N", "N", "NO3", center),
    ]
    if protonated:
        records.append(("HN", "H", "NO3", center + [2.2, 0.0, 0.0]))
    return records

def _arena(records, box=(30.0, 30.0, 30.0)):
    return AtomArena(
        [rec[0] for rec in records],
        [rec[1] for rec in records],
        residues=[rec[2] for rec in records],
        positions=np.array([rec[3] for rec in records], dtype=float),
        box=box,
    )


def _parse(records, config=None):
    arena = _arena(records)
    graph = BondGraph(arena).update_graph()
    assembler = MoleculeAssembler(config)
    return arena, assembler, assembler.parse(arena, graph, timestep=0)


def _waters(*oxygens):
    records = []
    for oxygen in oxygens:
        records.extend(water_atoms(oxygen))
    return records


def test_every_atom_belongs_to_exactly_one_molecule():
    records = _waters((5, 10, 5), (9, 11, 5), (13, 12, 5)) + SO2_RECORDS
    arena, assembler, molecules = _parse(records)

    assert assembler.counts() == {"water": 3, "so2": 1}
    assigned = [idx for mol in molecules for idx in mol.atom_indices]
    assert sorted(assigned) == list(range(len(arena)))
    assert all(arena.parents[idx] >= 0 for idx in range(len(arena)))


def test_template_orders_outer_atoms_before_central():
    records = _waters((5, 10, 5)) + SO2_RECORDS
    _, assembler, molecules = _parse(records)

    water = assembler.of_kind(MoleculeKind.WATER)[0]
    assert isinstance(water, Water)
    assert water.atom_indices == [0, 1, 2]
    assert water.oxygen == 2
    so2 = assembler.of_kind(MoleculeKind.SO2)[0]
    assert isinstance(so2, SulfurDioxide)
    assert so2.sulfur == 3
    assert so2.oxygens == [4, 5]


def test_missing_atom_reports_unparsed():
    records = _waters((5, 10, 5)) + SO2_RECORDS[:2]
    with pytest.raises(TopologyError) as excinfo:
        _parse(records)
    assert excinfo.value.atom_ids == [3, 4]
    assert excinfo.value.timestep == 0
    assert "unparsed" in str(excinfo.value)


def test_lone_hydroxyl_needs_the_proton_parser():
    records = _waters((5, 10, 5))[1:] + _waters((15, 10, 5))
    _, assembler, _ = _parse(records)
    assert assembler.counts() == {"water": 1, "hydroxide": 1}

    with pytest.raises(TopologyError):
        _parse(records, AssemblerConfig(parsers=[]))


def test_hydronium_is_parsed():
    oxygen = np.array([10.0, 10.0, 10.0])
    records = [
        ("H1", "H", "H3O", oxygen + [0.96, 0.0, 0.0]),
        ("H2", "H", "H3O", oxygen + [-0.48, 0.83, 0.0]),
        ("H3", "H", "H3O", oxygen + [-0.48, -0.83, 0.0]),
        ("O", "O", "H3O", oxygen),
    ]
    _, assembler, molecules = _parse(records)
    assert assembler.counts() == {"hydronium": 1}
    assert molecules[0].reference_index == 3


def test_malonic_acid_roles_and_protonation():
    _, assembler, molecules = _parse(MALONIC_RECORDS)
    assert len(molecules) == 1
    acid = molecules[0]
    assert isinstance(acid, MalonicAcid)
    assert acid.kind == MoleculeKind.MALONIC_ACID
    assert acid.carbons == [0, 1, 2]
    assert acid.roles["CM"] == 1
    assert acid.roles["O1"] == 3
    assert acid.roles["OH1"] == 4
    assert acid.roles["H1"] == 7
    assert acid.roles["O2"] == 5
    assert acid.roles["OH2"] == 6


def test_deprotonated_malonic_acid_kinds():
    malonate = [rec for rec in MALONIC_RECORDS if rec[0] != "H2"]
    _, _, molecules = _parse(malonate)
    assert molecules[0].kind == MoleculeKind.MALONATE

    dimalonate = [rec for rec in MALONIC_RECORDS if rec[0] not in ("H1", "H2")]
    _, _, molecules = _parse(dimalonate)
    assert molecules[0].kind == MoleculeKind.DIMALONATE


def test_reparse_cadence():
    arena = _arena(_waters((5, 10, 5), (9, 11, 5)))
    calls = []

    def factory():
        calls.append(1)
        return BondGraph(arena).update_graph()

    assembler = MoleculeAssembler(AssemblerConfig(reparse_limit=3))
    for step in range(7):
        arena.update_positions(arena.positions + 0.01)
        molecules = assembler.update(arena, factory, step)
        assert all(mol.is_fresh for mol in molecules)

    # Parses at steps 0, 3 and 6 only.
    assert len(calls) == 3
    assert assembler.parse_count == 3
    assert assembler.last_parse == 6


def test_nitrate_and_nitric_acid():
    records = _nitrate((5.0, 5.0, 5.0)) + _nitrate((15.0, 5.0, 5.0), protonated=True)
    arena, assembler, molecules = _parse(records)

    assert assembler.counts() == {"nitrate": 1, "nitric_acid": 1}
    nitrate, acid = molecules
    assert isinstance(nitrate, Nitrate) and not isinstance(nitrate, NitricAcid)
    assert nitrate.atom_indices == [0, 1, 2, 3]
    assert nitrate.reference_index == 3
    assert isinstance(acid, NitricAcid)
    assert acid.atom_indices == [4, 5, 6, 7, 8]
    assert acid.reference_index == 7
    assert all(arena.parents[idx] >= 0 for idx in range(len(arena)))


def test_nitrates_need_their_parser():
    with pytest.raises(TopologyError) as excinfo:
        _parse(_nitrate((5.0, 5.0, 5.0)), AssemblerConfig(parsers=["alkanes", "protons"]))
    assert excinfo.value.atom_ids == [0, 1, 2, 3]


def test_formaldehyde_roles():
    records = [
        ("C", "C", "FOR", (10.0, 10.0, 10.0)),
        ("O", "O", "FOR", (11.2, 10.0, 10.0)),
        ("H1", "H", "FOR", (9.45, 10.94, 10.0)),
        ("H2", "H", "FOR", (9.45, 9.06, 10.0)),
    ]
    _, assembler, molecules = _parse(records)
    assert assembler.counts() == {"formaldehyde": 1}
    molecule = molecules[0]
    assert isinstance(molecule, Formaldehyde)
    assert molecule.roles == {"C": 0, "O": 1}
    assert sorted(molecule.atom_indices) == [0, 1, 2, 3]


def test_unrecognized_carbon_group_is_generic():
    carbon = np.array([10.0, 10.0, 10.0])
    records = [("C", "C", "CH4", carbon)] + [
        (f"H{n}", "H", "CH4", carbon + offset)
        for n, offset in enumerate(
            [[0.63, 0.63, 0.63], [-0.63, -0.63, 0.63], [-0.63, 0.63, -0.63], [0.63, -0.63, -0.63]]
        )
    ]
    _, assembler, molecules = _parse(records)
    assert assembler.counts() == {"generic": 1}
    assert isinstance(molecules[0], GenericMolecule)
    assert molecules[0].carbons == [0]
    assert sorted(molecules[0].atom_indices) == list(range(5))


def test_succinic_acid_with_hydrogens():
    arena, assembler, molecules = _parse(SUCCINIC_RECORDS)
    assert assembler.counts() == {"succinic_acid": 1}
    acid = molecules[0]
    assert isinstance(acid, SuccinicAcid)
    assert acid.carbons == [0, 1, 2, 3]
    assert [acid.role(f"C{n}") for n in range(1, 5)] == [0, 1, 2, 3]
    assert (acid.role("O1"), acid.role("OH1"), acid.role("H1")) == (4, 5, 8)
    assert (acid.role("O4"), acid.role("OH4"), acid.role("H4")) == (6, 7, 13)
    assert acid.carbonyl_groups() == [
        {"carbon": 0, "carbonyl": 4, "hydroxyl": 5},
        {"carbon": 3, "carbonyl": 6, "hydroxyl": 7},
    ]
    assert sorted(acid.atom_indices) == list(range(len(arena)))
