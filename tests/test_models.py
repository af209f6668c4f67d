import json

import pytest

from slablab.models import (
    AnalysisOptions,
    AssemblerConfig,
    BondCriteria,
    MoleculeTemplate,
    ProjectConfig,
    SurfaceConfig,
    SystemConfig,
    default_project,
    load_project,
    pair_key,
    write_project,
)


def _project(tmp_path):
    project = default_project("water.gro", "water.xtc")
    project.system = SystemConfig(axis="z", box=[30.0, 30.0, 90.0], pbc_flip=10.0, timesteps=500)
    project.surface = SurfaceConfig(number_surface_waters=50, reference_point=40.0, top_surface=False)
    project.assembler = AssemblerConfig(
        templates=[MoleculeTemplate(name="h2o", central="O", outer="H", count=2, kind="water")],
        parsers=["protons"],
        reparse_limit=5,
    )
    project.analysis = AnalysisOptions(
        analyses=["h2o-angles", "surface-statistics"],
        position_range=(-15.0, 5.0, 0.5),
        output_frequency=2,
    )
    project.outputs.output_dir = str(tmp_path / "out")
    return project


@pytest.mark.parametrize("suffix", [".json", ".yaml"])
def test_project_round_trip(tmp_path, suffix):
    project = _project(tmp_path)
    path = str(tmp_path / f"project{suffix}")
    write_project(project, path)
    loaded = load_project(path)

    assert loaded.to_dict() == project.to_dict()
    assert loaded.system.axis_index == 2
    assert loaded.analysis.checkpoint_interval == 20
    assert loaded.assembler.templates[0].kind == "water"


def test_pair_keys_are_order_insensitive():
    criteria = BondCriteria(covalent={"O-H": 1.1, "S - O": 1.6})
    assert pair_key("O", "H") == pair_key("h", "o") == "H-O"
    assert criteria.covalent_threshold("H", "O") == 1.1
    assert criteria.covalent_threshold("O", "S") == 1.6
    assert criteria.covalent_threshold("C", "O") is None
    assert criteria.max_cutoff == pytest.approx(3.4)


def test_defaults_match_documented_values():
    criteria = BondCriteria()
    assert criteria.hbond_distance == 2.46
    assert criteria.hbond_angle == 150.0
    assert criteria.interaction == {"O-S": 3.4}
    assert SurfaceConfig().number_surface_waters == 70
    assert [t.name for t in AssemblerConfig().templates] == ["h2o", "so2"]
    assert AssemblerConfig().parsers == ["alkanes", "nitrates", "protons"]


@pytest.mark.parametrize(
    "factory",
    [
        lambda: SystemConfig(axis="w"),
        lambda: SystemConfig(box=[10.0, -1.0, 10.0]),
        lambda: AnalysisOptions(position_range=(5.0, 1.0, 0.1)),
        lambda: AnalysisOptions(angle_range=(0.0, 180.0, 0.0)),
        lambda: AnalysisOptions(output_frequency=0),
        lambda: AssemblerConfig(reparse_limit=0),
        lambda: AssemblerConfig(parsers=["wanniers"]),
        lambda: BondCriteria(covalent={"HO": 1.0}),
    ],
)
def test_invalid_settings_are_rejected(factory):
    with pytest.raises(ValueError):
        factory()


def test_ranges_accept_mappings(tmp_path):
    path = tmp_path / "p.json"
    path.write_text(
        json.dumps(
            {
                "inputs": {"topology": "a.pdb"},
                "analysis": {"position_range": {"min": -5, "max": 5, "resolution": 0.5}},
                "surface": {"reference_location": 3.0},
            }
        )
    )
    project = load_project(str(path))
    assert project.analysis.position_range == (-5.0, 5.0, 0.5)
    assert project.surface.reference_point == 3.0
    assert isinstance(project, ProjectConfig)
