from conftest import build_universe, records_universe, three_water_frames
from slablab.preflight import run_preflight


def test_preflight_passes_for_water_slab(water_project, three_water_universe):
    report = run_preflight(water_project, three_water_universe)
    assert report.ok, report.errors
    assert report.element_counts == {"H": 6, "O": 3}
    assert report.pbc_summary["source"] == "trajectory"
    assert report.to_dict()["trajectory_summary"]["n_frames"] == 2


def test_missing_box_is_an_error(water_project):
    universe = records_universe(three_water_frames(), box=None)
    report = run_preflight(water_project, universe)
    assert not report.ok
    assert any("box" in error for error in report.errors)


def test_config_box_overrides_missing_trajectory_box(water_project):
    universe = records_universe(three_water_frames(), box=None)
    water_project.system.box = [30.0, 30.0, 30.0]
    report = run_preflight(water_project, universe)
    assert report.ok, report.errors
    assert report.pbc_summary["source"] == "config"


def test_unknown_elements_are_reported(water_project):
    universe = build_universe(
        [[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [5.0, 5.0, 5.0], [9.0, 9.0, 9.0]]],
        ["OW", "HW", "HW", "XE"],
        ["O", "H", "H", "Xe"],
        ["SOL", "SOL", "SOL", "XE"],
    )
    water_project.surface.number_surface_waters = 2
    report = run_preflight(water_project, universe)
    assert not report.ok
    assert any("Xe" in error for error in report.errors)


def test_short_trajectory_warns_or_fails(water_project, three_water_universe):
    water_project.system.timesteps = 10
    report = run_preflight(water_project, three_water_universe)
    assert report.ok
    assert any("10 timesteps" in warning for warning in report.warnings)

    water_project.analysis.strict = True
    report = run_preflight(water_project, three_water_universe)
    assert not report.ok


def test_too_few_oxygens_for_surface(water_project, three_water_universe):
    water_project.surface.number_surface_waters = 5
    report = run_preflight(water_project, three_water_universe)
    assert not report.ok
    assert any("number_surface_waters" in error for error in report.errors)


def test_output_path_that_is_a_file(water_project, three_water_universe, tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("x")
    water_project.outputs.output_dir = str(target)
    report = run_preflight(water_project, three_water_universe)
    assert not report.ok
