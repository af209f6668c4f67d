import json
import logging

import numpy as np
import pytest

from slablab.errors import TopologyError
from slablab.logging_utils import close_run_logger, setup_run_logger
from slablab.molecules import MoleculeKind
from slablab.runner import SlabAnalysisEngine
from slablab.serialization import to_jsonable

from conftest import records_universe, three_water_frames


def test_three_water_slab(water_project, three_water_universe, tmp_path):
    water_project.analysis.analyses = ["surface-statistics", "h2o-angles"]
    engine = SlabAnalysisEngine(water_project, universe=three_water_universe)
    result = engine.run()

    assert result.summary.steps == 2
    assert not result.summary.truncated
    statistics = next(a for a in result.analyses if a.name == "surface-statistics")
    assert [row["location"] for row in statistics.rows] == pytest.approx([11.0, 11.5])
    assert all(row["n_waters"] == 3 for row in statistics.rows)

    with open(result.metadata_path, "r", encoding="utf-8") as handle:
        metadata = json.load(handle)
    assert metadata["summary"]["summary"]["steps"] == 2
    assert metadata["project"]["surface"]["number_surface_waters"] == 3
    assert (tmp_path / "results" / "alpha.dat").exists()


def test_molecules_cover_every_atom(water_project, three_water_universe):
    from slablab.system import SlabSystem

    system = SlabSystem(water_project, three_water_universe)
    system.load_next()
    system.update_molecules(0)
    assert [m.kind for m in system.molecules] == [MoleculeKind.WATER] * 3
    assert sorted(i for m in system.molecules for i in m.atom_indices) == list(range(9))


def test_preflight_failure_stops_the_run(water_project, three_water_universe):
    water_project.surface.number_surface_waters = 10
    with pytest.raises(ValueError, match="Preflight failed"):
        SlabAnalysisEngine(water_project, universe=three_water_universe).run()


def test_stray_atom_aborts_with_timestep(water_project):
    frames = three_water_frames()
    for records in frames:
        records.append(("HX", "H", "ION", np.array([20.0, 20.0, 20.0])))
    universe = records_universe(frames)
    with pytest.raises(TopologyError) as excinfo:
        SlabAnalysisEngine(water_project, universe=universe).run()
    assert excinfo.value.timestep == 0
    assert excinfo.value.atom_ids == [9]


def test_run_logger_writes_file(tmp_path):
    logger, log_path = setup_run_logger(str(tmp_path / "logs"))
    try:
        logger.info("hello slab")
    finally:
        close_run_logger()
    with open(log_path, "r", encoding="utf-8") as handle:
        text = handle.read()
    assert "| INFO | hello slab" in text
    assert logging.getLogger("slablab").propagate


def test_to_jsonable_handles_numpy_and_enums():
    payload = {"kind": MoleculeKind.WATER, "values": np.arange(3), "x": np.float64(1.5)}
    assert to_jsonable(payload) == {"kind": "water", "values": [0, 1, 2], "x": 1.5}


def test_run_logger_level_and_second_run(tmp_path):
    logger, first = setup_run_logger(str(tmp_path / "a"), level=logging.DEBUG)
    try:
        logger.debug("frame detail")
        logger, second = setup_run_logger(str(tmp_path / "b"))
        logger.debug("hidden")
        logger.info("second run")
    finally:
        close_run_logger()

    with open(first, "r", encoding="utf-8") as handle:
        first_text = handle.read()
    with open(second, "r", encoding="utf-8") as handle:
        second_text = handle.read()
    assert "| DEBUG | frame detail" in first_text
    assert "second run" not in first_text
    assert "second run" in second_text
    assert "hidden" not in second_text
    file_handlers = [h for h in logging.getLogger("slablab").handlers if isinstance(h, logging.FileHandler)]
    assert file_handlers == []
