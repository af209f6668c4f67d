"""Top-level analysis run: load inputs, check them, drive the analyses."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import MDAnalysis as mda

from slablab.analyses import Analysis, create_analyses
from slablab.driver import ProgressCallback, RunSummary, TimestepDriver
from slablab.export import export_run_metadata
from slablab.models import ProjectConfig
from slablab.preflight import PreflightReport, run_preflight
from slablab.system import SlabSystem, load_universe


@dataclass
class RunResult:
    summary: RunSummary
    preflight: PreflightReport
    analyses: List[Analysis] = field(default_factory=list)
    metadata_path: Optional[str] = None

    @property
    def warnings(self) -> List[str]:
        return list(self.preflight.warnings) + list(self.summary.warnings)

    def to_dict(self) -> Dict[str, object]:
        return {
            "summary": self.summary.to_dict(),
            "preflight": self.preflight.to_dict(),
            "analyses": [analysis.name for analysis in self.analyses],
        }


class SlabAnalysisEngine:
    def __init__(self, project: ProjectConfig, universe: Optional[mda.Universe] = None):
        self.project = project
        self.universe = universe

    def _load_universe(self) -> mda.Universe:
        if self.universe is None:
            self.universe = load_universe(self.project.inputs)
        return self.universe

    def run(
        self,
        progress: Optional[ProgressCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> RunResult:
        logger = logger or logging.getLogger("slablab")
        universe = self._load_universe()

        preflight = run_preflight(self.project, universe)
        if not preflight.ok:
            raise ValueError("Preflight failed: " + "; ".join(preflight.errors))

        logger.info("Topology: %s", self.project.inputs.topology)
        logger.info(
            "Trajectory: %s",
            self.project.inputs.trajectory if self.project.inputs.trajectory else "None",
        )
        logger.info("Total atoms: %d", len(universe.atoms))
        logger.info("Total frames: %d", len(universe.trajectory))
        logger.info(
            "Axis: %s | top surface: %s | surface waters: %d",
            self.project.system.axis,
            self.project.surface.top_surface,
            self.project.surface.number_surface_waters,
        )

        system = SlabSystem(self.project, universe)
        analyses = create_analyses(self.project)
        driver = TimestepDriver(
            system,
            analyses,
            self.project.analysis,
            timesteps=self.project.system.timesteps,
            progress=progress,
            logger=logger,
        )
        summary = driver.run()
        result = RunResult(summary=summary, preflight=preflight, analyses=analyses)
        result.metadata_path = export_run_metadata(self.project, result.to_dict())
        return result
