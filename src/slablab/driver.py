"""Timestep driver: load, assemble, analyze, checkpoint."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from slablab.errors import AnalysisError, FrameReadError, SlabLabError, TruncatedTrajectoryError
from slablab.models import AnalysisOptions
from slablab.system import FrameLoadResult, SlabSystem

ProgressCallback = Callable[[int, int, str], None]


class DriverState(str, Enum):
    INITIALIZING = "initializing"
    LOADING_FRAME = "loading_frame"
    ANALYZING = "analyzing"
    CHECKPOINTING = "checkpointing"
    REWINDING = "rewinding"
    TERMINAL = "terminal"


@dataclass
class StepResult:
    timestep: int
    ok: bool = True
    analysis: Optional[str] = None
    error: Optional[BaseException] = None
    rewind: bool = False


@dataclass
class RunSummary:
    steps: int = 0
    frames_loaded: int = 0
    checkpoints: int = 0
    rewinds: int = 0
    truncated: bool = False
    expected_timesteps: Optional[int] = None
    analyses: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "steps": self.steps,
            "frames_loaded": self.frames_loaded,
            "checkpoints": self.checkpoints,
            "rewinds": self.rewinds,
            "truncated": self.truncated,
            "expected_timesteps": self.expected_timesteps,
            "analyses": list(self.analyses),
            "warnings": list(self.warnings),
        }


class TimestepDriver:
    """Runs registered analyses over every frame of a :class:`SlabSystem`.

    Output is flushed every ``output_frequency * 10`` steps (never at step 0),
    and once more after the last step, followed by a single ``post_process``.
    Output sinks are closed on every exit path.
    """

    def __init__(
        self,
        system: SlabSystem,
        analyses: List,
        options: AnalysisOptions,
        timesteps: Optional[int] = None,
        progress: Optional[ProgressCallback] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.system = system
        self.analyses = list(analyses)
        self.options = options
        self.timesteps = timesteps
        self.progress = progress
        self.logger = logger or logging.getLogger("slablab")
        self.state = DriverState.INITIALIZING
        self.history: List[DriverState] = []

    def _enter(self, state: DriverState) -> None:
        self.state = state
        self.history.append(state)

    def is_checkpoint(self, timestep: int) -> bool:
        return timestep > 0 and timestep % self.options.checkpoint_interval == 0

    def _load(self, timestep: int) -> FrameLoadResult:
        self._enter(DriverState.LOADING_FRAME)
        result = self.system.load_next()
        if result.error:
            raise FrameReadError(timestep, result.error)
        return result

    def _analyze(self, timestep: int, analyses: List) -> StepResult:
        self._enter(DriverState.ANALYZING)
        self.system.update_molecules(timestep)
        for analysis in analyses:
            try:
                analysis.analyze(self.system, timestep)
            except Exception as exc:
                return StepResult(timestep=timestep, ok=False, analysis=analysis.name, error=exc)
        return StepResult(timestep=timestep, rewind=self.system.rewind_requested)

    def _rewind(self, summary: RunSummary) -> FrameLoadResult:
        self._enter(DriverState.REWINDING)
        self.system.rewind()
        summary.rewinds += 1
        return self._load(0)

    def _flush(self, summary: RunSummary) -> None:
        for analysis in self.analyses:
            analysis.flush()
        summary.checkpoints += 1

    def _total(self) -> int:
        n_frames = self.system.source.n_frames
        return self.timesteps if self.timesteps is not None else n_frames

    def run(self) -> RunSummary:
        summary = RunSummary(
            expected_timesteps=self.timesteps,
            analyses=[analysis.name for analysis in self.analyses],
        )
        self.history = []
        self._enter(DriverState.INITIALIZING)
        total = self._total()
        # Two-pass analyses scan alone first so the rest never see a frame twice.
        scanners = [analysis for analysis in self.analyses if analysis.two_pass]
        scanning = bool(scanners)
        try:
            for analysis in self.analyses:
                analysis.setup(self.system)
                self.logger.info("Analysis ready: %s (%s)", analysis.name, analysis.description)
            if scanning:
                self.logger.info("Scan pass for %s", ", ".join(a.name for a in scanners))

            timestep = 0
            loaded = self._load(timestep)
            while True:
                while loaded.ok:
                    result = self._analyze(timestep, scanners if scanning else self.analyses)
                    if not result.ok:
                        self.logger.error(
                            "Caught an exception in analysis %s at timestep %d: %s",
                            result.analysis,
                            timestep,
                            result.error,
                        )
                        raise AnalysisError(result.analysis, timestep, result.error) from result.error

                    if result.rewind:
                        scanning = False
                        timestep = 0
                        loaded = self._rewind(summary)
                        continue

                    self._enter(DriverState.CHECKPOINTING)
                    if self.is_checkpoint(timestep):
                        self.logger.info("Checkpoint at timestep %d", timestep)
                        self._flush(summary)

                    timestep += 1
                    summary.steps += 1
                    if self.progress:
                        self.progress(min(timestep, total), total, f"Timestep {timestep}/{total}")
                    if self.timesteps is not None and timestep >= self.timesteps:
                        break
                    loaded = self._load(timestep)

                if not scanning:
                    break
                self.logger.info("Scan pass ended without a rewind; replaying for all analyses")
                scanning = False
                timestep = 0
                loaded = self._rewind(summary)

            summary.frames_loaded = self.system.frames_loaded
            if self.timesteps is not None and timestep < self.timesteps:
                error = TruncatedTrajectoryError(timestep, self.timesteps)
                if self.options.strict:
                    raise error
                summary.truncated = True
                summary.warnings.append(str(error))
                self.logger.warning("%s", error)

            self._flush(summary)
            for analysis in self.analyses:
                analysis.post_process()
            self._enter(DriverState.TERMINAL)
            self.logger.info(
                "Run finished: %d steps, %d checkpoints, %d rewinds",
                summary.steps,
                summary.checkpoints,
                summary.rewinds,
            )
            return summary
        except SlabLabError:
            self._enter(DriverState.TERMINAL)
            raise
        finally:
            for analysis in self.analyses:
                analysis.close()
