"""Error taxonomy for SlabLab runs."""
from __future__ import annotations

from typing import List, Optional, Sequence


class SlabLabError(Exception):
    """Base class for all SlabLab failures."""


class TopologyError(SlabLabError):
    """Atoms were left over after molecule assembly.

    The assumed molecular topology does not match the trajectory, so the run
    cannot continue.
    """

    def __init__(
        self,
        unparsed: Sequence[str],
        timestep: Optional[int] = None,
        atom_ids: Optional[Sequence[int]] = None,
    ):
        self.unparsed: List[str] = list(unparsed)
        self.atom_ids: List[int] = list(atom_ids or [])
        self.timestep = timestep
        head = "; ".join(self.unparsed[:20])
        more = f" (+{len(self.unparsed) - 20} more)" if len(self.unparsed) > 20 else ""
        where = f" at timestep {timestep}" if timestep is not None else ""
        super().__init__(
            f"{len(self.unparsed)} atom(s) left unparsed after molecule assembly{where}: {head}{more}"
        )


class SurfaceError(SlabLabError, ValueError):
    """The water surface could not be located for the current frame."""


class OutputError(SlabLabError, OSError):
    """An analysis output sink could not be opened."""


class StaleMoleculeError(SlabLabError, RuntimeError):
    """Derived molecular quantities were read after the atom positions moved."""


class TruncatedTrajectoryError(SlabLabError):
    """The trajectory ended before the configured number of timesteps."""

    def __init__(self, frames_read: int, expected: int):
        self.frames_read = frames_read
        self.expected = expected
        super().__init__(
            f"Trajectory ended after {frames_read} frame(s); {expected} timesteps were requested"
        )


class AnalysisError(SlabLabError):
    """An analysis failed while processing a timestep."""

    def __init__(self, analysis: str, timestep: int, cause: BaseException):
        self.analysis = analysis
        self.timestep = timestep
        super().__init__(
            f"Analysis '{analysis}' failed at timestep {timestep}: {type(cause).__name__}: {cause}"
        )


class FrameReadError(SlabLabError):
    """A trajectory frame could not be read."""

    def __init__(self, timestep: int, reason: str):
        self.timestep = timestep
        super().__init__(f"Failed to read frame for timestep {timestep}: {reason}")
