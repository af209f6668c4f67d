"""Locate the liquid surface from the outermost water oxygens."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from slablab.errors import SurfaceError
from slablab.models import SurfaceConfig
from slablab.molecules import Water

logger = logging.getLogger("slablab")

Unwrap = Callable[[float], float]


@dataclass
class SurfaceState:
    axis: int
    reference_point: float
    number_surface_waters: int
    top_surface: bool
    location: Optional[float] = None
    width: Optional[float] = None
    positions: List[float] = field(default_factory=list)
    anomalous: bool = False
    generation: Optional[int] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "axis": self.axis,
            "reference_point": self.reference_point,
            "number_surface_waters": self.number_surface_waters,
            "top_surface": self.top_surface,
            "location": self.location,
            "width": self.width,
            "anomalous": self.anomalous,
        }


class SurfaceLocator:
    """Tracks the top or bottom water surface along one axis.

    :meth:`find_water_surface_location` must run once per frame; distance
    queries against a location computed for older positions raise
    :class:`SurfaceError`.
    """

    def __init__(
        self,
        config: Optional[SurfaceConfig] = None,
        axis: int = 1,
        unwrap: Optional[Unwrap] = None,
    ):
        self.config = config or SurfaceConfig()
        self.unwrap = unwrap or (lambda value: value)
        self.state = SurfaceState(
            axis=axis,
            reference_point=self.config.reference_point,
            number_surface_waters=self.config.number_surface_waters,
            top_surface=self.config.top_surface,
        )
        self._arena = None

    @property
    def location(self) -> float:
        self._require_current()
        return self.state.location

    @property
    def width(self) -> float:
        self._require_current()
        return self.state.width

    @property
    def top_surface(self) -> bool:
        return self.state.top_surface

    def find_water_surface_location(self, waters: Sequence[Water]) -> SurfaceState:
        state = self.state
        n_surface = state.number_surface_waters
        axis = state.axis
        positions = np.array(
            [self.unwrap(float(water.arena.positions[water.oxygen][axis])) for water in waters],
            dtype=np.float64,
        )
        if state.top_surface:
            candidates = positions[positions <= state.reference_point]
        else:
            candidates = positions[positions >= state.reference_point]

        if candidates.size < n_surface:
            side = "below" if state.top_surface else "above"
            raise SurfaceError(
                f"Only {candidates.size} water oxygen(s) lie {side} the reference point "
                f"{state.reference_point:g}; {n_surface} are needed to locate the surface"
            )

        ordered = np.sort(candidates)
        extreme = ordered[-n_surface:] if state.top_surface else ordered[:n_surface]
        state.positions = [float(v) for v in extreme]
        state.location = float(np.mean(extreme))
        state.width = float(np.std(extreme, ddof=1))
        state.anomalous = state.width > self.config.width_threshold
        self._arena = waters[0].arena if len(waters) else None
        state.generation = self._arena.generation if self._arena is not None else None

        if state.anomalous:
            logger.warning(
                "Surface width %.3f exceeds %.1f; possible periodic wrapping problem. Positions: %s",
                state.width,
                self.config.width_threshold,
                " ".join(f"{v:.3f}" for v in state.positions),
            )
        return state

    def distance_to_surface(self, position: float) -> float:
        """Signed distance from the surface, positive toward the vapor."""
        location = self.location
        value = self.unwrap(float(position))
        return value - location if self.state.top_surface else location - value

    def _require_current(self) -> None:
        if self.state.location is None:
            raise SurfaceError("Surface location requested before find_water_surface_location()")
        if self._arena is not None and self._arena.generation != self.state.generation:
            raise SurfaceError("Surface location is stale; locate the surface again for this frame")
