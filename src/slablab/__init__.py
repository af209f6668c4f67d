"""Water slab surface and orientation analysis for MD trajectories."""

from __future__ import annotations

import warnings


# Silence noisy stdlib deprecation triggered by MDAnalysis importing xdrlib.
warnings.filterwarnings(
    "ignore",
    message=r".*xdrlib.*deprecated.*",
    category=DeprecationWarning,
)

__version__ = "0.1.0"
