"""Statistics Canada analysis toolkit.

Downloads StatCan tables, reshapes them into tidy series, forecasts them with
prediction intervals, simulates M/M/k queues, draws LICO choropleths by FSA and
serves a small dashboard for entering future values by hand. Every task is driven
from one YAML config through ``AnalysisRunner``.
"""

from __future__ import annotations

import os

# plots are written to files or handed to streamlit, never shown in a window
os.environ.setdefault("MPLBACKEND", "Agg")

__version__ = "0.3.0"

__all__ = ["AnalysisRunner", "__version__"]


def __getattr__(name: str):  # pragma: no cover - simple lazy loader
    if name == "AnalysisRunner":
        from .run_pipeline import AnalysisRunner as _AnalysisRunner

        return _AnalysisRunner
    raise AttributeError(f"module 'canstats' has no attribute {name!r}")


def __dir__():  # pragma: no cover - cosmetic helper
    return sorted(list(globals().keys()) + __all__)
