"""Benchmark forecasts with analytic normal prediction intervals."""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
from scipy.stats import norm

from ..metrics import level_to_quantiles
from .base_model import BaseModel, Intervals


def _normal_intervals(point: np.ndarray, se: np.ndarray, levels: Sequence[float]) -> Intervals:
    intervals: Intervals = {}
    for level in levels:
        _, upper_q = level_to_quantiles(level)
        z = float(norm.ppf(upper_q))
        intervals[float(level)] = (point - z * se, point + z * se)
    return intervals


def _rms(residuals: np.ndarray, dof: int = 0) -> float:
    residuals = residuals[np.isfinite(residuals)]
    n = len(residuals) - dof
    if n <= 0:
        return 0.0
    return float(np.sqrt(np.sum(residuals ** 2) / n))


class NaiveModel(BaseModel):
    """Random walk: every future value equals the last observation."""

    name = "naive"

    def _fit(self, y: np.ndarray) -> None:
        self._last = float(y[-1])
        self._sigma = _rms(np.diff(y))

    def _predict(self, horizon: int, levels: Sequence[float]) -> Tuple[np.ndarray, Intervals]:
        steps = np.arange(1, horizon + 1)
        point = np.full(horizon, self._last)
        se = self._sigma * np.sqrt(steps)
        return point, _normal_intervals(point, se, levels)


class SeasonalNaiveModel(BaseModel):
    """Repeat the last observed season."""

    name = "snaive"

    def _fit(self, y: np.ndarray) -> None:
        m = self.season_length
        if len(y) <= m:
            raise ValueError(f"seasonal naive needs more than {m} observations")
        self._last_season = y[-m:].copy()
        self._sigma = _rms(y[m:] - y[:-m])

    def _predict(self, horizon: int, levels: Sequence[float]) -> Tuple[np.ndarray, Intervals]:
        m = self.season_length
        steps = np.arange(1, horizon + 1)
        point = self._last_season[(steps - 1) % m]
        se = self._sigma * np.sqrt(np.floor((steps - 1) / m) + 1)
        return point, _normal_intervals(point, se, levels)


class DriftModel(BaseModel):
    """Straight line through the first and last observations."""

    name = "drift"

    def _fit(self, y: np.ndarray) -> None:
        n = len(y)
        self._n = n
        self._last = float(y[-1])
        self._slope = float((y[-1] - y[0]) / (n - 1))
        self._sigma = _rms(np.diff(y) - self._slope, dof=1)

    def _predict(self, horizon: int, levels: Sequence[float]) -> Tuple[np.ndarray, Intervals]:
        steps = np.arange(1, horizon + 1)
        point = self._last + self._slope * steps
        se = self._sigma * np.sqrt(steps * (1 + steps / (self._n - 1)))
        return point, _normal_intervals(point, se, levels)

    def describe(self) -> str:
        return f"drift(slope={self._slope:.4g})" if hasattr(self, "_slope") else self.name


__all__ = ["NaiveModel", "SeasonalNaiveModel", "DriftModel"]
