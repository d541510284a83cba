from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..metrics import PredictionBundle, level_to_quantiles
from ..projection import future_index


LOGGER = logging.getLogger("canstats.forecasting")

# (lower, upper) arrays per interval level
Intervals = Dict[float, Tuple[np.ndarray, np.ndarray]]


@dataclass(slots=True)
class ModelOutput:
    bundle: PredictionBundle
    artifacts: Dict[str, object] = field(default_factory=dict)


def prepare_series(series: pd.Series, *, min_obs: int = 3) -> pd.Series:
    """Trim leading/trailing gaps and interpolate interior ones."""
    if not isinstance(series, pd.Series):
        series = pd.Series(series)
    y = pd.to_numeric(series, errors="coerce").astype(float)
    first, last = y.first_valid_index(), y.last_valid_index()
    if first is None:
        raise ValueError("series has no numeric observations")
    y = y.loc[first:last]
    n_missing = int(y.isna().sum())
    if n_missing:
        LOGGER.warning("Interpolating %d interior missing values", n_missing)
        y = y.interpolate(method="linear")
    if len(y) < min_obs:
        raise ValueError(f"need at least {min_obs} observations to fit a forecast model, got {len(y)}")
    return y


class BaseModel(ABC):
    """Common interface: ``fit(series)`` then ``forecast(horizon)``."""

    name = "base"

    def __init__(self, model_config: Optional[Dict[str, object]] = None) -> None:
        self.model_config: Dict[str, object] = dict(model_config or {})
        self.params: Dict[str, object] = dict(self.model_config.get("params", {}) or {})
        self.season_length = int(self.model_config.get("season_length", 1) or 1)
        forecast_cfg = self.model_config.get("forecast", {}) or {}
        self.levels: List[float] = [float(v) for v in forecast_cfg.get("levels", [80, 95])]
        self.nonnegative = bool(self.model_config.get("nonnegative", False))
        self._train: Optional[pd.Series] = None

    @property
    def train(self) -> pd.Series:
        if self._train is None:
            raise RuntimeError(f"{self.name} model has not been fitted")
        return self._train

    @property
    def aicc(self) -> float:
        return float("nan")

    def describe(self) -> str:
        return self.name

    def fit(self, series: pd.Series) -> "BaseModel":
        y = prepare_series(series)
        self._train = y
        self._fit(y.to_numpy(dtype=float))
        LOGGER.debug("Fitted %s on %d observations", self.describe(), len(y))
        return self

    def forecast(self, horizon: int, *, index: Optional[pd.Index] = None) -> ModelOutput:
        if horizon < 1:
            raise ValueError("horizon must be a positive integer")
        train = self.train
        point, intervals = self._predict(horizon, self.levels)
        if index is None:
            index = future_index(train.index, horizon)
        elif len(index) != horizon:
            raise ValueError("index length must equal horizon")

        quantiles: Dict[float, pd.Series] = {}
        for level, (lower, upper) in intervals.items():
            lower_q, upper_q = level_to_quantiles(level)
            quantiles[lower_q] = pd.Series(np.asarray(lower, dtype=float), index=index)
            quantiles[upper_q] = pd.Series(np.asarray(upper, dtype=float), index=index)
        bundle = PredictionBundle(point=pd.Series(np.asarray(point, dtype=float), index=index), quantiles=quantiles or None)
        if self.nonnegative:
            bundle = bundle.clip_lower(0.0)
        return ModelOutput(bundle=bundle, artifacts={"model": self.describe(), "aicc": self.aicc})

    def backtest_forecast(self, train: pd.Series, test: pd.Series) -> ModelOutput:
        self.fit(train)
        return self.forecast(len(test), index=test.index)

    @abstractmethod
    def _fit(self, y: np.ndarray) -> None:
        ...

    @abstractmethod
    def _predict(self, horizon: int, levels: Sequence[float]) -> Tuple[np.ndarray, Intervals]:
        ...


__all__ = ["BaseModel", "ModelOutput", "prepare_series", "Intervals"]
