from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

import numpy as np
import pandas as pd


def level_to_quantiles(level: float) -> Tuple[float, float]:
    """Central ``level``% interval -> (lower, upper) quantile probabilities."""
    if not 0 < float(level) < 100:
        raise ValueError(f"interval level must be in (0, 100): {level}")
    tail = (1 - float(level) / 100.0) / 2
    return round(tail, 6), round(1 - tail, 6)


@dataclass(slots=True)
class PredictionBundle:
    """Point forecast plus interval bounds keyed by quantile probability."""

    point: pd.Series
    quantiles: Mapping[float, pd.Series] | None = None

    def interval(self, level: float) -> Tuple[pd.Series, pd.Series]:
        lower_q, upper_q = level_to_quantiles(level)
        if not self.quantiles:
            raise KeyError("bundle has no interval quantiles")
        lower = _find_quantile(self.quantiles, lower_q)
        upper = _find_quantile(self.quantiles, upper_q)
        if lower is None or upper is None:
            raise KeyError(f"no {level}% interval in bundle (quantiles: {sorted(self.quantiles)})")
        return self.quantiles[lower], self.quantiles[upper]

    def levels(self) -> list[float]:
        if not self.quantiles:
            return []
        lows = sorted(q for q in self.quantiles if q < 0.5)
        return [round((1 - 2 * q) * 100, 4) for q in lows]

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({"point": self.point})
        for level in self.levels():
            lower, upper = self.interval(level)
            label = f"{level:g}"
            frame[f"lo_{label}"] = lower
            frame[f"hi_{label}"] = upper
        return frame

    def clip_lower(self, bound: float = 0.0) -> "PredictionBundle":
        quantiles = {q: s.clip(lower=bound) for q, s in (self.quantiles or {}).items()}
        return PredictionBundle(point=self.point.clip(lower=bound), quantiles=quantiles or None)


def _find_quantile(quantiles: Mapping[float, pd.Series], target: float, tol: float = 1e-4) -> Optional[float]:
    closest = None
    min_diff = float("inf")
    for key in quantiles:
        diff = abs(key - target)
        if diff < min_diff:
            min_diff = diff
            closest = key
    return closest if min_diff <= tol else None


MetricFn = Callable[..., float]


def _ensure_alignment(actual: pd.Series, pred: pd.Series) -> tuple[pd.Series, pd.Series]:
    joined = pd.concat([actual.rename("actual"), pred.rename("pred")], axis=1, join="inner").dropna()
    return joined["actual"], joined["pred"]


def mae(actual: pd.Series, bundle: PredictionBundle, **_) -> float:
    a, p = _ensure_alignment(actual, bundle.point)
    return float(np.mean(np.abs(a - p)))


def rmse(actual: pd.Series, bundle: PredictionBundle, **_) -> float:
    a, p = _ensure_alignment(actual, bundle.point)
    return float(np.sqrt(np.mean((a - p) ** 2)))


def mape(actual: pd.Series, bundle: PredictionBundle, **_) -> float:
    a, p = _ensure_alignment(actual, bundle.point)
    denom = np.maximum(1e-6, np.abs(a))
    return float(np.mean(np.abs((a - p) / denom)) * 100)


def smape(actual: pd.Series, bundle: PredictionBundle, **_) -> float:
    a, p = _ensure_alignment(actual, bundle.point)
    denom = np.maximum(1e-9, (np.abs(a) + np.abs(p)) / 2.0)
    return float(np.mean(np.abs(a - p) / denom) * 100)


def mase(actual: pd.Series, bundle: PredictionBundle, *, train: Optional[pd.Series] = None, season_length: int = 1, **_) -> float:
    """MAE scaled by the in-sample MAE of the seasonal naive forecast."""
    if train is None:
        raise ValueError("mase needs the training series")
    history = train.dropna().to_numpy(dtype=float)
    m = season_length if len(history) > season_length else 1
    if len(history) <= m:
        raise ValueError("training series too short to scale mase")
    scale = np.mean(np.abs(history[m:] - history[:-m]))
    if scale == 0:
        return float("nan")
    return mae(actual, bundle) / float(scale)


def coverage(actual: pd.Series, bundle: PredictionBundle, level: float, **_) -> float:
    if not bundle.quantiles:
        return float("nan")
    try:
        lower, upper = bundle.interval(level)
    except KeyError:
        return float("nan")
    a, lower = _ensure_alignment(actual, lower)
    _, upper = _ensure_alignment(actual, upper)
    inside = (a >= lower) & (a <= upper)
    return float(np.mean(inside))


def sharpness(actual: pd.Series, bundle: PredictionBundle, **_) -> float:
    if not bundle.quantiles:
        return float("nan")
    lower = bundle.quantiles[min(bundle.quantiles)]
    upper = bundle.quantiles[max(bundle.quantiles)]
    _, lower = _ensure_alignment(actual, lower)
    _, upper = _ensure_alignment(actual, upper)
    return float(np.mean(upper - lower))


def pinball(actual: pd.Series, bundle: PredictionBundle, **_) -> float:
    """Mean quantile loss over every quantile in the bundle (median = point)."""
    quantiles = dict(bundle.quantiles or {})
    quantiles.setdefault(0.5, bundle.point)
    losses = []
    for q, q_pred in quantiles.items():
        a, p = _ensure_alignment(actual, q_pred)
        errors = a - p
        losses.append(np.mean(np.maximum(q * errors, (q - 1) * errors)))
    return float(np.mean(losses))


METRICS_REGISTRY: Dict[str, MetricFn] = {
    "mae": mae,
    "rmse": rmse,
    "mape": mape,
    "smape": smape,
    "mase": mase,
    "sharpness": sharpness,
    "pinball": pinball,
    "coverage_80": lambda a, b, **kw: coverage(a, b, 80),
    "coverage_90": lambda a, b, **kw: coverage(a, b, 90),
    "coverage_95": lambda a, b, **kw: coverage(a, b, 95),
}


def evaluate_metrics(
    actual: pd.Series,
    bundle: PredictionBundle,
    metric_names: Iterable[str],
    *,
    train: Optional[pd.Series] = None,
    season_length: int = 1,
) -> Dict[str, float]:
    results: Dict[str, float] = {}
    for name in metric_names:
        if name not in METRICS_REGISTRY:
            raise KeyError(f"Unknown metric '{name}'")
        try:
            results[name] = float(METRICS_REGISTRY[name](actual, bundle, train=train, season_length=season_length))
        except (ValueError, KeyError, ZeroDivisionError) as exc:
            results[name] = float("nan")
            results[f"{name}_error"] = str(exc)
    return results


__all__ = [
    "PredictionBundle",
    "level_to_quantiles",
    "evaluate_metrics",
    "METRICS_REGISTRY",
    "mae",
    "rmse",
    "mape",
    "smape",
    "mase",
    "coverage",
    "sharpness",
    "pinball",
]
