from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Sequence, Tuple

import pandas as pd

from ..metrics import evaluate_metrics
from .base_model import BaseModel, ModelOutput, prepare_series


LOGGER = logging.getLogger("canstats.forecasting.selection")


def build_model(name: str, config: Optional[Dict[str, object]] = None) -> BaseModel:
    from . import get_model_class

    return get_model_class(name)(config or {})


def select_best_model(
    series: pd.Series,
    candidates: Sequence[str],
    *,
    holdout: int,
    metric: str = "mase",
    config: Optional[Dict[str, object]] = None,
) -> Tuple[BaseModel, pd.DataFrame]:
    """Score each candidate on the last ``holdout`` points, then refit the winner on everything."""
    y = prepare_series(series)
    if holdout < 1 or holdout >= len(y) - 2:
        raise ValueError(f"holdout must be in [1, {len(y) - 3}] for a series of length {len(y)}")
    if not candidates:
        raise ValueError("at least one candidate model is required")
    config = dict(config or {})
    season_length = int(config.get("season_length", 1) or 1)
    train, test = y.iloc[:-holdout], y.iloc[-holdout:]

    rows = []
    for name in candidates:
        model = build_model(name, config)
        try:
            output = model.backtest_forecast(train, test)
        except (ValueError, RuntimeError) as exc:
            LOGGER.warning("Candidate %s failed on the holdout: %s", name, exc)
            rows.append({"model": name, "spec": None, metric: float("nan")})
            continue
        scores = evaluate_metrics(test, output.bundle, [metric], train=train, season_length=season_length)
        rows.append({"model": name, "spec": model.describe(), metric: scores[metric]})
        LOGGER.info("Holdout %s for %s: %.4f", metric, model.describe(), scores[metric])

    table = pd.DataFrame(rows).sort_values(metric, na_position="last").reset_index(drop=True)
    if table[metric].isna().all():
        raise RuntimeError("every candidate model failed on the holdout")
    winner = str(table.loc[0, "model"])
    best = build_model(winner, config).fit(y)
    LOGGER.info("Best model by holdout %s: %s", metric, best.describe())
    return best, table


def auto_forecast(
    series: pd.Series,
    horizon: int,
    *,
    method: str = "auto_arima",
    season_length: int = 1,
    levels: Iterable[float] = (80, 95),
    candidates: Optional[Sequence[str]] = None,
    holdout: Optional[int] = None,
    nonnegative: bool = False,
    params: Optional[Dict[str, object]] = None,
) -> ModelOutput:
    """Fit a forecasting model to ``series`` and forecast ``horizon`` steps ahead."""
    config: Dict[str, object] = {
        "season_length": season_length,
        "forecast": {"levels": list(levels)},
        "nonnegative": nonnegative,
        "params": dict(params or {}),
    }
    if method == "best":
        names = list(candidates or ["auto_arima", "auto_ets", "naive", "drift"])
        if season_length > 1 and "snaive" not in names:
            names.append("snaive")
        model, table = select_best_model(
            series,
            names,
            holdout=holdout or max(1, min(horizon, len(series) // 5)),
            config=config,
        )
        output = model.forecast(horizon)
        output.artifacts["selection"] = table
        return output
    model = build_model(method, config).fit(series)
    return model.forecast(horizon)


__all__ = ["auto_forecast", "select_best_model", "build_model"]
