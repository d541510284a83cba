"""History + user-entered future values, the logic behind the dashboard."""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
from pandas.tseries.frequencies import to_offset


def infer_frequency(index: pd.Index) -> pd.DateOffset | pd.Timedelta:
    """Frequency of a DatetimeIndex, falling back to the most common spacing."""
    if not isinstance(index, pd.DatetimeIndex):
        raise TypeError("infer_frequency needs a DatetimeIndex")
    if len(index) < 2:
        raise ValueError("need at least two dates to infer a frequency")
    if index.freq is not None:
        return index.freq
    if len(index) >= 3:
        freq = pd.infer_freq(index)
        if freq is not None:
            return to_offset(freq)
    deltas = pd.Series(index[1:] - index[:-1])
    return deltas.mode().iloc[0]


def future_index(index: pd.Index, periods: int) -> pd.Index:
    """Index for the ``periods`` steps that follow ``index``."""
    if periods < 1:
        raise ValueError("periods must be a positive integer")
    if isinstance(index, pd.DatetimeIndex) and len(index) >= 2:
        step = infer_frequency(index)
        start = index[-1] + step
        return pd.date_range(start=start, periods=periods, freq=step, name=index.name)
    if isinstance(index, pd.DatetimeIndex):
        raise ValueError("need at least two dates to extend a DatetimeIndex")
    if len(index) and pd.api.types.is_integer_dtype(index):
        start = int(index[-1]) + 1
    else:
        start = len(index)
    return pd.RangeIndex(start, start + periods, name=index.name)


def default_future_values(series: pd.Series, periods: int, method: str = "last", *, season_length: int = 1) -> List[float]:
    """Starting values for the future-value form."""
    clean = series.dropna()
    if clean.empty:
        raise ValueError("series has no observations")
    if method == "last":
        return [float(clean.iloc[-1])] * periods
    if method == "mean":
        return [float(clean.mean())] * periods
    if method == "forecast":
        from .forecasting import auto_forecast

        output = auto_forecast(clean, periods, season_length=season_length)
        return [float(v) for v in output.bundle.point.to_numpy()]
    raise ValueError(f"unknown prefill method '{method}'")


def combine_history_and_future(history: pd.Series, future_values: Sequence[float], index: Optional[pd.Index] = None) -> pd.DataFrame:
    """Long table with ``date``, ``value`` and ``kind`` (history/future)."""
    if index is None:
        index = future_index(history.index, len(future_values))
    if len(index) != len(future_values):
        raise ValueError(f"got {len(future_values)} future values for {len(index)} future periods")
    past = pd.DataFrame({"date": history.index, "value": history.to_numpy(dtype=float), "kind": "history"})
    future = pd.DataFrame({"date": index, "value": np.asarray(future_values, dtype=float), "kind": "future"})
    return pd.concat([past, future], ignore_index=True)


def detect_date_column(df: pd.DataFrame) -> Optional[str]:
    for column in df.columns:
        values = df[column].dropna()
        if values.empty or pd.api.types.is_numeric_dtype(values):
            continue
        parsed = pd.to_datetime(values.astype(str), errors="coerce")
        if parsed.notna().all():
            return str(column)
    return None


def numeric_columns(df: pd.DataFrame) -> List[str]:
    return [str(c) for c in df.select_dtypes(include=[np.number]).columns]


__all__ = [
    "infer_frequency",
    "future_index",
    "default_future_values",
    "combine_history_and_future",
    "detect_date_column",
    "numeric_columns",
]
