from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .download import fetch_statcan_table


LOGGER = logging.getLogger("canstats.data_loader")

# STATUS symbols StatCan uses for values that must not be analysed
SUPPRESSED_STATUS = {"x", "..", "...", "F"}

_STATCAN_RENAMES = {"REF_DATE": "date", "GEO": "geo", "VALUE": "value"}

# bookkeeping columns present in every StatCan full-table CSV
_STATCAN_META = {
    "DGUID",
    "UOM",
    "UOM_ID",
    "SCALAR_FACTOR",
    "SCALAR_ID",
    "VECTOR",
    "COORDINATE",
    "STATUS",
    "SYMBOL",
    "TERMINATED",
    "DECIMALS",
}


def read_table(path: Path, *, sheet_name: Optional[str | int] = None, **kwargs) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input table not found: {path}")
    suffix = path.suffix.lower()
    if suffix in {".csv", ".txt"}:
        return pd.read_csv(path, **kwargs)
    if suffix in {".xls", ".xlsx"}:
        return pd.read_excel(path, sheet_name=0 if sheet_name is None else sheet_name, **kwargs)
    raise ValueError(f"Unsupported table format '{suffix}' for {path}")


def _parse_one_ref_date(raw: object) -> pd.Timestamp:
    text = str(raw).strip()
    if re.fullmatch(r"\d{4}/\d{4}", text):  # fiscal year, e.g. 2021/2022
        text = text[:4]
    if re.fullmatch(r"\d{4}", text):
        return pd.Timestamp(year=int(text), month=1, day=1)
    if re.fullmatch(r"\d{4}-\d{1,2}", text):
        year, month = text.split("-")
        return pd.Timestamp(year=int(year), month=int(month), day=1)
    return pd.Timestamp(text)


def parse_ref_date(values: Iterable[object]) -> pd.Series:
    """Parse StatCan ``REF_DATE`` strings (``YYYY``, ``YYYY-MM``, ``YYYY-MM-DD``, ``YYYY/YYYY``)."""
    series = pd.Series(list(values)) if not isinstance(values, pd.Series) else values
    return series.map(_parse_one_ref_date)


def tidy_statcan(df: pd.DataFrame, *, keep: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Standardise a raw StatCan table to ``date``/``geo``/``value`` plus its dimension columns."""
    missing = {"REF_DATE", "VALUE"} - set(df.columns)
    if missing:
        raise KeyError(f"not a StatCan table, missing columns: {sorted(missing)}")
    out = df.copy()
    if "STATUS" in out.columns:
        suppressed = out["STATUS"].astype(str).str.strip().isin(SUPPRESSED_STATUS)
        if suppressed.any():
            LOGGER.debug("Dropping %d suppressed rows", int(suppressed.sum()))
        out = out[~suppressed]
    out = out.rename(columns=_STATCAN_RENAMES)
    out["date"] = parse_ref_date(out["date"]).to_numpy()
    out["value"] = pd.to_numeric(out["value"], errors="coerce")
    out = out.dropna(subset=["value"])

    dimensions = [c for c in out.columns if c not in _STATCAN_META and c not in {"date", "geo", "value"}]
    if keep is not None:
        unknown = [c for c in keep if c not in out.columns]
        if unknown:
            raise KeyError(f"columns not in table: {unknown}")
        dimensions = [c for c in dimensions if c in keep]
    columns = ["date"] + (["geo"] if "geo" in out.columns else []) + dimensions + ["value"]
    return out[columns].reset_index(drop=True)


def filter_table(df: pd.DataFrame, filters: Mapping[str, object]) -> pd.DataFrame:
    mask = pd.Series(True, index=df.index)
    for column, wanted in filters.items():
        if column not in df.columns:
            raise KeyError(f"filter column '{column}' not in table columns {list(df.columns)}")
        if isinstance(wanted, (list, tuple, set)):
            mask &= df[column].isin(list(wanted))
        else:
            mask &= df[column] == wanted
    out = df[mask]
    if out.empty:
        LOGGER.warning("Filters %s matched no rows", dict(filters))
    return out


def melt_wide(
    df: pd.DataFrame,
    id_vars: Sequence[str],
    *,
    var_name: str = "variable",
    value_name: str = "value",
) -> pd.DataFrame:
    return df.melt(id_vars=list(id_vars), var_name=var_name, value_name=value_name)


def pivot_tidy(
    df: pd.DataFrame,
    index: str | Sequence[str],
    columns: str | Sequence[str],
    values: str = "value",
    aggfunc: str = "mean",
) -> pd.DataFrame:
    wide = df.pivot_table(index=index, columns=columns, values=values, aggfunc=aggfunc)
    wide.columns.name = None
    return wide


def to_series(
    df: pd.DataFrame,
    *,
    date_col: str = "date",
    value_col: str = "value",
    freq: Optional[str] = None,
    agg: str = "sum",
) -> pd.Series:
    for column in (date_col, value_col):
        if column not in df.columns:
            raise KeyError(f"column '{column}' not in table")
    frame = pd.DataFrame(
        {
            "date": pd.to_datetime(df[date_col]),
            "value": pd.to_numeric(df[value_col], errors="coerce"),
        }
    ).dropna()
    series = frame.groupby("date")["value"].agg(agg).sort_index()
    if freq:
        series = series.resample(freq).agg(agg)
    series.name = value_col
    series.index.name = "date"
    return series


def slice_period(obj: pd.Series | pd.DataFrame, start: Optional[str], end: Optional[str]):
    start_ts = pd.Timestamp(start) if start else None
    end_ts = pd.Timestamp(end) if end else None
    return obj.loc[start_ts:end_ts]


def load_timeseries(data_cfg: Dict[str, object], base_dir: Path, *, cache_dir: Optional[Path] = None) -> pd.Series:
    """Load the series described by a ``data`` config section."""
    if "product_id" in data_cfg:
        cache = Path(cache_dir or data_cfg.get("cache_dir") or base_dir / "data" / "statcan")
        raw = fetch_statcan_table(data_cfg["product_id"], cache, language=str(data_cfg.get("language", "en")))
        df = tidy_statcan(raw)
    else:
        source = Path(str(data_cfg["source"]))
        path = source if source.is_absolute() else base_dir / source
        df = read_table(path, sheet_name=data_cfg.get("sheet"))
        if {"REF_DATE", "VALUE"} <= set(df.columns):
            df = tidy_statcan(df)

    filters = data_cfg.get("filters") or {}
    if filters:
        df = filter_table(df, filters)

    series = to_series(
        df,
        date_col=str(data_cfg.get("date_column", "date")),
        value_col=str(data_cfg.get("value_column", "value")),
        freq=data_cfg.get("frequency"),
        agg=str(data_cfg.get("aggregate", "sum")),
    )
    series = slice_period(series, data_cfg.get("start"), data_cfg.get("end"))
    if series.empty:
        raise ValueError("No observations left after filtering and slicing")
    LOGGER.info("Loaded %d observations (%s to %s)", len(series), series.index[0].date(), series.index[-1].date())
    return series


def generate_rolling_windows(
    series: pd.Series,
    *,
    min_train: int,
    step_size: int,
    horizon: int,
) -> Iterator[Tuple[pd.Series, pd.Series, pd.Timestamp]]:
    """Expanding-origin backtest windows: ``(train, test, as_of)``."""
    if min_train < 1 or step_size < 1 or horizon < 1:
        raise ValueError("min_train, step_size and horizon must all be positive")
    stop_idx = len(series) - horizon + 1
    for idx in range(min_train, stop_idx, step_size):
        train_slice = series.iloc[:idx]
        test_slice = series.iloc[idx : idx + horizon]
        yield train_slice, test_slice, series.index[idx - 1]


__all__ = [
    "read_table",
    "parse_ref_date",
    "tidy_statcan",
    "filter_table",
    "melt_wide",
    "pivot_tidy",
    "to_series",
    "slice_period",
    "load_timeseries",
    "generate_rolling_windows",
]
