"""Streamlit dashboard: upload a CSV, type in future values, plot both.

Run with ``streamlit run streamlit_app.py``.
"""

from __future__ import annotations

import io
from typing import List

import matplotlib.pyplot as plt
import pandas as pd
import streamlit as st

from .projection import (
    combine_history_and_future,
    default_future_values,
    detect_date_column,
    future_index,
    numeric_columns,
)
from .visualization import plot_history_with_future


PREFILL_METHODS = {"Last value": "last", "Historical mean": "mean", "Model forecast": "forecast"}
FORM_COLUMNS = 4
PLOTTED_KEY = "plotted_inputs"


@st.cache_data
def load_csv(raw: bytes) -> pd.DataFrame:
    return pd.read_csv(io.BytesIO(raw))


@st.cache_data
def build_history(df: pd.DataFrame, date_col: str, value_col: str) -> pd.Series:
    dates = pd.to_datetime(df[date_col], errors="coerce")
    values = pd.to_numeric(df[value_col], errors="coerce")
    history = pd.Series(values.to_numpy(), index=pd.DatetimeIndex(dates, name="date")).dropna()
    history = history[history.index.notna()]
    return history.groupby(level=0).mean().sort_index()


@st.cache_data
def prefill(history: pd.Series, periods: int, method: str) -> List[float]:
    return default_future_values(history, periods, method)


def render_sidebar(df: pd.DataFrame):
    st.sidebar.subheader("Series")
    columns = [str(c) for c in df.columns]
    guessed = detect_date_column(df)
    date_col = st.sidebar.selectbox("Date column", columns, index=columns.index(guessed) if guessed in columns else 0)
    value_options = [c for c in numeric_columns(df) if c != date_col]
    if not value_options:
        st.error("The uploaded file has no numeric column to plot.")
        st.stop()
    value_col = st.sidebar.selectbox("Value column", value_options)

    st.sidebar.markdown("---")
    st.sidebar.subheader("Future values")
    horizon = st.sidebar.slider("Periods to enter", min_value=1, max_value=36, value=6)
    prefill_label = st.sidebar.radio("Prefill with", list(PREFILL_METHODS))
    return date_col, value_col, horizon, PREFILL_METHODS[prefill_label]


def render_future_form(index: pd.DatetimeIndex, defaults: List[float], *, key_prefix: str = "future") -> tuple[bool, List[float]]:
    with st.form("future_values"):
        st.markdown("Enter the value you expect for each future period.")
        values: List[float] = []
        cols = st.columns(FORM_COLUMNS)
        for i, (when, default) in enumerate(zip(index, defaults)):
            with cols[i % FORM_COLUMNS]:
                values.append(
                    st.number_input(
                        when.strftime("%Y-%m-%d"),
                        value=float(round(default, 4)),
                        format="%.4f",
                        key=f"{key_prefix}_{when.isoformat()}",
                    )
                )
        submitted = st.form_submit_button("Plot")
    return submitted, values


def render_app(df: pd.DataFrame) -> None:
    """Render the app for an already-loaded frame."""
    date_col, value_col, horizon, method = render_sidebar(df)
    history = build_history(df, date_col, value_col)
    if len(history) < 2:
        st.error(f"Column '{date_col}' does not contain at least two parseable dates with values.")
        return

    with st.expander("Uploaded data", expanded=False):
        st.dataframe(df, use_container_width=True)

    try:
        index = future_index(history.index, horizon)
        defaults = prefill(history, horizon, method)
    except (ValueError, RuntimeError) as exc:
        st.warning(f"Prefill failed ({exc}); using the last observed value instead.")
        index = future_index(history.index, horizon)
        defaults = prefill(history, horizon, "last")

    # a new column or prefill method starts a fresh set of inputs
    key_prefix = f"future_{value_col}_{method}"
    submitted, values = render_future_form(index, defaults, key_prefix=key_prefix)
    if submitted:
        st.session_state[PLOTTED_KEY] = key_prefix
    if st.session_state.get(PLOTTED_KEY) != key_prefix:
        st.caption("Press Plot to draw the history with the values entered above.")
        return

    combined = combine_history_and_future(history, values, index)
    fig = plot_history_with_future(combined, title=f"{value_col}: history and entered values", ylabel=value_col)
    st.pyplot(fig)
    plt.close(fig)
    if submitted:
        st.success(f"Plotted {horizon} future values.")

    st.download_button(
        "Download combined table (CSV)",
        data=combined.to_csv(index=False).encode("utf-8"),
        file_name=f"{value_col}_with_future.csv",
        mime="text/csv",
    )


def main() -> None:
    st.set_page_config(page_title="canstats: history and scenarios", layout="wide")
    st.title("History and user-entered future values")

    uploaded = st.sidebar.file_uploader("Upload a CSV", type=["csv"])
    if uploaded is None:
        st.info("Upload a CSV with a date column and at least one numeric column to begin.")
        return

    try:
        df = load_csv(uploaded.getvalue())
    except (pd.errors.ParserError, UnicodeDecodeError) as exc:
        st.error(f"Could not read the CSV: {exc}")
        return
    if df.empty:
        st.error("The uploaded file is empty.")
        return
    render_app(df)


__all__ = ["main", "render_app"]
