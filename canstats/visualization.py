from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

os.environ.setdefault("MPLBACKEND", "Agg")

import matplotlib

matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .metrics import PredictionBundle
from .queueing import QueueRunResult


sns.set_style("whitegrid")
plt.rcParams["figure.figsize"] = (12, 5)
plt.rcParams["font.size"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 10

HISTORY_COLOR = "black"
FORECAST_COLOR = "#E07B39"
INTERVAL_COLOR = "#EECFA1"


def _finish(fig: plt.Figure, save_path: Optional[Path]) -> plt.Figure:
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=200, bbox_inches="tight")
        plt.close(fig)
    return fig


def plot_forecast(
    history: pd.Series,
    bundle: PredictionBundle,
    *,
    title: str = "Forecast",
    ylabel: str = "Value",
    save_path: Optional[Path] = None,
) -> plt.Figure:
    """History, point forecast and shaded prediction intervals (widest lightest)."""
    fig, ax = plt.subplots()
    levels = sorted(bundle.levels(), reverse=True)
    for i, level in enumerate(levels):
        lower, upper = bundle.interval(level)
        ax.fill_between(
            lower.index,
            lower.to_numpy(),
            upper.to_numpy(),
            color=INTERVAL_COLOR,
            alpha=0.35 + 0.3 * i / max(len(levels), 1),
            linewidth=0,
            label=f"{level:g}% interval",
        )
    ax.plot(history.index, history.to_numpy(), color=HISTORY_COLOR, linewidth=1.8, label="History")
    ax.plot(bundle.point.index, bundle.point.to_numpy(), color=FORECAST_COLOR, linewidth=2.0, linestyle="--", label="Forecast")
    ax.set_title(title, fontweight="bold")
    ax.set_xlabel("Date")
    ax.set_ylabel(ylabel)
    ax.legend(loc="upper left", frameon=True, fancybox=False, edgecolor="gray")
    return _finish(fig, save_path)


def plot_history_with_future(
    combined: pd.DataFrame,
    *,
    title: str = "History and entered future values",
    ylabel: str = "Value",
    save_path: Optional[Path] = None,
) -> plt.Figure:
    fig, ax = plt.subplots()
    past = combined[combined["kind"] == "history"]
    future = combined[combined["kind"] == "future"]
    ax.plot(past["date"], past["value"], color=HISTORY_COLOR, linewidth=1.8, marker="o", markersize=3, label="History")
    if not future.empty:
        # connect the last observation to the first entered value
        bridge = pd.concat([past.tail(1), future])
        ax.plot(bridge["date"], bridge["value"], color=FORECAST_COLOR, linewidth=2.0, linestyle="--", marker="o", markersize=4, label="Future (entered)")
        ax.axvline(past["date"].iloc[-1] if not past.empty else future["date"].iloc[0], color="gray", linestyle=":", linewidth=1)
    ax.set_title(title, fontweight="bold")
    ax.set_ylabel(ylabel)
    ax.legend(loc="upper left")
    return _finish(fig, save_path)


def plot_wait_distribution(result: QueueRunResult | np.ndarray, *, bins: int = 40, save_path: Optional[Path] = None) -> plt.Figure:
    waits = result.waits if isinstance(result, QueueRunResult) else np.asarray(result, dtype=float)
    fig, ax = plt.subplots(figsize=(10, 5))
    if waits.size:
        sns.histplot(x=waits, bins=bins, color=sns.color_palette("husl", 8)[5], edgecolor="black", alpha=0.7, ax=ax)
        ax.axvline(float(np.mean(waits)), color="red", linestyle="--", linewidth=2, label=f"mean = {np.mean(waits):.3g}")
        ax.legend()
    ax.set_xlabel("Wait time")
    ax.set_ylabel("Customers")
    ax.set_title("Waiting time distribution", fontweight="bold")
    return _finish(fig, save_path)


def plot_server_sweep(sweep: pd.DataFrame, *, target_wait: Optional[float] = None, save_path: Optional[Path] = None) -> plt.Figure:
    fig, ax = plt.subplots(figsize=(10, 5))
    ax.errorbar(
        sweep["servers"],
        sweep["sim_mean_wait"],
        yerr=sweep["sim_mean_wait_ci"].fillna(0),
        fmt="o-",
        capsize=4,
        color=FORECAST_COLOR,
        label="Simulated mean wait",
    )
    finite = sweep[np.isfinite(sweep["erlang_wq"])]
    ax.plot(finite["servers"], finite["erlang_wq"], "s--", color="steelblue", label="Erlang C")
    if target_wait is not None:
        ax.axhline(target_wait, color="red", linestyle=":", label=f"target = {target_wait:g}")
    ax.set_xlabel("Servers (k)")
    ax.set_ylabel("Mean wait in queue")
    ax.set_title("Mean wait by number of servers", fontweight="bold")
    ax.legend()
    return _finish(fig, save_path)


__all__ = ["plot_forecast", "plot_history_with_future", "plot_wait_distribution", "plot_server_sweep"]
