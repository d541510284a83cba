from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from scipy.stats import norm

from canstats.forecasting import MODEL_REGISTRY, auto_forecast, build_model, get_model_class, select_best_model
from canstats.forecasting.arima_model import ndiffs, nsdiffs
from canstats.forecasting.base_model import prepare_series
from canstats.forecasting.ets_model import AutoETSModel


def test_registry_lookup():
    assert set(MODEL_REGISTRY) == {"auto_arima", "auto_ets", "naive", "snaive", "drift"}
    with pytest.raises(KeyError, match="Available"):
        get_model_class("prophet")


def test_prepare_series_interpolates_and_checks_length():
    y = prepare_series(pd.Series([np.nan, 1.0, np.nan, 3.0, 4.0, np.nan]))
    assert list(y) == [1.0, 2.0, 3.0, 4.0]
    with pytest.raises(ValueError):
        prepare_series(pd.Series([1.0, 2.0]))
    with pytest.raises(ValueError):
        prepare_series(pd.Series([np.nan, np.nan, np.nan]))


def test_naive_point_and_intervals():
    output = build_model("naive", {"forecast": {"levels": [80]}}).fit(pd.Series([1.0, 2.0, 3.0, 4.0, 5.0])).forecast(3)
    bundle = output.bundle
    assert list(bundle.point.index) == [5, 6, 7]
    assert list(bundle.point) == [5.0, 5.0, 5.0]
    lower, upper = bundle.interval(80)
    z = norm.ppf(0.9)
    assert upper.to_numpy() == pytest.approx(5.0 + z * np.sqrt([1.0, 2.0, 3.0]))
    assert lower.to_numpy() == pytest.approx(5.0 - z * np.sqrt([1.0, 2.0, 3.0]))


def test_drift_extends_line():
    model = build_model("drift").fit(pd.Series([1.0, 3.0, 5.0, 7.0]))
    output = model.forecast(2)
    assert list(output.bundle.point) == pytest.approx([9.0, 11.0])
    assert model.describe() == "drift(slope=2)"
    lower, upper = output.bundle.interval(95)
    assert list(lower) == pytest.approx(list(upper))


def test_seasonal_naive_repeats_last_season():
    series = pd.Series([1.0, 2.0, 3.0, 4.0] * 3)
    output = build_model("snaive", {"season_length": 4}).fit(series).forecast(6)
    assert list(output.bundle.point) == [1.0, 2.0, 3.0, 4.0, 1.0, 2.0]
    with pytest.raises(ValueError):
        build_model("snaive", {"season_length": 12}).fit(series)


def test_forecast_index_continues_monthly_dates(monthly_series):
    output = build_model("naive").fit(monthly_series).forecast(3)
    assert list(output.bundle.point.index) == list(pd.date_range("2021-01-01", periods=3, freq="MS"))


def test_forecast_rejects_bad_horizon(monthly_series):
    model = build_model("naive").fit(monthly_series)
    with pytest.raises(ValueError):
        model.forecast(0)
    with pytest.raises(RuntimeError):
        build_model("naive").forecast(3)


def test_nonnegative_clips_intervals():
    series = pd.Series([30.0, 2.0, 25.0, 1.0, 0.5])
    output = build_model("naive", {"nonnegative": True}).fit(series).forecast(4)
    frame = output.bundle.to_frame()
    assert (frame.to_numpy() >= 0).all()


def test_differencing_order_selection():
    rng = np.random.default_rng(1)
    walk = np.cumsum(rng.normal(size=300))
    assert ndiffs(walk) >= 1
    assert ndiffs(np.full(50, 3.0)) == 0
    t = np.arange(96)
    seasonal = 10 * np.sin(2 * np.pi * t / 12) + rng.normal(0, 0.1, 96)
    assert nsdiffs(seasonal, 12) == 1
    assert nsdiffs(seasonal, 1) == 0


def test_auto_arima_fits_seasonal_series(monthly_series):
    model = build_model(
        "auto_arima",
        {"season_length": 12, "params": {"max_models": 12}, "forecast": {"levels": [80, 95]}},
    ).fit(monthly_series)
    assert model.describe().startswith("ARIMA(")
    assert np.isfinite(model.aicc)
    assert 1 <= len(model.search_log) <= 12
    output = model.forecast(6)
    lower, upper = output.bundle.interval(95)
    inner_lower, inner_upper = output.bundle.interval(80)
    assert (lower <= inner_lower).all() and (inner_upper <= upper).all()
    assert (lower < output.bundle.point).all() and (output.bundle.point < upper).all()


def test_ets_candidate_forms():
    model = AutoETSModel({"season_length": 12})
    positive = np.linspace(1.0, 50.0, 48)
    forms = model.candidate_forms(positive)
    assert len(forms) == 15
    assert ("add", None, False, "mul") not in forms
    negative = positive - 10.0
    assert all(error == "add" and seasonal != "mul" for error, _, _, seasonal in model.candidate_forms(negative))
    assert len(model.candidate_forms(positive[:20])) == 6


def test_auto_ets_fits(monthly_series):
    model = build_model("auto_ets", {"season_length": 12}).fit(monthly_series)
    assert model.describe().startswith("ETS(")
    output = model.forecast(4)
    lower, upper = output.bundle.interval(80)
    assert (lower < upper).all()
    assert len(output.bundle.point) == 4


def test_select_best_model_prefers_drift_on_a_line():
    series = pd.Series(3.0 + 2.0 * np.arange(30))
    best, table = select_best_model(series, ["naive", "drift"], holdout=5)
    assert best.name == "drift"
    assert list(table["model"]) == ["drift", "naive"]
    assert table.loc[0, "mase"] == pytest.approx(0.0)
    with pytest.raises(ValueError):
        select_best_model(series, ["naive"], holdout=28)


def test_select_best_model_all_fail():
    with pytest.raises(RuntimeError):
        select_best_model(pd.Series(np.arange(20.0)), ["snaive"], holdout=3, config={"season_length": 50})


def test_auto_forecast_best_attaches_selection():
    series = pd.Series(10.0 + np.arange(24.0), index=pd.date_range("2020-01-01", periods=24, freq="MS"))
    output = auto_forecast(series, 3, method="best", candidates=["naive", "drift"], holdout=4)
    assert isinstance(output.artifacts["selection"], pd.DataFrame)
    assert output.artifacts["model"].startswith("drift")
    assert output.bundle.point.index[0] == pd.Timestamp("2022-01-01")
