from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from canstats.queueing import (
    QueueParams,
    erlang_c,
    min_servers_for_target,
    run_replications,
    simulate_mmk,
    summarize_replications,
    sweep_servers,
)


def small_params(**overrides) -> QueueParams:
    values = {"arrival_rate": 1.5, "service_rate": 1.0, "servers": 2, "duration": 30.0, "dt": 0.05}
    values.update(overrides)
    return QueueParams(**values)


@pytest.mark.parametrize(
    "overrides",
    [
        {"arrival_rate": 0.0},
        {"service_rate": -1.0},
        {"servers": 0},
        {"dt": 0.0},
        {"warmup": 30.0},
        {"duration": 0.0},
    ],
)
def test_params_validation(overrides):
    with pytest.raises(ValueError):
        small_params(**overrides).validate()


def test_params_properties():
    params = QueueParams.from_config({"arrival_rate": 3, "service_rate": 2, "servers": 2, "duration": 10, "dt": 0.1})
    assert params.utilization == pytest.approx(0.75)
    assert params.n_steps == 100
    assert params.warmup == 0.0


def test_erlang_c_mm1_closed_form():
    result = erlang_c(0.5, 1.0, 1)
    assert result.prob_wait == pytest.approx(0.5)
    assert result.wq == pytest.approx(1.0)
    assert result.lq == pytest.approx(0.5)
    assert result.w_system == pytest.approx(2.0)
    assert result.l_system == pytest.approx(1.0)


def test_erlang_c_mm2_known_value():
    # lambda=1, mu=1, k=2: P(wait) = 1/3, Wq = 1/3
    result = erlang_c(1.0, 1.0, 2)
    assert result.prob_wait == pytest.approx(1.0 / 3.0)
    assert result.wq == pytest.approx(1.0 / 3.0)


def test_erlang_c_unstable():
    result = erlang_c(4.0, 1.0, 3)
    assert result.prob_wait == 1.0
    assert math.isinf(result.wq) and math.isinf(result.l_system)


def test_min_servers_for_target():
    assert min_servers_for_target(5.0, 2.0, 0.25) == 4
    with pytest.raises(ValueError):
        min_servers_for_target(5.0, 2.0, 1e-9, max_servers=5)
    with pytest.raises(ValueError):
        min_servers_for_target(5.0, 2.0, 0.0)


def test_simulation_is_reproducible():
    params = small_params()
    first = simulate_mmk(params, 11)
    second = simulate_mmk(params, 11)
    np.testing.assert_array_equal(first.waits, second.waits)
    assert first.to_dict() == second.to_dict()
    assert first.served == len(first.waits)
    assert 0.0 <= first.utilization <= 1.0


def test_no_arrivals_gives_nan_waits():
    result = simulate_mmk(small_params(arrival_rate=1e-9), 0)
    assert result.served == 0 and result.unserved == 0
    assert math.isnan(result.mean_wait) and math.isnan(result.prob_wait)


def test_waits_are_multiples_of_dt():
    params = small_params(arrival_rate=3.0, servers=1, duration=20.0, dt=0.1)
    result = simulate_mmk(params, 3)
    steps = result.waits / params.dt
    np.testing.assert_allclose(steps, np.round(steps), atol=1e-6)
    assert result.unserved > 0


def test_replications_independent_of_worker_count():
    params = small_params()
    serial = run_replications(params, 4, seed=5, n_jobs=1)
    parallel = run_replications(params, 4, seed=5, n_jobs=2)
    pd.testing.assert_frame_equal(serial, parallel)
    assert list(serial["replication"]) == [0, 1, 2, 3]
    assert serial["mean_wait"].nunique() > 1


def test_summarize_replications_ci():
    params = small_params()
    summary = summarize_replications(run_replications(params, 6, seed=1))
    row = summary.loc["mean_wait"]
    assert row["n"] == 6
    assert row["ci_half_width"] > 0
    single = summarize_replications(run_replications(params, 1, seed=1))
    assert math.isnan(single.loc["mean_wait", "ci_half_width"])


def test_simulation_agrees_with_erlang_c():
    params = QueueParams(arrival_rate=0.5, service_rate=1.0, servers=1, duration=400.0, dt=0.01, warmup=20.0)
    summary = summarize_replications(run_replications(params, 20, seed=42))
    assert summary.loc["mean_wait", "mean"] == pytest.approx(erlang_c(0.5, 1.0, 1).wq, abs=0.3)
    assert summary.loc["utilization", "mean"] == pytest.approx(0.5, abs=0.06)


def test_sweep_servers_table():
    sweep = sweep_servers(small_params(), [3, 2, 2], 3, seed=0)
    assert list(sweep["servers"]) == [2, 3]
    assert {"sim_mean_wait", "sim_mean_wait_ci", "erlang_wq", "erlang_prob_wait", "rho"} <= set(sweep.columns)
    assert sweep["erlang_wq"].iloc[0] > sweep["erlang_wq"].iloc[1]
