"""Discrete-time Monte Carlo simulation of an M/M/k queue.

Time advances in fixed steps of ``dt``. Within a step, busy servers finish with
probability ``1 - exp(-mu * dt)``, Poisson(``lam * dt``) customers arrive, and
free servers take customers from the head of the FIFO queue. A customer's wait
is the time between its arrival step and the step at which a server picks it up.

Replications run independently with their own random streams, spawned from one
seed, so the results do not depend on how many worker processes are used.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import stats
from tqdm.auto import tqdm


LOGGER = logging.getLogger("canstats.queueing")

SUMMARY_METRICS = ("mean_wait", "median_wait", "p90_wait", "max_wait", "prob_wait", "mean_queue", "max_queue", "utilization", "served", "unserved")


@dataclass(slots=True)
class QueueParams:
    arrival_rate: float
    service_rate: float
    servers: int
    duration: float
    dt: float = 0.01
    warmup: float = 0.0

    def validate(self) -> "QueueParams":
        if self.arrival_rate <= 0 or self.service_rate <= 0:
            raise ValueError("arrival_rate and service_rate must be positive")
        if int(self.servers) != self.servers or self.servers < 1:
            raise ValueError("servers must be an integer >= 1")
        if self.dt <= 0:
            raise ValueError("dt must be positive")
        if self.duration <= 0 or not 0 <= self.warmup < self.duration:
            raise ValueError("need duration > 0 and 0 <= warmup < duration")
        if self.arrival_rate * self.dt > 1 or self.service_rate * self.dt > 1:
            LOGGER.warning("dt=%g is coarse for the given rates; discretisation error will be noticeable", self.dt)
        return self

    @property
    def utilization(self) -> float:
        return self.arrival_rate / (self.servers * self.service_rate)

    @property
    def n_steps(self) -> int:
        return int(round(self.duration / self.dt))

    @classmethod
    def from_config(cls, cfg: Dict[str, object]) -> "QueueParams":
        return cls(
            arrival_rate=float(cfg["arrival_rate"]),
            service_rate=float(cfg["service_rate"]),
            servers=int(cfg["servers"]),
            duration=float(cfg["duration"]),
            dt=float(cfg.get("dt", 0.01)),
            warmup=float(cfg.get("warmup", 0.0)),
        ).validate()


@dataclass(slots=True)
class QueueRunResult:
    waits: np.ndarray = field(repr=False)
    served: int
    unserved: int
    mean_queue: float
    max_queue: int
    utilization: float

    @property
    def mean_wait(self) -> float:
        return float(np.mean(self.waits)) if self.waits.size else float("nan")

    @property
    def median_wait(self) -> float:
        return float(np.median(self.waits)) if self.waits.size else float("nan")

    @property
    def p90_wait(self) -> float:
        return float(np.quantile(self.waits, 0.9)) if self.waits.size else float("nan")

    @property
    def max_wait(self) -> float:
        return float(np.max(self.waits)) if self.waits.size else float("nan")

    @property
    def prob_wait(self) -> float:
        return float(np.mean(self.waits > 0)) if self.waits.size else float("nan")

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in SUMMARY_METRICS}


def simulate_mmk(params: QueueParams, seed: int | np.random.SeedSequence | None = None) -> QueueRunResult:
    params.validate()
    rng = np.random.default_rng(seed)
    k = int(params.servers)
    p_done = 1.0 - math.exp(-params.service_rate * params.dt)
    arrivals_per_step = params.arrival_rate * params.dt

    queue: deque[float] = deque()
    busy = 0
    waits: List[float] = []
    queue_area = 0.0
    busy_area = 0.0
    observed_steps = 0
    max_queue = 0

    for step in range(params.n_steps):
        t = step * params.dt
        if busy:
            busy -= int(rng.binomial(busy, p_done))
        for _ in range(int(rng.poisson(arrivals_per_step))):
            queue.append(t)
        while busy < k and queue:
            arrived = queue.popleft()
            busy += 1
            if arrived >= params.warmup:
                waits.append(t - arrived)
        if t >= params.warmup:
            observed_steps += 1
            queue_area += len(queue)
            busy_area += busy
            max_queue = max(max_queue, len(queue))

    observed_steps = max(observed_steps, 1)
    return QueueRunResult(
        waits=np.asarray(waits, dtype=float),
        served=len(waits),
        unserved=sum(1 for arrived in queue if arrived >= params.warmup),
        mean_queue=queue_area / observed_steps,
        max_queue=max_queue,
        utilization=busy_area / (observed_steps * k),
    )


def run_replications(
    params: QueueParams,
    n_replications: int,
    *,
    seed: Optional[int] = None,
    n_jobs: int = 1,
    progress: bool = False,
) -> pd.DataFrame:
    if n_replications < 1:
        raise ValueError("n_replications must be >= 1")
    params.validate()
    streams = np.random.SeedSequence(seed).spawn(n_replications)
    LOGGER.info(
        "Running %d replications of M/M/%d (lambda=%g, mu=%g, rho=%.3f) on %d worker(s)",
        n_replications, params.servers, params.arrival_rate, params.service_rate, params.utilization, n_jobs,
    )
    iterable = tqdm(streams, desc=f"M/M/{params.servers}", disable=not progress)
    results = Parallel(n_jobs=n_jobs)(delayed(simulate_mmk)(params, stream) for stream in iterable)
    frame = pd.DataFrame([r.to_dict() for r in results])
    frame.insert(0, "replication", range(n_replications))
    return frame


def summarize_replications(df: pd.DataFrame, confidence: float = 0.95) -> pd.DataFrame:
    """Mean, std and Student-t confidence half-width per metric."""
    rows = []
    n = len(df)
    for metric in SUMMARY_METRICS:
        if metric not in df.columns:
            continue
        values = df[metric].dropna().to_numpy(dtype=float)
        m = len(values)
        mean = float(values.mean()) if m else float("nan")
        std = float(values.std(ddof=1)) if m > 1 else float("nan")
        half_width = float(stats.t.ppf(0.5 + confidence / 2, m - 1) * std / math.sqrt(m)) if m > 1 else float("nan")
        rows.append({"metric": metric, "mean": mean, "std": std, "ci_half_width": half_width, "n": m})
    summary = pd.DataFrame(rows).set_index("metric")
    summary.attrs["replications"] = n
    summary.attrs["confidence"] = confidence
    return summary


@dataclass(slots=True)
class ErlangCResult:
    servers: int
    rho: float
    prob_wait: float
    wq: float
    lq: float
    w_system: float
    l_system: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def erlang_c(arrival_rate: float, service_rate: float, servers: int) -> ErlangCResult:
    """Closed-form steady-state M/M/k measures (Erlang C)."""
    if arrival_rate <= 0 or service_rate <= 0 or servers < 1:
        raise ValueError("rates must be positive and servers >= 1")
    k = int(servers)
    a = arrival_rate / service_rate
    rho = a / k
    if rho >= 1:
        LOGGER.warning("M/M/%d with rho=%.3f is unstable; waits grow without bound", k, rho)
        inf = float("inf")
        return ErlangCResult(servers=k, rho=rho, prob_wait=1.0, wq=inf, lq=inf, w_system=inf, l_system=inf)

    # a^n / n! accumulated iteratively to stay finite for large k
    term = 1.0
    partial = 1.0
    for n in range(1, k):
        term *= a / n
        partial += term
    top = term * a / k / (1 - rho)
    prob_wait = top / (partial + top)
    wq = prob_wait / (k * service_rate - arrival_rate)
    w_system = wq + 1 / service_rate
    return ErlangCResult(
        servers=k,
        rho=rho,
        prob_wait=prob_wait,
        wq=wq,
        lq=arrival_rate * wq,
        w_system=w_system,
        l_system=arrival_rate * w_system,
    )


def min_servers_for_target(arrival_rate: float, service_rate: float, target_wait: float, *, max_servers: int = 200) -> int:
    if target_wait <= 0:
        raise ValueError("target_wait must be positive")
    start = max(1, math.floor(arrival_rate / service_rate) + 1)
    for k in range(start, max_servers + 1):
        if erlang_c(arrival_rate, service_rate, k).wq <= target_wait:
            return k
    raise ValueError(f"no server count up to {max_servers} meets a mean wait of {target_wait}")


def sweep_servers(
    params: QueueParams,
    server_counts: Iterable[int],
    n_replications: int,
    *,
    seed: Optional[int] = None,
    n_jobs: int = 1,
    confidence: float = 0.95,
) -> pd.DataFrame:
    """Simulated and analytic waiting measures for each server count."""
    rows = []
    for offset, k in enumerate(sorted(set(int(k) for k in server_counts))):
        variant = replace(params, servers=k)
        sub_seed = None if seed is None else seed + offset
        reps = run_replications(variant, n_replications, seed=sub_seed, n_jobs=n_jobs)
        summary = summarize_replications(reps, confidence)
        analytic = erlang_c(params.arrival_rate, params.service_rate, k)
        rows.append(
            {
                "servers": k,
                "rho": variant.utilization,
                "sim_mean_wait": summary.loc["mean_wait", "mean"],
                "sim_mean_wait_ci": summary.loc["mean_wait", "ci_half_width"],
                "sim_prob_wait": summary.loc["prob_wait", "mean"],
                "sim_utilization": summary.loc["utilization", "mean"],
                "erlang_wq": analytic.wq,
                "erlang_prob_wait": analytic.prob_wait,
            }
        )
    return pd.DataFrame(rows)


__all__ = [
    "QueueParams",
    "QueueRunResult",
    "ErlangCResult",
    "simulate_mmk",
    "run_replications",
    "summarize_replications",
    "erlang_c",
    "min_servers_for_target",
    "sweep_servers",
]
