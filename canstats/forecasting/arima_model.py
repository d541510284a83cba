"""Automatic (seasonal) ARIMA order selection.

Differencing orders come from unit-root style tests (KPSS for ``d``, STL seasonal
strength for ``D``). The ARMA orders are then chosen by a stepwise AICc search
around a handful of starting models, in the spirit of Hyndman & Khandakar (2008).
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from statsmodels.tools.sm_exceptions import ConvergenceWarning, InterpolationWarning
from statsmodels.tsa.seasonal import STL
from statsmodels.tsa.statespace.sarimax import SARIMAX
from statsmodels.tsa.stattools import kpss

from .base_model import BaseModel, Intervals


LOGGER = logging.getLogger("canstats.forecasting.arima")


@dataclass(frozen=True)
class ArimaSpec:
    p: int
    q: int
    P: int
    Q: int
    constant: bool


def ndiffs(y: np.ndarray, *, alpha: float = 0.05, max_d: int = 2) -> int:
    """Number of first differences until KPSS no longer rejects level stationarity."""
    x = np.asarray(y, dtype=float)
    d = 0
    while d < max_d:
        if len(x) < 4 or np.allclose(x, x[0]):
            break
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", InterpolationWarning)
            try:
                _, pvalue, _, _ = kpss(x, regression="c", nlags="auto")
            except ValueError:
                break
        if pvalue >= alpha:
            break
        x = np.diff(x)
        d += 1
    return d


def seasonal_strength(y: np.ndarray, m: int) -> float:
    res = STL(np.asarray(y, dtype=float), period=m, robust=True).fit()
    detrended = res.seasonal + res.resid
    denom = float(np.var(detrended))
    if denom == 0:
        return 0.0
    return max(0.0, 1.0 - float(np.var(res.resid)) / denom)


def nsdiffs(y: np.ndarray, m: int, *, threshold: float = 0.64, max_D: int = 1) -> int:
    if m <= 1 or len(y) < 2 * m or max_D < 1:
        return 0
    return 1 if seasonal_strength(y, m) > threshold else 0


class AutoARIMAModel(BaseModel):
    name = "auto_arima"

    def __init__(self, model_config: Optional[Dict[str, object]] = None) -> None:
        super().__init__(model_config)
        self.max_p = int(self.params.get("max_p", 5))
        self.max_q = int(self.params.get("max_q", 5))
        self.max_P = int(self.params.get("max_P", 2))
        self.max_Q = int(self.params.get("max_Q", 2))
        self.max_d = int(self.params.get("max_d", 2))
        self.max_D = int(self.params.get("max_D", 1))
        self.max_models = int(self.params.get("max_models", 64))
        self.enforce_stationarity = bool(self.params.get("enforce_stationarity", True))
        self.enforce_invertibility = bool(self.params.get("enforce_invertibility", True))
        self.d: Optional[int] = self.params.get("d")  # type: ignore[assignment]
        self.D: Optional[int] = self.params.get("D")  # type: ignore[assignment]
        self._result: Optional[Any] = None
        self._spec: Optional[ArimaSpec] = None
        self.search_log: List[Dict[str, object]] = []

    @property
    def aicc(self) -> float:
        return float(self._result.aicc) if self._result is not None else float("nan")

    def describe(self) -> str:
        if self._spec is None:
            return self.name
        s = self._spec
        text = f"ARIMA({s.p},{self._d},{s.q})"
        if self._m > 1:
            text += f"({s.P},{self._D},{s.Q})[{self._m}]"
        if s.constant:
            text += " with drift" if self._d + self._D == 1 else " with mean"
        return text

    def _trend(self, spec: ArimaSpec) -> str:
        if not spec.constant:
            return "n"
        return "c" if self._d + self._D == 0 else "t"

    def _fit_spec(self, y: np.ndarray, spec: ArimaSpec) -> Optional[Any]:
        seasonal_order = (spec.P, self._D, spec.Q, self._m) if self._m > 1 else (0, 0, 0, 0)
        model = SARIMAX(
            y,
            order=(spec.p, self._d, spec.q),
            seasonal_order=seasonal_order,
            trend=self._trend(spec),
            enforce_stationarity=self.enforce_stationarity,
            enforce_invertibility=self.enforce_invertibility,
        )
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                warnings.simplefilter("ignore", UserWarning)
                result = model.fit(disp=False)
        except (ValueError, np.linalg.LinAlgError) as exc:
            LOGGER.debug("Skipping %s: %s", spec, exc)
            return None
        if not np.isfinite(result.aicc):
            LOGGER.debug("Skipping %s: non-finite AICc", spec)
            return None
        return result

    def _valid(self, spec: ArimaSpec) -> bool:
        if min(spec.p, spec.q, spec.P, spec.Q) < 0:
            return False
        if spec.p > self.max_p or spec.q > self.max_q or spec.P > self.max_P or spec.Q > self.max_Q:
            return False
        if self._m <= 1 and (spec.P or spec.Q):
            return False
        if spec.constant and self._d + self._D > 1:
            return False
        return True

    def _neighbours(self, spec: ArimaSpec) -> Iterator[ArimaSpec]:
        steps = [(dp, dq, 0, 0) for dp, dq in ((1, 0), (-1, 0), (0, 1), (0, -1), (1, 1), (-1, -1))]
        if self._m > 1:
            steps += [(0, 0, dP, dQ) for dP, dQ in ((1, 0), (-1, 0), (0, 1), (0, -1), (1, 1), (-1, -1))]
        for dp, dq, dP, dQ in steps:
            yield ArimaSpec(spec.p + dp, spec.q + dq, spec.P + dP, spec.Q + dQ, spec.constant)
        if self._d + self._D <= 1:
            yield ArimaSpec(spec.p, spec.q, spec.P, spec.Q, not spec.constant)

    def _initial_specs(self, allow_constant: bool) -> List[ArimaSpec]:
        seasonal = self._m > 1
        starts = [(2, 2, 1, 1), (0, 0, 0, 0), (1, 0, 1, 0), (0, 1, 0, 1)]
        specs = [ArimaSpec(p, q, P if seasonal else 0, Q if seasonal else 0, allow_constant) for p, q, P, Q in starts]
        if allow_constant:
            specs.append(ArimaSpec(0, 0, 0, 0, False))
        return specs

    def _fit(self, y: np.ndarray) -> None:
        self._m = self.season_length if self.season_length > 1 and len(y) >= 2 * self.season_length else 1
        if self._m == 1:
            self._D = 0
        else:
            self._D = int(self.D) if self.D is not None else nsdiffs(y, self._m, max_D=self.max_D)
        seasonally_differenced = y[self._m :] - y[: -self._m] if self._D else y
        self._d = int(self.d) if self.d is not None else ndiffs(seasonally_differenced, max_d=self.max_d)
        LOGGER.debug("Differencing chosen: d=%d D=%d m=%d", self._d, self._D, self._m)

        fitted: Dict[ArimaSpec, Optional[Any]] = {}
        self.search_log = []

        def try_fit(spec: ArimaSpec) -> Optional[Any]:
            if spec in fitted or not self._valid(spec) or len(fitted) >= self.max_models:
                return fitted.get(spec)
            result = self._fit_spec(y, spec)
            fitted[spec] = result
            self.search_log.append({"spec": spec, "aicc": float(result.aicc) if result is not None else float("nan")})
            return result

        for spec in self._initial_specs(self._d + self._D <= 1):
            try_fit(spec)
        candidates = {s: r for s, r in fitted.items() if r is not None}
        if not candidates:
            raise RuntimeError("no ARIMA model could be fitted to the series")
        best_spec = min(candidates, key=lambda s: candidates[s].aicc)

        improved = True
        while improved and len(fitted) < self.max_models:
            improved = False
            for neighbour in self._neighbours(best_spec):
                result = try_fit(neighbour)
                if result is not None and result.aicc < fitted[best_spec].aicc:
                    best_spec = neighbour
                    improved = True
                    break

        self._spec = best_spec
        self._result = fitted[best_spec]
        LOGGER.info("Selected %s (AICc=%.2f) after %d fits", self.describe(), self.aicc, len(fitted))

    def _predict(self, horizon: int, levels: Sequence[float]) -> Tuple[np.ndarray, Intervals]:
        forecast_res = self._result.get_forecast(steps=horizon)
        point = np.asarray(forecast_res.predicted_mean, dtype=float)
        intervals: Intervals = {}
        for level in levels:
            ci = np.asarray(forecast_res.conf_int(alpha=1 - float(level) / 100.0), dtype=float)
            intervals[float(level)] = (ci[:, 0], ci[:, 1])
        return point, intervals


__all__ = ["AutoARIMAModel", "ArimaSpec", "ndiffs", "nsdiffs", "seasonal_strength"]
