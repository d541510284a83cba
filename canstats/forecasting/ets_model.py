from __future__ import annotations

import logging
import warnings
from itertools import product
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from statsmodels.tsa.exponential_smoothing.ets import ETSModel

from .base_model import BaseModel, Intervals


LOGGER = logging.getLogger("canstats.forecasting.ets")

# (error, trend, damped, seasonal)
EtsForm = Tuple[str, Optional[str], bool, Optional[str]]


def _label(form: EtsForm) -> str:
    error, trend, damped, seasonal = form
    t = "N" if trend is None else ("Ad" if damped else "A")
    s = "N" if seasonal is None else seasonal[0].upper()
    return f"ETS({error[0].upper()},{t},{s})"


class AutoETSModel(BaseModel):
    """Exponential smoothing state space model chosen by AICc."""

    name = "auto_ets"

    def __init__(self, model_config: Optional[Dict[str, object]] = None) -> None:
        super().__init__(model_config)
        self.allow_multiplicative = bool(self.params.get("allow_multiplicative", True))
        self.maxiter = int(self.params.get("maxiter", 1000))
        self._result: Optional[Any] = None
        self._form: Optional[EtsForm] = None
        self.search_log: List[Dict[str, object]] = []

    @property
    def aicc(self) -> float:
        return float(self._result.aicc) if self._result is not None else float("nan")

    def describe(self) -> str:
        return _label(self._form) if self._form is not None else self.name

    def candidate_forms(self, y: np.ndarray) -> List[EtsForm]:
        m = self.season_length
        positive = bool(np.all(y > 0))
        errors = ["add", "mul"] if positive and self.allow_multiplicative else ["add"]
        seasonals: List[Optional[str]] = [None]
        if m > 1 and len(y) >= 2 * m:
            seasonals.append("add")
            if positive and self.allow_multiplicative:
                seasonals.append("mul")
        trends = [(None, False), ("add", False), ("add", True)]
        forms: List[EtsForm] = []
        for error, (trend, damped), seasonal in product(errors, trends, seasonals):
            # additive errors with multiplicative seasonality are numerically unstable
            if error == "add" and seasonal == "mul":
                continue
            forms.append((error, trend, damped, seasonal))
        return forms

    def _fit_form(self, y: np.ndarray, form: EtsForm) -> Optional[Any]:
        error, trend, damped, seasonal = form
        model = ETSModel(
            y,
            error=error,
            trend=trend,
            damped_trend=damped,
            seasonal=seasonal,
            seasonal_periods=self.season_length if seasonal else None,
        )
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                warnings.simplefilter("ignore", RuntimeWarning)
                result = model.fit(disp=False, maxiter=self.maxiter)
        except (ValueError, np.linalg.LinAlgError) as exc:
            LOGGER.debug("Skipping %s: %s", _label(form), exc)
            return None
        if not np.isfinite(result.aicc):
            return None
        return result

    def _fit(self, y: np.ndarray) -> None:
        self.search_log = []
        best: Optional[Tuple[EtsForm, Any]] = None
        for form in self.candidate_forms(y):
            result = self._fit_form(y, form)
            self.search_log.append({"form": _label(form), "aicc": float(result.aicc) if result is not None else float("nan")})
            if result is not None and (best is None or result.aicc < best[1].aicc):
                best = (form, result)
        if best is None:
            raise RuntimeError("no ETS model could be fitted to the series")
        self._form, self._result = best
        LOGGER.info("Selected %s (AICc=%.2f)", self.describe(), self.aicc)

    def _predict(self, horizon: int, levels: Sequence[float]) -> Tuple[np.ndarray, Intervals]:
        n = int(self._result.nobs)
        prediction = self._result.get_prediction(start=n, end=n + horizon - 1)
        point = np.asarray(prediction.predicted_mean, dtype=float)
        intervals: Intervals = {}
        for level in levels:
            frame = prediction.summary_frame(alpha=1 - float(level) / 100.0)
            intervals[float(level)] = (frame["pi_lower"].to_numpy(dtype=float), frame["pi_upper"].to_numpy(dtype=float))
        return point, intervals


__all__ = ["AutoETSModel"]
