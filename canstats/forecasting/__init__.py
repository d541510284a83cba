from __future__ import annotations

from typing import Dict, Type

from .arima_model import AutoARIMAModel
from .base_model import BaseModel, ModelOutput
from .ets_model import AutoETSModel
from .naive_model import DriftModel, NaiveModel, SeasonalNaiveModel


MODEL_REGISTRY: Dict[str, Type[BaseModel]] = {
    "auto_arima": AutoARIMAModel,
    "auto_ets": AutoETSModel,
    "naive": NaiveModel,
    "snaive": SeasonalNaiveModel,
    "drift": DriftModel,
}


def get_model_class(model_type: str) -> Type[BaseModel]:
    if model_type not in MODEL_REGISTRY:
        raise KeyError(f"Unknown model type '{model_type}'. Available: {sorted(MODEL_REGISTRY.keys())}")
    return MODEL_REGISTRY[model_type]


from .selection import auto_forecast, build_model, select_best_model  # noqa: E402


__all__ = [
    "get_model_class",
    "MODEL_REGISTRY",
    "BaseModel",
    "ModelOutput",
    "auto_forecast",
    "build_model",
    "select_best_model",
]
