from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Sequence


TASKS = ("download", "forecast", "queue", "map")

_TASK_SECTIONS = {
    "download": {"download"},
    "forecast": {"data", "model"},
    "queue": {"queue"},
    "map": {"map"},
}

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigValidationError(ValueError):
    """Raised when a configuration file fails validation."""


def _assert(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigValidationError(message)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _resolve(path_str: str, search_dirs: Sequence[Path]) -> Path | None:
    candidate = Path(path_str)
    if candidate.is_absolute():
        return candidate if candidate.exists() else None
    for root in search_dirs:
        candidate = root / path_str
        if candidate.exists():
            return candidate
    return None


def _validate_experiment_section(section: Dict[str, Any]) -> None:
    required_keys = {"name", "random_seed", "task"}
    missing = required_keys - section.keys()
    _assert(not missing, f"experiment section missing keys: {sorted(missing)}")
    _assert(isinstance(section.get("name"), str) and section["name"], "experiment.name must be a non-empty string")
    _assert(_is_number(section.get("random_seed")), "experiment.random_seed must be numeric")
    _assert(section.get("task") in TASKS, f"experiment.task must be one of {list(TASKS)}")


def _validate_logging_section(section: Dict[str, Any]) -> None:
    level = str(section.get("level", "INFO")).upper()
    _assert(level in _LOG_LEVELS, f"logging.level must be one of {sorted(_LOG_LEVELS)}")


def _validate_download_section(section: Dict[str, Any]) -> None:
    tables = section.get("tables", []) or []
    urls = section.get("urls", []) or []
    _assert(isinstance(tables, (list, tuple)), "download.tables must be a list")
    _assert(isinstance(urls, (list, tuple)), "download.urls must be a list")
    _assert(bool(tables) or bool(urls), "download section needs at least one entry in 'tables' or 'urls'")
    for url in urls:
        _assert(isinstance(url, str) and url.startswith(("http://", "https://")), f"download.urls entry is not an http(s) URL: {url}")


def _validate_data_section(section: Dict[str, Any], search_dirs: Sequence[Path]) -> None:
    has_source = "source" in section
    has_table = "product_id" in section
    _assert(has_source != has_table, "data section needs exactly one of 'source' or 'product_id'")
    if has_source:
        resolved = _resolve(str(section["source"]), search_dirs)
        _assert(resolved is not None, f"data source not found: {section['source']}")
    filters = section.get("filters", {})
    _assert(isinstance(filters, dict), "data.filters must be a mapping")


def _validate_model_section(section: Dict[str, Any]) -> None:
    from .forecasting import MODEL_REGISTRY

    model_type = section.get("type")
    known = sorted(MODEL_REGISTRY) + ["best"]
    _assert(isinstance(model_type, str) and model_type in known, f"model.type must be one of {known}")
    season_length = section.get("season_length", 1)
    _assert(isinstance(season_length, int) and season_length >= 1, "model.season_length must be a positive integer")
    forecast = section.get("forecast", {})
    _assert(isinstance(forecast, dict) and forecast, "model.forecast section is required")
    horizon = forecast.get("horizon")
    _assert(isinstance(horizon, int) and horizon > 0, "model.forecast.horizon must be a positive integer")
    levels = forecast.get("levels", [80, 95])
    _assert(isinstance(levels, Iterable), "model.forecast.levels must be iterable")
    for level in levels:
        _assert(_is_number(level) and 0.0 < float(level) < 100.0, f"invalid interval level: {level}")
    if model_type == "best":
        candidates = section.get("candidates", [])
        _assert(bool(candidates), "model.candidates is required when model.type is 'best'")
        for name in candidates:
            _assert(name in MODEL_REGISTRY, f"unknown candidate model: {name}")


def _validate_evaluation_section(section: Dict[str, Any]) -> None:
    metrics = section.get("metrics", [])
    _assert(bool(metrics), "evaluation.metrics must contain at least one metric")
    _assert(all(isinstance(m, str) for m in metrics), "evaluation.metrics must be strings")
    rolling = section.get("rolling", {}) or {}
    if rolling.get("enabled"):
        _assert(isinstance(rolling.get("step_size"), int) and rolling["step_size"] > 0, "rolling.step_size must be positive integer")
        _assert(isinstance(rolling.get("min_train"), int) and rolling["min_train"] > 2, "rolling.min_train must be an integer greater than 2")


def _validate_queue_section(section: Dict[str, Any]) -> None:
    for key in ("arrival_rate", "service_rate", "duration"):
        _assert(_is_number(section.get(key)) and section[key] > 0, f"queue.{key} must be a positive number")
    servers = section.get("servers")
    _assert(isinstance(servers, int) and servers >= 1, "queue.servers must be an integer >= 1")
    dt = section.get("dt", 0.01)
    _assert(_is_number(dt) and dt > 0, "queue.dt must be a positive number")
    warmup = section.get("warmup", 0)
    _assert(_is_number(warmup) and 0 <= warmup < section["duration"], "queue.warmup must be in [0, duration)")
    replications = section.get("replications", 1)
    _assert(isinstance(replications, int) and replications >= 1, "queue.replications must be an integer >= 1")
    sweep = section.get("sweep", {}) or {}
    if sweep:
        counts = sweep.get("servers", [])
        _assert(bool(counts) and all(isinstance(k, int) and k >= 1 for k in counts), "queue.sweep.servers must be a list of integers >= 1")
    if "target_wait" in section:
        _assert(_is_number(section["target_wait"]) and section["target_wait"] > 0, "queue.target_wait must be positive")


def _validate_map_section(section: Dict[str, Any], search_dirs: Sequence[Path]) -> None:
    required_keys = {"source", "fsa_column", "value_column"}
    missing = required_keys - section.keys()
    _assert(not missing, f"map section missing keys: {sorted(missing)}")
    _assert(_resolve(str(section["source"]), search_dirs) is not None, f"map source not found: {section['source']}")
    boundaries = section.get("boundaries")
    if boundaries:
        _assert(_resolve(str(boundaries), search_dirs) is not None, f"boundary file not found: {boundaries}")
    tolerance = section.get("tolerance", 0.0)
    _assert(_is_number(tolerance) and tolerance >= 0, "map.tolerance must be a non-negative number")
    scheme = section.get("scheme", "quantiles")
    _assert(scheme in {"quantiles", "equal_interval", None}, "map.scheme must be 'quantiles' or 'equal_interval'")
    k = section.get("k", 5)
    _assert(isinstance(k, int) and k >= 2, "map.k must be an integer >= 2")


_INPUT_PATHS = (("data", "source"), ("map", "source"), ("map", "boundaries"))


def _search_dirs(config_path: str | os.PathLike[str] | None, project_root: Path | None) -> list[Path]:
    config_dir = Path(config_path).resolve().parent if config_path else Path.cwd()
    search_dirs = [config_dir]
    if project_root and Path(project_root) not in search_dirs:
        search_dirs.append(Path(project_root))
    return search_dirs


def resolve_input_paths(
    config: Dict[str, Any],
    *,
    config_path: str | os.PathLike[str] | None = None,
    project_root: Path | None = None,
) -> Dict[str, Any]:
    """Return a copy of ``config`` whose input files are absolute paths.

    Relative paths are looked up next to the config file first, then under the
    project root, the same order :func:`validate_config` checks them in.
    """
    resolved = copy.deepcopy(config)
    search_dirs = _search_dirs(config_path, project_root)
    for section, key in _INPUT_PATHS:
        block = resolved.get(section)
        if not isinstance(block, dict) or not block.get(key):
            continue
        found = _resolve(str(block[key]), search_dirs)
        if found is not None:
            block[key] = str(found.resolve())
    return resolved


def validate_config(
    config: Dict[str, Any],
    *,
    config_path: str | os.PathLike[str] | None = None,
    project_root: Path | None = None,
) -> None:
    """Validate a loaded configuration dictionary."""
    _assert(isinstance(config.get("experiment"), dict), "config missing top-level section: experiment")
    _validate_experiment_section(config["experiment"])
    _validate_logging_section(config.get("logging", {}) or {})

    task = config["experiment"]["task"]
    missing_sections = _TASK_SECTIONS[task] - config.keys()
    _assert(not missing_sections, f"task '{task}' needs top-level sections: {sorted(missing_sections)}")

    search_dirs = _search_dirs(config_path, project_root)

    if task == "download":
        _validate_download_section(config["download"])
    elif task == "forecast":
        _validate_data_section(config["data"], tuple(search_dirs))
        _validate_model_section(config["model"])
        if config.get("evaluation"):
            _validate_evaluation_section(config["evaluation"])
    elif task == "queue":
        _validate_queue_section(config["queue"])
    elif task == "map":
        _validate_map_section(config["map"], tuple(search_dirs))


__all__ = ["validate_config", "resolve_input_paths", "ConfigValidationError", "TASKS"]
