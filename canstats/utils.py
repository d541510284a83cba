from __future__ import annotations

import copy
import json
import random
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

import numpy as np
import yaml


def load_yaml(path: Path) -> Dict[str, Any]:
    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top level of {path} must be a mapping, got {type(data).__name__}")
    return data


def save_yaml(path: Path, data: Mapping[str, Any]) -> None:
    Path(path).write_text(yaml.safe_dump(dict(data), sort_keys=False, allow_unicode=True), encoding="utf-8")


def _json_default(obj: Any) -> Any:
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def save_json(path: Path, data: Any) -> None:
    Path(path).write_text(json.dumps(data, indent=2, ensure_ascii=False, default=_json_default), encoding="utf-8")


def deep_update(base: Mapping[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursive merge; ``updates`` wins, nested mappings are merged rather than replaced."""
    merged = copy.deepcopy(dict(base))
    for key, value in updates.items():
        current = merged.get(key)
        merged[key] = deep_update(current, value) if isinstance(current, Mapping) and isinstance(value, Mapping) else value
    return merged


def _parse_override(raw: str) -> Any:
    # YAML scalars give true/false/null, ints, floats and [lists] for free
    try:
        value = yaml.safe_load(raw) if raw.strip() else raw
    except yaml.YAMLError:
        return raw
    if isinstance(value, str):
        # PyYAML reads "1e-3" as a string
        try:
            return float(value)
        except ValueError:
            return value
    return value


def _nest(dotted_key: str, value: Any) -> Dict[str, Any]:
    parts = [p for p in dotted_key.strip().split(".") if p]
    if not parts:
        raise ValueError(f"Empty override key in '{dotted_key}'")
    nested: Dict[str, Any] = {parts[-1]: value}
    for part in reversed(parts[:-1]):
        nested = {part: nested}
    return nested


def apply_overrides(config: Mapping[str, Any], overrides: Iterable[str]) -> Dict[str, Any]:
    """Apply ``section.key=value`` strings on top of ``config`` (which is left untouched)."""
    updated = copy.deepcopy(dict(config))
    for override in overrides:
        key, sep, raw_value = override.partition("=")
        if not sep:
            raise ValueError(f"Invalid override '{override}'. Expected format key=value")
        updated = deep_update(updated, _nest(key, _parse_override(raw_value)))
    return updated


def generate_run_directory(base_dir: Path, name: str, *, now: Optional[datetime] = None) -> Path:
    """Create ``<base_dir>/<UTC timestamp>_<name>``, suffixing a counter on collision."""
    slug = re.sub(r"[^A-Za-z0-9_\-]", "_", name)
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
    base_dir = Path(base_dir)
    base_dir.mkdir(parents=True, exist_ok=True)
    candidate = base_dir / f"{stamp}_{slug}"
    suffix = 0
    while candidate.exists():
        suffix += 1
        candidate = base_dir / f"{stamp}_{slug}_{suffix:02d}"
    candidate.mkdir(parents=True)
    return candidate


def set_reproducibility(seed: int) -> None:
    random.seed(seed)
    np.random.seed(seed % (2**32))


__all__ = [
    "load_yaml",
    "save_yaml",
    "save_json",
    "apply_overrides",
    "deep_update",
    "generate_run_directory",
    "set_reproducibility",
]
