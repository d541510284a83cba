from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from canstats.config_validator import ConfigValidationError, validate_config
from canstats.logger import setup_logging
from canstats.utils import apply_overrides, deep_update, generate_run_directory, load_yaml


def _queue_config(**queue):
    base = {"arrival_rate": 2.0, "service_rate": 1.0, "servers": 3, "duration": 50.0}
    base.update(queue)
    return {"experiment": {"name": "q", "random_seed": 1, "task": "queue"}, "queue": base}


def test_apply_overrides_types_values():
    config = {"queue": {"servers": 2}}
    updated = apply_overrides(config, ["queue.servers=4", "queue.dt=0.05", "logging.file=false", "experiment.name=abc"])
    assert updated["queue"]["servers"] == 4
    assert updated["queue"]["dt"] == pytest.approx(0.05)
    assert updated["logging"]["file"] is False
    assert updated["experiment"]["name"] == "abc"
    assert config["queue"]["servers"] == 2


def test_apply_overrides_requires_equals():
    with pytest.raises(ValueError):
        apply_overrides({}, ["queue.servers"])


def test_deep_update_merges_nested():
    merged = deep_update({"a": {"b": 1, "c": 2}}, {"a": {"c": 3}, "d": 4})
    assert merged == {"a": {"b": 1, "c": 3}, "d": 4}


def test_load_yaml_empty_and_non_mapping(tmp_path):
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_yaml(empty) == {}
    listing = tmp_path / "list.yaml"
    listing.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_yaml(listing)


def test_generate_run_directory_suffixes_on_collision(tmp_path):
    now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    first = generate_run_directory(tmp_path, "my run", now=now)
    second = generate_run_directory(tmp_path, "my run", now=now)
    assert first.name == "20240501_120000_my_run"
    assert second.name == "20240501_120000_my_run_01"


def test_setup_logging_does_not_stack_handlers(tmp_path):
    setup_logging("INFO", log_dir=tmp_path)
    logger = setup_logging("DEBUG", log_dir=tmp_path)
    assert len(logger.handlers) == 2
    assert logger.level == logging.DEBUG
    logger.info("hello")
    for handler in logger.handlers:
        handler.flush()
    assert "INFO: hello" in (tmp_path / "logs.txt").read_text(encoding="utf-8")


def test_validate_queue_config_accepts_valid():
    validate_config(_queue_config(warmup=5.0, sweep={"servers": [2, 3]}))


@pytest.mark.parametrize(
    "queue, message",
    [
        ({"servers": 0}, "queue.servers"),
        ({"arrival_rate": -1.0}, "queue.arrival_rate"),
        ({"warmup": 60.0}, "queue.warmup"),
        ({"sweep": {"servers": []}}, "queue.sweep.servers"),
    ],
)
def test_validate_queue_config_rejects(queue, message):
    with pytest.raises(ConfigValidationError, match=message):
        validate_config(_queue_config(**queue))


def test_validate_rejects_unknown_task():
    with pytest.raises(ConfigValidationError, match="experiment.task"):
        validate_config({"experiment": {"name": "x", "random_seed": 1, "task": "train"}})


def test_validate_forecast_requires_one_source(tmp_path):
    config = {
        "experiment": {"name": "f", "random_seed": 1, "task": "forecast"},
        "data": {"product_id": "18-10-0004-01", "source": "x.csv"},
        "model": {"type": "naive", "forecast": {"horizon": 3}},
    }
    with pytest.raises(ConfigValidationError, match="exactly one"):
        validate_config(config, config_path=tmp_path / "c.yaml")


def test_validate_forecast_model_type_and_candidates(tmp_path):
    config = {
        "experiment": {"name": "f", "random_seed": 1, "task": "forecast"},
        "data": {"product_id": "18-10-0004-01"},
        "model": {"type": "best", "forecast": {"horizon": 3}},
    }
    with pytest.raises(ConfigValidationError, match="candidates"):
        validate_config(config)
    config["model"]["type"] = "prophet"
    with pytest.raises(ConfigValidationError, match="model.type"):
        validate_config(config)


def test_validate_shipped_configs(project_root):
    for path in sorted((project_root / "configs").glob("*.yaml")):
        validate_config(load_yaml(path), config_path=path, project_root=project_root)


def test_apply_overrides_parses_lists_and_exponents():
    updated = apply_overrides({"queue": {"sweep": {"replications": 5}}}, ["queue.sweep.servers=[2, 3, 4]", "queue.dt=1e-3"])
    assert updated["queue"]["sweep"] == {"replications": 5, "servers": [2, 3, 4]}
    assert updated["queue"]["dt"] == pytest.approx(0.001)
