from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from .config_validator import ConfigValidationError, resolve_input_paths, validate_config
from .data_loader import generate_rolling_windows, load_timeseries
from .download import download_and_extract, fetch_statcan_table, normalize_product_id, statcan_cache_dir
from .forecasting import build_model, select_best_model
from .logger import setup_logging
from .metrics import evaluate_metrics
from .utils import apply_overrides, generate_run_directory, load_yaml, save_json, save_yaml, set_reproducibility


DEFAULT_METRICS = ["mae", "rmse", "mase", "coverage_80", "coverage_95"]


@dataclass
class RunContext:
    config: Dict[str, object]
    run_dir: Path
    task: str


class AnalysisRunner:
    def __init__(
        self,
        *,
        config_path: Path,
        overrides: Iterable[str] | None = None,
        results_dir: Optional[Path] = None,
        verbose: bool = False,
    ) -> None:
        self.config_path = Path(config_path)
        config_dir = self.config_path.resolve().parent
        # relative paths in configs/ are written against the project root
        self.base_dir = config_dir.parent if config_dir.name == "configs" else config_dir
        self.overrides = list(overrides or [])
        self.results_dir = results_dir or self.base_dir / "results"
        self.verbose = verbose
        self.logger: logging.Logger = logging.getLogger("canstats")
        self.ctx: Optional[RunContext] = None

    def _load_config(self) -> Dict[str, object]:
        config = load_yaml(self.config_path)
        if self.overrides:
            config = apply_overrides(config, self.overrides)
        return config

    def setup(self) -> RunContext:
        config = self._load_config()
        try:
            validate_config(config, config_path=str(self.config_path), project_root=self.base_dir)
        except ConfigValidationError as exc:
            raise SystemExit(f"Configuration error: {exc}") from exc
        # validation and loading must agree on where relative inputs live
        config = resolve_input_paths(config, config_path=self.config_path, project_root=self.base_dir)
        run_dir = generate_run_directory(self.results_dir, str(config["experiment"]["name"]))
        logging_cfg = config.get("logging", {}) or {}
        self.logger = setup_logging(
            "DEBUG" if self.verbose else logging_cfg.get("level", "INFO"),
            log_dir=run_dir,
            console=logging_cfg.get("console", True),
            file=logging_cfg.get("file", True),
            capture_warnings=bool(logging_cfg.get("capture_warnings", False)),
        )
        self.logger.info("Run directory: %s", run_dir)
        save_yaml(run_dir / "config.yaml", config)
        set_reproducibility(int(config["experiment"]["random_seed"]))
        self.ctx = RunContext(config=config, run_dir=run_dir, task=str(config["experiment"]["task"]))
        return self.ctx

    def run(self) -> Dict[str, object]:
        if self.ctx is None:
            self.setup()
        handlers = {
            "download": self.run_download,
            "forecast": self.run_forecast,
            "queue": self.run_queue,
            "map": self.run_map,
        }
        summary: Dict[str, object] = {
            "experiment": self.ctx.config["experiment"]["name"],
            "task": self.ctx.task,
            "run_dir": str(self.ctx.run_dir),
        }
        summary.update(handlers[self.ctx.task]())
        save_json(self.ctx.run_dir / "summary.json", summary)
        self.logger.info("Finished %s task; outputs in %s", self.ctx.task, self.ctx.run_dir)
        return summary

    def _resolve(self, value: object) -> Path:
        path = Path(str(value))
        return path if path.is_absolute() else self.base_dir / path

    def run_download(self) -> Dict[str, object]:
        cfg = self.ctx.config["download"]
        cache_dir = self._resolve(cfg.get("cache_dir", "data/statcan"))
        language = str(cfg.get("language", "en"))
        manifest: List[Dict[str, object]] = []
        for pid in cfg.get("tables", []) or []:
            table = fetch_statcan_table(pid, cache_dir, language=language, overwrite=bool(cfg.get("overwrite", False)))
            table_id = normalize_product_id(pid)
            manifest.append({"product_id": table_id, "rows": len(table), "columns": list(table.columns), "path": str(statcan_cache_dir(table_id, cache_dir, language))})
        for url in cfg.get("urls", []) or []:
            files = download_and_extract(url, cache_dir / "files", overwrite=bool(cfg.get("overwrite", False)))
            manifest.append({"url": url, "files": [str(f) for f in files]})
        save_json(self.ctx.run_dir / "manifest.json", manifest)
        return {"downloads": len(manifest)}

    def _backtest(self, series: pd.Series, model_cfg: Dict[str, object], eval_cfg: Dict[str, object], horizon: int) -> Dict[str, object]:
        rolling = eval_cfg.get("rolling", {}) or {}
        metric_names = list(eval_cfg.get("metrics", DEFAULT_METRICS))
        season_length = int(model_cfg.get("season_length", 1))
        model_type = str(model_cfg["type"])
        if model_type == "best":
            model_type = str(model_cfg["candidates"][0])
            self.logger.info("Backtesting with first candidate '%s'", model_type)
        records = []
        for train, test, as_of in generate_rolling_windows(
            series,
            min_train=int(rolling.get("min_train", max(3, len(series) // 2))),
            step_size=int(rolling.get("step_size", horizon)),
            horizon=horizon,
        ):
            model = build_model(model_type, model_cfg)
            output = model.backtest_forecast(train, test)
            scores = evaluate_metrics(test, output.bundle, metric_names, train=train, season_length=season_length)
            records.append({"as_of": as_of, "model": model.describe(), **scores})
            self.logger.info("Backtest origin %s: %s", as_of.date() if hasattr(as_of, "date") else as_of, {k: round(v, 4) for k, v in scores.items() if isinstance(v, float)})
        if not records:
            self.logger.warning("Series too short for any backtest window")
            return {}
        frame = pd.DataFrame(records)
        frame.to_csv(self.ctx.run_dir / "backtest.csv", index=False)
        return {name: float(frame[name].mean(skipna=True)) for name in metric_names if name in frame}

    def run_forecast(self) -> Dict[str, object]:
        from .visualization import plot_forecast

        config = self.ctx.config
        series = load_timeseries(config["data"], self.base_dir, cache_dir=self._resolve(config["data"].get("cache_dir", "data/statcan")))
        model_cfg = dict(config["model"])
        horizon = int(model_cfg["forecast"]["horizon"])
        eval_cfg = config.get("evaluation", {}) or {}

        metrics: Dict[str, object] = {}
        if (eval_cfg.get("rolling", {}) or {}).get("enabled"):
            metrics = self._backtest(series, model_cfg, eval_cfg, horizon)
        save_json(self.ctx.run_dir / "metrics.json", metrics)

        if model_cfg["type"] == "best":
            model, table = select_best_model(
                series,
                list(model_cfg["candidates"]),
                holdout=int(eval_cfg.get("holdout", horizon)),
                metric=str(eval_cfg.get("selection_metric", "mase")),
                config=model_cfg,
            )
            table.to_csv(self.ctx.run_dir / "selection.csv", index=False)
        else:
            model = build_model(str(model_cfg["type"]), model_cfg).fit(series)
        output = model.forecast(horizon)
        self.logger.info("Forecast model: %s", model.describe())

        output.bundle.to_frame().rename_axis("date").to_csv(self.ctx.run_dir / "forecast.csv")
        plot_forecast(
            series,
            output.bundle,
            title=str(config["experiment"].get("description") or config["experiment"]["name"]),
            ylabel=str(config["data"].get("label", "Value")),
            save_path=self.ctx.run_dir / "forecast.png",
        )
        return {"model": model.describe(), "aicc": model.aicc if np.isfinite(model.aicc) else None, "horizon": horizon, "n_obs": len(series), "metrics": metrics}

    def run_queue(self) -> Dict[str, object]:
        from .queueing import QueueParams, erlang_c, min_servers_for_target, run_replications, simulate_mmk, summarize_replications, sweep_servers
        from .visualization import plot_server_sweep, plot_wait_distribution

        cfg = self.ctx.config["queue"]
        seed = int(self.ctx.config["experiment"]["random_seed"])
        params = QueueParams.from_config(cfg)
        n_jobs = int(cfg.get("n_jobs", 1))
        replications = int(cfg.get("replications", 1))

        reps = run_replications(params, replications, seed=seed, n_jobs=n_jobs, progress=True)
        reps.to_csv(self.ctx.run_dir / "replications.csv", index=False)
        summary = summarize_replications(reps, float(cfg.get("confidence", 0.95)))
        summary.to_csv(self.ctx.run_dir / "summary.csv")
        analytic = erlang_c(params.arrival_rate, params.service_rate, params.servers)
        self.logger.info(
            "Mean wait %.4f ± %.4f (Erlang C %.4f), utilization %.3f",
            summary.loc["mean_wait", "mean"], summary.loc["mean_wait", "ci_half_width"], analytic.wq, summary.loc["utilization", "mean"],
        )
        plot_wait_distribution(simulate_mmk(params, seed), save_path=self.ctx.run_dir / "waits.png")

        result: Dict[str, object] = {
            "rho": params.utilization,
            "simulated": summary["mean"].to_dict(),
            "ci_half_width": summary["ci_half_width"].to_dict(),
            "erlang_c": analytic.to_dict(),
        }
        target = cfg.get("target_wait")
        if target is not None:
            try:
                result["min_servers_for_target"] = min_servers_for_target(params.arrival_rate, params.service_rate, float(target))
            except ValueError as exc:
                self.logger.warning("%s", exc)
                result["min_servers_for_target"] = None
        sweep_cfg = cfg.get("sweep", {}) or {}
        if sweep_cfg.get("servers"):
            sweep = sweep_servers(params, sweep_cfg["servers"], int(sweep_cfg.get("replications", replications)), seed=seed, n_jobs=n_jobs)
            sweep.to_csv(self.ctx.run_dir / "sweep.csv", index=False)
            plot_server_sweep(sweep, target_wait=float(target) if target is not None else None, save_path=self.ctx.run_dir / "sweep.png")
            result["sweep"] = sweep.to_dict(orient="records")
        return result

    def run_map(self) -> Dict[str, object]:
        from .choropleth import build_lico_map

        cfg = dict(self.ctx.config["map"])
        joined, _ = build_lico_map(cfg, self.base_dir, save_path=self.ctx.run_dir / "map.png")
        value_col = str(cfg["value_column"])
        joined.drop(columns="geometry").to_csv(self.ctx.run_dir / "joined.csv", index=False)
        return {
            "areas": len(joined),
            "areas_with_value": int(joined[value_col].notna().sum()),
            "value_min": float(joined[value_col].min()) if joined[value_col].notna().any() else None,
            "value_max": float(joined[value_col].max()) if joined[value_col].notna().any() else None,
        }


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run canstats analyses from YAML configs")
    parser.add_argument("--config", nargs="+", required=True, help="Path(s) to YAML config")
    parser.add_argument("--override", action="append", default=[], help="Override config values, e.g. queue.servers=4")
    parser.add_argument("--task", choices=["download", "forecast", "queue", "map"], help="Override experiment.task")
    parser.add_argument("--results-dir", type=str, help="Where run directories are created (default: <project>/results)")
    parser.add_argument("--verbose", action="store_true", help="Debug logging and print the summary")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    overrides = list(args.override)
    if args.task:
        overrides.append(f"experiment.task={args.task}")
    for config_path in args.config:
        runner = AnalysisRunner(
            config_path=Path(config_path),
            overrides=overrides,
            results_dir=Path(args.results_dir) if args.results_dir else None,
            verbose=args.verbose,
        )
        runner.setup()
        summary = runner.run()
        if args.verbose:
            print(json.dumps(summary, indent=2, ensure_ascii=False, default=str))


if __name__ == "__main__":
    main()
