"""Configuration loading from an optional YAML file, env vars, and CLI args."""

import argparse
import logging
import os
from dataclasses import dataclass, fields, replace

import yaml

from log_aggregator.scanner import TASK_RESULTS

logger = logging.getLogger(__name__)


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


@dataclass(frozen=True)
class Config:
    temp_root: str = "./temp_files"
    output_dir: str = ""                 # empty -> <temp_root>/processed
    batch_size: int = 50
    max_workers: int = 0                 # 0 -> batch_size
    continue_on_error: bool = True
    timeout_seconds: float = 300.0
    max_log_bytes: int = 50 * 1024 * 1024  # 50 MiB
    write_retries: int = 3
    write_backoff_seconds: float = 0.2
    security_modules: tuple = ("TelemetryDisable", "SystemOptimization")
    task_results_file: str = ""          # empty -> <temp_root>/data/task-results.json
    log_level: str = "INFO"

    @property
    def processed_dir(self) -> str:
        return self.output_dir or os.path.join(self.temp_root, "processed")

    @property
    def task_results_path(self) -> str:
        return self.task_results_file or os.path.join(self.temp_root, "data", TASK_RESULTS)

    @property
    def worker_count(self) -> int:
        return self.max_workers if self.max_workers > 0 else self.batch_size


# env var -> (field, converter)
_ENV_OVERRIDES = {
    "AGGREGATOR_TEMP_ROOT": ("temp_root", str),
    "AGGREGATOR_OUTPUT_DIR": ("output_dir", str),
    "AGGREGATOR_BATCH_SIZE": ("batch_size", int),
    "AGGREGATOR_MAX_WORKERS": ("max_workers", int),
    "AGGREGATOR_CONTINUE_ON_ERROR": ("continue_on_error", _parse_bool),
    "AGGREGATOR_TIMEOUT_SECONDS": ("timeout_seconds", float),
    "AGGREGATOR_MAX_LOG_BYTES": ("max_log_bytes", int),
    "AGGREGATOR_WRITE_RETRIES": ("write_retries", int),
    "AGGREGATOR_WRITE_BACKOFF": ("write_backoff_seconds", float),
    "AGGREGATOR_TASK_RESULTS": ("task_results_file", str),
    "AGGREGATOR_LOG_LEVEL": ("log_level", lambda v: v.strip().upper()),
}


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns an empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        logger.warning("Invalid YAML in %s, using defaults: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, using defaults", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    return data


def _from_yaml(cfg: Config, data: dict) -> Config:
    known = {f.name: f for f in fields(Config)}
    updates = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        default = getattr(Config, key, None)
        try:
            if key == "security_modules":
                updates[key] = tuple(str(v) for v in (value or []))
            elif isinstance(default, bool):
                updates[key] = _parse_bool(value)
            elif isinstance(default, int):
                updates[key] = int(value)
            elif isinstance(default, float):
                updates[key] = float(value)
            else:
                updates[key] = str(value)
        except (TypeError, ValueError):
            logger.warning("Invalid value for config key %r: %r", key, value)
    return replace(cfg, **updates)


def _from_env(cfg: Config) -> Config:
    updates = {}
    for env_key, (name, convert) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_key)
        if raw is None:
            continue
        try:
            updates[name] = convert(raw)
        except ValueError:
            logger.warning("Invalid value for %s: %r", env_key, raw)
    return replace(cfg, **updates)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="log-aggregator",
        description="Aggregate maintenance module logs and audit snapshots into processed JSON documents.",
    )
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument("--temp-root", default=None, help="Root holding data/ and logs/ (default: ./temp_files)")
    parser.add_argument("--output-dir", default=None, help="Where processed documents go (default: <temp-root>/processed)")
    parser.add_argument("--batch-size", type=int, default=None, help="Modules analyzed per batch (default: 50)")
    parser.add_argument("--timeout", type=float, default=None, help="Overall deadline in seconds (default: 300)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    return parser


def load_config(argv=None) -> Config:
    """Build Config from defaults, YAML, env vars, then CLI flags (later wins).

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = build_arg_parser().parse_args(argv)

    cfg = _from_yaml(Config(), load_yaml_config(args.config))
    cfg = _from_env(cfg)

    cli = {
        "temp_root": args.temp_root,
        "output_dir": args.output_dir,
        "batch_size": args.batch_size,
        "timeout_seconds": args.timeout,
        "log_level": args.log_level.upper() if args.log_level else None,
    }
    cfg = replace(cfg, **{k: v for k, v in cli.items() if v is not None})

    if cfg.batch_size < 1:
        logger.warning("batch_size %d is invalid, using 50", cfg.batch_size)
        cfg = replace(cfg, batch_size=50)
    if cfg.max_workers < 0:
        logger.warning("max_workers %d is invalid, using batch size", cfg.max_workers)
        cfg = replace(cfg, max_workers=0)
    return cfg
