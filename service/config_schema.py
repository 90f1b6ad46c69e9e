# service/config_schema.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config is invalid."""


@dataclass
class _LoadResult:
    """Internal convenience container (not required by callers)."""

    cfg: dict[str, Any]
    source: str


_TRIGGER_FIELDS = ("interval", "cron")
_INTERVAL_FIELDS = ("weeks", "days", "hours", "minutes", "seconds")

DEFAULT_SCHEDULE: dict[str, Any] = {"interval": {"minutes": 5}}
DEFAULT_FIRST_RUN_DELAY_SECONDS = 5
DEFAULT_HISTORY_SIZE = 20


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the service configuration.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['CONFIG_PATH'] (if set)
      3) Internal default (5-minute interval, default harvest settings)

    Returns:
        dict with "timezone", "schedule", "first_run_delay_seconds",
        "history_size" and "harvest" (kwargs for the harvest module).
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if not resolved_path:
        logger.info("CONFIG_PATH not provided; using default config.")
        cfg: dict[str, Any] = {}
    else:
        cfg = _read_any(resolved_path).cfg

    _apply_top_level_defaults(cfg)
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate the configuration. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    schedule = cfg.get("schedule")
    if not isinstance(schedule, dict):
        raise ConfigError("'schedule' must be an object.")
    present = [k for k in _TRIGGER_FIELDS if schedule.get(k) is not None]
    if len(present) != 1:
        raise ConfigError(f"'schedule' needs exactly one of: {', '.join(_TRIGGER_FIELDS)}.")

    if "interval" in present:
        iv = schedule["interval"]
        if not isinstance(iv, dict):
            raise ConfigError("'schedule.interval' must be an object of time fields.")
        unknown = set(iv) - set(_INTERVAL_FIELDS)
        if unknown:
            raise ConfigError(f"'schedule.interval' has unknown field(s): {sorted(unknown)}")
        total = sum(_to_int(v, field=f"schedule.interval.{k}", allow_zero=True) for k, v in iv.items())
        if total <= 0:
            raise ConfigError("'schedule.interval' must be greater than zero.")
    else:
        cron = schedule["cron"]
        if not isinstance(cron, (str, dict)):
            raise ConfigError("'schedule.cron' must be a crontab string or an object.")

    _to_int(cfg.get("first_run_delay_seconds"), field="first_run_delay_seconds", allow_zero=True)
    _to_int(cfg.get("history_size"), field="history_size", allow_zero=False)

    harvest = cfg.get("harvest")
    if not isinstance(harvest, dict):
        raise ConfigError("'harvest' must be an object of module kwargs.")

    # Surface harvest setting errors at config time rather than on the first tick.
    from modules.job_harvest.lib.config import ConfigError as HarvestConfigError
    from modules.job_harvest.lib.config import Settings

    try:
        Settings.from_env_and_kwargs(harvest)
    except HarvestConfigError as e:
        raise ConfigError(f"'harvest': {e}") from e


def _apply_top_level_defaults(cfg: dict[str, Any]) -> None:
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    if cfg.get("schedule") is None:
        cfg["schedule"] = dict(DEFAULT_SCHEDULE)

    cfg.setdefault("first_run_delay_seconds", DEFAULT_FIRST_RUN_DELAY_SECONDS)
    cfg.setdefault("history_size", DEFAULT_HISTORY_SIZE)

    harvest = cfg.get("harvest")
    if harvest is None:
        cfg["harvest"] = {}
    elif not isinstance(harvest, dict):
        raise ConfigError("'harvest' must be an object of module kwargs.")
    else:
        cfg["harvest"] = dict(harvest)


def _to_int(value: Any, *, field: str, allow_zero: bool) -> int:
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"'{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _read_any(path: str) -> _LoadResult:
    lower = path.lower()
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if lower.endswith(".yml") or lower.endswith(".yaml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Top-level YAML must be a mapping/object.")
        return _LoadResult(cfg=data, source=path)

    # JSON for .json and unknown extensions
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Top-level JSON must be an object.")
    return _LoadResult(cfg=data, source=path)
