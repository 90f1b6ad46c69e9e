# service/scheduler.py
from __future__ import annotations

import functools
import logging
import math
import os
import random
import threading
import time as _time
from collections import deque
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

JOB_ID = "job_harvest"
INITIAL_JOB_ID = "job_harvest_initial"

DEFAULT_INTERVAL = timedelta(minutes=5)
DEFAULT_FIRST_RUN_DELAY = timedelta(seconds=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---- Scheduler ---------------------------------------------------------------


class HarvestScheduler:
    """
    Recurring harvest runs on a fixed period, plus one run shortly after start.

    Stopped -> Running -> Stopped. start()/stop() are idempotent. Runs never
    overlap: APScheduler is told max_instances=1 and tick() itself skips (not
    queues) when a run is still in flight. A run that raises is counted as
    failed and the schedule carries on.
    """

    def __init__(
        self,
        run_fn: Callable[[], Any],
        *,
        interval: timedelta = DEFAULT_INTERVAL,
        trigger: Any = None,
        first_run_delay: timedelta = DEFAULT_FIRST_RUN_DELAY,
        evict_fn: Callable[[], int] | None = None,
        evict_probability: float = 0.1,
        history_size: int = 20,
        tz: Any = timezone.utc,
        clock: Callable[[], datetime] = _utcnow,
        rng: random.Random | None = None,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self._run_fn = run_fn
        self.interval = interval
        self._custom_trigger = trigger
        self.first_run_delay = first_run_delay
        self._evict_fn = evict_fn
        self._evict_probability = evict_probability
        self._tz = tz
        self._clock = clock
        self._rng = rng or random.Random()
        self._injected = scheduler
        self._scheduler: BackgroundScheduler | None = None

        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._stopped_evt = threading.Event()
        self._running = False

        self._anchor: datetime | None = None
        self._initial_at: datetime | None = None
        self._initial_done = False
        self._trigger: Any = None

        self._stats: dict[str, Any] = {
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "skipped_runs": 0,
            "last_error": None,
        }
        self._last_run: dict[str, Any] | None = None
        self.history: deque[dict[str, Any]] = deque(maxlen=max(1, history_size))

    # ---- lifecycle ----
    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """Start the schedule. Returns False (and warns) if already running."""
        with self._state_lock:
            if self._running:
                LOG.warning("Harvest scheduler already running; start() ignored.")
                return False

            now = self._clock()
            self._anchor = now
            self._initial_at = now + self.first_run_delay
            self._initial_done = False
            self._trigger = self._custom_trigger or IntervalTrigger(
                seconds=int(self.interval.total_seconds()),
                start_date=now + self.interval,
                timezone=self._tz,
            )

            sched = self._injected or _new_background_scheduler(self._tz)
            sched.add_job(
                func=self.tick,
                trigger=self._trigger,
                id=JOB_ID,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            sched.add_job(
                func=self._initial_tick,
                trigger=DateTrigger(run_date=self._initial_at, timezone=self._tz),
                id=INITIAL_JOB_ID,
                max_instances=1,
                replace_existing=True,
            )
            sched.start()
            self._scheduler = sched
            self._running = True
            self._stopped_evt.clear()

        LOG.info(
            "Harvest scheduler started (first run %s, then %s)",
            self._initial_at.isoformat(),
            self._describe_trigger(),
        )
        return True

    def stop(self) -> bool:
        """Stop the schedule. In-flight runs finish on their own. Returns False if not running."""
        with self._state_lock:
            if not self._running:
                return False
            sched = self._scheduler
            self._running = False
            self._scheduler = None
        if sched is not None and getattr(sched, "running", True):
            LOG.info("Shutting down harvest scheduler...")
            sched.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Harvest scheduler stopped.")
        return True

    def join(self, timeout: float | None = None) -> bool:
        """Block until stop() has been called (or timeout)."""
        return self._stopped_evt.wait(timeout=timeout)

    # ---- runs ----
    def _initial_tick(self) -> dict[str, Any] | None:
        self._initial_done = True
        return self.tick()

    def tick(self) -> dict[str, Any] | None:
        """
        Execute one harvest run now and record its outcome.
        Returns the run summary, or None if a run was already in flight.
        """
        if not self._run_lock.acquire(blocking=False):
            with self._state_lock:
                self._stats["skipped_runs"] += 1
            LOG.warning("Harvest run still in flight; skipping this tick.")
            return None
        try:
            self._maybe_evict()
            return self._execute()
        finally:
            self._run_lock.release()

    def _execute(self) -> dict[str, Any]:
        started_at = self._clock()
        t0 = _time.monotonic()
        error: str | None = None
        result: Mapping[str, Any] = {}

        try:
            raw = self._run_fn()
            result = _as_mapping(raw)
            ok = result.get("status", "success") == "success"
            if not ok:
                error = result.get("error") or "run failed"
        except Exception as e:
            LOG.exception("Harvest run raised an exception.")
            ok = False
            error = f"{type(e).__name__}: {e}"

        duration_ms = int((_time.monotonic() - t0) * 1000)

        summary = {
            "time": started_at.isoformat(),
            "status": "success" if ok else "failed",
            "duration_ms": duration_ms,
            "jobs_found": int(result.get("urls_discovered") or 0),
            "new_jobs": int(result.get("new_jobs") or 0),
            "skipped_jobs": int(result.get("skipped_already_seen") or 0),
            "failed_extractions": int(result.get("failed_extractions") or 0),
            "written": int(result.get("written") or 0),
            "error": error,
        }
        with self._state_lock:
            self._stats["total_runs"] += 1
            if ok:
                self._stats["successful_runs"] += 1
            else:
                self._stats["failed_runs"] += 1
                self._stats["last_error"] = error
            self._last_run = summary
            self.history.append(summary)
        _write_activity(summary)
        LOG.info("Harvest run %s in %d ms (new=%d)", summary["status"], duration_ms, summary["new_jobs"])
        return summary

    def _maybe_evict(self) -> None:
        if self._evict_fn is None or self._rng.random() >= self._evict_probability:
            return
        try:
            removed = self._evict_fn()
            LOG.info("Retention sweep removed %s record(s).", removed)
        except Exception:
            LOG.exception("Retention sweep failed; continuing with the run.")

    # ---- status ----
    def status(self) -> dict[str, Any]:
        next_run = self.next_run_time() if self._running else None
        with self._state_lock:
            last_run = dict(self._last_run) if self._last_run else None
            stats = dict(self._stats)
        return {
            "is_running": self._running,
            "last_run": last_run,
            "stats": stats,
            "next_run": next_run.isoformat() if next_run else None,
        }

    def next_run_time(self) -> datetime | None:
        """Earliest upcoming run strictly after now (pending initial run included)."""
        if not self._running or self._anchor is None:
            return None
        now = self._clock()
        candidates: list[datetime] = []
        if not self._initial_done and self._initial_at is not None and self._initial_at > now:
            candidates.append(self._initial_at)

        if self._custom_trigger is None:
            period = self.interval.total_seconds()
            elapsed = (now - self._anchor).total_seconds()
            k = max(1, math.floor(elapsed / period) + 1)
            candidates.append(self._anchor + timedelta(seconds=k * period))
        else:
            nxt = self._trigger.get_next_fire_time(None, now)
            if nxt is not None and nxt <= now:
                nxt = self._trigger.get_next_fire_time(nxt, now + timedelta(microseconds=1))
            if nxt is not None:
                candidates.append(nxt)
        return min(candidates) if candidates else None

    def _describe_trigger(self) -> str:
        if self._custom_trigger is None:
            return f"every {self.interval}"
        return str(self._custom_trigger)


# ---- Module API -------------------------------------------------------------


def build_from_config(cfg: dict[str, Any], **overrides: Any) -> HarvestScheduler:
    """Translate a loaded service config into a (not yet started) HarvestScheduler."""
    from modules.job_harvest import main as harvest

    tz = _resolve_timezone(cfg)
    schedule = cfg.get("schedule") or dict(config_schema.DEFAULT_SCHEDULE)
    harvest_kwargs = dict(cfg.get("harvest") or {})

    trigger = None
    interval = DEFAULT_INTERVAL
    if "interval" in schedule:
        interval = _interval_from(schedule["interval"])
    else:
        trigger = _build_trigger(schedule, tz)

    params: dict[str, Any] = {
        "interval": interval,
        "trigger": trigger,
        "first_run_delay": timedelta(seconds=_int_or(cfg.get("first_run_delay_seconds"), 5)),
        "evict_fn": functools.partial(harvest.evict, **harvest_kwargs),
        "evict_probability": float(harvest_kwargs.get("evict_probability", 0.1)),
        "history_size": _int_or(cfg.get("history_size"), 20),
        "tz": tz,
    }
    params.update(overrides)
    return HarvestScheduler(functools.partial(harvest.run, **harvest_kwargs), **params)


def start(config_path: str | None = None) -> HarvestScheduler:
    """
    Load configuration, build the harvest scheduler, and start it.
    Returns the running HarvestScheduler (stop()/join()/status()).

    Notes:
      * APScheduler 3.x prefers a pytz scheduler timezone; we keep it as pytz.
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    sched = build_from_config(cfg)
    sched.start()
    return sched


# ---- Helpers ----------------------------------------------------------------


def _new_background_scheduler(tz: Any) -> BackgroundScheduler:
    return BackgroundScheduler(
        timezone=tz,
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(2)},
        jobstores={"default": MemoryJobStore()},
    )


def _resolve_timezone(cfg: dict[str, Any]):
    """
    APScheduler 3.x expects a pytz timezone. We accept either:
    - config['timezone'] (e.g., 'Asia/Riyadh')
    - env TZ
    - default to UTC
    """
    import pytz

    tz_name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid or missing tz '%s')", tz_name)
        return pytz.UTC


def _interval_from(spec: Mapping[str, Any]) -> timedelta:
    if not isinstance(spec, Mapping):
        raise ValueError("interval must be an object with time fields")
    allowed = {"weeks", "days", "hours", "minutes", "seconds"}
    unknown = set(spec) - allowed
    if unknown:
        raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")
    parts = {}
    for name in allowed:
        if name not in spec:
            continue
        try:
            v = int(spec[name])
        except (TypeError, ValueError) as err:
            raise ValueError(f"interval.{name} must be an integer") from err
        if v < 0:
            raise ValueError(f"interval.{name} must be >= 0")
        parts[name] = v
    td = timedelta(**parts)
    if td <= timedelta(0):
        raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")
    return td


def _build_trigger(trig_def: dict[str, Any], tz: Any) -> Any:
    """
    Build an APScheduler trigger from a dict.

    Supported shapes:
      {"interval": {weeks|days|hours|minutes|seconds}}
      {"cron":     {second?, minute?, hour?, day?, day_of_week?, month?}}
      {"cron":     "*/15 * * * *"}  # crontab, scheduler tz
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")

    present = [k for k in ("interval", "cron") if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError("exactly one of {'interval','cron'} must be provided")

    if present[0] == "interval":
        td = _interval_from(trig_def["interval"])
        return IntervalTrigger(seconds=int(td.total_seconds()), timezone=tz)

    cron_spec = trig_def["cron"]
    if isinstance(cron_spec, str):
        fields = cron_spec.strip().split()
        if len(fields) != 5:
            raise ValueError(f"cron string must have 5 fields (got {len(fields)}): {cron_spec!r}")
        return CronTrigger.from_crontab(cron_spec, timezone=tz)
    if isinstance(cron_spec, dict):
        allowed = {"second", "minute", "hour", "day", "day_of_week", "month"}
        unknown = set(cron_spec) - allowed
        if unknown:
            raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")
        return CronTrigger(
            second=cron_spec.get("second", 0),
            minute=cron_spec.get("minute", 0),
            hour=cron_spec.get("hour"),
            day=cron_spec.get("day"),
            day_of_week=cron_spec.get("day_of_week"),
            month=cron_spec.get("month"),
            timezone=tz,
        )
    raise ValueError("cron must be a crontab string or an object")


def _as_mapping(result: Any) -> Mapping[str, Any]:
    if result is None:
        return {}
    if isinstance(result, Mapping):
        return result
    to_dict = getattr(result, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"harvest run returned {type(result).__name__}, expected a run summary")


def _write_activity(summary: dict[str, Any]) -> None:
    """Best-effort JSONL activity logging; non-fatal on errors."""
    try:
        write_activity_log({
            "ts": _utcnow().isoformat(),
            "source": "scheduler",
            "event": "run_finished",
            "fields": summary,
        })
    except (OSError, TypeError, ValueError):
        LOG.debug("write_activity_log failed for harvest run", exc_info=True)


def _int_or(v: Any, default: int) -> int:
    """Return int(v) or default if v is None/invalid (lenient for config)."""
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default
