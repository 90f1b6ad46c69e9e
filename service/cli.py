# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the harvest scheduler via service.scheduler.start()
    - Registers signal handlers for graceful shutdown

run [--kwargs k=v ...]
    - Executes one harvest run now and prints its summary as JSON
    - Exit code 0 on a successful run, 1 on a failed one

evict [--days N] [--kwargs k=v ...]
    - Runs the dedup retention sweep now

store-stats [--kwargs k=v ...]
    - Prints dedup store statistics as JSON

validate-config
    - Loads/validates config and returns nonzero on error
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from modules.job_harvest import main as _harvest
from modules.job_harvest.lib.config import ConfigError as HarvestConfigError
from service import config_schema as _config_schema
from service import logging_utils as L
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict.
    - Values that look like JSON (true/false/null/number/object/array) are parsed.
    - Otherwise keep as raw strings.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _harvest_kwargs(args: argparse.Namespace) -> dict[str, Any]:
    """Config file 'harvest' block, overlaid with --kwargs."""
    cfg = _config_schema.load_config(args.config)
    kwargs = dict(cfg.get("harvest") or {})
    kwargs.update(_parse_kv_pairs(getattr(args, "kwargs", None) or []))
    return kwargs


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True, default=str))


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        print("OK: configuration is valid.")
        return 0
    except KeyboardInterrupt:
        return 130
    except _config_schema.ConfigError as e:
        LOG.error("Configuration validation failed: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    start_time = time.monotonic()
    try:
        kwargs = _harvest_kwargs(args)
        LOG.debug("Harvest run with kwargs=%s", kwargs)
        summary = _harvest.run(**kwargs)
    except KeyboardInterrupt:
        return 130
    except (_config_schema.ConfigError, HarvestConfigError, argparse.ArgumentTypeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        duration_ms = int((time.monotonic() - start_time) * 1000)
        LOG.exception("Harvest run failed")
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "where": "cli.run",
            "error": repr(e),
            "duration_ms": duration_ms,
        })
        return 1

    L.write_activity_log({
        "ts": _now_iso(),
        "event": "cli_run",
        "trigger_type": "adhoc",
        "status": summary.get("status"),
        "new_jobs": summary.get("new_jobs"),
        "duration_ms": int((time.monotonic() - start_time) * 1000),
    })
    _print_json(summary)
    return 0 if summary.get("status") == "success" else 1


def cmd_evict(args: argparse.Namespace) -> int:
    try:
        kwargs = _harvest_kwargs(args)
        if args.days is not None:
            kwargs["retention_days"] = args.days
        removed = _harvest.evict(**kwargs)
    except KeyboardInterrupt:
        return 130
    except (_config_schema.ConfigError, HarvestConfigError, argparse.ArgumentTypeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    print(f"Removed {removed} record(s).")
    return 0


def cmd_store_stats(args: argparse.Namespace) -> int:
    try:
        stats = _harvest.store_stats(**_harvest_kwargs(args))
    except (_config_schema.ConfigError, HarvestConfigError, argparse.ArgumentTypeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    _print_json(stats)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the harvest scheduler until a termination signal is received.
    """
    L.write_activity_log({"ts": _now_iso(), "event": "serve_start"})

    stop_event = threading.Event()
    running: dict[str, Any] = {"sched": None}

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()
        _safe_stop("scheduler", running["sched"])

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        running["sched"] = _scheduler.start(config_path=args.config)
        LOG.info("Scheduler started: %r", running["sched"].status())

        # Main wait loop (respond quickly to signals)
        while not stop_event.is_set():
            time.sleep(0.3)

        _safe_stop("scheduler", running["sched"])
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
        return 0

    except KeyboardInterrupt:
        _graceful_shutdown("KeyboardInterrupt")
        return 130
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        _graceful_shutdown("UnhandledException")
        return 1


def _safe_stop(name: str, handle: Any) -> None:
    """Best-effort stop & join for a scheduler-like object."""
    if handle is None:
        return
    try:
        handle.stop()
    except Exception:  # pragma: no cover
        LOG.exception("Error stopping %s", name)
    try:
        handle.join(timeout=10.0)
    except Exception:  # pragma: no cover
        LOG.exception("Error joining %s", name)


# ------------------------------- Argparse ------------------------------------
def _add_kwargs_arg(sp: argparse.ArgumentParser) -> None:
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Harvest settings overriding the config file (JSON values supported).",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Job harvest service command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or built-in defaults).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the recurring harvest scheduler.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Execute one harvest run now.")
    _add_kwargs_arg(sp)
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("evict", help="Drop dedup records older than the retention window.")
    sp.add_argument("--days", type=int, help="Retention window in days (default from settings).")
    _add_kwargs_arg(sp)
    sp.set_defaults(func=cmd_evict)

    sp = sub.add_parser("store-stats", help="Print dedup store statistics.")
    _add_kwargs_arg(sp)
    sp.set_defaults(func=cmd_store_stats)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
