from __future__ import annotations

import logging
from typing import Any

from service import logging_utils as _backend

from .utils import now_iso

_ACTIVITY_LOG = logging.getLogger("job_harvest.activity")
_ERROR_LOG = logging.getLogger("job_harvest.error")


def _prepare(record: dict[str, Any]) -> dict[str, Any]:
    """
    Stamp with a UTC timestamp and redact. Done here as well as in the JSONL
    writer so the stdlib fallback never sees credentials either.
    """
    return _backend.redact({"ts": now_iso(), **record})


def activity(record: dict[str, Any]) -> None:
    """Write a structured activity record (run progress, counts, summaries)."""
    payload = _prepare(record)
    try:
        _backend.write_activity_log(payload)
        return
    except (OSError, TypeError, ValueError):
        _ACTIVITY_LOG.debug("activity log write failed; falling back", exc_info=True)
    _ACTIVITY_LOG.info(payload)


def error(record: dict[str, Any]) -> None:
    """Write a structured error record (per-URL failures, run failures, store trouble)."""
    payload = _prepare(record)
    try:
        _backend.write_error_log(payload)
        return
    except (OSError, TypeError, ValueError):
        _ERROR_LOG.debug("error log write failed; falling back", exc_info=True)
    _ERROR_LOG.error(payload)
