from __future__ import annotations

from datetime import timedelta
from typing import Any

from .lib.config import Settings
from .lib.engine import HarvestOrchestrator
from .lib.logging_bridge import activity as log_activity
from .lib.seen_store import SeenStore


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'job_harvest' module.

    Accepts kwargs (from scheduler/CLI), including:
      max_jobs: int = 10
      max_pages: int = 15
      include_sponsored: bool = False
      unknown_policy: "include" | "exclude" | "flag"
      sqlite_path: str = "/app/local/state/job_harvest.db"
      csv_path: str = "/app/local/exports/regular_jobs.csv"
      (see Settings.from_env_and_kwargs for the full list)

    Returns:
      The finished ScrapeRun as a dict (status is "success" or "failed").
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "job_harvest.main",
        "op": "start",
        "settings": settings.summary(),
    })

    with SeenStore(settings.sqlite_path) as store:
        result = HarvestOrchestrator(settings, store).run()
    return result.to_dict()


def evict(**kwargs: Any) -> int:
    """
    Drop dedup records not seen within `retention_days` (default 7).
    Returns the number of records removed.
    """
    settings = Settings.from_env_and_kwargs(kwargs)
    with SeenStore(settings.sqlite_path) as store:
        return store.evict_older_than(timedelta(days=settings.retention_days))


def store_stats(**kwargs: Any) -> dict[str, int]:
    """{total_tracked_jobs, recent_jobs_24h, db_size_kb} for the configured store."""
    settings = Settings.from_env_and_kwargs(kwargs)
    with SeenStore(settings.sqlite_path) as store:
        return store.stats()
