# modules/job_harvest/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, Settings
from .engine import HarvestOrchestrator
from .errors import (
    Blocked,
    ChallengePresent,
    DiscoveryEmpty,
    HarvestError,
    NoTitle,
    PersistenceError,
    StoreUnavailable,
)
from .models import JobPosting, ListingLink, ScrapeRun
from .seen_store import SeenStore

__all__ = [
    "Blocked",
    "ChallengePresent",
    "ConfigError",
    "DiscoveryEmpty",
    "HarvestError",
    "HarvestOrchestrator",
    "JobPosting",
    "ListingLink",
    "NoTitle",
    "PersistenceError",
    "ScrapeRun",
    "SeenStore",
    "Settings",
    "StoreUnavailable",
]
