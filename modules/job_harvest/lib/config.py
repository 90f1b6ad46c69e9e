from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .challenge import RetryPolicy
from .discovery import DEFAULT_BASE_URL, DEFAULT_LISTING_PATH, DEFAULT_PAGE_OFFSET, UnknownPolicy
from .extractor import KnownLiterals
from .http_client import DEFAULT_USER_AGENT
from .utils import truthy

ENV_PREFIX = "HARVEST_"


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass
class Settings:
    """
    Canonical configuration for a 'job_harvest' run.

    Every key can come from kwargs (scheduler config / CLI) or from an
    environment variable named HARVEST_<KEY>; kwargs win over env, env wins
    over the defaults below.
    """

    # Target site
    base_url: str = DEFAULT_BASE_URL
    listing_path: str = DEFAULT_LISTING_PATH
    page_offset: int = DEFAULT_PAGE_OFFSET

    # Storage
    sqlite_path: str = "/app/local/state/job_harvest.db"
    csv_path: str = "/app/local/exports/regular_jobs.csv"

    # Run shape
    max_jobs: int = 10
    max_pages: int = 15
    include_sponsored: bool = False
    unknown_policy: UnknownPolicy = UnknownPolicy.INCLUDE
    max_empty_pages: int = 3

    # Pacing
    request_delay_seconds: float = 2.0
    page_delay_seconds: float = 2.0
    fetch_timeout_seconds: float = 30.0

    # Challenge recovery
    retry_attempts: int = 3
    retry_backoff_seconds: float = 8.0
    challenge_poll_seconds: float = 0.0
    retry_budget_seconds: float = 90.0

    # Dedup retention
    retention_days: int = 7
    evict_probability: float = 0.1

    known_literals: KnownLiterals = field(default_factory=KnownLiterals)
    user_agent: str = DEFAULT_USER_AGENT

    # ------------- convenience -------------
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            backoff_seconds=self.retry_backoff_seconds,
            poll_timeout_seconds=self.challenge_poll_seconds,
            max_total_seconds=self.retry_budget_seconds,
        )

    def summary(self) -> dict[str, Any]:
        """Small, log-safe view of the run shape."""
        return {
            "max_jobs": self.max_jobs,
            "max_pages": self.max_pages,
            "include_sponsored": self.include_sponsored,
            "unknown_policy": self.unknown_policy.value,
            "csv_path": self.csv_path,
            "sqlite_path": self.sqlite_path,
        }

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs (falling back to HARVEST_* env) with validation.

        Expected kwargs (all optional):

            base_url: str = "https://www.expatriates.com"
            listing_path: str = "/classifieds/saudi-arabia/jobs/"
            sqlite_path: str = "/app/local/state/job_harvest.db"
            csv_path: str = "/app/local/exports/regular_jobs.csv"
            max_jobs: int = 10
            max_pages: int = 15
            include_sponsored: bool = false
            unknown_policy: "include" | "exclude" | "flag"
            request_delay_seconds: float = 2.0
            retry_attempts: int = 3
            retry_backoff_seconds: float = 8.0
            retention_days: int = 7
            known_literals: {"salary": [...], "contact": [...]}  # or a JSON string
        """
        kw = dict(kwargs or {})
        d = cls()

        def pick(name: str) -> Any:
            if kw.get(name) is not None:
                return kw[name]
            return os.getenv(ENV_PREFIX + name.upper())

        def as_int(name: str, default: int) -> int:
            v = pick(name)
            if v is None or v == "":
                return default
            try:
                return int(v)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"'{name}' must be an integer (got {v!r}).") from e

        def as_float(name: str, default: float) -> float:
            v = pick(name)
            if v is None or v == "":
                return default
            try:
                return float(v)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"'{name}' must be a number (got {v!r}).") from e

        def as_str(name: str, default: str) -> str:
            v = pick(name)
            return str(v).strip() if v is not None and str(v).strip() else default

        def as_bool(name: str, default: bool) -> bool:
            v = pick(name)
            return default if v is None or v == "" else truthy(v)

        policy_raw = as_str("unknown_policy", d.unknown_policy.value).lower()
        try:
            unknown_policy = UnknownPolicy(policy_raw)
        except ValueError as e:
            allowed = ", ".join(p.value for p in UnknownPolicy)
            raise ConfigError(f"'unknown_policy' must be one of: {allowed} (got {policy_raw!r}).") from e

        settings = cls(
            base_url=as_str("base_url", d.base_url),
            listing_path=as_str("listing_path", d.listing_path),
            page_offset=as_int("page_offset", d.page_offset),
            sqlite_path=as_str("sqlite_path", d.sqlite_path),
            csv_path=as_str("csv_path", d.csv_path),
            max_jobs=as_int("max_jobs", d.max_jobs),
            max_pages=as_int("max_pages", d.max_pages),
            include_sponsored=as_bool("include_sponsored", d.include_sponsored),
            unknown_policy=unknown_policy,
            max_empty_pages=as_int("max_empty_pages", d.max_empty_pages),
            request_delay_seconds=as_float("request_delay_seconds", d.request_delay_seconds),
            page_delay_seconds=as_float("page_delay_seconds", d.page_delay_seconds),
            fetch_timeout_seconds=as_float("fetch_timeout_seconds", d.fetch_timeout_seconds),
            retry_attempts=as_int("retry_attempts", d.retry_attempts),
            retry_backoff_seconds=as_float("retry_backoff_seconds", d.retry_backoff_seconds),
            challenge_poll_seconds=as_float("challenge_poll_seconds", d.challenge_poll_seconds),
            retry_budget_seconds=as_float("retry_budget_seconds", d.retry_budget_seconds),
            retention_days=as_int("retention_days", d.retention_days),
            evict_probability=as_float("evict_probability", d.evict_probability),
            known_literals=_parse_known_literals(pick("known_literals")),
            user_agent=as_str("user_agent", d.user_agent),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _parse_known_literals(value: Any) -> KnownLiterals:
    """
    Accepts a mapping, a JSON object string, or nothing.
    Shape: {"salary": ["2300"], "contact": ["0500000000"]}
    """
    if value is None or value == "":
        return KnownLiterals()
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ConfigError("'known_literals' must be a JSON object.") from e
    if not isinstance(value, Mapping):
        raise ConfigError("'known_literals' must be an object with 'salary'/'contact' lists.")
    unknown = set(value) - {"salary", "contact"}
    if unknown:
        raise ConfigError(f"'known_literals' has unknown key(s): {sorted(unknown)}")
    for k, v in value.items():
        if not isinstance(v, (list, tuple)):
            raise ConfigError(f"'known_literals.{k}' must be a list of strings.")
    return KnownLiterals.from_mapping(value)


def _validate_settings(s: Settings) -> None:
    if not s.base_url.startswith(("http://", "https://")):
        raise ConfigError("'base_url' must be an http(s) URL.")
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
    if not s.csv_path.strip():
        raise ConfigError("'csv_path' cannot be empty.")

    if s.max_jobs <= 0:
        raise ConfigError("'max_jobs' must be >= 1.")
    if s.max_pages <= 0:
        raise ConfigError("'max_pages' must be >= 1.")
    if s.max_empty_pages <= 0:
        raise ConfigError("'max_empty_pages' must be >= 1.")
    if s.page_offset <= 0:
        raise ConfigError("'page_offset' must be >= 1.")
    if s.retry_attempts <= 0:
        raise ConfigError("'retry_attempts' must be >= 1.")
    if s.retention_days <= 0:
        raise ConfigError("'retention_days' must be >= 1.")

    for name in (
        "request_delay_seconds",
        "page_delay_seconds",
        "retry_backoff_seconds",
        "challenge_poll_seconds",
    ):
        if getattr(s, name) < 0:
            raise ConfigError(f"'{name}' must be >= 0.")
    if s.fetch_timeout_seconds <= 0:
        raise ConfigError("'fetch_timeout_seconds' must be > 0.")
    if s.retry_budget_seconds <= 0:
        raise ConfigError("'retry_budget_seconds' must be > 0.")
    if not 0.0 <= s.evict_probability <= 1.0:
        raise ConfigError("'evict_probability' must be between 0 and 1.")
