from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from .utils import posting_id_from_url

# Listing classifications
SPONSORED = "sponsored"
REGULAR = "regular"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class Page:
    """
    What a browsing session hands back for one navigation.
    - text: visible text of the document (scripts/styles removed)
    - html: raw markup, used for link discovery
    """

    url: str
    title: str = ""
    text: str = ""
    html: str = ""
    status: int = 200


@dataclass(frozen=True)
class ListingLink:
    """
    A posting link found on a listing page, with the signals used to classify it.
    `raw_context_text` is the text of the anchor's enclosing listing row.
    """

    url: str
    is_sponsored: bool = False
    has_date_signal: bool = False
    raw_context_text: str = ""

    @property
    def classification(self) -> str:
        # Sponsored wins when both signals are present.
        if self.is_sponsored:
            return SPONSORED
        if self.has_date_signal:
            return REGULAR
        return UNKNOWN

    @property
    def posting_id(self) -> str:
        return posting_id_from_url(self.url)


@dataclass(frozen=True)
class JobPosting:
    """
    A single structured posting. Every text field is a string; "" means not found.
    """

    url: str
    posting_id: str = ""
    title: str = ""
    location: str = ""
    salary: str = ""
    contact_info: str = ""
    email: str = ""
    category: str = ""
    employment_type: str = ""
    posted_date: str = ""
    requirements: str = ""
    benefits: str = ""
    description: str = ""
    company: str = ""
    is_sponsored: bool = False
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class DedupRecord:
    posting_id: str
    title: str
    url: str
    first_seen: datetime
    last_seen: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "title": self.title,
            "url": self.url,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
        }


@dataclass
class ScrapeRun:
    """
    Summary of one harvest run. Owned and finalised by the orchestrator.
    """

    started_at: datetime
    finished_at: datetime | None = None
    status: str = "running"  # running -> success | failed
    urls_discovered: int = 0
    sponsored_seen: int = 0
    unknown_seen: int = 0
    new_jobs: int = 0
    skipped_already_seen: int = 0
    failed_extractions: int = 0
    blocked: int = 0
    written: int = 0
    skipped_duplicate: int = 0
    csv_path: str = ""
    error: str | None = None
    field_coverage: dict[str, int] = field(default_factory=dict)

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def finish(self, status: str, *, at: datetime, error: str | None = None) -> ScrapeRun:
        self.status = status
        self.finished_at = at
        self.error = error
        return self

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["started_at"] = self.started_at.isoformat()
        d["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        d["duration_ms"] = self.duration_ms
        return d
