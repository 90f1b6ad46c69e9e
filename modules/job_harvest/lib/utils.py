from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

# /cls/<8 digits>.html
POSTING_URL_RE = re.compile(r"/cls/(\d{8})\.html(?:[?#].*)?$")
_POSTING_ID_RE = re.compile(r"cls/(\d+)\.html")

CONTINUATION_MARKER = "..."


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    return utcnow().isoformat().replace("+00:00", "Z")


def is_posting_url(url: str) -> bool:
    return bool(url) and POSTING_URL_RE.search(url) is not None


def posting_id_from_url(url: str) -> str:
    """Return the numeric id from a /cls/<id>.html URL, or "" if absent."""
    m = _POSTING_ID_RE.search(url or "")
    return m.group(1) if m else ""


def collapse_ws(s: str) -> str:
    return re.sub(r"\s+", " ", s or "").strip()


def truncate(s: str, limit: int, marker: str = CONTINUATION_MARKER) -> str:
    """
    Cut `s` to at most `limit` characters, ending with `marker` when cut.
    """
    if limit <= 0 or len(s) <= limit:
        return s
    keep = max(limit - len(marker), 0)
    return s[:keep].rstrip() + marker
