from __future__ import annotations

import csv
import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timezone

from .errors import PersistenceError
from .models import JobPosting
from .utils import truncate

LOG = logging.getLogger(__name__)

HEADER: tuple[str, ...] = (
    "Job Title",
    "Salary",
    "Contact",
    "Email",
    "Location",
    "Posting ID",
    "Posted Date",
    "Category",
    "Employment Type",
    "Company",
    "Requirements",
    "Benefits",
    "Description",
    "Job URL",
    "Scraped At",
    "Is Sponsored",
)
POSTING_ID_COLUMN = HEADER.index("Posting ID")

# Columns not listed here are capped at DEFAULT_FIELD_CAP.
DEFAULT_FIELD_CAP = 500
FIELD_CAPS = {
    "Requirements": 500,
    "Benefits": 300,
    "Description": 1500,
}

_NEWLINES = re.compile(r"[\r\n]+")


@dataclass(frozen=True)
class AppendResult:
    written: int
    skipped_duplicate: int
    path: str = ""


def existing_posting_ids(path: str) -> set[str]:
    """Posting IDs already present in `path` (empty set if the file is missing)."""
    if not os.path.exists(path):
        return set()
    ids: set[str] = set()
    with open(path, encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        column = POSTING_ID_COLUMN
        for i, row in enumerate(reader):
            if i == 0 and "Posting ID" in row:
                column = row.index("Posting ID")
                continue
            if len(row) > column:
                pid = row[column].strip()
                if pid:
                    ids.add(pid)
    return ids


def to_row(job: JobPosting) -> list[str]:
    scraped = job.scraped_at
    if scraped.tzinfo is None:
        scraped = scraped.replace(tzinfo=timezone.utc)
    values = {
        "Job Title": job.title,
        "Salary": job.salary,
        "Contact": job.contact_info,
        "Email": job.email,
        "Location": job.location,
        "Posting ID": job.posting_id,
        "Posted Date": job.posted_date,
        "Category": job.category,
        "Employment Type": job.employment_type,
        "Company": job.company,
        "Requirements": job.requirements,
        "Benefits": job.benefits,
        "Description": job.description,
        "Job URL": job.url,
        "Scraped At": scraped.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        "Is Sponsored": "Yes" if job.is_sponsored else "No",
    }
    return [sanitize(values[col], FIELD_CAPS.get(col, DEFAULT_FIELD_CAP)) for col in HEADER]


def sanitize(value: str, cap: int = 0) -> str:
    """One line per field; capped fields end with '...' when cut."""
    s = _NEWLINES.sub(" ", value or "").strip()
    return truncate(s, cap) if cap else s


def append(records: Iterable[JobPosting], target: str) -> AppendResult:
    """
    Append records whose Posting ID is not already in `target`.

    Existing rows are never rewritten. The header is written only when the
    file is created (or is empty). Records without a posting id are always
    written. Raises PersistenceError if the file cannot be read or appended.
    """
    records = list(records)
    try:
        seen = existing_posting_ids(target)
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        raise PersistenceError(f"cannot read {target}: {e!r}") from e

    fresh: list[JobPosting] = []
    skipped = 0
    for job in records:
        pid = (job.posting_id or "").strip()
        if pid and pid in seen:
            skipped += 1
            continue
        if pid:
            seen.add(pid)
        fresh.append(job)

    if not fresh:
        LOG.info("CSV %s: nothing new (%d duplicate(s))", target, skipped)
        return AppendResult(written=0, skipped_duplicate=skipped, path=target)

    try:
        d = os.path.dirname(os.path.abspath(target))
        os.makedirs(d, exist_ok=True)
        needs_header = not os.path.exists(target) or os.path.getsize(target) == 0
        needs_newline = not needs_header and not _ends_with_newline(target)
        with open(target, "a", encoding="utf-8", newline="") as f:
            if needs_newline:
                f.write("\n")
            writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
            if needs_header:
                writer.writerow(HEADER)
            writer.writerows(to_row(job) for job in fresh)
    except (OSError, csv.Error) as e:
        raise PersistenceError(f"cannot append to {target}: {e!r}") from e

    LOG.info("CSV %s: wrote %d, skipped %d duplicate(s)", target, len(fresh), skipped)
    return AppendResult(written=len(fresh), skipped_duplicate=skipped, path=target)


def _ends_with_newline(path: str) -> bool:
    with open(path, "rb") as f:
        f.seek(-1, os.SEEK_END)
        return f.read(1) == b"\n"
