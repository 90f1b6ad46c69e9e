from __future__ import annotations

import contextlib
import logging
import os
import sqlite3
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from .errors import StoreUnavailable
from .logging_bridge import activity as log_activity
from .logging_bridge import error as log_error
from .models import DedupRecord
from .utils import utcnow

LOG = logging.getLogger(__name__)

MEMORY = ":memory:"


class SeenStore:
    """
    Durable set of posting ids already harvested, keyed by posting id.

    Every mutation is committed before the call returns, so a crash mid-run
    loses at most the record being written. A store file that cannot be read
    is moved aside and replaced with an empty one; if even that fails the
    store runs in memory for the rest of the process.
    """

    def __init__(self, sqlite_path: str, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.sqlite_path = sqlite_path
        self._clock = clock
        self._lock = threading.Lock()
        self.degraded = False
        self._conn = self._open()

    # ---- Public API -----------------------------------------------------------

    def has(self, posting_id: str) -> bool:
        if not posting_id:
            return False
        with self._lock:
            row = self._conn.execute("SELECT 1 FROM seen_postings WHERE posting_id = ?", (posting_id,)).fetchone()
        return row is not None

    def upsert(self, posting_id: str, metadata: Mapping[str, Any] | None = None) -> bool:
        """
        Record `posting_id` as seen. New ids get first_seen = last_seen = now;
        known ids only have last_seen (and non-empty metadata) refreshed.

        Returns True if the id was new.
        """
        if not posting_id:
            raise ValueError("posting_id is required")
        meta = dict(metadata or {})
        title = str(meta.get("title") or "")
        url = str(meta.get("url") or "")
        ts = _iso(self._clock())

        with self._lock:
            cur = self._conn.execute(
                """
                INSERT OR IGNORE INTO seen_postings (posting_id, title, url, first_seen_utc, last_seen_utc)
                VALUES (?, ?, ?, ?, ?)
                """,
                (posting_id, title, url, ts, ts),
            )
            if cur.rowcount == 1:
                return True
            self._conn.execute(
                """
                UPDATE seen_postings
                   SET last_seen_utc = ?,
                       title = CASE WHEN ? <> '' THEN ? ELSE title END,
                       url   = CASE WHEN ? <> '' THEN ? ELSE url END
                 WHERE posting_id = ?
                """,
                (ts, title, title, url, url, posting_id),
            )
        return False

    def get(self, posting_id: str) -> DedupRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT posting_id, title, url, first_seen_utc, last_seen_utc FROM seen_postings WHERE posting_id = ?",
                (posting_id,),
            ).fetchone()
        return _record(row) if row else None

    def remove(self, posting_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM seen_postings WHERE posting_id = ?", (posting_id,))
        return cur.rowcount > 0

    def evict_older_than(self, age: timedelta) -> int:
        """Delete records whose last_seen is older than now - age. Returns the number removed."""
        cutoff = _iso(self._clock() - age)
        with self._lock:
            cur = self._conn.execute("DELETE FROM seen_postings WHERE last_seen_utc < ?", (cutoff,))
        removed = max(cur.rowcount, 0)
        if removed:
            LOG.info("Evicted %d seen posting(s) older than %s", removed, age)
        log_activity({
            "component": "job_harvest.seen_store",
            "op": "evicted",
            "removed": removed,
            "cutoff_utc": cutoff,
        })
        return removed

    def count(self) -> int:
        with self._lock:
            (n,) = self._conn.execute("SELECT COUNT(*) FROM seen_postings").fetchone()
        return int(n or 0)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, posting_id: object) -> bool:
        return isinstance(posting_id, str) and self.has(posting_id)

    def stats(self) -> dict[str, int]:
        since = _iso(self._clock() - timedelta(hours=24))
        with self._lock:
            (recent,) = self._conn.execute(
                "SELECT COUNT(*) FROM seen_postings WHERE last_seen_utc > ?", (since,)
            ).fetchone()
        size_kb = 0
        if not self._in_memory:
            with contextlib.suppress(OSError):
                size_kb = round(os.path.getsize(self.sqlite_path) / 1024)
        return {
            "total_tracked_jobs": self.count(),
            "recent_jobs_24h": int(recent or 0),
            "db_size_kb": size_kb,
        }

    def snapshot(self) -> dict[str, dict[str, str]]:
        """Export as {posting_id: {title, url, first_seen, last_seen}}."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT posting_id, title, url, first_seen_utc, last_seen_utc FROM seen_postings ORDER BY posting_id"
            ).fetchall()
        return {r[0]: _record(r).to_dict() for r in rows}

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM seen_postings")

    def close(self) -> None:
        with self._lock:
            with contextlib.suppress(sqlite3.Error):
                self._conn.close()

    def __enter__(self) -> SeenStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- Opening / recovery --------------------------------------------------------

    @property
    def _in_memory(self) -> bool:
        return self.sqlite_path == MEMORY or self.degraded

    def _open(self) -> sqlite3.Connection:
        if self.sqlite_path == MEMORY:
            return _prepare(_connect(MEMORY))
        try:
            return self._open_file()
        except (sqlite3.DatabaseError, OSError) as e:
            self._report_unavailable(e, action="moved_aside")
            with contextlib.suppress(OSError):
                self._move_aside()
        try:
            return self._open_file()
        except (sqlite3.DatabaseError, OSError) as e:
            self._report_unavailable(e, action="in_memory")
            self.degraded = True
            return _prepare(_connect(MEMORY))

    def _open_file(self) -> sqlite3.Connection:
        _ensure_dir(self.sqlite_path)
        conn = _connect(self.sqlite_path)
        try:
            _prepare(conn)
            conn.execute("SELECT COUNT(*) FROM seen_postings").fetchone()
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    def _move_aside(self) -> None:
        stamp = self._clock().strftime("%Y%m%d-%H%M%S")
        for suffix in ("", "-wal", "-shm"):
            src = self.sqlite_path + suffix
            if os.path.exists(src):
                os.replace(src, f"{self.sqlite_path}.corrupt-{stamp}{suffix}")

    def _report_unavailable(self, exc: Exception, *, action: str) -> None:
        err = StoreUnavailable(f"{self.sqlite_path}: {exc!r}")
        LOG.warning("Seen store unavailable (%s); %s", err, action.replace("_", " "))
        log_error({
            "component": "job_harvest.seen_store",
            "op": "store_unavailable",
            "sqlite_path": self.sqlite_path,
            "action": action,
            "error": repr(exc),
        })


# ---- Internal utilities -----------------------------------------------------------


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_iso(s: str) -> datetime:
    return datetime.strptime(s, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


def _record(row: tuple) -> DedupRecord:
    pid, title, url, first_seen, last_seen = row
    return DedupRecord(
        posting_id=pid,
        title=title or "",
        url=url or "",
        first_seen=_parse_iso(first_seen),
        last_seen=_parse_iso(last_seen),
    )


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # isolation_level=None gives autocommit mode: every statement is durable on return.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None, check_same_thread=False)


def _prepare(conn: sqlite3.Connection) -> sqlite3.Connection:
    _apply_pragmas(conn)
    _ensure_schema(conn)
    return conn


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS seen_postings (
          posting_id     TEXT PRIMARY KEY,
          title          TEXT NOT NULL DEFAULT '',
          url            TEXT NOT NULL DEFAULT '',
          first_seen_utc TEXT NOT NULL,
          last_seen_utc  TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_seen_postings_last_seen
          ON seen_postings (last_seen_utc);
        """
    )
