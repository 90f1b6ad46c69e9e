# tests/test_seen_store.py
import json
import os
from datetime import timedelta

from freezegun import freeze_time

from modules.job_harvest.lib.seen_store import MEMORY, SeenStore


def test_upsert_then_has(tmp_path):
    with SeenStore(str(tmp_path / "seen.db")) as store:
        assert not store.has("58000001")
        assert store.upsert("58000001", {"title": "Accountant", "url": "https://x/cls/58000001.html"}) is True
        assert store.has("58000001")
        assert "58000001" in store
        assert len(store) == 1


def test_upsert_existing_refreshes_last_seen_only(tmp_path):
    path = str(tmp_path / "seen.db")
    with freeze_time("2025-01-01T00:00:00Z"):
        with SeenStore(path) as store:
            store.upsert("58000002", {"title": "Driver", "url": "u1"})

    with freeze_time("2025-01-03T12:00:00Z"):
        with SeenStore(path) as store:
            assert store.upsert("58000002", {"title": "", "url": "u2"}) is False
            rec = store.get("58000002")

    assert rec.title == "Driver"
    assert rec.url == "u2"
    assert rec.first_seen.isoformat() == "2025-01-01T00:00:00+00:00"
    assert rec.last_seen.isoformat() == "2025-01-03T12:00:00+00:00"


def test_survives_reopen(tmp_path):
    path = str(tmp_path / "seen.db")
    with SeenStore(path) as store:
        store.upsert("58000003", {"title": "Cook"})
    with SeenStore(path) as store:
        assert store.has("58000003")
        assert store.count() == 1


def test_empty_id_is_never_seen(tmp_path):
    with SeenStore(str(tmp_path / "seen.db")) as store:
        assert store.has("") is False


# ----------------------------------------------------------------------
# Retention
# ----------------------------------------------------------------------
def test_evict_older_than_removes_stale_records(tmp_path):
    path = str(tmp_path / "seen.db")
    with freeze_time("2025-01-01T00:00:00Z"):
        with SeenStore(path) as store:
            store.upsert("old", {"title": "Old"})
    with freeze_time("2025-01-07T00:00:00Z"):
        with SeenStore(path) as store:
            store.upsert("recent", {"title": "Recent"})

    with freeze_time("2025-01-09T00:00:00Z"):
        with SeenStore(path) as store:
            removed = store.evict_older_than(timedelta(days=7))
            assert removed == 1
            assert not store.has("old")
            assert store.has("recent")


def test_eviction_is_logged_as_activity(tmp_path):
    with SeenStore(str(tmp_path / "seen.db")) as store:
        store.evict_older_than(timedelta(days=7))

    log_dir = os.environ["LOG_DIR"]
    files = [f for f in os.listdir(log_dir) if f.startswith("activity-test")]
    assert files
    with open(os.path.join(log_dir, files[0]), encoding="utf-8") as f:
        records = [json.loads(line) for line in f]
    assert any(r.get("op") == "evicted" and r.get("removed") == 0 for r in records)


# ----------------------------------------------------------------------
# Stats / export / management
# ----------------------------------------------------------------------
def test_stats_and_snapshot(tmp_path):
    path = str(tmp_path / "seen.db")
    with freeze_time("2025-01-01T00:00:00Z"):
        with SeenStore(path) as store:
            store.upsert("a", {"title": "A", "url": "ua"})
    with freeze_time("2025-01-05T00:00:00Z"):
        with SeenStore(path) as store:
            store.upsert("b", {"title": "B", "url": "ub"})
            stats = store.stats()
            snap = store.snapshot()

    assert stats["total_tracked_jobs"] == 2
    assert stats["recent_jobs_24h"] == 1
    assert stats["db_size_kb"] >= 0
    assert set(snap) == {"a", "b"}
    assert snap["a"] == {
        "title": "A",
        "url": "ua",
        "first_seen": "2025-01-01T00:00:00+00:00",
        "last_seen": "2025-01-01T00:00:00+00:00",
    }


def test_remove_and_clear(tmp_path):
    with SeenStore(str(tmp_path / "seen.db")) as store:
        store.upsert("a")
        store.upsert("b")
        assert store.remove("a") is True
        assert store.remove("a") is False
        store.clear()
        assert len(store) == 0


def test_in_memory_store():
    store = SeenStore(MEMORY)
    store.upsert("x")
    assert store.has("x")
    assert store.stats()["db_size_kb"] == 0
    store.close()


# ----------------------------------------------------------------------
# Recovery
# ----------------------------------------------------------------------
def test_corrupt_file_is_moved_aside_and_replaced(tmp_path):
    path = tmp_path / "seen.db"
    path.write_bytes(b"this is not a sqlite database" * 100)

    with SeenStore(str(path)) as store:
        assert store.degraded is False
        assert store.count() == 0
        store.upsert("58000004")
        assert store.has("58000004")

    aside = [p.name for p in tmp_path.iterdir() if ".corrupt-" in p.name]
    assert aside, "corrupt file should be kept for inspection"

    log_dir = os.environ["LOG_DIR"]
    errors = [f for f in os.listdir(log_dir) if f.startswith("error-test")]
    assert errors
