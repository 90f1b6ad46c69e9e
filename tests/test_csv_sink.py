# tests/test_csv_sink.py
import csv
from datetime import datetime, timezone

import pytest

from modules.job_harvest.lib import csv_sink
from modules.job_harvest.lib.errors import PersistenceError
from modules.job_harvest.lib.models import JobPosting

SCRAPED = datetime(2025, 7, 1, 12, 30, 0, tzinfo=timezone.utc)


def _job(pid, **kw):
    kw.setdefault("title", f"Job {pid}")
    kw.setdefault("url", f"https://www.expatriates.com/cls/{pid}.html")
    return JobPosting(posting_id=pid, scraped_at=SCRAPED, **kw)


def _rows(path):
    with open(path, encoding="utf-8", newline="") as f:
        return list(csv.reader(f))


def test_creates_file_with_header(tmp_path):
    target = tmp_path / "out" / "jobs.csv"
    res = csv_sink.append([_job("58000001", salary="4500", is_sponsored=True)], str(target))

    assert res.written == 1
    assert res.skipped_duplicate == 0
    rows = _rows(target)
    assert rows[0] == list(csv_sink.HEADER)
    assert len(rows[0]) == 16
    row = dict(zip(rows[0], rows[1]))
    assert row["Posting ID"] == "58000001"
    assert row["Salary"] == "4500"
    assert row["Scraped At"] == "2025-07-01T12:30:00Z"
    assert row["Is Sponsored"] == "Yes"


def test_every_field_is_quoted(tmp_path):
    target = tmp_path / "jobs.csv"
    csv_sink.append([_job("58000002", company="Acme, \"Trading\"")], str(target))
    text = target.read_text(encoding="utf-8")
    first_data_line = text.splitlines()[1]
    assert first_data_line.startswith('"Job 58000002",""')
    assert '"Acme, ""Trading"""' in first_data_line


def test_skips_posting_ids_already_in_file(tmp_path):
    target = str(tmp_path / "jobs.csv")
    csv_sink.append([_job("58000010"), _job("58000011")], target)

    batch = [_job(pid) for pid in ("58000010", "58000011", "58000012", "58000013", "58000014")]
    res = csv_sink.append(batch, target)

    assert res.written == 3
    assert res.skipped_duplicate == 2
    rows = _rows(target)
    assert rows.count(list(csv_sink.HEADER)) == 1
    assert len(rows) == 1 + 5


def test_append_never_rewrites_existing_rows(tmp_path):
    target = str(tmp_path / "jobs.csv")
    csv_sink.append([_job("58000020")], target)
    before = open(target, encoding="utf-8").read()

    csv_sink.append([_job("58000021")], target)
    after = open(target, encoding="utf-8").read()

    assert after.startswith(before)


def test_duplicates_within_batch_written_once(tmp_path):
    target = str(tmp_path / "jobs.csv")
    res = csv_sink.append([_job("58000030"), _job("58000030", title="Again")], target)
    assert res.written == 1
    assert res.skipped_duplicate == 1


def test_records_without_id_always_written(tmp_path):
    target = str(tmp_path / "jobs.csv")
    csv_sink.append([_job(""), _job("")], target)
    res = csv_sink.append([_job("")], target)
    assert res.written == 1
    assert len(_rows(target)) == 4


def test_empty_batch_leaves_file_untouched(tmp_path):
    target = tmp_path / "jobs.csv"
    res = csv_sink.append([], str(target))
    assert res.written == 0
    assert not target.exists()


def test_missing_trailing_newline_is_repaired(tmp_path):
    target = tmp_path / "jobs.csv"
    header = ",".join(f'"{h}"' for h in csv_sink.HEADER)
    target.write_text(header, encoding="utf-8")

    csv_sink.append([_job("58000040")], str(target))

    rows = _rows(target)
    assert rows[0] == list(csv_sink.HEADER)
    assert rows[1][csv_sink.POSTING_ID_COLUMN] == "58000040"


# ----------------------------------------------------------------------
# Field shaping
# ----------------------------------------------------------------------
def test_newlines_replaced_and_long_fields_capped(tmp_path):
    target = str(tmp_path / "jobs.csv")
    job = _job(
        "58000050",
        description="Line one\nLine two\r\n" + "d" * 3000,
        requirements="r" * 800,
        benefits="b" * 400,
    )
    csv_sink.append([job], target)
    row = dict(zip(*_rows(target)))

    assert "\n" not in row["Description"]
    assert row["Description"].startswith("Line one Line two ")
    assert len(row["Description"]) == 1500
    assert row["Description"].endswith("...")
    assert len(row["Requirements"]) == 500
    assert len(row["Benefits"]) == 300


def test_every_column_has_a_cap(tmp_path):
    target = str(tmp_path / "jobs.csv")
    csv_sink.append([_job("58000051", location="x" * 5000, company="k" * 900)], target)
    row = dict(zip(*_rows(target)))

    assert len(row["Location"]) == csv_sink.DEFAULT_FIELD_CAP
    assert row["Location"].endswith("...")
    assert len(row["Company"]) == csv_sink.DEFAULT_FIELD_CAP
    assert row["Job Title"] == "Job 58000051"


@pytest.mark.parametrize("value, cap, expected", [("a\nb", 0, "a b"), ("abcdef", 5, "ab..."), ("abc", 5, "abc")])
def test_sanitize(value, cap, expected):
    assert csv_sink.sanitize(value, cap) == expected


def test_existing_posting_ids_uses_header_position(tmp_path):
    target = tmp_path / "jobs.csv"
    target.write_text('"Posting ID","Job Title"\n"123","A"\n"","B"\n', encoding="utf-8")
    assert csv_sink.existing_posting_ids(str(target)) == {"123"}


def test_unwritable_target_raises_persistence_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(PersistenceError):
        csv_sink.append([_job("58000060")], str(blocker / "jobs.csv"))
