# tests/conftest.py
import os
import tempfile

import pytest
from freezegun import freeze_time

from modules.job_harvest.lib import config as jh_config
from modules.job_harvest.lib.browser import BrowserSession, page_from_html
from modules.job_harvest.lib.errors import FetchError

LISTING_ROOT = "https://www.expatriates.com/classifieds/saudi-arabia/jobs/"
REGULAR_SUFFIX = "Tue, Jul 1, 2025, 5:43:12 PM - 3 minutes ago"


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls against the real listing site).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="jh-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("CONFIG_PATH", raising=False)

    # HARVEST_* from the developer's shell must not leak into Settings
    for name in list(os.environ):
        if name.startswith(jh_config.ENV_PREFIX):
            monkeypatch.delenv(name, raising=False)

    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Fake browsing session + page builders
# ---------------------------------------------------------------------
class FakeSession(BrowserSession):
    """
    Serves canned pages by URL. A list value is consumed in order (the last
    entry repeats); an exception value is raised. Unknown URLs raise FetchError.
    """

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls = []
        self.refreshes = 0
        self.closed = False
        self._current = None

    def navigate(self, url):
        self.calls.append(url)
        self._current = url
        if url not in self.pages:
            raise FetchError(f"{url}: HTTP 404")
        item = self.pages[url]
        if isinstance(item, list):
            item = item.pop(0) if len(item) > 1 else item[0]
        if isinstance(item, Exception):
            raise item
        return item

    def refresh(self):
        self.refreshes += 1
        return self.navigate(self._current)

    def close(self):
        self.closed = True

    def count(self, url):
        return self.calls.count(url)


def posting_url(pid):
    return f"https://www.expatriates.com/cls/{pid}.html"


def listing_page(url, rows, *, next_href=None):
    """
    rows: [(posting_id, kind)] with kind in regular | sponsored | both | unknown
    """
    items = []
    for pid, kind in rows:
        suffix = {
            "regular": REGULAR_SUFFIX,
            "sponsored": "Sponsored",
            "both": f"{REGULAR_SUFFIX} Sponsored",
            "unknown": "",
        }[kind]
        items.append(f'<li><a href="/cls/{pid}.html">Job opening {pid}</a> {suffix}</li>')
    pager = f'<div class="pager"><a href="{next_href}">Next</a></div>' if next_href else ""
    html = (
        "<html><head><title>Saudi Arabia Jobs - expatriates.com</title></head><body>"
        f"<ul>{''.join(items)}</ul>{pager}</body></html>"
    )
    return page_from_html(url, html)


def posting_page(url, title, lines):
    body = "".join(f"<p>{ln}</p>" for ln in lines)
    return page_from_html(url, f"<html><head><title>{title}</title></head><body>{body}</body></html>")


def challenge_page(url):
    return page_from_html(
        url,
        "<html><head><title>Just a moment...</title></head>"
        "<body><p>Verify you are human by completing the action below.</p></body></html>",
        status=403,
    )


SAMPLE_LINES = [
    "Posting ID: 58123456",
    "Category: Sales, Marketing Jobs",
    "Region: Riyadh (Olaya)",
    "Posted: Tue, Jul 1, 2025",
    "From: hr.riyadh@example.com",
    "Chat on WhatsApp",
    "Hiring Sales Executive for a trading company. Full-time position.",
    "Job Details: Field sales across Riyadh region with own car.",
    "Requirements: Valid and transferable Iqama, 2 years Saudi sales experience, Arabic and English.",
    "What We Offer: Competitive fixed salary, accommodation and medical insurance.",
    "Salary: 4500 SAR",
    "Contact: 0551234567 or +966551234567",
    "Back",
    "Email to a Friend",
]


def sample_posting(pid="58123456", title="Sales Executive"):
    lines = [f"Posting ID: {pid}"] + SAMPLE_LINES[1:]
    return posting_page(posting_url(pid), f"Riyadh Jobs, {title}, {pid} - expatriates.com", lines)


@pytest.fixture
def fake_session_cls():
    return FakeSession


@pytest.fixture
def pages():
    """Page builders, bundled so tests do not import conftest directly."""

    class _Pages:
        root = LISTING_ROOT
        posting_url = staticmethod(posting_url)
        listing = staticmethod(listing_page)
        posting = staticmethod(posting_page)
        challenge = staticmethod(challenge_page)
        sample = staticmethod(sample_posting)
        sample_lines = SAMPLE_LINES

        @staticmethod
        def listing_url(n):
            return LISTING_ROOT if n == 1 else f"{LISTING_ROOT}index{(n - 1) * 100}.html"

    return _Pages


@pytest.fixture
def harvest_settings(tmp_path):
    """Fresh Settings per test: temp store + CSV, no delays, no backoff."""
    return jh_config.Settings.from_env_and_kwargs({
        "sqlite_path": str(tmp_path / "seen.db"),
        "csv_path": str(tmp_path / "exports" / "regular_jobs.csv"),
        "request_delay_seconds": 0,
        "page_delay_seconds": 0,
        "retry_backoff_seconds": 0,
        "max_jobs": 10,
        "max_pages": 5,
    })
