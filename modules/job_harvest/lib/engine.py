"""
Harvest orchestrator: one run of discover -> filter -> fetch/extract -> persist.

Features:
  - One browsing session per run, all fetches sequential
  - Challenge-aware fetching for listing and posting pages (shared retry unit)
  - Dedup store consulted before fetching; a posting is marked seen only after
    its CSV row has been appended
  - Per-URL failures are tallied, never abort the batch
  - Dependency injection for testability (`session_factory`, `sleep`, `clock`)
  - Structured logging via `logging_bridge`
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime

from . import csv_sink, extractor, logging_bridge
from .browser import BrowserSession, HttpBrowserSession
from .challenge import ChallengeRetry
from .config import Settings
from .discovery import ListingDiscovery
from .errors import Blocked, DiscoveryEmpty, HarvestError, PersistenceError
from .models import JobPosting, ListingLink, Page, ScrapeRun
from .seen_store import SeenStore
from .utils import utcnow

LOG = logging.getLogger(__name__)

COMPONENT = "job_harvest.engine"

_COVERAGE_FIELDS = {
    "with_salary": "salary",
    "with_contact": "contact_info",
    "with_email": "email",
    "with_location": "location",
    "with_description": "description",
    "with_posted_date": "posted_date",
}


# =============================================================================
# DEFAULT SESSION (PRODUCTION)
# =============================================================================
def _default_session_factory(settings: Settings) -> Callable[[], BrowserSession]:
    def factory() -> BrowserSession:
        return HttpBrowserSession(timeout=settings.fetch_timeout_seconds, user_agent=settings.user_agent)

    return factory


# =============================================================================
# ORCHESTRATOR
# =============================================================================
class HarvestOrchestrator:
    def __init__(
        self,
        settings: Settings,
        store: SeenStore,
        *,
        session_factory: Callable[[], BrowserSession] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.store = store
        self._session_factory = session_factory or _default_session_factory(settings)
        self._sleep = sleep
        self._clock = clock

    def run(
        self,
        max_jobs: int | None = None,
        max_pages: int | None = None,
        include_sponsored: bool | None = None,
    ) -> ScrapeRun:
        """
        Execute one harvest run and return its finalised ScrapeRun.

        DiscoveryEmpty and PersistenceError finish the run as failed; anything
        else unexpected propagates to the caller (the scheduler counts it).
        """
        s = self.settings
        max_jobs = s.max_jobs if max_jobs is None else max_jobs
        max_pages = s.max_pages if max_pages is None else max_pages
        include_sponsored = s.include_sponsored if include_sponsored is None else include_sponsored

        run = ScrapeRun(started_at=self._clock(), csv_path=s.csv_path)
        jobs: list[JobPosting] = []
        logging_bridge.activity({
            "component": COMPONENT,
            "op": "start",
            "max_jobs": max_jobs,
            "max_pages": max_pages,
            "include_sponsored": include_sponsored,
            "unknown_policy": s.unknown_policy.value,
        })

        try:
            with self._session_factory() as session:
                retry = ChallengeRetry(s.retry_policy(), sleep=self._sleep)
                links = self._discover(session, retry, run, max_pages, include_sponsored)
                self._harvest(session, retry, run, self._partition(links, run)[:max_jobs], jobs)
            run.finish("success", at=self._clock())
        except (DiscoveryEmpty, PersistenceError) as e:
            run.finish("failed", at=self._clock(), error=f"{type(e).__name__}: {e}")
            logging_bridge.error({
                "component": COMPONENT,
                "op": "run_failed",
                "error_type": type(e).__name__,
                "error": str(e),
            })

        run.field_coverage = {
            key: sum(1 for j in jobs if getattr(j, attr)) for key, attr in _COVERAGE_FIELDS.items()
        }
        self._log_summary(run)
        return run

    # -------------------------------------------------------------------------
    # STEPS
    # -------------------------------------------------------------------------
    def _discover(
        self,
        session: BrowserSession,
        retry: ChallengeRetry,
        run: ScrapeRun,
        max_pages: int,
        include_sponsored: bool,
    ) -> list[ListingLink]:
        s = self.settings
        discovery = ListingDiscovery(
            session,
            retry,
            base_url=s.base_url,
            listing_path=s.listing_path,
            page_offset=s.page_offset,
            max_empty_pages=s.max_empty_pages,
            page_delay_seconds=s.page_delay_seconds,
            unknown_policy=s.unknown_policy,
            sleep=self._sleep,
        )
        links = discovery.discover(max_pages, include_sponsored)
        stats = discovery.last_stats

        run.urls_discovered = len(links)
        run.sponsored_seen = stats.sponsored_seen
        run.unknown_seen = stats.unknown_seen

        logging_bridge.activity({
            "component": COMPONENT,
            "op": "discovered",
            "pages_scanned": stats.pages_scanned,
            "kept": len(links),
            "regular": stats.regular_seen,
            "sponsored": stats.sponsored_seen,
            "unknown": stats.unknown_seen,
            "flagged": stats.flagged,
            "stopped_because": stats.stopped_because,
        })
        if not links:
            raise DiscoveryEmpty(f"no posting links after {stats.pages_scanned} listing page(s)")
        return links

    def _partition(self, links: list[ListingLink], run: ScrapeRun) -> list[ListingLink]:
        fresh: list[ListingLink] = []
        for link in links:
            if self.store.has(link.posting_id):
                # still listed: keep it from ageing out of the store
                self.store.upsert(link.posting_id, {"url": link.url})
                run.skipped_already_seen += 1
            else:
                fresh.append(link)
        LOG.info("%d new link(s), %d already seen", len(fresh), run.skipped_already_seen)
        return fresh

    def _harvest(
        self,
        session: BrowserSession,
        retry: ChallengeRetry,
        run: ScrapeRun,
        links: list[ListingLink],
        jobs: list[JobPosting],
    ) -> None:
        """
        Fetch and extract each link, appending every success to the CSV and
        then to the store. A PersistenceError ends the batch; the posting that
        hit it stays unseen so the next run picks it up again.
        """
        literals = self.settings.known_literals

        for link in links:
            # Mandatory spacing between fetches, including after the last listing page.
            if self.settings.request_delay_seconds > 0:
                self._sleep(self.settings.request_delay_seconds)

            def parse(page: Page, _link: ListingLink = link) -> JobPosting:
                return extractor.extract(
                    page.text,
                    title=page.title,
                    url=_link.url,
                    is_sponsored=_link.is_sponsored,
                    literals=literals,
                )

            try:
                job = retry.fetch(session, link.url, parse)
            except HarvestError as e:
                self._record_failure(run, link, e)
                continue
            except Exception as e:
                LOG.exception("Unexpected error extracting %s", link.url)
                self._record_failure(run, link, e)
                continue

            self._persist(run, link, job)
            jobs.append(job)
            run.new_jobs += 1
            LOG.info("Extracted %s: %s", link.posting_id, job.title)

    def _persist(self, run: ScrapeRun, link: ListingLink, job: JobPosting) -> None:
        result = csv_sink.append([job], self.settings.csv_path)
        run.written += result.written
        run.skipped_duplicate += result.skipped_duplicate
        self.store.upsert(link.posting_id, {"title": job.title, "url": job.url})

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------
    @staticmethod
    def _record_failure(run: ScrapeRun, link: ListingLink, exc: Exception) -> None:
        run.failed_extractions += 1
        if isinstance(exc, Blocked):
            run.blocked += 1
        logging_bridge.error({
            "component": COMPONENT,
            "op": "extract_failed",
            "url": link.url,
            "error_type": type(exc).__name__,
            "error": str(exc),
        })

    @staticmethod
    def _log_summary(run: ScrapeRun) -> None:
        LOG.info(
            "Run %s: discovered=%d new=%d skipped=%d failed=%d written=%d (%d ms)",
            run.status,
            run.urls_discovered,
            run.new_jobs,
            run.skipped_already_seen,
            run.failed_extractions,
            run.written,
            run.duration_ms,
        )
        logging_bridge.activity({"component": COMPONENT, "op": "summary", **run.to_dict()})
