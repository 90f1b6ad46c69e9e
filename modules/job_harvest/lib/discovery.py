from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .challenge import ChallengeRetry, ensure_content
from .errors import Blocked, FetchError
from .models import REGULAR, SPONSORED, ListingLink, Page
from .utils import collapse_ws, is_posting_url

LOG = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.expatriates.com"
DEFAULT_LISTING_PATH = "/classifieds/saudi-arabia/jobs/"
DEFAULT_PAGE_OFFSET = 100

SPONSORED_SUFFIX = "Sponsored"

# A listing row for a regular posting ends with (or carries) one of these.
REGULAR_CONTEXT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\w{3}, \w{3} \d{1,2}, \d{4}, \d{1,2}:\d{2}:\d{2} [AP]M - (?:\d+ \w+ ago|an hour ago|a day ago)$"),
    re.compile(r"\b\d+ (?:minutes?|hours?|days?|weeks?) ago\b", re.IGNORECASE),
    re.compile(r"\b(?:an hour|a day) ago\b", re.IGNORECASE),
    re.compile(r"\b(?:Today|Yesterday)\b"),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),
    re.compile(r"\b\d{1,2}-\d{1,2}-\d{4}\b"),
)

_NEXT_TEXT_RE = re.compile(r"^\s*next(?:\s+\d+)?\s*[»>]*\s*$", re.IGNORECASE)


class UnknownPolicy(str, Enum):
    """What to do with links that are neither clearly sponsored nor clearly regular."""

    INCLUDE = "include"
    EXCLUDE = "exclude"
    FLAG = "flag"  # include, but log and report each one


@dataclass(frozen=True)
class ListingPage:
    url: str
    links: list[ListingLink]
    has_next: bool


@dataclass
class DiscoveryStats:
    pages_scanned: int = 0
    regular_seen: int = 0
    sponsored_seen: int = 0
    unknown_seen: int = 0
    flagged: list[str] = field(default_factory=list)
    stopped_because: str = ""


# ---- Pure helpers -------------------------------------------------------------


def listing_url(
    page: int,
    *,
    base_url: str = DEFAULT_BASE_URL,
    listing_path: str = DEFAULT_LISTING_PATH,
    offset: int = DEFAULT_PAGE_OFFSET,
) -> str:
    """
    Page 1 is the bare listing path; page N>1 is index{(N-1)*offset}.html.
    """
    if page < 1:
        raise ValueError("page numbers start at 1")
    root = base_url.rstrip("/") + "/" + listing_path.strip("/") + "/"
    if page == 1:
        return root
    return f"{root}index{(page - 1) * offset}.html"


def classify_context(context: str) -> tuple[bool, bool]:
    """Return (is_sponsored, has_date_signal) for a listing row's text."""
    text = collapse_ws(context)
    is_sponsored = text.endswith(SPONSORED_SUFFIX)
    has_date = any(p.search(text) for p in REGULAR_CONTEXT_PATTERNS)
    return is_sponsored, has_date


def parse_listing(html: str, page_url: str, *, next_url: str | None = None) -> ListingPage:
    """
    Collect posting links from a listing page in document order.

    Each anchor is classified by the text of its enclosing row (the anchor's
    parent element). Anchors whose URL is not a posting URL are ignored.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    links: list[ListingLink] = []
    seen: set[str] = set()
    has_next = False

    for a in soup.find_all("a", href=True):
        href = urljoin(page_url, a["href"].strip())

        if next_url and href == next_url:
            has_next = True
        elif _NEXT_TEXT_RE.match(a.get_text(" ", strip=True) or ""):
            has_next = True

        if not is_posting_url(href) or href in seen:
            continue
        seen.add(href)

        parent = a.parent if a.parent is not None else a
        context = collapse_ws(parent.get_text(" ", strip=True))
        is_sponsored, has_date = classify_context(context)
        links.append(
            ListingLink(url=href, is_sponsored=is_sponsored, has_date_signal=has_date, raw_context_text=context)
        )

    return ListingPage(url=page_url, links=links, has_next=has_next)


# ---- Discovery -------------------------------------------------------------------


class ListingDiscovery:
    """
    Walk listing pages 1..N and return the posting links worth fetching.

    Stops at `max_pages`, after `max_empty_pages` consecutive pages with no
    posting links, when a page carries no link to the next page, or when a
    listing page cannot be loaded.
    """

    def __init__(
        self,
        session,
        retry: ChallengeRetry,
        *,
        base_url: str = DEFAULT_BASE_URL,
        listing_path: str = DEFAULT_LISTING_PATH,
        page_offset: int = DEFAULT_PAGE_OFFSET,
        max_empty_pages: int = 3,
        page_delay_seconds: float = 2.0,
        unknown_policy: UnknownPolicy | str = UnknownPolicy.INCLUDE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session
        self.retry = retry
        self.base_url = base_url
        self.listing_path = listing_path
        self.page_offset = page_offset
        self.max_empty_pages = max_empty_pages
        self.page_delay_seconds = page_delay_seconds
        self.unknown_policy = UnknownPolicy(unknown_policy)
        self._sleep = sleep
        self.last_stats = DiscoveryStats()

    def page_url(self, page: int) -> str:
        return listing_url(page, base_url=self.base_url, listing_path=self.listing_path, offset=self.page_offset)

    def discover(self, max_pages: int, include_sponsored: bool = False) -> list[ListingLink]:
        stats = DiscoveryStats()
        self.last_stats = stats
        out: list[ListingLink] = []
        seen: set[str] = set()
        empty_streak = 0

        for page_no in range(1, max_pages + 1):
            if page_no > 1 and self.page_delay_seconds > 0:
                self._sleep(self.page_delay_seconds)

            url = self.page_url(page_no)
            next_url = self.page_url(page_no + 1)
            try:
                listing = self.retry.fetch(self.session, url, lambda p, _n=next_url: self._parse(p, _n))
            except (Blocked, FetchError) as e:
                LOG.warning("Listing page %d unavailable (%s); ending discovery", page_no, e)
                stats.stopped_because = "page_unavailable"
                break

            stats.pages_scanned += 1
            LOG.info("Listing page %d: %d posting link(s)", page_no, len(listing.links))

            if not listing.links:
                empty_streak += 1
                if empty_streak >= self.max_empty_pages:
                    stats.stopped_because = "empty_pages"
                    break
            else:
                empty_streak = 0

            for link in listing.links:
                if link.url in seen:
                    continue
                seen.add(link.url)
                if self._accept(link, include_sponsored, stats):
                    out.append(link)

            if not listing.has_next:
                stats.stopped_because = "no_next_page"
                break
        else:
            stats.stopped_because = "max_pages"

        LOG.info(
            "Discovery done: %d link(s) kept from %d page(s) (regular=%d sponsored=%d unknown=%d, stop=%s)",
            len(out),
            stats.pages_scanned,
            stats.regular_seen,
            stats.sponsored_seen,
            stats.unknown_seen,
            stats.stopped_because,
        )
        return out

    # ---- internals ----
    @staticmethod
    def _parse(page: Page, next_url: str) -> ListingPage:
        ensure_content(page)
        return parse_listing(page.html, page.url, next_url=next_url)

    def _accept(self, link: ListingLink, include_sponsored: bool, stats: DiscoveryStats) -> bool:
        kind = link.classification
        if kind == SPONSORED:
            stats.sponsored_seen += 1
            return include_sponsored
        if kind == REGULAR:
            stats.regular_seen += 1
            return True

        stats.unknown_seen += 1
        if self.unknown_policy is UnknownPolicy.EXCLUDE:
            return False
        if self.unknown_policy is UnknownPolicy.FLAG:
            LOG.warning("Unclassified listing link kept for review: %s (%r)", link.url, link.raw_context_text[:120])
            stats.flagged.append(link.url)
        return True
