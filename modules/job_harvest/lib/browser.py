"""
Browsing capability consumed by the pipeline.

The pipeline only needs `navigate(url) -> Page` inside a scoped session. The
shipped implementation fetches over HTTP and derives title + visible text with
BeautifulSoup; a headless-browser session can be dropped in by implementing
the same interface.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import requests
from bs4 import BeautifulSoup

from .challenge import is_challenge
from .errors import FetchError
from .http_client import DEFAULT_USER_AGENT, HttpClient
from .models import Page

LOG = logging.getLogger(__name__)

# Interstitials are usually served with one of these. Such a response is only
# returned as a page when it carries a challenge marker; otherwise it is a fetch error.
_CHALLENGE_STATUSES = frozenset({403, 429, 503})

_BLOCK_TAGS = ("p", "div", "br", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "section", "article", "dt", "dd")


class BrowserSession(ABC):
    """
    One scoped browsing session per run. Fetches are sequential.
    """

    @abstractmethod
    def navigate(self, url: str) -> Page:
        """Load `url` and return its title, visible text and HTML. Raises FetchError."""
        raise NotImplementedError

    @abstractmethod
    def refresh(self) -> Page:
        """Re-read the current page (used while waiting for an interstitial to clear)."""
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> BrowserSession:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class HttpBrowserSession(BrowserSession):
    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: HttpClient | None = None,
    ) -> None:
        self._client = client or HttpClient(timeout=timeout, user_agent=user_agent)
        self._current: str | None = None

    def navigate(self, url: str) -> Page:
        self._current = url
        try:
            resp = self._client.get(url)
        except requests.RequestException as e:
            raise FetchError(f"{url}: {e!r}") from e

        if resp.status_code >= 400 and resp.status_code not in _CHALLENGE_STATUSES:
            raise FetchError(f"{url}: HTTP {resp.status_code}")

        page = page_from_html(resp.url or url, resp.text, status=resp.status_code)
        if page.status in _CHALLENGE_STATUSES and not is_challenge(page.text, page.title):
            raise FetchError(f"{url}: HTTP {page.status}")
        return page

    def refresh(self) -> Page:
        if self._current is None:
            raise FetchError("refresh() before navigate()")
        return self.navigate(self._current)

    def close(self) -> None:
        self._client.close()


def page_from_html(url: str, html: str, *, status: int = 200) -> Page:
    soup = BeautifulSoup(html or "", "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    return Page(url=url, title=title, text=visible_text(soup), html=html or "", status=status)


def visible_text(soup: BeautifulSoup) -> str:
    """Text as a reader sees it: no scripts/styles, one line per block element."""
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")
    body = soup.body or soup
    lines = (ln.strip() for ln in body.get_text().splitlines())
    return "\n".join(ln for ln in lines if ln)
