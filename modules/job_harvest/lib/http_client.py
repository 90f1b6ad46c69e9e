# job_harvest/http_client.py
from __future__ import annotations

import logging
from collections.abc import Mapping

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

# Transport-level retries only. 403/429/503 are how interstitials arrive; those
# bodies go back to the caller so the challenge detector can read them.
_TRANSIENT_STATUSES = (500, 502, 504)


def build_session(user_agent: str = DEFAULT_USER_AGENT) -> requests.Session:
    """A requests.Session that looks like a desktop browser and retries 5xx gateways."""
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent, **_BROWSER_HEADERS})
    adapter = HTTPAdapter(
        max_retries=Retry(
            total=3,
            backoff_factor=0.5,
            status_forcelist=_TRANSIENT_STATUSES,
            allowed_methods=frozenset(["GET", "HEAD"]),
            raise_on_status=False,
        ),
        pool_connections=2,
        pool_maxsize=2,
    )
    for scheme in ("http://", "https://"):
        session.mount(scheme, adapter)
    return session


class HttpClient:
    """Page fetcher for one harvest run; sequential, one pooled connection per host."""

    def __init__(self, timeout: float = 30.0, user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = float(timeout)
        self.session = build_session(user_agent)

    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> requests.Response:
        """GET without raising on HTTP status; the caller decides what a status means."""
        resp = self.session.get(url, headers=headers, timeout=self.timeout)
        if not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        LOG.debug("GET %s -> %s (%d bytes)", url, resp.status_code, len(resp.content or b""))
        return resp

    def close(self) -> None:
        try:
            self.session.close()
        except requests.RequestException:
            LOG.debug("HttpClient.close() failed", exc_info=True)
