from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import Blocked, ChallengePresent
from .models import Page

LOG = logging.getLogger(__name__)

T = TypeVar("T")

CHALLENGE_TITLE_MARKERS: tuple[str, ...] = ("just a moment",)
CHALLENGE_BODY_MARKERS: tuple[str, ...] = (
    "checking your browser",
    "enable javascript and cookies",
    "verify you are human",
)


def is_challenge(text: str, title: str = "") -> bool:
    """True when the page looks like an anti-automation interstitial (case-insensitive)."""
    t = (title or "").lower()
    if any(m in t for m in CHALLENGE_TITLE_MARKERS):
        return True
    body = (text or "").lower()
    return any(m in body for m in CHALLENGE_BODY_MARKERS)


def ensure_content(page: Page) -> Page:
    """Return `page` unchanged, or raise ChallengePresent if it is an interstitial."""
    if is_challenge(page.text, page.title):
        raise ChallengePresent(page.url)
    return page


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounds for challenge recovery.
    - max_attempts: navigations per URL before giving up
    - backoff_seconds: fixed wait after a challenged attempt
    - poll_timeout_seconds: after the backoff, keep re-reading the page for up
      to this long waiting for the interstitial to clear (0 disables)
    - max_total_seconds: hard ceiling on time spent on one URL
    """

    max_attempts: int = 3
    backoff_seconds: float = 8.0
    poll_timeout_seconds: float = 0.0
    poll_interval_seconds: float = 1.0
    max_total_seconds: float = 90.0


class ChallengeRetry:
    """
    Fetching -> {Content | Challenged}; Challenged -> Waiting -> Refetching ...
    until content, or the attempt/time budget runs out (Blocked).

    Shared by listing and posting fetches: `parse` turns a Page into whatever
    the caller wants and raises ChallengePresent when the page is not content.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    def fetch(self, session, url: str, parse: Callable[[Page], T]) -> T:
        p = self.policy
        deadline = self._clock() + p.max_total_seconds
        attempt = 0
        while True:
            attempt += 1
            page = session.navigate(url)
            try:
                return parse(page)
            except ChallengePresent:
                LOG.info("Challenge on %s (attempt %d/%d)", url, attempt, p.max_attempts)

            if attempt >= p.max_attempts or self._clock() >= deadline:
                raise Blocked(url, attempt)

            self._sleep(max(0.0, min(p.backoff_seconds, deadline - self._clock())))

            if p.poll_timeout_seconds > 0:
                cleared = self._poll(session, deadline)
                if cleared is not None:
                    return parse(cleared)

    def _poll(self, session, deadline: float) -> Page | None:
        """Re-read the current page until the interstitial clears or the poll window closes."""
        p = self.policy
        poll_until = min(self._clock() + p.poll_timeout_seconds, deadline)
        while self._clock() < poll_until:
            page = session.refresh()
            if not is_challenge(page.text, page.title):
                LOG.debug("Challenge cleared on %s while polling", page.url)
                return page
            self._sleep(max(0.0, min(p.poll_interval_seconds, poll_until - self._clock())))
        return None
