from __future__ import annotations


class HarvestError(Exception):
    """Base exception for harvest failures."""


# ---- Per-URL failures (tallied, never abort a run) ---------------------------


class ChallengePresent(HarvestError):
    """The page is an anti-automation interstitial, not content."""


class Blocked(HarvestError):
    """The challenge retry budget ran out; the URL stays unseen for the next run."""

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"still challenged after {attempts} attempt(s): {url}")
        self.url = url
        self.attempts = attempts


class FetchError(HarvestError):
    """Transport-level failure fetching a single page."""


class ExtractionEmpty(HarvestError):
    """A page was fetched but no usable record could be extracted."""


class NoTitle(ExtractionEmpty):
    """No title survived cleanup and the content fallback."""


# ---- Run-level failures -------------------------------------------------------


class DiscoveryEmpty(HarvestError):
    """Discovery produced zero posting links."""


class StoreUnavailable(HarvestError):
    """The dedup store could not be opened; logged and replaced with an empty store."""


class PersistenceError(HarvestError):
    """The CSV sink could not append; rows already written stay intact."""
