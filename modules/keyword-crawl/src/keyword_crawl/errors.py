from __future__ import annotations


class KeywordCrawlError(Exception):
    """Base class for crawl errors."""


class NetworkError(KeywordCrawlError):
    """Timeout or connection failure talking to a remote source."""


class ParseError(KeywordCrawlError):
    """Expected page structure was absent."""


class ScrapeError(KeywordCrawlError):
    """The scrape-and-persist endpoint reported a failure."""


class PersistenceConflict(KeywordCrawlError):
    """A record with the same url or job id is already stored."""


class FatalSetupError(KeywordCrawlError):
    """The run cannot start, e.g. the job store is unreachable."""


class InvalidTransitionError(KeywordCrawlError):
    """A descriptor status change that does not move forward."""


class RunInProgressError(KeywordCrawlError):
    """A crawl run is already active on this scheduler."""
