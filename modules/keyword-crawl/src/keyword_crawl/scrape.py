"""Scrape-and-store operations run by the driver, one call per descriptor."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Literal

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from keyword_crawl.dedupe import DedupCache
from keyword_crawl.errors import NetworkError, ParseError, PersistenceConflict, ScrapeError
from keyword_crawl.keywords import category_for_keyword
from keyword_crawl.models import JobDetail, JobListing, ScrapeOutcome, SearchJobDescriptor
from keyword_crawl.scrapers.common import RetryableNetworkError
from keyword_crawl.scrapers.linkedin import LinkedInClient, degraded_detail
from keyword_crawl.storage import JobStore

logger = logging.getLogger(__name__)

SearchFetcher = Callable[[str], list[JobListing]]
DetailFetcher = Callable[[JobListing], JobDetail]
SaveResult = Literal["saved", "skipped", "failed"]

_GATEWAY_ERRORS = {502, 503, 504}


def descriptor_tags(descriptor: SearchJobDescriptor) -> list[str]:
    return ["tech", descriptor.location.casefold(), descriptor.keyword.casefold()]


class LocalScrapeAndStore:
    """Search, first dedup check, detail pages, then batched persist with a second check.

    Listings already in the cache or the store are skipped before any detail
    page is fetched. Each persistence batch of ``batch_size`` runs
    concurrently and is joined before the next one starts.
    """

    def __init__(
        self,
        store: JobStore,
        cache: DedupCache,
        *,
        search: SearchFetcher,
        detail: DetailFetcher,
        max_jobs: int = 30,
        batch_size: int = 5,
        category: str | None = None,
        source: str = "linkedin_overnight",
        batch_pause_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.cache = cache
        self.search = search
        self.detail = detail
        self.max_jobs = max_jobs
        self.batch_size = batch_size
        self.category = category
        self.source = source
        self.batch_pause_seconds = batch_pause_seconds
        self._sleep = sleep

    @classmethod
    def from_client(cls, store: JobStore, cache: DedupCache, client: LinkedInClient, **kwargs: Any) -> "LocalScrapeAndStore":
        return cls(store, cache, search=client.search, detail=client.detail, **kwargs)

    def _already_stored(self, url: str, job_id: str) -> bool:
        if self.cache.seen(url):
            return True
        if self.store.exists(url, job_id):
            self.cache.mark(url)
            return True
        return False

    def _fetch_detail(self, listing: JobListing) -> JobDetail:
        try:
            return self.detail(listing)
        except (NetworkError, ParseError) as exc:
            logger.warning("using listing data only for %s: %s", listing.url, exc)
            return degraded_detail(listing)

    def _persist(self, detail: JobDetail, descriptor: SearchJobDescriptor) -> SaveResult:
        # Re-check right before the write: another keyword may have stored it meanwhile.
        if self._already_stored(detail.url, detail.job_id):
            logger.info("skipping existing job (save phase): %s", detail.title)
            return "skipped"
        try:
            self.store.save_job(
                detail,
                keyword=descriptor.keyword,
                category=self.category or category_for_keyword(descriptor.keyword),
                source=self.source,
                tags=descriptor_tags(descriptor),
            )
        except PersistenceConflict:
            self.cache.mark(detail.url)
            return "skipped"
        except Exception as exc:
            logger.error("failed to save %s: %s", detail.url, exc)
            return "failed"
        self.cache.mark(detail.url)
        return "saved"

    def __call__(self, descriptor: SearchJobDescriptor) -> ScrapeOutcome:
        listings = self.search(descriptor.search_url)
        if not listings:
            logger.info("no listings for %r", descriptor.keyword)
            return ScrapeOutcome()

        unique: list[JobListing] = []
        duplicates = 0
        for listing in listings:
            if self._already_stored(listing.url, listing.job_id):
                duplicates += 1
            else:
                unique.append(listing)
        logger.info("%r: %d new, %d duplicates", descriptor.keyword, len(unique), duplicates)

        to_process = unique[: self.max_jobs]
        details = [self._fetch_detail(listing) for listing in to_process]

        counts = {"saved": 0, "skipped": 0, "failed": 0}
        batches = [details[i : i + self.batch_size] for i in range(0, len(details), self.batch_size)]
        for number, batch in enumerate(batches):
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="persist") as executor:
                results = list(executor.map(lambda detail: self._persist(detail, descriptor), batch))
            for result in results:
                counts[result] += 1
            if number < len(batches) - 1 and self.batch_pause_seconds > 0:
                self._sleep(self.batch_pause_seconds)

        return ScrapeOutcome(
            jobs_found=len(listings),
            jobs_saved=counts["saved"],
            jobs_skipped=duplicates + counts["skipped"],
            jobs_failed=counts["failed"],
        )


def _int_field(summary: dict[str, Any], key: str) -> int:
    try:
        return int(summary.get(key) or 0)
    except (TypeError, ValueError):
        return 0


class RemoteScrapeEndpoint:
    """Delegates each descriptor to an HTTP scrape-and-persist endpoint."""

    def __init__(
        self,
        endpoint_url: str,
        *,
        category: str | None = None,
        source: str = "linkedin_overnight",
        max_jobs: int = 50,
        force: bool = True,
        timeout_seconds: float = 180.0,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url
        self.category = category
        self.source = source
        self.max_jobs = max_jobs
        self.force = force
        self.timeout_seconds = timeout_seconds
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.client = client

    def request_body(self, descriptor: SearchJobDescriptor) -> dict[str, Any]:
        return {
            "url": descriptor.search_url,
            "category": self.category or category_for_keyword(descriptor.keyword),
            "tags": descriptor_tags(descriptor),
            "source": self.source,
            "maxJobs": self.max_jobs,
            "force": self.force,
        }

    def _post_once(self, body: dict[str, Any]) -> httpx.Response:
        post = self.client.post if self.client is not None else httpx.post
        try:
            response = post(self.endpoint_url, json=body, timeout=self.timeout_seconds)
        except httpx.TransportError as exc:
            raise RetryableNetworkError(f"scrape endpoint unreachable: {exc}") from exc
        # 500 and 408 carry a JSON error body; gateway errors do not.
        if response.status_code in _GATEWAY_ERRORS:
            raise RetryableNetworkError(f"scrape endpoint returned {response.status_code}")
        return response

    def __call__(self, descriptor: SearchJobDescriptor) -> ScrapeOutcome:
        body = self.request_body(descriptor)
        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
            retry=retry_if_exception_type(RetryableNetworkError),
            reraise=True,
        )
        response = retrying(self._post_once, body)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ScrapeError(
                f"scrape endpoint returned non-JSON response ({response.status_code})"
            ) from exc

        if not isinstance(payload, dict):
            raise ScrapeError("scrape endpoint returned an unexpected payload")
        if not payload.get("success"):
            error = payload.get("error") or f"HTTP {response.status_code}"
            details = payload.get("details")
            raise ScrapeError(f"{error}: {details}" if details else str(error))

        summary = payload.get("summary") or {}
        return ScrapeOutcome(
            jobs_found=_int_field(summary, "totalListingsFound"),
            jobs_saved=_int_field(summary, "jobsSaved"),
            jobs_skipped=_int_field(summary, "jobsSkipped"),
            jobs_failed=_int_field(summary, "jobsFailed"),
        )
