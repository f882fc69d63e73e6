import json

import httpx
import pytest

from keyword_crawl.dedupe import DedupCache
from keyword_crawl.errors import NetworkError, ParseError, ScrapeError
from keyword_crawl.models import JobDetail, JobListing
from keyword_crawl.queue_builder import build_queue
from keyword_crawl.scrape import LocalScrapeAndStore, RemoteScrapeEndpoint, descriptor_tags
from keyword_crawl.storage import JobStore

ENDPOINT = "http://localhost:3000/api/scrape"


def _listing(job_id: str) -> JobListing:
    return JobListing(
        url=f"https://www.linkedin.com/jobs/view/dev-{job_id}",
        job_id=job_id,
        title=f"Developer {job_id}",
        company="Acme",
        location="Jaipur",
    )


def _detail(listing: JobListing) -> JobDetail:
    return JobDetail(
        listing=listing,
        title=listing.title,
        company=listing.company,
        location=listing.location,
        description="Write code.",
    )


def _descriptor(keyword: str = "python"):
    return build_queue([keyword], location="Jaipur", geo_id="101716408")[0]


def _local(store, cache, pages: dict[str, list[JobListing]], detail=_detail, **kwargs):
    def search(url: str) -> list[JobListing]:
        for keyword, listings in pages.items():
            if f"keywords={keyword}" in url:
                return listings
        return []

    return LocalScrapeAndStore(store, cache, search=search, detail=detail, sleep=lambda s: None, **kwargs)


def test_new_listings_are_saved(tmp_path) -> None:
    listings = [_listing(str(3800000000 + i)) for i in range(7)]

    with JobStore(tmp_path / "jobs.sqlite") as store:
        scrape = _local(store, DedupCache(), {"python": listings}, batch_size=3)
        outcome = scrape(_descriptor("python"))

        assert outcome.jobs_found == 7
        assert outcome.jobs_saved == 7
        assert outcome.jobs_skipped == 0
        assert store.count_jobs() == 7


def test_listing_shared_by_two_keywords_is_saved_once(tmp_path) -> None:
    shared = _listing("3811111111")
    fetched: list[str] = []

    def detail(listing: JobListing) -> JobDetail:
        fetched.append(listing.job_id)
        return _detail(listing)

    with JobStore(tmp_path / "jobs.sqlite") as store:
        scrape = _local(
            store,
            DedupCache(),
            {"python": [shared, _listing("3822222222")], "django": [shared]},
            detail=detail,
        )
        first = scrape(_descriptor("python"))
        second = scrape(_descriptor("django"))

        assert (first.jobs_saved, first.jobs_skipped) == (2, 0)
        assert (second.jobs_found, second.jobs_saved, second.jobs_skipped) == (1, 0, 1)
        assert fetched.count("3811111111") == 1
        assert store.count_jobs() == 2


def test_jobs_already_in_store_are_skipped_with_fresh_cache(tmp_path) -> None:
    listing = _listing("3833333333")

    with JobStore(tmp_path / "jobs.sqlite") as store:
        store.save_job(_detail(listing), keyword="python", category="Backend", source="test")
        cache = DedupCache()
        outcome = _local(store, cache, {"python": [listing]})(_descriptor("python"))

        assert (outcome.jobs_saved, outcome.jobs_skipped) == (0, 1)
        assert cache.seen(listing.url)


def test_max_jobs_caps_detail_fetches(tmp_path) -> None:
    listings = [_listing(str(3840000000 + i)) for i in range(10)]

    with JobStore(tmp_path / "jobs.sqlite") as store:
        outcome = _local(store, DedupCache(), {"python": listings}, max_jobs=4)(_descriptor("python"))

    assert outcome.jobs_found == 10
    assert outcome.jobs_saved == 4


def test_detail_failure_saves_degraded_record(tmp_path) -> None:
    def detail(listing: JobListing) -> JobDetail:
        raise ParseError("no description")

    with JobStore(tmp_path / "jobs.sqlite") as store:
        outcome = _local(store, DedupCache(), {"python": [_listing("3855555555")]}, detail=detail)(
            _descriptor("python")
        )
        row = store.conn.execute("SELECT degraded, category, tags FROM job_records").fetchone()

    assert outcome.jobs_saved == 1
    assert row["degraded"] == 1
    assert row["category"] == "Backend"
    assert json.loads(row["tags"]) == ["tech", "jaipur", "python"]


def test_save_failure_counts_as_failed_job(tmp_path) -> None:
    class BrokenStore(JobStore):
        def save_job(self, detail, **kwargs) -> None:
            raise RuntimeError("disk full")

    with BrokenStore(tmp_path / "jobs.sqlite") as store:
        outcome = _local(store, DedupCache(), {"python": [_listing("3866666666")]})(_descriptor("python"))

    assert outcome.jobs_failed == 1
    assert outcome.jobs_saved == 0


def test_job_stored_after_first_check_is_skipped_at_save(tmp_path) -> None:
    listing = _listing("3877777777")

    with JobStore(tmp_path / "jobs.sqlite") as store:

        def detail(item: JobListing) -> JobDetail:
            # Another keyword's run stores the same job while details are fetched.
            store.save_job(_detail(item), keyword="django", category="Backend", source="test")
            return _detail(item)

        outcome = _local(store, DedupCache(), {"python": [listing]}, detail=detail)(_descriptor("python"))

        assert (outcome.jobs_saved, outcome.jobs_skipped, outcome.jobs_failed) == (0, 1, 0)
        assert store.count_jobs() == 1


def test_unique_conflict_on_write_counts_as_skipped(tmp_path) -> None:
    class UncheckedStore(JobStore):
        def exists(self, url, job_id=None) -> bool:
            return False

    listing = _listing("3888888888")

    with UncheckedStore(tmp_path / "jobs.sqlite") as store:
        store.save_job(_detail(listing), keyword="django", category="Backend", source="test")
        outcome = _local(store, DedupCache(), {"python": [listing]})(_descriptor("python"))

        assert (outcome.jobs_saved, outcome.jobs_skipped, outcome.jobs_failed) == (0, 1, 0)
        assert store.count_jobs() == 1


def test_same_url_twice_in_one_batch_is_saved_once(tmp_path) -> None:
    first = _listing("3899999990")
    twin = JobListing(
        url=first.url,
        job_id="3899999991",
        title=first.title,
        company=first.company,
        location=first.location,
    )

    with JobStore(tmp_path / "jobs.sqlite") as store:
        outcome = _local(store, DedupCache(), {"python": [first, twin]}, batch_size=5)(
            _descriptor("python")
        )

        assert outcome.jobs_found == 2
        assert (outcome.jobs_saved, outcome.jobs_skipped, outcome.jobs_failed) == (1, 1, 0)
        assert store.count_jobs() == 1


def test_search_failure_propagates(tmp_path) -> None:
    def search(url: str):
        raise NetworkError("search page unreachable")

    with JobStore(tmp_path / "jobs.sqlite") as store:
        scrape = LocalScrapeAndStore(store, DedupCache(), search=search, detail=_detail)
        with pytest.raises(NetworkError):
            scrape(_descriptor())


def test_no_listings_is_an_empty_outcome(tmp_path) -> None:
    with JobStore(tmp_path / "jobs.sqlite") as store:
        outcome = _local(store, DedupCache(), {})(_descriptor("python"))

    assert outcome.jobs_found == outcome.jobs_saved == 0


def test_descriptor_tags() -> None:
    assert descriptor_tags(_descriptor("React JS")) == ["tech", "jaipur", "react js"]


def test_remote_endpoint_maps_summary() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "success": True,
                "summary": {
                    "totalListingsFound": 25,
                    "jobsSaved": 9,
                    "jobsSkipped": 14,
                    "jobsFailed": 2,
                },
            },
        )

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        outcome = RemoteScrapeEndpoint(ENDPOINT, client=client)(_descriptor("react js"))

    assert (outcome.jobs_found, outcome.jobs_saved, outcome.jobs_skipped, outcome.jobs_failed) == (25, 9, 14, 2)
    assert bodies[0]["category"] == "Frontend"
    assert bodies[0]["maxJobs"] == 50
    assert bodies[0]["force"] is True
    assert bodies[0]["tags"] == ["tech", "jaipur", "react js"]
    assert "keywords=react+js" in bodies[0]["url"]


def test_remote_endpoint_retries_gateway_errors() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json={"success": True, "summary": {"jobsSaved": 1}})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        outcome = RemoteScrapeEndpoint(ENDPOINT, client=client, backoff_seconds=0)(_descriptor())

    assert calls["count"] == 2
    assert outcome.jobs_saved == 1


def test_remote_endpoint_error_payload_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"success": False, "error": "Scraping failed", "details": "blocked"})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ScrapeError, match="Scraping failed: blocked"):
            RemoteScrapeEndpoint(ENDPOINT, client=client)(_descriptor())


def test_remote_endpoint_transport_failure_raises_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(NetworkError):
            RemoteScrapeEndpoint(ENDPOINT, client=client, attempts=2, backoff_seconds=0)(_descriptor())
