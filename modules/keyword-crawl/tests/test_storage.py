import pytest

from keyword_crawl.errors import FatalSetupError, PersistenceConflict
from keyword_crawl.models import JobDetail, JobListing
from keyword_crawl.storage import JobStore, open_store


def _sample_detail(job_id: str = "3812345678") -> JobDetail:
    listing = JobListing(
        url=f"https://www.linkedin.com/jobs/view/python-developer-{job_id}",
        job_id=job_id,
        title="Python Developer",
        company="Acme",
        location="Jaipur, Rajasthan",
    )
    return JobDetail(
        listing=listing,
        title=listing.title,
        company=listing.company,
        location=listing.location,
        description="Build APIs.",
        job_type="Full-time",
        skills=("Python", "Django"),
    )


def test_save_job_and_exists(tmp_path) -> None:
    detail = _sample_detail()

    with JobStore(tmp_path / "jobs.sqlite") as store:
        assert not store.exists(detail.url, detail.job_id)
        store.save_job(detail, keyword="python", category="Backend", source="linkedin_overnight")

        assert store.exists(detail.url)
        assert store.exists("https://other.example/url", detail.job_id)
        assert store.count_jobs() == 1


def test_duplicate_save_raises_conflict(tmp_path) -> None:
    detail = _sample_detail()

    with JobStore(tmp_path / "jobs.sqlite") as store:
        store.save_job(detail, keyword="python", category="Backend", source="test")
        with pytest.raises(PersistenceConflict):
            store.save_job(detail, keyword="django", category="Backend", source="test")
        assert store.count_jobs() == 1


def test_log_run_keeps_latest(tmp_path) -> None:
    with JobStore(tmp_path / "jobs.sqlite") as store:
        assert store.last_run() is None
        store.log_run(
            "2026-10-19T02:00:00+00:00",
            state="completed",
            keywords=36,
            saved_count=40,
            skipped_count=12,
            failed_count=1,
        )
        store.log_run(
            "2026-10-19T08:00:00+00:00",
            state="stopped",
            keywords=36,
            saved_count=5,
            skipped_count=2,
            failed_count=0,
        )
        last = store.last_run()
        assert last is not None
        assert last["state"] == "stopped"
        assert last["saved_count"] == 5


def test_open_store_wraps_failures(tmp_path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")

    with pytest.raises(FatalSetupError):
        open_store(blocker / "jobs.sqlite")
