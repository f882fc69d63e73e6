from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from keyword_crawl.errors import InvalidTransitionError


class DescriptorStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    DescriptorStatus.PENDING: {DescriptorStatus.PROCESSING},
    DescriptorStatus.PROCESSING: {DescriptorStatus.COMPLETED, DescriptorStatus.FAILED},
    DescriptorStatus.COMPLETED: set(),
    DescriptorStatus.FAILED: set(),
}


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat()


@dataclass(frozen=True)
class JobListing:
    url: str
    job_id: str
    title: str
    company: str
    location: str
    posted_date: str = ""
    entity_urn: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JobDetail:
    listing: JobListing
    title: str
    company: str
    location: str
    description: str
    job_type: str | None = None
    experience_level: str | None = None
    salary: str | None = None
    skills: tuple[str, ...] = ()
    degraded: bool = False

    @property
    def url(self) -> str:
        return self.listing.url

    @property
    def job_id(self) -> str:
        return self.listing.job_id


@dataclass(frozen=True)
class ScrapeOutcome:
    jobs_found: int = 0
    jobs_saved: int = 0
    jobs_skipped: int = 0
    jobs_failed: int = 0


@dataclass
class SearchJobDescriptor:
    """One keyword's search + scrape + persist cycle.

    Mutated in place by the driver. Status only moves forward:
    pending -> processing -> completed | failed.
    """

    keyword: str
    location: str
    geo_id: str
    search_url: str
    experience: str = ""
    status: DescriptorStatus = DescriptorStatus.PENDING
    jobs_found: int = 0
    jobs_saved: int = 0
    jobs_skipped: int = 0
    jobs_failed: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (DescriptorStatus.COMPLETED, DescriptorStatus.FAILED)

    def _transition(self, target: DescriptorStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"{self.keyword!r}: cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def mark_processing(self, now: datetime) -> None:
        self._transition(DescriptorStatus.PROCESSING)
        self.started_at = now

    def mark_completed(self, outcome: ScrapeOutcome, now: datetime) -> None:
        self._transition(DescriptorStatus.COMPLETED)
        self.jobs_found = outcome.jobs_found
        self.jobs_saved = outcome.jobs_saved
        self.jobs_skipped = outcome.jobs_skipped
        self.jobs_failed = outcome.jobs_failed
        self.completed_at = now

    def mark_failed(self, error: str, now: datetime) -> None:
        self._transition(DescriptorStatus.FAILED)
        self.error = error
        self.completed_at = now

    def to_dict(self) -> dict[str, Any]:
        return {
            "keyword": self.keyword,
            "location": self.location,
            "geoId": self.geo_id,
            "url": self.search_url,
            "status": self.status.value,
            "jobsFound": self.jobs_found,
            "jobsSaved": self.jobs_saved,
            "jobsSkipped": self.jobs_skipped,
            "jobsFailed": self.jobs_failed,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "error": self.error,
        }


@dataclass(frozen=True)
class KeywordFailure:
    keyword: str
    error: str


@dataclass(frozen=True)
class RunSummary:
    state: RunState
    total_descriptors: int
    completed_count: int
    failed_count: int
    pending_count: int
    total_found: int
    total_saved: int
    total_skipped: int
    total_failed_jobs: int
    top_keywords: list[tuple[str, int]]
    failed_keywords: list[KeywordFailure]
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return max((self.finished_at - self.started_at).total_seconds(), 0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "totalKeywords": self.total_descriptors,
            "completed": self.completed_count,
            "failed": self.failed_count,
            "pending": self.pending_count,
            "totalJobsFound": self.total_found,
            "totalJobsSaved": self.total_saved,
            "totalJobsSkipped": self.total_skipped,
            "totalJobsFailed": self.total_failed_jobs,
            "topKeywords": [
                {"keyword": keyword, "jobsSaved": saved} for keyword, saved in self.top_keywords
            ],
            "failedKeywords": [
                {"keyword": failure.keyword, "error": failure.error}
                for failure in self.failed_keywords
            ],
            "startedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
            "durationSeconds": self.duration_seconds,
            "error": self.error,
        }
