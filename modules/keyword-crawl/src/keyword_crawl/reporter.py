from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from keyword_crawl.models import (
    DescriptorStatus,
    KeywordFailure,
    RunState,
    RunSummary,
    SearchJobDescriptor,
)
from keyword_crawl.notifier_webhook import send_webhook_event

logger = logging.getLogger(__name__)

Sender = Callable[[str, dict[str, Any], float], None]

DEFAULT_SOURCE = "keyword-crawl"

_FINISH_EVENTS = {
    RunState.COMPLETED: "scraping_completed",
    RunState.STOPPED: "scraping_stopped",
    RunState.FAILED: "scraping_failed",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProgressReporter:
    """Rolling run summary plus best-effort webhook events.

    Events go out at run start, after every descriptor, every ``progress_every``
    finished descriptors, and at run end. A failing sink is logged and ignored.
    """

    def __init__(
        self,
        webhook_url: str = "",
        *,
        send_event: Sender = send_webhook_event,
        timeout_seconds: float = 5.0,
        progress_every: int = 5,
        top_n: int = 5,
        source: str = DEFAULT_SOURCE,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        if progress_every < 1:
            raise ValueError("progress_every must be at least 1")
        self.webhook_url = webhook_url
        self.send_event = send_event
        self.timeout_seconds = timeout_seconds
        self.progress_every = progress_every
        self.top_n = top_n
        self.source = source
        self._now = now
        self._queue: list[SearchJobDescriptor] = []
        self._finished = 0
        self._state = RunState.IDLE
        self._started_at: datetime | None = None
        self._finished_at: datetime | None = None
        self._error: str | None = None
        self.events_sent = 0
        self.events_failed = 0

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        if not self.webhook_url:
            logger.debug("no webhook configured; dropping %s event", event)
            return
        body = {
            "event": event,
            "timestamp": self._now().replace(microsecond=0).isoformat(),
            "source": self.source,
            **payload,
        }
        try:
            self.send_event(self.webhook_url, body, self.timeout_seconds)
            self.events_sent += 1
        except Exception as exc:
            self.events_failed += 1
            logger.warning("failed to send %s event: %s", event, exc)

    def run_started(self, queue: Sequence[SearchJobDescriptor]) -> None:
        self._queue = list(queue)
        self._finished = 0
        self._state = RunState.RUNNING
        self._started_at = self._now()
        self._finished_at = None
        self._error = None
        self._emit(
            "scraping_started",
            {
                "totalKeywords": len(self._queue),
                "keywords": [descriptor.keyword for descriptor in self._queue],
            },
        )

    def descriptor_finished(self, descriptor: SearchJobDescriptor) -> None:
        self._finished += 1
        if descriptor.status == DescriptorStatus.COMPLETED:
            self._emit("keyword_completed", {"success": True, **descriptor.to_dict()})
        else:
            self._emit("keyword_failed", {"success": False, **descriptor.to_dict()})

        if self._finished % self.progress_every == 0:
            self._emit("progress", self.progress())

    def run_finished(self, state: RunState) -> None:
        self._state = state
        self._finished_at = self._now()
        summary = self.summary()
        payload = summary.to_dict()
        payload["results"] = [
            descriptor.to_dict() for descriptor in self._queue if descriptor.is_terminal
        ][-10:]
        self._emit(_FINISH_EVENTS.get(state, "scraping_completed"), payload)

    def run_failed(self, error: str, queue: Sequence[SearchJobDescriptor] | None = None) -> None:
        if queue is not None:
            self._queue = list(queue)
        self._state = RunState.FAILED
        self._error = error
        if self._started_at is None:
            self._started_at = self._now()
        self._finished_at = self._now()
        self._emit("scraping_failed", self.summary().to_dict())

    def progress(self) -> dict[str, Any]:
        total = len(self._queue)
        saved = sum(descriptor.jobs_saved for descriptor in self._queue)
        found = sum(descriptor.jobs_found for descriptor in self._queue)
        return {
            "completedKeywords": self._finished,
            "totalKeywords": total,
            "progress": round(self._finished / total * 100) if total else 0,
            "totalJobsSaved": saved,
            "totalJobsFound": found,
        }

    def summary(self) -> RunSummary:
        completed = [d for d in self._queue if d.status == DescriptorStatus.COMPLETED]
        failed = [d for d in self._queue if d.status == DescriptorStatus.FAILED]
        pending = [d for d in self._queue if d.status == DescriptorStatus.PENDING]

        productive = sorted(
            (d for d in completed if d.jobs_saved > 0),
            key=lambda d: d.jobs_saved,
            reverse=True,
        )
        return RunSummary(
            state=self._state,
            total_descriptors=len(self._queue),
            completed_count=len(completed),
            failed_count=len(failed),
            pending_count=len(pending),
            total_found=sum(d.jobs_found for d in self._queue),
            total_saved=sum(d.jobs_saved for d in self._queue),
            total_skipped=sum(d.jobs_skipped for d in self._queue),
            total_failed_jobs=sum(d.jobs_failed for d in self._queue),
            top_keywords=[(d.keyword, d.jobs_saved) for d in productive[: self.top_n]],
            failed_keywords=[KeywordFailure(d.keyword, d.error or "unknown error") for d in failed],
            started_at=self._started_at,
            finished_at=self._finished_at,
            error=self._error,
        )


def format_summary(summary: RunSummary) -> str:
    duration = summary.duration_seconds
    success_rate = (
        round(summary.total_saved / summary.total_found * 100) if summary.total_found else 0
    )
    lines = [
        f"keyword crawl {summary.state.value}",
        (
            f"keywords {summary.total_descriptors} | completed {summary.completed_count} "
            f"| failed {summary.failed_count} | pending {summary.pending_count}"
        ),
        (
            f"jobs found {summary.total_found} | saved {summary.total_saved} "
            f"| skipped {summary.total_skipped} | failed {summary.total_failed_jobs} "
            f"| success rate {success_rate}%"
        ),
    ]
    if duration is not None:
        lines.append(f"duration {round(duration)}s")
    if summary.error:
        lines.append(f"error: {summary.error}")

    if summary.top_keywords:
        lines.append("")
        lines.append("top keywords")
        for keyword, saved in summary.top_keywords:
            lines.append(f"- {keyword}: {saved} jobs")

    if summary.failed_keywords:
        lines.append("")
        lines.append("failed keywords")
        for failure in summary.failed_keywords:
            lines.append(f"- {failure.keyword}: {failure.error}")

    return "\n".join(lines)
