from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from keyword_crawl.errors import NetworkError
from keyword_crawl.models import RunState, ScrapeOutcome, SearchJobDescriptor
from keyword_crawl.ratelimit import Throttle
from keyword_crawl.reporter import ProgressReporter

logger = logging.getLogger(__name__)

ScrapeOperation = Callable[[SearchJobDescriptor], ScrapeOutcome]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SequentialCrawlDriver:
    """Runs the scrape operation for each descriptor, one at a time.

    A failed descriptor never aborts the run. ``stop()`` is checked before each
    descriptor; work already in flight finishes or times out on its own.
    """

    def __init__(
        self,
        scrape: ScrapeOperation,
        *,
        reporter: ProgressReporter | None = None,
        throttle: Throttle | None = None,
        scrape_timeout_seconds: float | None = None,
        run_budget_seconds: float | None = None,
        stop_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.scrape = scrape
        self.reporter = reporter or ProgressReporter()
        self.throttle = throttle
        self.scrape_timeout_seconds = scrape_timeout_seconds
        self.run_budget_seconds = run_budget_seconds
        self._stop = stop_event or threading.Event()
        self._clock = clock
        self._now = now
        self.current_keyword: str | None = None
        self.stop_reason: str | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        logger.info("stop requested")
        self._stop.set()

    def _call_scrape(self, descriptor: SearchJobDescriptor) -> ScrapeOutcome:
        if self.scrape_timeout_seconds is None:
            return self.scrape(descriptor)

        result: dict[str, Any] = {}

        def target() -> None:
            try:
                result["outcome"] = self.scrape(descriptor)
            except Exception as exc:
                result["error"] = exc

        # Daemon thread: a timed-out scrape is abandoned and never holds up interpreter exit.
        worker = threading.Thread(target=target, name=f"scrape-{descriptor.keyword}", daemon=True)
        worker.start()
        worker.join(self.scrape_timeout_seconds)
        if worker.is_alive():
            raise NetworkError(f"scrape timed out after {self.scrape_timeout_seconds:g}s")
        if "error" in result:
            raise result["error"]
        return result["outcome"]

    def _budget_exhausted(self, started: float) -> bool:
        if self.run_budget_seconds is None:
            return False
        return self._clock() - started >= self.run_budget_seconds

    def run(self, queue: Sequence[SearchJobDescriptor]) -> RunState:
        started = self._clock()
        self.stop_reason = None
        self.reporter.run_started(queue)
        logger.info("processing %d keywords", len(queue))

        state = RunState.COMPLETED
        for index, descriptor in enumerate(queue):
            if self._stop.is_set():
                self.stop_reason = "stop requested"
                state = RunState.STOPPED
                break
            if self._budget_exhausted(started):
                self.stop_reason = "run budget exhausted"
                state = RunState.STOPPED
                logger.info("run budget of %ss exhausted; not starting new keywords", self.run_budget_seconds)
                break

            self.current_keyword = descriptor.keyword
            logger.info("[%d/%d] processing %r", index + 1, len(queue), descriptor.keyword)
            descriptor.mark_processing(self._now())
            try:
                outcome = self._call_scrape(descriptor)
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.warning("keyword %r failed: %s", descriptor.keyword, message)
                descriptor.mark_failed(message, self._now())
            else:
                descriptor.mark_completed(outcome, self._now())
                logger.info(
                    "keyword %r: found=%d saved=%d skipped=%d",
                    descriptor.keyword,
                    outcome.jobs_found,
                    outcome.jobs_saved,
                    outcome.jobs_skipped,
                )
            self.reporter.descriptor_finished(descriptor)

            has_next = index < len(queue) - 1
            if has_next and self.throttle is not None and not self._stop.is_set():
                self.throttle.wait()

        self.current_keyword = None
        self.reporter.run_finished(state)
        return state
