from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx

from keyword_crawl.config import Settings
from keyword_crawl.dedupe import DedupCache
from keyword_crawl.driver import ScrapeOperation, SequentialCrawlDriver
from keyword_crawl.errors import FatalSetupError, RunInProgressError
from keyword_crawl.keywords import build_experience_levels, build_keyword_list
from keyword_crawl.models import RunState, RunSummary, SearchJobDescriptor
from keyword_crawl.notifier_webhook import send_webhook_event
from keyword_crawl.queue_builder import build_queue
from keyword_crawl.ratelimit import Throttle, TokenBucket
from keyword_crawl.reporter import ProgressReporter, Sender
from keyword_crawl.scrape import LocalScrapeAndStore, RemoteScrapeEndpoint
from keyword_crawl.scrapers.linkedin import LinkedInClient
from keyword_crawl.storage import JobStore, open_store

logger = logging.getLogger(__name__)

StoreOpener = Callable[[Path], JobStore]
ScrapeFactory = Callable[[Settings, JobStore, DedupCache], AbstractContextManager[ScrapeOperation]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def default_scrape_factory(
    settings: Settings, store: JobStore, cache: DedupCache
) -> Iterator[ScrapeOperation]:
    category = settings.category or None
    if settings.scrape_mode == "remote":
        with httpx.Client(timeout=settings.scrape_timeout_seconds) as client:
            yield RemoteScrapeEndpoint(
                settings.scrape_endpoint_url,
                category=category,
                source=settings.source_name,
                max_jobs=settings.max_jobs_per_keyword,
                timeout_seconds=settings.scrape_timeout_seconds,
                attempts=settings.retry_attempts,
                client=client,
            )
        return

    with httpx.Client(timeout=settings.request_timeout_seconds, follow_redirects=True) as client:
        linkedin = LinkedInClient(
            client,
            attempts=settings.retry_attempts,
            user_agent=settings.user_agent,
        )
        yield LocalScrapeAndStore.from_client(
            store,
            cache,
            linkedin,
            max_jobs=settings.max_jobs_per_keyword,
            batch_size=settings.batch_size,
            category=category,
            source=settings.source_name,
        )


class CrawlScheduler:
    """Owns crawl runs: one queue, cache, reporter and driver per run.

    ``run_once`` runs synchronously. ``start`` runs immediately and then every
    ``interval_hours`` on a background thread until ``stop``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        open_store: StoreOpener = open_store,
        scrape_factory: ScrapeFactory = default_scrape_factory,
        send_event: Sender = send_webhook_event,
        sleep: Callable[[float], object] | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.settings = settings
        self._open_store = open_store
        self._scrape_factory = scrape_factory
        self._send_event = send_event
        self._sleep = sleep
        self._clock = clock
        self._now = now

        self.interval_hours = settings.interval_hours
        self.state = RunState.IDLE
        self.run_count = 0
        self.last_run_at: datetime | None = None
        self.last_summary: RunSummary | None = None
        self.queue: list[SearchJobDescriptor] = []

        self._run_lock = threading.Lock()
        self._driver: SequentialCrawlDriver | None = None
        self._stop_event: threading.Event | None = None

        self._cond = threading.Condition()
        self._periodic_thread: threading.Thread | None = None
        self._periodic_stop: threading.Event | None = None
        self._next_deadline: float | None = None
        self._last_started = 0.0

    def build_queue(self, max_keywords: int | None = None) -> list[SearchJobDescriptor]:
        keywords = build_keyword_list(self.settings.extra_keywords_csv, self.settings.keywords_csv)
        if max_keywords is not None:
            keywords = keywords[:max_keywords]
        levels = (
            build_experience_levels(self.settings.experience_levels_csv)
            if self.settings.use_experience_levels
            else None
        )
        return build_queue(
            keywords,
            location=self.settings.location,
            geo_id=self.settings.geo_id,
            experience_levels=levels,
        )

    def _make_reporter(self) -> ProgressReporter:
        return ProgressReporter(
            self.settings.webhook_url,
            send_event=self._send_event,
            timeout_seconds=self.settings.webhook_timeout_seconds,
            progress_every=self.settings.progress_every,
            source=self.settings.source_name,
            now=self._now,
        )

    def _make_throttle(self, stop_event: threading.Event) -> Throttle:
        # Both waits end early when a stop is requested.
        sleep = self._sleep or stop_event.wait
        bucket = TokenBucket(
            1,
            self.settings.max_keywords_per_minute / 60.0,
            clock=self._clock,
            sleep=sleep,
        )
        return Throttle(
            bucket,
            jitter=(self.settings.delay_min_seconds, self.settings.delay_max_seconds),
            sleep=sleep,
        )

    def run_once(self, max_keywords: int | None = None) -> RunSummary:
        if not self._run_lock.acquire(blocking=False):
            raise RunInProgressError("a crawl run is already in progress")
        try:
            return self._run(max_keywords)
        finally:
            self._driver = None
            self._stop_event = None
            self._run_lock.release()

    def _run(self, max_keywords: int | None) -> RunSummary:
        self.run_count += 1
        self.last_run_at = self._now()
        self.state = RunState.RUNNING
        self.queue = self.build_queue(max_keywords)
        reporter = self._make_reporter()
        cache = DedupCache()
        stop_event = threading.Event()
        self._stop_event = stop_event
        logger.info("crawl run #%d: %d keywords", self.run_count, len(self.queue))

        try:
            store = self._open_store(self.settings.jobs_db_path)
        except FatalSetupError as exc:
            logger.error("crawl run #%d aborted: %s", self.run_count, exc)
            return self._finish_failed(reporter, str(exc))

        state: RunState | None = None
        try:
            with store:
                with self._scrape_factory(self.settings, store, cache) as scrape:
                    driver = SequentialCrawlDriver(
                        scrape,
                        reporter=reporter,
                        throttle=self._make_throttle(stop_event),
                        scrape_timeout_seconds=self.settings.scrape_timeout_seconds,
                        run_budget_seconds=self.settings.run_budget_seconds,
                        stop_event=stop_event,
                        clock=self._clock,
                        now=self._now,
                    )
                    self._driver = driver
                    state = driver.run(self.queue)
                self._record_run(store, state, reporter.summary())
        except Exception as exc:
            if state is None:
                logger.exception("crawl run #%d failed", self.run_count)
                return self._finish_failed(reporter, str(exc) or type(exc).__name__)
            # The driver already reported the outcome; only teardown failed.
            logger.exception("crawl run #%d: cleanup failed after the run finished", self.run_count)

        summary = reporter.summary()
        self.state = state
        self.last_summary = summary
        logger.info(
            "crawl run #%d %s: saved=%d skipped=%d failed keywords=%d",
            self.run_count,
            state.value,
            summary.total_saved,
            summary.total_skipped,
            summary.failed_count,
        )
        return summary

    def _record_run(self, store: JobStore, state: RunState, summary: RunSummary) -> None:
        try:
            store.log_run(
                self.last_run_at.replace(microsecond=0).isoformat(),
                state=state.value,
                keywords=summary.total_descriptors,
                saved_count=summary.total_saved,
                skipped_count=summary.total_skipped,
                failed_count=summary.failed_count,
            )
        except sqlite3.Error as exc:
            logger.warning("could not record crawl run #%d: %s", self.run_count, exc)

    def _finish_failed(self, reporter: ProgressReporter, error: str) -> RunSummary:
        reporter.run_failed(error, self.queue)
        self.state = RunState.FAILED
        self.last_summary = reporter.summary()
        return self.last_summary

    def stop(self) -> None:
        """Stop the periodic loop and ask the active run to stop."""
        with self._cond:
            if self._periodic_stop is not None:
                self._periodic_stop.set()
            self._next_deadline = None
            self._cond.notify_all()
        stop_event = self._stop_event
        if stop_event is not None:
            logger.info("stopping active crawl run")
            stop_event.set()

    def start(self, interval_hours: float | None = None) -> bool:
        """Run now, then every ``interval_hours``. Returns False if already started.

        After a ``stop`` the new loop waits for the previous one, including a
        run it is still finishing, before its own immediate run.
        """
        if interval_hours is not None:
            self._check_interval(interval_hours)
            self.interval_hours = interval_hours
        if self.is_periodic:
            logger.warning("scheduler is already running")
            return False

        previous = self._periodic_thread
        stop_token = threading.Event()
        with self._cond:
            self._periodic_stop = stop_token
        self._periodic_thread = threading.Thread(
            target=self._periodic_loop,
            args=(stop_token, previous),
            name="keyword-crawl-scheduler",
            daemon=True,
        )
        self._periodic_thread.start()
        logger.info("scheduler started; runs every %s hours", self.interval_hours)
        return True

    def set_interval(self, interval_hours: float) -> None:
        self._check_interval(interval_hours)
        with self._cond:
            self.interval_hours = interval_hours
            if self._next_deadline is not None:
                self._next_deadline = self._last_started + interval_hours * 3600
                self._cond.notify_all()
        logger.info("scheduler interval set to %s hours", interval_hours)

    def join(self, timeout: float | None = None) -> None:
        if self._periodic_thread is not None:
            self._periodic_thread.join(timeout)

    @staticmethod
    def _check_interval(interval_hours: float) -> None:
        if interval_hours < 1:
            raise ValueError("interval must be at least 1 hour")

    @property
    def is_periodic(self) -> bool:
        thread = self._periodic_thread
        stop_token = self._periodic_stop
        return (
            thread is not None
            and thread.is_alive()
            and stop_token is not None
            and not stop_token.is_set()
        )

    @property
    def is_running(self) -> bool:
        return self.state == RunState.RUNNING

    def _periodic_loop(self, stop_token: threading.Event, previous: threading.Thread | None) -> None:
        if previous is not None:
            previous.join()

        while not stop_token.is_set():
            self._last_started = self._clock()
            try:
                self.run_once()
            except RunInProgressError:
                logger.warning("skipping scheduled run; previous run still active")

            with self._cond:
                if stop_token.is_set():
                    return
                self._next_deadline = self._last_started + self.interval_hours * 3600
                while not stop_token.is_set():
                    remaining = self._next_deadline - self._clock()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)

    def progress(self) -> dict[str, Any]:
        driver = self._driver
        total = len(self.queue)
        current = sum(1 for descriptor in self.queue if descriptor.is_terminal)
        return {
            "current": current,
            "total": total,
            "percent": round(current / total * 100) if total else 0,
            "currentKeyword": driver.current_keyword if driver is not None else None,
        }

    def status(self) -> dict[str, Any]:
        next_run_at = None
        if self.is_periodic and self.last_run_at is not None:
            next_run_at = self.last_run_at + timedelta(hours=self.interval_hours)
        return {
            "state": self.state.value,
            "isRunning": self.is_running,
            "isScheduled": self.is_periodic,
            "lastRunAt": self.last_run_at.isoformat() if self.last_run_at else None,
            "runCount": self.run_count,
            "nextRunAt": next_run_at.isoformat() if next_run_at else None,
            "intervalHours": self.interval_hours,
            "progress": self.progress(),
        }
