from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from pathlib import Path

from keyword_crawl.errors import FatalSetupError, PersistenceConflict
from keyword_crawl.models import JobDetail


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class JobStore(AbstractContextManager["JobStore"]):
    """SQLite store of saved jobs.

    ``url`` and ``job_id`` are unique; that constraint is the real duplicate
    guard. One connection is shared by the persistence batch threads, so every
    statement runs under ``_lock``.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS job_records (
                    job_id TEXT NOT NULL UNIQUE,
                    url TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    company TEXT NOT NULL,
                    location TEXT NOT NULL,
                    description TEXT NOT NULL,
                    job_type TEXT,
                    experience_level TEXT,
                    salary TEXT,
                    skills TEXT NOT NULL,
                    category TEXT NOT NULL,
                    tags TEXT NOT NULL,
                    source TEXT NOT NULL,
                    search_keyword TEXT NOT NULL,
                    entity_urn TEXT,
                    degraded INTEGER NOT NULL DEFAULT 0,
                    scraped_at TEXT NOT NULL
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS run_logs (
                    run_at TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    keywords INTEGER NOT NULL,
                    saved_count INTEGER NOT NULL,
                    skipped_count INTEGER NOT NULL,
                    failed_count INTEGER NOT NULL
                )
                """
            )

    def exists(self, url: str, job_id: str | None = None) -> bool:
        with self._lock:
            row = self.conn.execute(
                """
                SELECT 1 FROM job_records
                WHERE url = ? OR (? IS NOT NULL AND job_id = ?)
                LIMIT 1
                """,
                (url, job_id, job_id),
            ).fetchone()
        return row is not None

    def save_job(
        self,
        detail: JobDetail,
        *,
        keyword: str,
        category: str,
        source: str,
        tags: list[str] | None = None,
        scraped_at_utc: str | None = None,
    ) -> None:
        scraped_at = scraped_at_utc or _utc_now_iso()
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    """
                    INSERT INTO job_records (
                        job_id, url, title, company, location, description, job_type,
                        experience_level, salary, skills, category, tags, source,
                        search_keyword, entity_urn, degraded, scraped_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        detail.job_id,
                        detail.url,
                        detail.title,
                        detail.company,
                        detail.location,
                        detail.description,
                        detail.job_type,
                        detail.experience_level,
                        detail.salary,
                        json.dumps(list(detail.skills)),
                        category,
                        json.dumps(tags or []),
                        source,
                        keyword,
                        detail.listing.entity_urn or None,
                        int(detail.degraded),
                        scraped_at,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise PersistenceConflict(f"job already stored: {detail.url}") from exc

    def count_jobs(self) -> int:
        with self._lock:
            row = self.conn.execute("SELECT COUNT(*) AS c FROM job_records").fetchone()
        return int(row["c"]) if row else 0

    def log_run(
        self,
        run_at_utc: str,
        *,
        state: str,
        keywords: int,
        saved_count: int,
        skipped_count: int,
        failed_count: int,
    ) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO run_logs (
                    run_at, state, keywords, saved_count, skipped_count, failed_count
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (run_at_utc, state, keywords, saved_count, skipped_count, failed_count),
            )

    def last_run(self) -> dict[str, object] | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM run_logs ORDER BY run_at DESC LIMIT 1"
            ).fetchone()
        return dict(row) if row is not None else None

    def close(self) -> None:
        self.conn.close()

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()


def open_store(db_path: Path | str) -> JobStore:
    try:
        return JobStore(db_path)
    except (sqlite3.Error, OSError) as exc:
        raise FatalSetupError(f"cannot open job store at {db_path}: {exc}") from exc
