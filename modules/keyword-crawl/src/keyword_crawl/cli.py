from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone

from keyword_crawl.config import (
    assert_required_envs,
    load_settings,
    mask_secret,
    missing_envs,
    required_envs_for,
)
from keyword_crawl.errors import FatalSetupError
from keyword_crawl.models import RunState
from keyword_crawl.notifier_webhook import send_webhook_event
from keyword_crawl.reporter import format_summary
from keyword_crawl.scheduler import CrawlScheduler
from keyword_crawl.storage import open_store


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="keyword-crawl")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one crawl over the keyword queue")
    run_parser.add_argument("--max-keywords", type=int, default=None)

    queue_parser = subparsers.add_parser("queue", help="Print the search queue without crawling")
    queue_parser.add_argument("--max-keywords", type=int, default=None)

    subparsers.add_parser("healthcheck", help="Validate config and job store readiness")
    subparsers.add_parser("test-webhook", help="Send a test event to the progress webhook")

    schedule_parser = subparsers.add_parser(
        "schedule",
        help="Run now, then repeat every interval until interrupted",
    )
    schedule_parser.add_argument("--interval-hours", type=float, default=None)

    return parser


def _cmd_run(args: argparse.Namespace) -> int:
    settings = load_settings()
    _configure_logging(settings.log_level)
    assert_required_envs(required_envs_for(settings))

    summary = CrawlScheduler(settings).run_once(max_keywords=args.max_keywords)
    print(format_summary(summary))

    if summary.state == RunState.FAILED:
        return 1
    if summary.failed_count > 0 and summary.completed_count == 0:
        return 1
    return 0


def _cmd_queue(args: argparse.Namespace) -> int:
    settings = load_settings()
    queue = CrawlScheduler(settings).build_queue(max_keywords=args.max_keywords)
    for index, descriptor in enumerate(queue, start=1):
        print(f"{index:4d}. {descriptor.keyword} - {descriptor.search_url}")
    print(f"total: {len(queue)}")
    return 0


def _cmd_healthcheck() -> int:
    settings = load_settings()
    missing = missing_envs(required_envs_for(settings))
    if missing:
        print("missing required env vars:", ", ".join(missing))
        return 1

    try:
        with open_store(settings.jobs_db_path) as store:
            stored = store.count_jobs()
            last = store.last_run()
    except FatalSetupError as exc:
        print(f"job store check failed: {exc}")
        return 1

    print(f"job store ready: {settings.jobs_db_path} ({stored} jobs)")
    print(f"webhook: {mask_secret(settings.webhook_url, visible_prefix=12)}")
    print(f"scrape mode: {settings.scrape_mode}")
    if last is None:
        print("last run: none")
    else:
        print(f"last run: {last['run_at']} {last['state']} (saved {last['saved_count']})")
    print("healthcheck passed")
    return 0


def _cmd_test_webhook() -> int:
    settings = load_settings()
    assert_required_envs(("WEBHOOK_URL",))
    payload = {
        "event": "test",
        "message": "Testing webhook connection",
        "timestamp": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
        "source": settings.source_name,
        "status": "success",
    }
    try:
        send_webhook_event(settings.webhook_url, payload, settings.webhook_timeout_seconds)
    except Exception as exc:
        print(f"webhook test failed: {exc}")
        return 1
    print("webhook test event sent")
    return 0


def _cmd_schedule(args: argparse.Namespace) -> int:
    settings = load_settings()
    _configure_logging(settings.log_level)
    assert_required_envs(required_envs_for(settings))

    scheduler = CrawlScheduler(settings)
    scheduler.start(args.interval_hours)
    try:
        scheduler.join()
    except KeyboardInterrupt:
        print("stopping scheduler...")
        scheduler.stop()
        scheduler.join(timeout=settings.scrape_timeout_seconds)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "run":
            return _cmd_run(args)
        if args.command == "queue":
            return _cmd_queue(args)
        if args.command == "healthcheck":
            return _cmd_healthcheck()
        if args.command == "test-webhook":
            return _cmd_test_webhook()
        if args.command == "schedule":
            return _cmd_schedule(args)
    except ValueError as exc:
        print(exc)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
