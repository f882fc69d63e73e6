from __future__ import annotations

import hashlib
import logging
import random
import re
from urllib.parse import parse_qs, urlparse

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from keyword_crawl.errors import NetworkError

logger = logging.getLogger(__name__)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Safari/605.1.15",
)

_JOB_ID_QUERY_KEYS = ("currentJobId", "jobId", "job_id")
_JOB_ID_PATTERNS = (
    re.compile(r"jobPosting:(\d+)"),
    re.compile(r"/jobs/view/(?:[^/?#]*-)?(\d{6,})"),
    re.compile(r"/(\d{6,})(?:/)?$"),
)


class RetryableNetworkError(NetworkError):
    """Transport failure or 5xx/429 response; worth another attempt."""


def browser_headers(user_agent: str | None = None, referer: str | None = None) -> dict[str, str]:
    headers = {
        "User-Agent": user_agent or random.choice(USER_AGENTS),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Cache-Control": "max-age=0",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "same-origin",
        "DNT": "1",
    }
    if referer:
        headers["Referer"] = referer
    return headers


def _get_once(client: httpx.Client, url: str, headers: dict[str, str] | None) -> str:
    try:
        response = client.get(url, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        if status == 429 or status >= 500:
            raise RetryableNetworkError(f"GET {url} returned {status}") from exc
        raise NetworkError(f"GET {url} returned {status}") from exc
    except httpx.TransportError as exc:
        raise RetryableNetworkError(f"GET {url} failed: {exc}") from exc
    return response.text


def fetch_html(
    client: httpx.Client,
    url: str,
    *,
    attempts: int = 3,
    backoff_seconds: float = 1.0,
    headers: dict[str, str] | None = None,
) -> str:
    """GET ``url`` with up to ``attempts`` tries and linear backoff."""
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=backoff_seconds, increment=backoff_seconds),
        retry=retry_if_exception_type(RetryableNetworkError),
        before_sleep=lambda state: logger.warning(
            "retrying %s (attempt %d/%d)", url, state.attempt_number, attempts
        ),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            return _get_once(client, url, headers)
    raise NetworkError(f"GET {url} failed")  # pragma: no cover - reraise=True exits above


def extract_job_id(url: str) -> str:
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    for key in _JOB_ID_QUERY_KEYS:
        values = query.get(key)
        if values and values[0].strip():
            return values[0].strip()

    for pattern in _JOB_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)

    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]
    return f"hash:{digest}"


def clean_spaces(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()
