"""In-process dedup cache for job URLs.

Keys are 64-bit BLAKE2b digests of the normalized URL. The cache belongs to
one run and is cleared when the next run starts; it is a best-effort guard
only. The job store's unique constraints are what actually prevent duplicates.
"""

from __future__ import annotations

import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

_TRACKING_PARAMS = {"refid", "trackingid", "trk", "position", "pagenum", "lipi"}
_LINKEDIN_JOB_ID = re.compile(r"/jobs/view/(?:[^/?#]*-)?(\d{6,})")


def normalize_url(url: str) -> str:
    raw = (url or "").strip()
    parsed = urlparse(raw)
    host = parsed.netloc.casefold()

    if host.endswith("linkedin.com"):
        match = _LINKEDIN_JOB_ID.search(parsed.path)
        if match:
            return f"linkedin:job:{match.group(1)}"

    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key.casefold() not in _TRACKING_PARAMS and not key.casefold().startswith("utm_")
    ]
    path = parsed.path.rstrip("/") or "/"
    return urlunparse(
        (parsed.scheme.casefold(), host, path, "", urlencode(sorted(query)), "")
    )


def url_key(url: str) -> str:
    digest = hashlib.blake2b(normalize_url(url).encode("utf-8"), digest_size=8)
    return digest.hexdigest()


class DedupCache:
    def __init__(self) -> None:
        self._keys: set[str] = set()

    def seen(self, url: str) -> bool:
        return url_key(url) in self._keys

    def mark(self, url: str) -> None:
        self._keys.add(url_key(url))

    def check_and_mark(self, url: str) -> bool:
        """Mark ``url`` and return True if it had not been seen before.

        Not atomic across threads; concurrent callers may both see True.
        """
        key = url_key(url)
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def clear(self) -> None:
        self._keys.clear()

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and self.seen(url)

    def __len__(self) -> int:
        return len(self._keys)
