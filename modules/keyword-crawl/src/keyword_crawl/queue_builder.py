from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import urlencode

from keyword_crawl.models import SearchJobDescriptor

SEARCH_BASE_URL = "https://www.linkedin.com/jobs/search"


def build_search_url(keyword: str, location: str, geo_id: str) -> str:
    params = {
        "keywords": keyword,
        "location": location,
        "geoId": geo_id,
        "position": "1",
        "pageNum": "0",
    }
    return f"{SEARCH_BASE_URL}?{urlencode(params)}"


def build_queue(
    keywords: Sequence[str],
    *,
    location: str,
    geo_id: str,
    experience_levels: Sequence[str] | None = None,
) -> list[SearchJobDescriptor]:
    """Expand keywords (optionally x experience levels) into pending descriptors.

    Output order follows input order; with levels, each keyword's variants
    are emitted together in level order. An empty level yields the bare keyword.
    """
    levels = list(experience_levels) if experience_levels else [""]
    queue: list[SearchJobDescriptor] = []
    for keyword in keywords:
        for level in levels:
            search_keyword = f"{keyword} {level}".strip()
            queue.append(
                SearchJobDescriptor(
                    keyword=search_keyword,
                    location=location,
                    geo_id=geo_id,
                    search_url=build_search_url(search_keyword, location, geo_id),
                    experience=level,
                )
            )
    return queue
