from __future__ import annotations

from typing import Any

import httpx


def send_webhook_event(webhook_url: str, payload: dict[str, Any], timeout_seconds: float = 5.0) -> None:
    response = httpx.post(
        webhook_url,
        json=payload,
        timeout=timeout_seconds,
        follow_redirects=True,
    )
    response.raise_for_status()
