"""HTTP push to the shop mobile gateway."""
from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import requests

from ..config import settings

DEFAULT_RETRY_AFTER_SECONDS = 60


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> int:
    """Seconds to wait from a Retry-After header (delay-seconds or HTTP-date)."""
    text = (value or "").strip()
    if not text:
        return DEFAULT_RETRY_AFTER_SECONDS
    if text.isdigit():
        return int(text)
    try:
        retry_at = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(int((retry_at - now).total_seconds()), 0)


def send_mobile_push(target_id: str, payload: dict[str, Any]) -> tuple[bool, str | None]:
    """POST one notification to the mobile gateway; returns (ok, error)."""
    if not settings.MOBILE_PUSH_URL:
        return False, "MOBILE_PUSH_URL not configured"

    headers = {}
    if settings.MOBILE_PUSH_TOKEN:
        headers["Authorization"] = f"Bearer {settings.MOBILE_PUSH_TOKEN}"

    try:
        response = requests.post(
            settings.MOBILE_PUSH_URL,
            json={"target": target_id, "notification": payload},
            headers=headers,
            timeout=settings.MOBILE_PUSH_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        return False, f"EXCEPTION: {str(e)}"

    if response.status_code in (200, 201, 202, 204):
        return True, None
    if response.status_code == 429:
        return False, f"RATE_LIMIT:{parse_retry_after(response.headers.get('Retry-After'))}"
    if response.status_code in (404, 410):
        # Device unregistered; retrying cannot succeed.
        return False, "TARGET_GONE"
    return False, f"HTTP_{response.status_code}: {response.text[:200]}"
