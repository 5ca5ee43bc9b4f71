"""Release code generation: ``YYMMDDHHmm`` followed by six base-36 characters."""

from __future__ import annotations

import re
import secrets
import string
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from ..config import settings

RELEASE_CODE_ALPHABET = string.digits + string.ascii_uppercase
RELEASE_CODE_SUFFIX_LENGTH = 6
RELEASE_CODE_PATTERN = re.compile(r"^\d{10}[0-9A-Z]{6}$")


def generate_release_code(
    *,
    at: datetime | None = None,
    choice: Callable[[str], str] = secrets.choice,
) -> str:
    """
    Build a release code such as ``2503071405A1B2C3``.

    Uniqueness is probabilistic only: two dispatches in the same minute collide
    when their random suffixes match. No lookup is made against existing codes.
    """
    stamp = at or datetime.now(ZoneInfo(settings.RELEASE_CODE_TIMEZONE))
    suffix = "".join(choice(RELEASE_CODE_ALPHABET) for _ in range(RELEASE_CODE_SUFFIX_LENGTH))
    return f"{stamp:%y%m%d%H%M}{suffix}"


def is_release_code(value: str | None) -> bool:
    return bool(value) and RELEASE_CODE_PATTERN.match(value) is not None
