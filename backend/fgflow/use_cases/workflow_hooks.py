"""Injectable collaborators shared by workflow use-cases."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..ledger import new_push_key
from ..services.release_codes import generate_release_code
from ..time_utils import now_ms


@dataclass(frozen=True)
class WorkflowHooks:
    """Clock, id and release-code sources; tests replace them with fixed values."""

    now_ms: Callable[[], int] = now_ms
    new_id: Callable[[], str] = new_push_key
    generate_release_code: Callable[[], str] = generate_release_code


DEFAULT_HOOKS = WorkflowHooks()
