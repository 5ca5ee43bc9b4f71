"""FastAPI dependencies: ledger backend selection and workflow hooks."""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .ledger import InMemoryLedgerStore, LedgerStore, SqlLedgerStore
from .use_cases.workflow_hooks import DEFAULT_HOOKS, WorkflowHooks


@lru_cache(maxsize=1)
def get_memory_ledger() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


def get_ledger(db: Session = Depends(get_db)) -> LedgerStore:
    backend = settings.LEDGER_BACKEND.strip().lower()
    if backend == "memory":
        return get_memory_ledger()
    return SqlLedgerStore(db)


def get_hooks() -> WorkflowHooks:
    return DEFAULT_HOOKS
