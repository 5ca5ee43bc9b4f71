"""
Ledger Store: the shared key-path document store that is the system of record.

Every workflow entity lives at a slash-separated path (``dsreqs/{id}``,
``externalDispatches/{id}``, ...). The store offers get / set / update / push
primitives plus ``compare_and_set`` for version-checked writes. There are no
transactions across paths; plain ``update`` is last-write-wins.
"""
from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Protocol
from uuid import uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import LedgerDocument
from .time_utils import now_ms

logger = logging.getLogger(__name__)


class LedgerConflict(Exception):
    """A version-checked write lost against a concurrent writer."""

    def __init__(self, path: str, expected_version: int):
        super().__init__(f"Ledger document {path} changed (expected version {expected_version})")
        self.path = path
        self.expected_version = expected_version


def ledger_key(value: Any) -> str:
    """Escape one path segment so user text cannot open a new path level."""
    text = str(value).strip()
    if not text:
        raise ValueError("Ledger key must not be empty")
    return text.replace("%", "%25").replace("/", "%2F")


def ledger_path(*segments: Any) -> str:
    return "/".join(ledger_key(segment) for segment in segments)


def split_path(path: str) -> tuple[str, str]:
    normalized = path.strip("/")
    if not normalized:
        raise ValueError("Ledger path must not be empty")
    parent, _, key = normalized.rpartition("/")
    return parent, key


_push_lock = threading.Lock()
_last_push = [0, 0]


def new_push_key() -> str:
    """Time-ordered key: lexical order of children follows insertion order."""
    with _push_lock:
        stamp = now_ms()
        if stamp <= _last_push[0]:
            stamp, seq = _last_push[0], _last_push[1] + 1
        else:
            seq = 0
        _last_push[:] = [stamp, seq]
    return f"{stamp:013d}{seq:04d}{uuid4().hex[:6]}"


class LedgerStore(Protocol):
    def get(self, path: str) -> Any | None: ...

    def get_versioned(self, path: str) -> tuple[Any | None, int]: ...

    def set(self, path: str, value: Any) -> None: ...

    def update(self, path: str, values: dict[str, Any]) -> dict[str, Any]: ...

    def push(self, path: str, value: Any) -> str: ...

    def children(self, path: str) -> dict[str, Any]: ...

    def compare_and_set(self, path: str, value: Any, *, expected_version: int) -> int: ...


class InMemoryLedgerStore:
    """Process-local ledger used for demos (LEDGER_BACKEND=memory) and tests."""

    def __init__(self) -> None:
        self._docs: dict[str, tuple[Any, int]] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> Any | None:
        data, _version = self.get_versioned(path)
        return data

    def get_versioned(self, path: str) -> tuple[Any | None, int]:
        path = path.strip("/")
        with self._lock:
            data, version = self._docs.get(path, (None, 0))
        return copy.deepcopy(data), version

    def set(self, path: str, value: Any) -> None:
        path = path.strip("/")
        split_path(path)
        with self._lock:
            _data, version = self._docs.get(path, (None, 0))
            self._docs[path] = (copy.deepcopy(value), version + 1)

    def update(self, path: str, values: dict[str, Any]) -> dict[str, Any]:
        current = self.get(path) or {}
        merged = {**current, **values}
        self.set(path, merged)
        return merged

    def push(self, path: str, value: Any) -> str:
        key = new_push_key()
        self.set(f"{path.strip('/')}/{key}", value)
        return key

    def children(self, path: str) -> dict[str, Any]:
        prefix = path.strip("/")
        with self._lock:
            items = [
                (doc_path.rpartition("/")[2], data)
                for doc_path, (data, _version) in self._docs.items()
                if doc_path.rpartition("/")[0] == prefix
            ]
        return {key: copy.deepcopy(data) for key, data in sorted(items)}

    def compare_and_set(self, path: str, value: Any, *, expected_version: int) -> int:
        path = path.strip("/")
        split_path(path)
        with self._lock:
            _data, version = self._docs.get(path, (None, 0))
            if version != expected_version:
                raise LedgerConflict(path, expected_version)
            self._docs[path] = (copy.deepcopy(value), version + 1)
            return version + 1


class SqlLedgerStore:
    """Ledger backed by the ``ledger_documents`` table; every write commits."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, path: str) -> Any | None:
        data, _version = self.get_versioned(path)
        return data

    def get_versioned(self, path: str) -> tuple[Any | None, int]:
        # Column select bypasses the identity map so other writers are visible.
        row = self.db.execute(
            select(LedgerDocument.data, LedgerDocument.version).where(
                LedgerDocument.path == path.strip("/")
            )
        ).first()
        if row is None:
            return None, 0
        return row.data, int(row.version)

    def set(self, path: str, value: Any) -> None:
        path = path.strip("/")
        try:
            self._upsert(path, value)
            self.db.commit()
        except IntegrityError:
            # Lost an insert race; the row exists now, so overwrite it.
            self.db.rollback()
            self._update_row(path, value)
            self.db.commit()

    def update(self, path: str, values: dict[str, Any]) -> dict[str, Any]:
        current = self.get(path) or {}
        merged = {**current, **values}
        self.set(path, merged)
        return merged

    def push(self, path: str, value: Any) -> str:
        key = new_push_key()
        self.set(f"{path.strip('/')}/{key}", value)
        return key

    def children(self, path: str) -> dict[str, Any]:
        rows = self.db.execute(
            select(LedgerDocument.key, LedgerDocument.data)
            .where(LedgerDocument.parent == path.strip("/"))
            .order_by(LedgerDocument.key.asc())
        ).all()
        return {row.key: row.data for row in rows}

    def compare_and_set(self, path: str, value: Any, *, expected_version: int) -> int:
        path = path.strip("/")
        if expected_version == 0:
            parent, key = split_path(path)
            try:
                self.db.execute(
                    insert(LedgerDocument).values(path=path, parent=parent, key=key, data=value, version=1)
                )
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise LedgerConflict(path, expected_version) from exc
            return 1

        result = self.db.execute(
            update(LedgerDocument)
            .where(LedgerDocument.path == path, LedgerDocument.version == expected_version)
            .values(data=value, version=expected_version + 1)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.debug(f"Version conflict on {path} (expected {expected_version})")
            raise LedgerConflict(path, expected_version)
        self.db.commit()
        return expected_version + 1

    def _update_row(self, path: str, value: Any) -> int:
        result = self.db.execute(
            update(LedgerDocument)
            .where(LedgerDocument.path == path)
            .values(data=value, version=LedgerDocument.version + 1)
        )
        return result.rowcount

    def _upsert(self, path: str, value: Any) -> None:
        if self._update_row(path, value) == 0:
            parent, key = split_path(path)
            self.db.execute(
                insert(LedgerDocument).values(path=path, parent=parent, key=key, data=value, version=1)
            )


def versioned_update(
    ledger: LedgerStore,
    path: str,
    mutate: Callable[[Any | None], Any | None],
    *,
    attempts: int,
) -> Any | None:
    """
    Read-modify-write guarded by the document version.

    ``mutate`` receives the current document (or None) and returns the new one,
    or None to leave the document untouched. The whole read-modify-write is
    retried on LedgerConflict; the last conflict is re-raised once attempts run
    out.
    """
    last_exc: LedgerConflict | None = None
    for attempt in range(max(attempts, 1)):
        current, version = ledger.get_versioned(path)
        updated = mutate(current)
        if updated is None:
            return None
        try:
            ledger.compare_and_set(path, updated, expected_version=version)
            return updated
        except LedgerConflict as exc:
            last_exc = exc
            logger.warning(f"Retry {attempt + 1}/{attempts} after version conflict on {path}")
    raise last_exc
