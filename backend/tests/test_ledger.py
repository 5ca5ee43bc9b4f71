from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fgflow.database import Base
from fgflow.ledger import (
    InMemoryLedgerStore,
    LedgerConflict,
    SqlLedgerStore,
    ledger_key,
    ledger_path,
    split_path,
    versioned_update,
)
from fgflow import models  # noqa: F401


@pytest.fixture
def sql_ledger():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    try:
        yield SqlLedgerStore(session)
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request, sql_ledger):
    if request.param == "memory":
        return InMemoryLedgerStore()
    return sql_ledger


def test_ledger_key_escapes_path_separator() -> None:
    assert ledger_key("a/b") == "a%2Fb"
    assert ledger_path("dsreqs", "x/y") == "dsreqs/x%2Fy"
    assert split_path("/dsreqs/abc/") == ("dsreqs", "abc")
    with pytest.raises(ValueError):
        ledger_key("  ")


def test_set_get_update_and_children(store) -> None:
    store.set("dsreqs/b", {"status": "pending"})
    store.set("dsreqs/a", {"status": "pending"})
    store.set("dsreqs/a/nested", {"ignored": True})

    merged = store.update("dsreqs/a", {"status": "md_approved_forwarded_to_ho"})

    assert merged == {"status": "md_approved_forwarded_to_ho"}
    assert store.get("dsreqs/a") == {"status": "md_approved_forwarded_to_ho"}
    assert list(store.children("dsreqs")) == ["a", "b"]
    assert store.get("dsreqs/missing") is None


def test_push_keys_follow_insertion_order(store) -> None:
    first = store.push("productPriceHistory", {"newPrice": 100})
    second = store.push("productPriceHistory", {"newPrice": 120})

    assert first != second
    assert list(store.children("productPriceHistory").values())[-1] == {"newPrice": 120}


def test_compare_and_set_rejects_stale_version(store) -> None:
    assert store.compare_and_set("notificationOutbox/k", {"n": 1}, expected_version=0) == 1
    with pytest.raises(LedgerConflict):
        store.compare_and_set("notificationOutbox/k", {"n": 2}, expected_version=0)

    data, version = store.get_versioned("notificationOutbox/k")
    assert data == {"n": 1}
    assert store.compare_and_set("notificationOutbox/k", {"n": 3}, expected_version=version) == version + 1


def test_versioned_update_retries_after_concurrent_write(store) -> None:
    store.set("direct_shopTracking/shop-1", {"totalDispatches": 1})
    calls = []

    def increment(current):
        calls.append(current)
        if len(calls) == 1:
            # Another writer lands between our read and our write.
            store.set("direct_shopTracking/shop-1", {"totalDispatches": 5})
        return {"totalDispatches": current["totalDispatches"] + 1}

    result = versioned_update(store, "direct_shopTracking/shop-1", increment, attempts=3)

    assert result == {"totalDispatches": 6}
    assert store.get("direct_shopTracking/shop-1") == {"totalDispatches": 6}
    assert len(calls) == 2


def test_versioned_update_gives_up_after_attempts() -> None:
    store = InMemoryLedgerStore()
    store.set("x/y", {"n": 0})

    def always_conflict(current):
        store.set("x/y", {"n": current["n"] + 10})
        return {"n": -1}

    with pytest.raises(LedgerConflict):
        versioned_update(store, "x/y", always_conflict, attempts=2)


def test_versioned_update_skips_when_mutate_returns_none() -> None:
    store = InMemoryLedgerStore()

    assert versioned_update(store, "x/y", lambda current: None, attempts=1) is None
    assert store.get("x/y") is None


def test_in_memory_reads_are_copies() -> None:
    store = InMemoryLedgerStore()
    store.set("x/y", {"items": [1]})

    store.get("x/y")["items"].append(2)

    assert store.get("x/y") == {"items": [1]}
