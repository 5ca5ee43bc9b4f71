from __future__ import annotations

from itertools import count

import pytest

from fgflow.ledger import InMemoryLedgerStore
from fgflow.schemas import Actor
from fgflow.use_cases.workflow_hooks import WorkflowHooks

FIXED_NOW_MS = 1_741_356_300_000  # 2025-03-07 14:05 UTC
FIXED_RELEASE_CODE = "2503071405A1B2C3"

USERS = {
    "md-1": {"displayName": "Maya Director", "role": "MainDirector", "isActive": True},
    "ho-1": {"displayName": "Hiran Ops", "role": "HeadOfOperations", "isActive": True},
    "fg-1": {"displayName": "Farah Store", "role": "FinishedGoodsStoreManager", "isActive": True},
    "shop-1": {"displayName": "Corner Shop", "role": "DirectShop", "isActive": True},
    "dist-1": {"displayName": "North Distributors", "role": "Distributor", "isActive": True},
    "dr-1": {"displayName": "Ravi Rep", "role": "DirectRepresentative", "isActive": True},
    "ho-old": {"displayName": "Former HO", "role": "HeadOfOperations", "isActive": False},
}


@pytest.fixture
def hooks() -> WorkflowHooks:
    ids = count(1)
    return WorkflowHooks(
        now_ms=lambda: FIXED_NOW_MS,
        new_id=lambda: f"id-{next(ids):04d}",
        generate_release_code=lambda: FIXED_RELEASE_CODE,
    )


@pytest.fixture
def ledger() -> InMemoryLedgerStore:
    store = InMemoryLedgerStore()
    for user_id, user in USERS.items():
        store.set(f"users/{user_id}", user)
    return store


def _actor(user_id: str) -> Actor:
    user = USERS[user_id]
    return Actor(id=user_id, name=user["displayName"], role=user["role"])


@pytest.fixture
def md() -> Actor:
    return _actor("md-1")


@pytest.fixture
def ho() -> Actor:
    return _actor("ho-1")


@pytest.fixture
def fg() -> Actor:
    return _actor("fg-1")


@pytest.fixture
def shop() -> Actor:
    return _actor("shop-1")


@pytest.fixture
def distributor() -> Actor:
    return _actor("dist-1")
