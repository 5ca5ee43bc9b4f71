from __future__ import annotations

import pytest
from fastapi import HTTPException

from fgflow.auth import ROLE_PERMISSIONS, PermissionChecker, check_permission
from fgflow.schemas import Actor


@pytest.mark.parametrize(
    ("role", "permission", "allowed"),
    [
        ("MainDirector", "canApproveDirectShop", True),
        ("MainDirector", "canDispatch", False),
        ("HeadOfOperations", "canApproveSales", True),
        ("FinishedGoodsStoreManager", "canDispatch", True),
        ("FinishedGoodsStoreManager", "canManagePricing", True),
        ("FinishedGoodsStoreManager", "canApproveDirectShop", False),
        ("DirectShop", "canSubmitDirectShop", True),
        ("DirectShop", "canViewRequests", False),
        ("Distributor", "canSubmitSales", True),
        ("DirectRepresentative", "canSubmitDirectShop", False),
        ("fg", "canDispatch", True),
        ("Stranger", "canViewRequests", False),
    ],
)
def test_role_permission_matrix(role: str, permission: str, allowed: bool) -> None:
    assert check_permission(Actor(id="u1", name="User", role=role), permission) is allowed


def test_only_fg_store_dispatches() -> None:
    dispatchers = {role for role, permissions in ROLE_PERMISSIONS.items() if permissions.get("canDispatch")}

    assert dispatchers == {"FinishedGoodsStoreManager"}


def test_permission_checker_returns_actor_or_raises_forbidden() -> None:
    checker = PermissionChecker("canManagePricing")
    fg = Actor(id="fg-1", name="Farah", role="FinishedGoodsStoreManager")

    assert checker(actor=fg) is fg
    with pytest.raises(HTTPException) as exc:
        checker(actor=Actor(id="md-1", name="Maya", role="MainDirector"))
    assert exc.value.status_code == 403
