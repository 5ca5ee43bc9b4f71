"""Acting-user resolution and role permissions."""
import logging

from fastapi import Depends, Header, HTTPException, status

from .dependencies import get_ledger
from .ledger import LedgerStore, ledger_key
from .schemas import Actor
from .services.request_rules import (
    ROLE_DIRECT_REPRESENTATIVE,
    ROLE_DISTRIBUTOR,
    ROLE_FG_STORE_MANAGER,
    ROLE_HEAD_OF_OPERATIONS,
    ROLE_MAIN_DIRECTOR,
    ROLE_SHOP_OWNER,
    normalize_role,
)

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor-Id"


def get_current_actor(
    x_actor_id: str | None = Header(default=None, alias=ACTOR_HEADER),
    ledger: LedgerStore = Depends(get_ledger),
) -> Actor:
    """Resolve the acting user from the ``users`` directory (identity only)."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{ACTOR_HEADER} header is required",
        )
    actor_id = x_actor_id.strip()
    user = ledger.get(f"users/{ledger_key(actor_id)}")
    if not isinstance(user, dict) or not user.get("isActive", True):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return Actor(
        id=actor_id,
        name=user.get("displayName") or user.get("name") or user.get("email") or actor_id,
        role=normalize_role(user.get("role")),
    )


# Permission checks
class PermissionChecker:
    """Check actor permissions based on role."""

    def __init__(self, required_permission: str):
        self.required_permission = required_permission

    def __call__(self, actor: Actor = Depends(get_current_actor)) -> Actor:
        if not check_permission(actor, self.required_permission):
            logger.info(f"Denied {self.required_permission} to {actor.id} ({actor.role})")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {self.required_permission} required",
            )
        return actor


_VIEW_ALL = {
    "canViewRequests": True,
    "canViewDispatches": True,
    "canViewPricing": True,
    "canViewTracking": True,
}

# Role permissions matrix
ROLE_PERMISSIONS: dict[str, dict[str, bool]] = {
    ROLE_MAIN_DIRECTOR: {
        **_VIEW_ALL,
        "canApproveDirectShop": True,
        "canApproveSales": True,
    },
    ROLE_HEAD_OF_OPERATIONS: {
        **_VIEW_ALL,
        "canApproveDirectShop": True,
        "canApproveSales": True,
    },
    ROLE_FG_STORE_MANAGER: {
        **_VIEW_ALL,
        "canDispatch": True,
        "canManagePricing": True,
    },
    ROLE_SHOP_OWNER: {
        "canSubmitDirectShop": True,
    },
    ROLE_DISTRIBUTOR: {
        "canSubmitSales": True,
    },
    ROLE_DIRECT_REPRESENTATIVE: {
        "canSubmitSales": True,
    },
}


def check_permission(actor: Actor, permission: str) -> bool:
    permissions = ROLE_PERMISSIONS.get(normalize_role(actor.role), {})
    return permissions.get(permission, False)
