"""Product pricing endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from ..auth import PermissionChecker
from ..dependencies import get_hooks, get_ledger
from ..domain_errors import NotFound
from ..ledger import LedgerStore
from ..schemas import Actor, PriceUpdateIn
from ..use_cases.pricing import (
    list_price_history_use_case,
    pricing_analytics_use_case,
    resolve_pricing,
    update_price_use_case,
)
from ..use_cases.workflow_hooks import WorkflowHooks

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/history")
def list_price_history(
    product_id: Optional[str] = None,
    date_from: Optional[int] = None,
    date_to: Optional[int] = None,
    actor: Actor = Depends(PermissionChecker("canViewPricing")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return list_price_history_use_case(ledger=ledger, product_id=product_id, date_from=date_from, date_to=date_to)


@router.get("/{product_key}/analytics")
def get_pricing_analytics(
    product_key: str,
    actor: Actor = Depends(PermissionChecker("canViewPricing")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return pricing_analytics_use_case(ledger=ledger, product_id=product_key)


@router.get("/{product_key}")
def get_pricing(
    product_key: str,
    actor: Actor = Depends(PermissionChecker("canViewPricing")),
    ledger: LedgerStore = Depends(get_ledger),
):
    pricing = resolve_pricing(ledger, product_key)
    if pricing is None:
        raise NotFound("Pricing not found", code="PRICING_NOT_FOUND", details={"productKey": product_key})
    return pricing


@router.put("/{product_key}")
def update_price(
    product_key: str,
    payload: PriceUpdateIn,
    actor: Actor = Depends(PermissionChecker("canManagePricing")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return update_price_use_case(ledger=ledger, product_key=product_key, data=payload, actor=actor, hooks=hooks)
