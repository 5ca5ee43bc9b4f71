"""Recipient tracking and dispatch analytics endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from ..auth import PermissionChecker
from ..dependencies import get_ledger
from ..ledger import LedgerStore
from ..schemas import Actor, RecipientType
from ..use_cases.tracking import (
    list_dispatch_tracking_use_case,
    recipient_dispatch_analytics_use_case,
    recipient_summary_use_case,
)

router = APIRouter(prefix="/tracking", tags=["tracking"])


@router.get("/{recipient_type}")
def get_recipient_summary(
    recipient_type: RecipientType,
    actor: Actor = Depends(PermissionChecker("canViewTracking")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return recipient_summary_use_case(ledger=ledger, recipient_type=recipient_type)


@router.get("/{recipient_type}/events")
def list_tracking_events(
    recipient_type: RecipientType,
    recipient_id: Optional[str] = None,
    date_from: Optional[int] = None,
    date_to: Optional[int] = None,
    actor: Actor = Depends(PermissionChecker("canViewTracking")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return list_dispatch_tracking_use_case(
        ledger=ledger,
        recipient_type=recipient_type,
        recipient_id=recipient_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/{recipient_type}/{recipient_id}/analytics")
def get_recipient_analytics(
    recipient_type: RecipientType,
    recipient_id: str,
    actor: Actor = Depends(PermissionChecker("canViewTracking")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return recipient_dispatch_analytics_use_case(
        ledger=ledger,
        recipient_type=recipient_type,
        recipient_id=recipient_id,
    )
