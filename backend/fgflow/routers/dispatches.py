"""External dispatch endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth import PermissionChecker
from ..dependencies import get_hooks, get_ledger
from ..ledger import LedgerStore
from ..schemas import Actor, DispatchResult, ExternalDispatchCreate, RecipientType
from ..use_cases.external_dispatch import (
    dispatch_to_external_use_case,
    get_dispatch_intent_use_case,
    list_external_dispatches_use_case,
    resume_dispatch_use_case,
)
from ..use_cases.workflow_hooks import WorkflowHooks

router = APIRouter(prefix="/dispatches", tags=["dispatches"])


@router.post("", response_model=DispatchResult, status_code=status.HTTP_201_CREATED)
def create_dispatch(
    payload: ExternalDispatchCreate,
    actor: Actor = Depends(PermissionChecker("canDispatch")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return dispatch_to_external_use_case(ledger=ledger, payload=payload, actor=actor, hooks=hooks)


@router.get("")
def list_dispatches(
    recipient_type: Optional[RecipientType] = None,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    date_from: Optional[int] = None,
    actor: Actor = Depends(PermissionChecker("canViewDispatches")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return list_external_dispatches_use_case(
        ledger=ledger,
        recipient_type=recipient_type,
        status=status_filter,
        date_from=date_from,
    )


@router.get("/{dispatch_id}/intent")
def get_dispatch_intent(
    dispatch_id: str,
    actor: Actor = Depends(PermissionChecker("canViewDispatches")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return get_dispatch_intent_use_case(ledger=ledger, dispatch_id=dispatch_id)


@router.post("/{dispatch_id}/resume", response_model=DispatchResult)
def resume_dispatch(
    dispatch_id: str,
    actor: Actor = Depends(PermissionChecker("canDispatch")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return resume_dispatch_use_case(ledger=ledger, dispatch_id=dispatch_id, hooks=hooks)
