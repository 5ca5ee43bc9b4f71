"""Direct-shop request endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth import PermissionChecker
from ..dependencies import get_hooks, get_ledger
from ..ledger import LedgerStore
from ..schemas import (
    Actor,
    ApprovalIn,
    DirectShopRequestCreate,
    DispatchInputs,
    DispatchResult,
    RejectionIn,
)
from ..use_cases.direct_shop_requests import (
    approve_direct_shop_request_use_case,
    dispatch_direct_shop_request_use_case,
    get_direct_shop_request_use_case,
    list_direct_shop_requests_use_case,
    reject_direct_shop_request_use_case,
    submit_direct_shop_request_use_case,
)
from ..use_cases.workflow_hooks import WorkflowHooks

router = APIRouter(prefix="/direct-shop-requests", tags=["direct-shop-requests"])


@router.post("", status_code=status.HTTP_201_CREATED)
def submit_request(
    payload: DirectShopRequestCreate,
    actor: Actor = Depends(PermissionChecker("canSubmitDirectShop")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return submit_direct_shop_request_use_case(ledger=ledger, data=payload, actor=actor, hooks=hooks)


@router.get("")
def list_requests(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    shop_id: Optional[str] = None,
    actor: Actor = Depends(PermissionChecker("canViewRequests")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return list_direct_shop_requests_use_case(ledger=ledger, status=status_filter, shop_id=shop_id)


@router.get("/{request_id}")
def get_request(
    request_id: str,
    actor: Actor = Depends(PermissionChecker("canViewRequests")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return get_direct_shop_request_use_case(ledger=ledger, request_id=request_id)


@router.post("/{request_id}/approve")
def approve_request(
    request_id: str,
    payload: ApprovalIn,
    actor: Actor = Depends(PermissionChecker("canApproveDirectShop")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return approve_direct_shop_request_use_case(
        ledger=ledger,
        request_id=request_id,
        actor=actor,
        comments=payload.comments,
        hooks=hooks,
    )


@router.post("/{request_id}/reject")
def reject_request(
    request_id: str,
    payload: RejectionIn,
    actor: Actor = Depends(PermissionChecker("canApproveDirectShop")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return reject_direct_shop_request_use_case(
        ledger=ledger,
        request_id=request_id,
        actor=actor,
        reason=payload.reason,
        hooks=hooks,
    )


@router.post("/{request_id}/dispatch", response_model=DispatchResult)
def dispatch_request(
    request_id: str,
    payload: DispatchInputs,
    actor: Actor = Depends(PermissionChecker("canDispatch")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return dispatch_direct_shop_request_use_case(
        ledger=ledger,
        request_id=request_id,
        inputs=payload,
        actor=actor,
        hooks=hooks,
    )
