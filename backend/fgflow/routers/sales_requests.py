"""Sales-request endpoints (distributors and direct representatives)."""
from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth import PermissionChecker
from ..dependencies import get_hooks, get_ledger
from ..ledger import LedgerStore
from ..schemas import (
    Actor,
    ApprovalIn,
    DispatchResult,
    RejectionIn,
    SalesDispatchInputs,
    SalesRequestCreate,
)
from ..use_cases.sales_requests import (
    approve_sales_request_use_case,
    dispatch_sales_request_use_case,
    list_pending_sales_requests_use_case,
    list_sales_requests_use_case,
    mark_sales_request_sent_use_case,
    reject_sales_request_use_case,
    submit_sales_request_use_case,
)
from ..use_cases.workflow_hooks import WorkflowHooks

router = APIRouter(tags=["sales-requests"])

SalesRequestType = Literal["distributor", "direct_representative"]


@router.post("/sales-requests", status_code=status.HTTP_201_CREATED)
def submit_request(
    payload: SalesRequestCreate,
    actor: Actor = Depends(PermissionChecker("canSubmitSales")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return submit_sales_request_use_case(ledger=ledger, data=payload, actor=actor, hooks=hooks)


@router.get("/sales-requests/{request_type}")
def list_requests(
    request_type: SalesRequestType,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    actor: Actor = Depends(PermissionChecker("canViewRequests")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return list_sales_requests_use_case(ledger=ledger, request_type=request_type, status=status_filter)


@router.post("/sales-requests/{request_type}/{request_id}/approve")
def approve_request(
    request_type: SalesRequestType,
    request_id: str,
    payload: ApprovalIn,
    actor: Actor = Depends(PermissionChecker("canApproveSales")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return approve_sales_request_use_case(
        ledger=ledger,
        request_type=request_type,
        request_id=request_id,
        actor=actor,
        comments=payload.comments,
        hooks=hooks,
    )


@router.post("/sales-requests/{request_type}/{request_id}/reject")
def reject_request(
    request_type: SalesRequestType,
    request_id: str,
    payload: RejectionIn,
    actor: Actor = Depends(PermissionChecker("canApproveSales")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return reject_sales_request_use_case(
        ledger=ledger,
        request_type=request_type,
        request_id=request_id,
        actor=actor,
        reason=payload.reason,
        hooks=hooks,
    )


@router.get("/sales-approvals/pending")
def list_pending_approvals(
    actor: Actor = Depends(PermissionChecker("canViewRequests")),
    ledger: LedgerStore = Depends(get_ledger),
):
    return list_pending_sales_requests_use_case(ledger=ledger)


@router.post("/sales-approvals/{approval_id}/dispatch", response_model=DispatchResult)
def dispatch_approval(
    approval_id: str,
    payload: SalesDispatchInputs,
    actor: Actor = Depends(PermissionChecker("canDispatch")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return dispatch_sales_request_use_case(
        ledger=ledger,
        approval_id=approval_id,
        inputs=payload,
        actor=actor,
        hooks=hooks,
    )


@router.post("/sales-approvals/{approval_id}/mark-sent")
def mark_approval_sent(
    approval_id: str,
    actor: Actor = Depends(PermissionChecker("canDispatch")),
    ledger: LedgerStore = Depends(get_ledger),
    hooks: WorkflowHooks = Depends(get_hooks),
):
    return mark_sales_request_sent_use_case(ledger=ledger, approval_id=approval_id, actor=actor, hooks=hooks)
