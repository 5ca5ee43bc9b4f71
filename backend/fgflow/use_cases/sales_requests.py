"""
Sales-request workflow for distributors and direct representatives.

A shorter chain than direct-shop requests: MD or HO approves once, which
writes an approval record under ``salesApprovalHistory``; the FG store then
dispatches against that record and marks it ``sent``.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from ..config import settings
from ..domain_errors import (
    DomainError,
    InvalidQuantity,
    InvalidStateTransition,
    MissingReason,
    NotFound,
    NotReadyForDispatch,
)
from ..ledger import LedgerStore, ledger_key, versioned_update
from ..schemas import (
    Actor,
    DispatchItemIn,
    DispatchResult,
    ExternalDispatchCreate,
    RecipientDescriptor,
    SalesDispatchInputs,
    SalesRequestCreate,
)
from ..services.request_payload import (
    normalize_request_payload,
    payload_items,
    payload_to_document,
    payload_total_quantity,
)
from ..services.request_rules import (
    ROLE_FG_STORE_MANAGER,
    ROLE_HEAD_OF_OPERATIONS,
    SALES_STATUS_APPROVED,
    SALES_STATUS_PENDING,
    SALES_STATUS_REJECTED,
    SALES_STATUS_SENT,
    ensure_sales_approver,
    normalize_request_status,
    require_reason,
    validate_sales_transition,
)
from .external_dispatch import run_linked_dispatch
from .notifications import notify_mobile, notify_role
from .workflow_hooks import DEFAULT_HOOKS, WorkflowHooks

logger = logging.getLogger(__name__)

APPROVAL_HISTORY_PATH = "salesApprovalHistory"
SOURCE_PATHS: dict[str, str] = {
    "distributor": "distributorReqs",
    "direct_representative": "drreqs",
}
_HISTORY_TYPES: dict[str, str] = {
    "distributor": "distributor_sale",
    "direct_representative": "direct_rep_sale",
}


def _source_collection(request_type: str) -> str:
    try:
        return SOURCE_PATHS[request_type]
    except KeyError as exc:
        raise DomainError(
            code="UNKNOWN_REQUEST_TYPE",
            http_status=400,
            message=f"Unknown sales request type: {request_type}",
        ) from exc


def _source_path(request_type: str, request_id: str) -> str:
    return f"{_source_collection(request_type)}/{ledger_key(request_id)}"


def _history_path(approval_id: str) -> str:
    return f"{APPROVAL_HISTORY_PATH}/{ledger_key(approval_id)}"


def _ensure_approver(actor: Actor) -> str:
    try:
        return ensure_sales_approver(actor.role)
    except ValueError as exc:
        raise DomainError(code="APPROVAL_ROLE_NOT_ALLOWED", http_status=403, message=str(exc)) from exc


def _ensure_transition(*, request_id: str, current: Optional[str], next_status: str) -> str:
    status = normalize_request_status(current)
    try:
        validate_sales_transition(current_status=status, next_status=next_status)
    except ValueError as exc:
        raise InvalidStateTransition(str(exc), details={"requestId": request_id, "status": status}) from exc
    return status


def submit_sales_request_use_case(
    *,
    ledger: LedgerStore,
    data: SalesRequestCreate,
    actor: Actor,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    now = hooks.now_ms()
    request_id = hooks.new_id()
    doc = {
        "requestedBy": actor.id,
        "requestedByName": actor.name,
        "requestedByRole": actor.role,
        "requestType": data.request_type,
        **payload_to_document(data.payload),
        "priority": data.priority,
        "notes": data.notes,
        "status": SALES_STATUS_PENDING,
        "createdAt": now,
        "updatedAt": now,
    }
    ledger.set(_source_path(data.request_type, request_id), doc)
    logger.info(f"Sales request {request_id} ({data.request_type}) submitted by {actor.id}")

    notify_role(
        ledger,
        role=ROLE_HEAD_OF_OPERATIONS,
        subject_id=request_id,
        notification={
            "type": "sales_request_submitted",
            "requestId": request_id,
            "message": f"New {data.request_type.replace('_', ' ')} request from {actor.name}",
            "data": {"requestType": data.request_type, "totalQuantity": payload_total_quantity(data.payload)},
        },
        now_ms=now,
    )
    return {"id": request_id, **doc}


def list_sales_requests_use_case(
    *,
    ledger: LedgerStore,
    request_type: str,
    status: Optional[str] = None,
) -> list[dict[str, Any]]:
    collection = _source_collection(request_type)
    rows = [{"id": request_id, **doc} for request_id, doc in ledger.children(collection).items()]
    if status:
        rows = [row for row in rows if row.get("status") == status]
    return sorted(rows, key=lambda row: row.get("createdAt") or 0, reverse=True)


def approve_sales_request_use_case(
    *,
    ledger: LedgerStore,
    request_type: str,
    request_id: str,
    actor: Actor,
    comments: Optional[str] = None,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    """Approve a pending sales request and open its FG approval record."""
    approver_role = _ensure_approver(actor)
    path = _source_path(request_type, request_id)
    approval_id = hooks.new_id()
    now = hooks.now_ms()

    def approve(doc: Optional[dict[str, Any]]) -> dict[str, Any]:
        if doc is None:
            raise NotFound("Sales request not found", code="SALES_REQUEST_NOT_FOUND", details={"requestId": request_id})
        _ensure_transition(request_id=request_id, current=doc.get("status"), next_status=SALES_STATUS_APPROVED)
        try:
            normalize_request_payload(doc)
        except ValueError as exc:
            raise DomainError(
                code="INVALID_REQUEST_PAYLOAD",
                http_status=422,
                message=f"Sales request {request_id} has no requested items: {exc}",
            ) from exc
        return {
            **doc,
            "status": SALES_STATUS_APPROVED,
            "approvalHistoryId": approval_id,
            "approvedBy": actor.id,
            "approvedByName": actor.name,
            "approvedAt": now,
            "updatedAt": now,
        }

    source = versioned_update(ledger, path, approve, attempts=settings.OPTIMISTIC_WRITE_RETRIES)
    payload = normalize_request_payload(source)
    record = {
        "requestId": request_id,
        "requestType": request_type,
        "approvedAt": now,
        "items": {
            item_id: {"name": item.name, "qty": item.qty, "productId": item.product_id}
            for item_id, item in payload_items(payload)
        },
        "requesterId": source.get("requestedBy"),
        "requesterName": source.get("requestedByName"),
        "requesterRole": source.get("requestedByRole"),
        "priority": source.get("priority") or "normal",
        "notes": source.get("notes"),
        "status": SALES_STATUS_APPROVED,
        "approvedBy": actor.id,
        "approverName": actor.name,
        "approverRole": approver_role,
        "comments": comments,
        "totalQuantity": payload_total_quantity(payload),
        "type": _HISTORY_TYPES[request_type],
        "isCompletedByFG": False,
        "createdAt": now,
    }
    ledger.set(_history_path(approval_id), record)
    logger.info(f"Sales request {request_id} approved by {actor.id}; approval record {approval_id}")

    notify_role(
        ledger,
        role=ROLE_FG_STORE_MANAGER,
        subject_id=approval_id,
        notification={
            "type": "sales_request_approved",
            "requestId": approval_id,
            "message": f"Sales request from {record['requesterName']} approved for dispatch",
            "data": {"requestType": request_type, "totalQuantity": record["totalQuantity"]},
        },
        now_ms=now,
    )
    return {"id": approval_id, **record}


def reject_sales_request_use_case(
    *,
    ledger: LedgerStore,
    request_type: str,
    request_id: str,
    actor: Actor,
    reason: Optional[str],
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    try:
        reason_text = require_reason(reason)
    except ValueError as exc:
        raise MissingReason(details={"requestId": request_id}) from exc
    _ensure_approver(actor)
    now = hooks.now_ms()

    def reject(doc: Optional[dict[str, Any]]) -> dict[str, Any]:
        if doc is None:
            raise NotFound("Sales request not found", code="SALES_REQUEST_NOT_FOUND", details={"requestId": request_id})
        _ensure_transition(request_id=request_id, current=doc.get("status"), next_status=SALES_STATUS_REJECTED)
        return {
            **doc,
            "status": SALES_STATUS_REJECTED,
            "rejectedBy": actor.id,
            "rejectedByName": actor.name,
            "rejectedAt": now,
            "rejectionReason": reason_text,
            "updatedAt": now,
        }

    updated = versioned_update(
        ledger, _source_path(request_type, request_id), reject, attempts=settings.OPTIMISTIC_WRITE_RETRIES
    )
    logger.info(f"Sales request {request_id} rejected by {actor.id}")

    notify_mobile(
        ledger,
        target_id=request_id,
        subject_id=request_id,
        notification={
            "type": "sales_request_rejected",
            "requestId": request_id,
            "status": "rejected",
            "reason": reason_text,
        },
        now_ms=now,
    )
    return {"id": request_id, **updated}


def list_pending_sales_requests_use_case(*, ledger: LedgerStore) -> list[dict[str, Any]]:
    """Approved sales requests the FG store has not completed yet, newest approval first."""
    rows = [
        {"id": approval_id, **record}
        for approval_id, record in ledger.children(APPROVAL_HISTORY_PATH).items()
        if record.get("status") == SALES_STATUS_APPROVED and not record.get("isCompletedByFG")
    ]
    return sorted(rows, key=lambda row: row.get("approvedAt") or 0, reverse=True)


def _dispatch_items(approval_id: str, record: dict[str, Any], inputs: SalesDispatchInputs) -> list[DispatchItemIn]:
    approved = record.get("items") or {}
    if not inputs.items:
        return [
            DispatchItemIn(product_name=item["name"], product_id=item.get("productId"), quantity=item["qty"])
            for item in approved.values()
        ]

    items: list[DispatchItemIn] = []
    for item_id, selection in inputs.items.items():
        if item_id not in approved:
            raise InvalidQuantity(
                f"Item {item_id} is not part of the approved request",
                details={"approvalId": approval_id, "itemId": item_id},
            )
        approved_qty = int(approved[item_id].get("qty") or 0)
        if selection.qty > approved_qty:
            raise InvalidQuantity(
                f"Cannot dispatch {selection.qty} of {approved[item_id]['name']}; only {approved_qty} approved",
                details={"approvalId": approval_id, "itemId": item_id, "approved": approved_qty, "requested": selection.qty},
            )
        if selection.qty == 0:
            continue
        items.append(
            DispatchItemIn(
                product_name=approved[item_id]["name"],
                product_id=approved[item_id].get("productId"),
                quantity=selection.qty,
                type=selection.type,
                unit_price=selection.unit_price,
                batch_number=selection.batch_number,
                variant_name=selection.variant_name,
                from_location=selection.from_location,
            )
        )
    if not items:
        raise InvalidQuantity("Nothing to dispatch", details={"approvalId": approval_id})
    return items


def dispatch_sales_request_use_case(
    *,
    ledger: LedgerStore,
    approval_id: str,
    inputs: SalesDispatchInputs,
    actor: Actor,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> DispatchResult:
    path = _history_path(approval_id)
    record = ledger.get(path)
    if record is None:
        raise NotFound("Sales request not found", code="SALES_REQUEST_NOT_FOUND", details={"approvalId": approval_id})
    if record.get("status") != SALES_STATUS_APPROVED or record.get("isCompletedByFG"):
        raise NotReadyForDispatch(
            f"Sales request is not approved for dispatch (status: {record.get('status')})",
            details={"approvalId": approval_id, "status": record.get("status")},
        )
    items = _dispatch_items(approval_id, record, inputs)

    def build_payload() -> ExternalDispatchCreate:
        request_type = record.get("requestType") or "distributor"
        return ExternalDispatchCreate(
            recipient=RecipientDescriptor(
                type="distributor" if request_type == "distributor" else "direct_representative",
                id=record.get("requesterId") or record["requestId"],
                name=record.get("requesterName") or "Unknown",
                role=record.get("requesterRole"),
                location=inputs.recipient_location,
            ),
            items=items,
            notes=inputs.notes,
            expected_delivery_date=inputs.expected_delivery_date,
            priority=record.get("priority") or "normal",
            request_id=record.get("requestId"),
            sales_request_id=approval_id,
        )

    result = run_linked_dispatch(ledger=ledger, request_path=path, build_payload=build_payload, actor=actor, hooks=hooks)
    mark_sales_request_sent_use_case(ledger=ledger, approval_id=approval_id, actor=actor, dispatch=result, hooks=hooks)
    return result


def mark_sales_request_sent_use_case(
    *,
    ledger: LedgerStore,
    approval_id: str,
    actor: Actor,
    dispatch: Optional[DispatchResult] = None,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    """Mark an approval record completed by the FG store; repeated calls are no-ops."""
    now = hooks.now_ms()

    def mark_sent(doc: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        if doc is None:
            raise NotFound("Sales request not found", code="SALES_REQUEST_NOT_FOUND", details={"approvalId": approval_id})
        if doc.get("status") == SALES_STATUS_SENT and doc.get("isCompletedByFG"):
            return None
        _ensure_transition(request_id=approval_id, current=doc.get("status"), next_status=SALES_STATUS_SENT)
        updated = {
            **doc,
            "status": SALES_STATUS_SENT,
            "isCompletedByFG": True,
            "completedByFGAt": now,
            "sentAt": now,
            "sentBy": actor.id,
            "sentByName": actor.name,
            "updatedAt": now,
        }
        if dispatch is not None:
            updated["dispatchId"] = dispatch.dispatch_id
            updated["releaseCode"] = dispatch.release_code
        return updated

    path = _history_path(approval_id)
    updated = versioned_update(ledger, path, mark_sent, attempts=settings.OPTIMISTIC_WRITE_RETRIES)
    if updated is None:
        logger.info(f"Sales request {approval_id} already marked sent")
        return {"id": approval_id, **(ledger.get(path) or {})}

    logger.info(f"Sales request {approval_id} marked sent by {actor.id}")
    notify_role(
        ledger,
        role=ROLE_HEAD_OF_OPERATIONS,
        subject_id=approval_id,
        notification={
            "type": "sales_request_completed",
            "requestId": approval_id,
            "message": f"Sales request completed by FG Store: {updated.get('requesterName')} ({updated.get('requestType')})",
            "data": {
                "requestType": "sales_completion",
                "requesterName": updated.get("requesterName"),
                "requesterRole": updated.get("requesterRole"),
                "completedAt": now,
                "totalItems": len(updated.get("items") or {}),
            },
        },
        now_ms=now,
    )
    return {"id": approval_id, **updated}
