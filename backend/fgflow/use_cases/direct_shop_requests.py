"""Direct-shop request workflow: MD approval, HO approval, FG dispatch."""
from __future__ import annotations

import logging
from typing import Any, Optional

from ..config import settings
from ..domain_errors import (
    DomainError,
    InvalidStateTransition,
    MissingReason,
    NotFound,
    NotReadyForDispatch,
)
from ..ledger import LedgerStore, ledger_key, versioned_update
from ..schemas import (
    Actor,
    DirectShopRequestCreate,
    DispatchInputs,
    DispatchItemIn,
    DispatchResult,
    ExternalDispatchCreate,
    RecipientDescriptor,
)
from ..services.request_payload import (
    normalize_request_payload,
    payload_items,
    payload_to_document,
)
from ..services.request_rules import (
    ROLE_HEAD_OF_OPERATIONS,
    ROLE_MAIN_DIRECTOR,
    STATUS_DISPATCHED,
    STATUS_HO_APPROVED,
    STATUS_PENDING,
    ApprovalStage,
    approval_stage_for,
    ensure_stage_not_recorded,
    normalize_request_status,
    require_reason,
    validate_direct_shop_transition,
)
from .external_dispatch import run_linked_dispatch
from .notifications import notify_mobile, notify_role
from .pricing import resolve_or_bootstrap_pricing
from .sales_requests import mark_sales_request_sent_use_case
from .workflow_hooks import DEFAULT_HOOKS, WorkflowHooks

logger = logging.getLogger(__name__)

REQUESTS_PATH = "dsreqs"

_FORWARD_MESSAGES: dict[str, str] = {
    ROLE_MAIN_DIRECTOR: "Direct shop request forwarded by MD for final approval",
    ROLE_HEAD_OF_OPERATIONS: "Direct shop request approved by HO and ready for dispatch",
}


def _request_path(request_id: str) -> str:
    return f"{REQUESTS_PATH}/{ledger_key(request_id)}"


def _load_request(ledger: LedgerStore, request_id: str) -> dict[str, Any]:
    request = ledger.get(_request_path(request_id))
    if request is None:
        raise NotFound("Request not found", code="REQUEST_NOT_FOUND", details={"requestId": request_id})
    return request


def _stage_for(actor: Actor) -> ApprovalStage:
    try:
        return approval_stage_for(actor.role)
    except ValueError as exc:
        raise DomainError(
            code="APPROVAL_ROLE_NOT_ALLOWED",
            http_status=403,
            message=str(exc),
        ) from exc


def _ensure_stage_status(stage: ApprovalStage, *, request_id: str, doc: dict[str, Any], next_status: str) -> None:
    status = normalize_request_status(doc.get("status"))
    if status != stage.expected_status:
        raise InvalidStateTransition(
            f"Request is not awaiting {stage.field_prefix.upper()} action (status: {status})",
            details={"requestId": request_id, "status": status, "expectedStatus": stage.expected_status},
        )
    try:
        validate_direct_shop_transition(current_status=status, next_status=next_status)
    except ValueError as exc:
        raise InvalidStateTransition(str(exc), details={"requestId": request_id, "status": status}) from exc


def _payload_summary(doc: dict[str, Any]) -> dict[str, Any]:
    summary = {"product": doc.get("product"), "quantity": doc.get("quantity")}
    if doc.get("items"):
        summary = {"items": doc["items"], "quantity": doc.get("totalQuantity")}
    return summary


def submit_direct_shop_request_use_case(
    *,
    ledger: LedgerStore,
    data: DirectShopRequestCreate,
    actor: Actor,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    now = hooks.now_ms()
    request_id = hooks.new_id()
    doc = {
        "requestedBy": actor.id,
        "requestedByName": actor.name,
        "requestedByRole": actor.role,
        "shopId": actor.id,
        "shopName": data.shop_name or actor.name,
        "shopLocation": data.shop_location,
        "shopContact": data.shop_contact,
        **payload_to_document(data.payload),
        "urgent": data.urgent,
        "notes": data.notes,
        "status": STATUS_PENDING,
        "workflow": {
            "submitted": {"by": actor.id, "byName": actor.name, "role": actor.role, "at": now},
        },
        "createdAt": now,
        "updatedAt": now,
    }
    ledger.set(_request_path(request_id), doc)
    logger.info(f"Direct shop request {request_id} submitted by {actor.id}")

    notify_role(
        ledger,
        role=ROLE_MAIN_DIRECTOR,
        subject_id=request_id,
        notification={
            "type": "direct_shop_request_submitted",
            "requestId": request_id,
            "message": f"New direct shop request from {doc['shopName']}",
            "data": {"requestType": "direct_shop", "shopName": doc["shopName"], **_payload_summary(doc)},
        },
        now_ms=now,
    )
    return {"id": request_id, **doc}


def get_direct_shop_request_use_case(*, ledger: LedgerStore, request_id: str) -> dict[str, Any]:
    return {"id": request_id, **_load_request(ledger, request_id)}


def list_direct_shop_requests_use_case(
    *,
    ledger: LedgerStore,
    status: Optional[str] = None,
    shop_id: Optional[str] = None,
) -> list[dict[str, Any]]:
    rows = [{"id": request_id, **doc} for request_id, doc in ledger.children(REQUESTS_PATH).items()]
    if status:
        rows = [row for row in rows if row.get("status") == status]
    if shop_id:
        rows = [row for row in rows if row.get("shopId") == shop_id]
    return sorted(rows, key=lambda row: row.get("createdAt") or 0, reverse=True)


def approve_direct_shop_request_use_case(
    *,
    ledger: LedgerStore,
    request_id: str,
    actor: Actor,
    comments: Optional[str] = None,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    """
    Record one approval stage and forward the request.

    The actor's role picks the stage: MD approves ``pending`` requests, HO
    approves what MD forwarded. The status check and the write are one
    version-checked update, so a request cannot be approved twice at a stage.
    """
    stage = _stage_for(actor)
    now = hooks.now_ms()
    comment = (comments or "").strip() or stage.default_comment

    def approve(doc: Optional[dict[str, Any]]) -> dict[str, Any]:
        if doc is None:
            raise NotFound("Request not found", code="REQUEST_NOT_FOUND", details={"requestId": request_id})
        _ensure_stage_status(stage, request_id=request_id, doc=doc, next_status=stage.approved_status)
        try:
            ensure_stage_not_recorded(workflow=doc.get("workflow"), trail_key=stage.trail_key)
        except ValueError as exc:
            raise InvalidStateTransition(str(exc), details={"requestId": request_id}) from exc

        workflow = dict(doc.get("workflow") or {})
        workflow[stage.trail_key] = {
            "by": actor.id,
            "byName": actor.name,
            "role": stage.role,
            "at": now,
            "comments": comment,
        }
        workflow[stage.forward_key] = {"by": actor.id, "role": stage.role, "at": now}
        prefix = stage.field_prefix
        return {
            **doc,
            "status": stage.approved_status,
            f"{prefix}ApprovedBy": actor.id,
            f"{prefix}ApprovedByName": actor.name,
            f"{prefix}ApprovedAt": now,
            f"{prefix}ApprovalComments": comment,
            stage.forward_key: True,
            f"{stage.forward_key}At": now,
            "workflow": workflow,
            "updatedAt": now,
        }

    updated = versioned_update(ledger, _request_path(request_id), approve, attempts=settings.OPTIMISTIC_WRITE_RETRIES)
    logger.info(f"Request {request_id} moved to {stage.approved_status} by {actor.id}")

    notify_role(
        ledger,
        role=stage.next_role,
        subject_id=request_id,
        notification={
            "type": stage.notification_type,
            "requestId": request_id,
            "message": _FORWARD_MESSAGES[stage.role],
            "data": {
                "requestType": "direct_shop",
                "shopName": updated.get("shopName") or updated.get("requestedByName"),
                f"{stage.field_prefix}ApprovedBy": actor.name,
                **_payload_summary(updated),
            },
        },
        now_ms=now,
    )
    return {"id": request_id, **updated}


def reject_direct_shop_request_use_case(
    *,
    ledger: LedgerStore,
    request_id: str,
    actor: Actor,
    reason: Optional[str],
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    try:
        reason_text = require_reason(reason)
    except ValueError as exc:
        raise MissingReason(details={"requestId": request_id}) from exc
    stage = _stage_for(actor)
    now = hooks.now_ms()

    def reject(doc: Optional[dict[str, Any]]) -> dict[str, Any]:
        if doc is None:
            raise NotFound("Request not found", code="REQUEST_NOT_FOUND", details={"requestId": request_id})
        _ensure_stage_status(stage, request_id=request_id, doc=doc, next_status=stage.rejected_status)
        try:
            ensure_stage_not_recorded(workflow=doc.get("workflow"), trail_key="rejected")
        except ValueError as exc:
            raise InvalidStateTransition(str(exc), details={"requestId": request_id}) from exc

        workflow = dict(doc.get("workflow") or {})
        workflow["rejected"] = {"by": actor.id, "byName": actor.name, "role": stage.role, "at": now, "reason": reason_text}
        return {
            **doc,
            "status": stage.rejected_status,
            "rejectedBy": actor.id,
            "rejectedByName": actor.name,
            "rejectedAt": now,
            "rejectionReason": reason_text,
            "workflow": workflow,
            "updatedAt": now,
        }

    updated = versioned_update(ledger, _request_path(request_id), reject, attempts=settings.OPTIMISTIC_WRITE_RETRIES)
    logger.info(f"Request {request_id} rejected ({stage.rejected_status}) by {actor.id}")

    notify_mobile(
        ledger,
        target_id=request_id,
        subject_id=request_id,
        notification={
            "type": "direct_shop_request_rejected",
            "requestId": request_id,
            "status": "rejected",
            "reason": reason_text,
            "rejectedBy": stage.field_prefix.upper(),
        },
        now_ms=now,
    )
    return {"id": request_id, **updated}


def _dispatch_payload(
    ledger: LedgerStore,
    *,
    request_id: str,
    request: dict[str, Any],
    inputs: DispatchInputs,
    actor: Actor,
    hooks: WorkflowHooks,
) -> ExternalDispatchCreate:
    try:
        payload = normalize_request_payload(request)
    except ValueError as exc:
        raise DomainError(
            code="INVALID_REQUEST_PAYLOAD",
            http_status=422,
            message=f"Request {request_id} has no dispatchable items: {exc}",
        ) from exc

    items = []
    for _item_id, item in payload_items(payload):
        unit_price = inputs.unit_price
        pricing = resolve_or_bootstrap_pricing(
            ledger,
            product_name=item.name,
            product_id=item.product_id,
            default_price=inputs.unit_price or settings.DEFAULT_UNIT_PRICE,
            actor=actor,
            hooks=hooks,
        )
        if unit_price is None:
            unit_price = float(pricing.get("currentPrice") or settings.DEFAULT_UNIT_PRICE)
        items.append(
            DispatchItemIn(
                product_name=item.name,
                product_id=item.product_id,
                quantity=item.qty,
                type=inputs.item_type,
                unit="units",
                unit_price=unit_price,
                batch_number=inputs.batch_number,
                variant_name=inputs.variant_name,
                from_location=inputs.from_location,
            )
        )

    shop_name = request.get("shopName") or request.get("requestedByName") or request["requestedBy"]
    return ExternalDispatchCreate(
        recipient=RecipientDescriptor(
            type="direct_shop",
            id=request["requestedBy"],
            name=request.get("requestedByName") or shop_name,
            role="shop_owner",
            location=request.get("shopLocation") or "Direct Shop",
            contact=request.get("shopContact"),
            shop_name=shop_name,
        ),
        items=items,
        notes=inputs.notes or f"Direct shop dispatch for {items[0].product_name}",
        expected_delivery_date=inputs.expected_delivery_date,
        priority="urgent" if request.get("urgent") else "normal",
        request_id=request_id,
        sales_request_id=inputs.sales_request_id if inputs.from_sales_request else None,
    )


def dispatch_direct_shop_request_use_case(
    *,
    ledger: LedgerStore,
    request_id: str,
    inputs: DispatchInputs,
    actor: Actor,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> DispatchResult:
    """
    Dispatch an HO-approved direct-shop request through the dispatch engine.

    Retrying after a PartialDispatchFailure resumes the same dispatch; a request
    is never dispatched twice.
    """
    request = _load_request(ledger, request_id)
    status = normalize_request_status(request.get("status"))
    if status != STATUS_HO_APPROVED:
        raise NotReadyForDispatch(
            f"Request is not approved for dispatch (status: {status})",
            details={"requestId": request_id, "status": status},
        )
    path = _request_path(request_id)

    result = run_linked_dispatch(
        ledger=ledger,
        request_path=path,
        build_payload=lambda: _dispatch_payload(
            ledger, request_id=request_id, request=request, inputs=inputs, actor=actor, hooks=hooks
        ),
        actor=actor,
        hooks=hooks,
    )

    now = hooks.now_ms()
    validate_direct_shop_transition(current_status=status, next_status=STATUS_DISPATCHED)
    workflow = dict(request.get("workflow") or {})
    workflow["dispatched"] = {"by": actor.id, "byName": actor.name, "role": actor.role, "at": now}
    ledger.update(
        path,
        {
            "status": STATUS_DISPATCHED,
            "dispatchId": result.dispatch_id,
            "releaseCode": result.release_code,
            "dispatchedAt": now,
            "sentAt": now,
            "sentBy": actor.id,
            "sentByName": actor.name,
            "workflow": workflow,
            "updatedAt": now,
        },
    )
    logger.info(f"Request {request_id} dispatched as {result.dispatch_id} ({result.release_code})")

    shop_name = request.get("shopName") or request.get("requestedByName")
    notify_role(
        ledger,
        role=ROLE_HEAD_OF_OPERATIONS,
        subject_id=request_id,
        notification={
            "type": "direct_shop_request_completed",
            "requestId": request_id,
            "message": f"Direct shop request completed: {shop_name} received {result.lines[0].product_name}",
            "data": {
                "requestType": "direct_shop_completion",
                "shopName": shop_name,
                "releaseCode": result.release_code,
                "completedAt": now,
                "totalItems": result.total_items,
                "totalQuantity": result.total_quantity,
            },
        },
        now_ms=now,
    )

    if inputs.from_sales_request and inputs.sales_request_id:
        mark_sales_request_sent_use_case(
            ledger=ledger,
            approval_id=inputs.sales_request_id,
            actor=actor,
            dispatch=result,
            hooks=hooks,
        )
    return result
