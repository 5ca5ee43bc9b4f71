"""
Dispatch Engine use-cases.

A dispatch runs as a persisted intent (``dispatchIntents/{dispatchId}``): the
full dispatch record and a step ledger are written first, then the steps run
in order:

1. write ``externalDispatches/{dispatchId}``
2. take every line out of finished-goods stock
3. update recipient tracking
4. queue the direct-shop mobile notification

Each step is recorded on the intent when it completes, and each step is safe
to replay. A failure marks the intent failed and raises PartialDispatchFailure,
or DispatchNotRecorded when the dispatch record itself was never written;
``resume_dispatch_use_case`` picks up from the first unfinished step.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from ..config import settings
from ..domain_errors import DispatchNotRecorded, NotFound, PartialDispatchFailure
from ..ledger import LedgerStore, ledger_key, versioned_update
from ..schemas import (
    Actor,
    DispatchItemIn,
    DispatchLineOut,
    DispatchResult,
    ExternalDispatchCreate,
)
from ..services.dispatch_totals import dispatch_totals, line_total
from ..time_utils import coerce_ms
from .fg_inventory import apply_dispatch_line_to_inventory
from .notifications import notify_mobile
from .pricing import resolve_or_bootstrap_pricing
from .tracking import update_recipient_tracking
from .workflow_hooks import DEFAULT_HOOKS, WorkflowHooks

logger = logging.getLogger(__name__)

DISPATCHES_PATH = "externalDispatches"
INTENTS_PATH = "dispatchIntents"

INTENT_PENDING = "pending"
INTENT_FAILED = "failed"
INTENT_COMPLETED = "completed"

STEP_RECORD = "record"
STEP_INVENTORY = "inventory"
STEP_TRACKING = "tracking"
STEP_NOTIFICATION = "notification"
DISPATCH_STEPS: tuple[str, ...] = (STEP_RECORD, STEP_INVENTORY, STEP_TRACKING, STEP_NOTIFICATION)


def _intent_path(dispatch_id: str) -> str:
    return f"{INTENTS_PATH}/{ledger_key(dispatch_id)}"


def _dispatch_path(dispatch_id: str) -> str:
    return f"{DISPATCHES_PATH}/{ledger_key(dispatch_id)}"


def _resolve_unit_price(
    ledger: LedgerStore,
    *,
    item: DispatchItemIn,
    actor: Actor,
    hooks: WorkflowHooks,
) -> float:
    if item.unit_price is not None:
        return float(item.unit_price)

    pricing = resolve_or_bootstrap_pricing(
        ledger,
        product_name=item.product_name,
        product_id=item.product_id,
        default_price=settings.DEFAULT_UNIT_PRICE,
        actor=actor,
        hooks=hooks,
    )
    return float(pricing.get("currentPrice") or settings.DEFAULT_UNIT_PRICE)


def _build_line(item: DispatchItemIn, unit_price: float) -> dict[str, Any]:
    return {
        "productId": item.product_id or item.product_name,
        "productName": item.product_name,
        "variantName": item.variant_name,
        "batchNumber": item.batch_number,
        "quantity": item.quantity,
        "unit": item.unit or item.type,
        "unitPrice": unit_price,
        "totalPrice": line_total(item.quantity, unit_price),
        "type": item.type,
        "fromLocation": item.from_location,
    }


def _build_dispatch(
    *,
    payload: ExternalDispatchCreate,
    lines: list[dict[str, Any]],
    release_code: str,
    actor: Actor,
    now: int,
) -> dict[str, Any]:
    recipient = payload.recipient
    return {
        "recipientType": recipient.type,
        "recipientId": recipient.id,
        "recipientName": recipient.name,
        "recipientRole": recipient.role,
        "recipientLocation": recipient.location,
        "recipientContact": recipient.contact,
        "shopName": recipient.shop_name,
        "items": lines,
        **dispatch_totals(lines),
        "releaseCode": release_code,
        "dispatchType": "external",
        "status": "dispatched",
        "priority": payload.priority,
        "notes": payload.notes,
        "expectedDeliveryDate": coerce_ms(payload.expected_delivery_date),
        "requestId": payload.request_id,
        "salesRequestId": payload.sales_request_id,
        "dispatchedBy": actor.id,
        "dispatchedByName": actor.name,
        "dispatchedByRole": actor.role,
        "dispatchedAt": now,
        "createdAt": now,
        "updatedAt": now,
    }


def _result(dispatch_id: str, dispatch: dict[str, Any]) -> DispatchResult:
    return DispatchResult(
        dispatch_id=dispatch_id,
        release_code=dispatch["releaseCode"],
        status=dispatch["status"],
        total_items=dispatch["totalItems"],
        total_quantity=dispatch["totalQuantity"],
        total_value=dispatch["totalValue"],
        lines=[
            DispatchLineOut(
                product_id=line["productId"],
                product_name=line["productName"],
                variant_name=line.get("variantName"),
                batch_number=line.get("batchNumber"),
                quantity=line["quantity"],
                unit=line["unit"],
                unit_price=line["unitPrice"],
                total_price=line["totalPrice"],
                type=line["type"],
            )
            for line in dispatch["items"]
        ],
    )


def _notify_recipient(ledger: LedgerStore, *, dispatch_id: str, dispatch: dict[str, Any], now: int) -> None:
    lines = dispatch["items"]
    notification = {
        "type": "dispatch_notification",
        "dispatchId": dispatch_id,
        "recipientId": dispatch["recipientId"],
        "recipientType": dispatch["recipientType"],
        "shopName": dispatch.get("shopName"),
        "releaseCode": dispatch["releaseCode"],
        "totalItems": dispatch["totalItems"],
        "totalQuantity": dispatch["totalQuantity"],
        "totalValue": dispatch["totalValue"],
        "dispatchDate": dispatch["dispatchedAt"],
        "status": "dispatched",
        "message": "Your order has been dispatched from FG Store",
        "productName": lines[0]["productName"] if lines else "Product",
        "quantity": lines[0]["quantity"] if lines else 0,
    }
    notify_mobile(
        ledger,
        target_id=dispatch["recipientId"],
        subject_id=dispatch_id,
        notification=notification,
        now_ms=now,
    )
    if dispatch.get("requestId"):
        notify_mobile(
            ledger,
            target_id=dispatch["requestId"],
            subject_id=dispatch_id,
            notification={**notification, "requestId": dispatch["requestId"]},
            now_ms=now,
        )


def _save_steps(ledger: LedgerStore, dispatch_id: str, steps: dict[str, Any], now: int) -> None:
    ledger.update(_intent_path(dispatch_id), {"steps": steps, "updatedAt": now})


def _completed_steps(steps: dict[str, Any], line_count: int) -> list[str]:
    done = []
    for step in DISPATCH_STEPS:
        if step == STEP_INVENTORY:
            if len([flag for flag in (steps.get(STEP_INVENTORY) or {}).values() if flag]) >= line_count:
                done.append(step)
        elif steps.get(step):
            done.append(step)
    return done


def _run_intent(
    ledger: LedgerStore,
    *,
    dispatch_id: str,
    intent: dict[str, Any],
    hooks: WorkflowHooks,
) -> DispatchResult:
    dispatch = intent["dispatch"]
    steps = intent.get("steps") or {}
    steps.setdefault(STEP_INVENTORY, {})
    actor = Actor(
        id=dispatch["dispatchedBy"],
        name=dispatch["dispatchedByName"],
        role=dispatch.get("dispatchedByRole") or "",
    )
    recipient = {"type": dispatch["recipientType"], "name": dispatch["recipientName"]}
    attempts = settings.OPTIMISTIC_WRITE_RETRIES

    step = STEP_RECORD
    try:
        if not steps.get(STEP_RECORD):
            ledger.set(_dispatch_path(dispatch_id), dispatch)
            steps[STEP_RECORD] = True
            _save_steps(ledger, dispatch_id, steps, hooks.now_ms())

        step = STEP_INVENTORY
        for index, line in enumerate(dispatch["items"]):
            if steps[STEP_INVENTORY].get(str(index)):
                continue
            apply_dispatch_line_to_inventory(
                ledger,
                dispatch_id=dispatch_id,
                line_index=index,
                line=line,
                recipient=recipient,
                actor=actor,
                now=hooks.now_ms(),
                attempts=attempts,
            )
            steps[STEP_INVENTORY][str(index)] = True
            _save_steps(ledger, dispatch_id, steps, hooks.now_ms())

        step = STEP_TRACKING
        if not steps.get(STEP_TRACKING):
            update_recipient_tracking(
                ledger,
                dispatch_id=dispatch_id,
                dispatch=dispatch,
                now=hooks.now_ms(),
                attempts=attempts,
            )
            steps[STEP_TRACKING] = True
            _save_steps(ledger, dispatch_id, steps, hooks.now_ms())

        step = STEP_NOTIFICATION
        if not steps.get(STEP_NOTIFICATION):
            if dispatch["recipientType"] == "direct_shop":
                _notify_recipient(ledger, dispatch_id=dispatch_id, dispatch=dispatch, now=hooks.now_ms())
            steps[STEP_NOTIFICATION] = True
            _save_steps(ledger, dispatch_id, steps, hooks.now_ms())
    except Exception as exc:
        completed = _completed_steps(steps, len(dispatch["items"]))
        logger.error(f"Dispatch {dispatch_id} failed at step {step}", exc_info=True)
        try:
            ledger.update(
                _intent_path(dispatch_id),
                {
                    "status": INTENT_FAILED,
                    "failedStep": step,
                    "lastError": str(exc),
                    "steps": steps,
                    "updatedAt": hooks.now_ms(),
                },
            )
        except Exception:
            logger.error(f"Could not mark dispatch intent {dispatch_id} as failed", exc_info=True)
        if STEP_RECORD not in completed:
            raise DispatchNotRecorded(
                f"Dispatch {dispatch_id} could not be recorded: {exc}",
                details={"dispatchId": dispatch_id, "failedStep": step},
            ) from exc
        raise PartialDispatchFailure(
            f"Dispatch {dispatch_id} stopped at step '{step}': {exc}",
            details={
                "dispatchId": dispatch_id,
                "releaseCode": dispatch["releaseCode"],
                "failedStep": step,
                "completedSteps": completed,
            },
        ) from exc

    ledger.update(
        _intent_path(dispatch_id),
        {"status": INTENT_COMPLETED, "failedStep": None, "lastError": None, "updatedAt": hooks.now_ms()},
    )
    logger.info(
        f"Dispatch {dispatch_id} ({dispatch['releaseCode']}) completed for "
        f"{dispatch['recipientType']} {dispatch['recipientId']}"
    )
    return _result(dispatch_id, dispatch)


def dispatch_to_external_use_case(
    *,
    ledger: LedgerStore,
    payload: ExternalDispatchCreate,
    actor: Actor,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
    dispatch_id: Optional[str] = None,
) -> DispatchResult:
    """
    Create and run one dispatch.

    ``dispatch_id`` lets callers that reserved an id (request dispatch) retry
    safely: when an intent already exists under that id it is resumed as
    stored and ``payload`` is ignored.
    """
    if dispatch_id:
        existing = ledger.get(_intent_path(dispatch_id))
        if existing is not None:
            logger.info(f"Dispatch intent {dispatch_id} already exists; resuming")
            return _resume(ledger, dispatch_id=dispatch_id, intent=existing, hooks=hooks)
    dispatch_id = dispatch_id or hooks.new_id()

    release_code = hooks.generate_release_code()
    lines = [
        _build_line(item, _resolve_unit_price(ledger, item=item, actor=actor, hooks=hooks))
        for item in payload.items
    ]
    now = hooks.now_ms()
    dispatch = _build_dispatch(payload=payload, lines=lines, release_code=release_code, actor=actor, now=now)
    intent = {
        "dispatchId": dispatch_id,
        "dispatch": dispatch,
        "steps": {STEP_RECORD: False, STEP_INVENTORY: {}, STEP_TRACKING: False, STEP_NOTIFICATION: False},
        "status": INTENT_PENDING,
        "failedStep": None,
        "lastError": None,
        "createdAt": now,
        "updatedAt": now,
    }
    ledger.compare_and_set(_intent_path(dispatch_id), intent, expected_version=0)
    return _run_intent(ledger, dispatch_id=dispatch_id, intent=intent, hooks=hooks)


def _resume(
    ledger: LedgerStore,
    *,
    dispatch_id: str,
    intent: dict[str, Any],
    hooks: WorkflowHooks,
) -> DispatchResult:
    if intent.get("status") == INTENT_COMPLETED:
        return _result(dispatch_id, intent["dispatch"])
    ledger.update(_intent_path(dispatch_id), {"status": INTENT_PENDING, "updatedAt": hooks.now_ms()})
    return _run_intent(ledger, dispatch_id=dispatch_id, intent=intent, hooks=hooks)


def resume_dispatch_use_case(
    *,
    ledger: LedgerStore,
    dispatch_id: str,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> DispatchResult:
    intent = ledger.get(_intent_path(dispatch_id))
    if intent is None:
        raise NotFound("Dispatch not found", code="DISPATCH_NOT_FOUND", details={"dispatchId": dispatch_id})
    return _resume(ledger, dispatch_id=dispatch_id, intent=intent, hooks=hooks)


def get_dispatch_intent_use_case(*, ledger: LedgerStore, dispatch_id: str) -> dict[str, Any]:
    intent = ledger.get(_intent_path(dispatch_id))
    if intent is None:
        raise NotFound("Dispatch not found", code="DISPATCH_NOT_FOUND", details={"dispatchId": dispatch_id})
    return {
        "dispatchId": dispatch_id,
        "status": intent.get("status"),
        "failedStep": intent.get("failedStep"),
        "lastError": intent.get("lastError"),
        "completedSteps": _completed_steps(intent.get("steps") or {}, len(intent["dispatch"]["items"])),
        "releaseCode": intent["dispatch"]["releaseCode"],
    }


def list_external_dispatches_use_case(
    *,
    ledger: LedgerStore,
    recipient_type: Optional[str] = None,
    status: Optional[str] = None,
    date_from: Optional[int] = None,
) -> list[dict[str, Any]]:
    rows = [{"id": dispatch_id, **dispatch} for dispatch_id, dispatch in ledger.children(DISPATCHES_PATH).items()]
    if recipient_type:
        rows = [row for row in rows if row.get("recipientType") == recipient_type]
    if status:
        rows = [row for row in rows if row.get("status") == status]
    if date_from is not None:
        rows = [row for row in rows if (row.get("dispatchedAt") or 0) >= date_from]
    return sorted(rows, key=lambda row: row.get("dispatchedAt") or 0, reverse=True)


def claim_dispatch_id(
    ledger: LedgerStore,
    *,
    request_path: str,
    hooks: WorkflowHooks,
) -> str:
    """
    Reserve the dispatch id for a request, or return the one already reserved.

    The reservation is a version-checked write of ``pendingDispatchId`` on the
    request document, so two FG operators dispatching the same request end up
    driving the same dispatch intent.
    """
    candidate = hooks.new_id()

    def reserve(doc: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        if doc is None:
            raise NotFound("Request not found", code="REQUEST_NOT_FOUND")
        if doc.get("pendingDispatchId"):
            return None
        return {**doc, "pendingDispatchId": candidate, "updatedAt": hooks.now_ms()}

    reserved = versioned_update(ledger, request_path, reserve, attempts=settings.OPTIMISTIC_WRITE_RETRIES)
    if reserved is not None:
        return candidate
    return (ledger.get(request_path) or {})["pendingDispatchId"]


def run_linked_dispatch(
    *,
    ledger: LedgerStore,
    request_path: str,
    build_payload: Callable[[], ExternalDispatchCreate],
    actor: Actor,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> DispatchResult:
    """
    Dispatch on behalf of a request, at most once.

    The first call reserves a dispatch id and builds the payload; any later call
    for the same request resumes that dispatch instead of creating another.
    """
    dispatch_id = claim_dispatch_id(ledger, request_path=request_path, hooks=hooks)
    intent = ledger.get(_intent_path(dispatch_id))
    if intent is not None:
        logger.info(f"{request_path} already has dispatch {dispatch_id}; resuming")
        return _resume(ledger, dispatch_id=dispatch_id, intent=intent, hooks=hooks)
    return dispatch_to_external_use_case(
        ledger=ledger,
        payload=build_payload(),
        actor=actor,
        hooks=hooks,
        dispatch_id=dispatch_id,
    )
