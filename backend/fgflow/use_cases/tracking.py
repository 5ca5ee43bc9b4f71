"""
Recipient tracking aggregates and dispatch analytics.

Every dispatch leaves three traces: a flat ``externalDispatchTracking`` event,
the rolling ``{recipientType}Tracking/{recipientId}`` aggregate and a
denormalized ``detailedDispatchLogs/{recipientId}/{dispatchId}`` entry that the
analytics reader works from. The aggregate is incremented with a
version-checked write; every counted dispatch id is kept under
``countedDispatches`` on the aggregate so a resumed dispatch never counts twice.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from ..domain_errors import NotFound
from ..ledger import LedgerStore, ledger_key, versioned_update
from ..time_utils import month_key

logger = logging.getLogger(__name__)

TRACKING_EVENTS_PATH = "externalDispatchTracking"
DETAILED_LOGS_PATH = "detailedDispatchLogs"

RECENT_DISPATCH_WINDOW = 20
COUNTED_FIELD = "countedDispatches"


def tracking_path(recipient_type: str, recipient_id: str) -> str:
    return f"{ledger_key(recipient_type)}Tracking/{ledger_key(recipient_id)}"


def _tracking_record(dispatch_id: str, dispatch: dict[str, Any], now: int) -> dict[str, Any]:
    return {
        "dispatchId": dispatch_id,
        "recipientType": dispatch["recipientType"],
        "recipientId": dispatch["recipientId"],
        "recipientName": dispatch.get("recipientName"),
        "recipientRole": dispatch.get("recipientRole"),
        "recipientLocation": dispatch.get("recipientLocation"),
        "shopName": dispatch.get("shopName"),
        "totalItems": dispatch["totalItems"],
        "totalQuantity": dispatch["totalQuantity"],
        "totalValue": dispatch["totalValue"],
        "dispatchDate": dispatch["dispatchedAt"],
        "releaseCode": dispatch["releaseCode"],
        "items": dispatch["items"],
        "createdBy": dispatch.get("dispatchedBy"),
        "createdByName": dispatch.get("dispatchedByName"),
        "createdAt": now,
    }


def update_recipient_tracking(
    ledger: LedgerStore,
    *,
    dispatch_id: str,
    dispatch: dict[str, Any],
    now: int,
    attempts: int,
) -> dict[str, Any]:
    """Record a dispatch against its recipient; safe to call again for the same dispatch."""
    record = _tracking_record(dispatch_id, dispatch, now)
    ledger.set(f"{TRACKING_EVENTS_PATH}/{ledger_key(dispatch_id)}", record)

    recipient_type = record["recipientType"]
    recipient_id = record["recipientId"]
    path = tracking_path(recipient_type, recipient_id)

    def increment(current: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        existing = current or {}
        counted = dict(existing.get(COUNTED_FIELD) or {})
        if dispatch_id in counted:
            return None
        counted[dispatch_id] = record["dispatchDate"]
        recent = list(existing.get("recentDispatchIds") or [])
        items = record["items"] or []
        updated = {
            **existing,
            "recipientId": recipient_id,
            "recipientType": recipient_type,
            "recipientName": record["recipientName"],
            "recipientRole": record["recipientRole"],
            "recipientLocation": record["recipientLocation"],
            "shopName": record["shopName"],
            "totalDispatches": (existing.get("totalDispatches") or 0) + 1,
            "totalItemsReceived": (existing.get("totalItemsReceived") or 0) + record["totalItems"],
            "totalQuantityReceived": (existing.get("totalQuantityReceived") or 0) + record["totalQuantity"],
            "totalValueReceived": (existing.get("totalValueReceived") or 0) + record["totalValue"],
            "lastDispatchDate": record["dispatchDate"],
            "lastDispatchId": dispatch_id,
            "lastReleaseCode": record["releaseCode"],
            "lastProductDispatched": items[0].get("productName") if items else "Unknown",
            "lastQuantityDispatched": record["totalQuantity"],
            "recentDispatchIds": (recent + [dispatch_id])[-RECENT_DISPATCH_WINDOW:],
            COUNTED_FIELD: counted,
            "updatedAt": now,
        }
        if current is None:
            updated["firstDispatchDate"] = record["dispatchDate"]
            updated["createdAt"] = now
        return updated

    aggregate = versioned_update(ledger, path, increment, attempts=attempts)
    if aggregate is None:
        logger.info(f"Dispatch {dispatch_id} already counted for {path}")
        aggregate = ledger.get(path) or {}

    ledger.set(
        f"{DETAILED_LOGS_PATH}/{ledger_key(recipient_id)}/{ledger_key(dispatch_id)}",
        {
            "recipientId": recipient_id,
            "recipientType": recipient_type,
            "recipientName": record["recipientName"],
            "recipientRole": record["recipientRole"],
            "shopName": record["shopName"],
            "dispatchId": dispatch_id,
            "releaseCode": record["releaseCode"],
            "dispatchDate": record["dispatchDate"],
            "items": record["items"],
            "totalItems": record["totalItems"],
            "totalQuantity": record["totalQuantity"],
            "totalValue": record["totalValue"],
            "createdAt": now,
        },
    )
    return aggregate


def recipient_dispatch_analytics_use_case(
    *,
    ledger: LedgerStore,
    recipient_type: str,
    recipient_id: str,
) -> dict[str, Any]:
    summary = ledger.get(tracking_path(recipient_type, recipient_id))
    logs = list(ledger.children(f"{DETAILED_LOGS_PATH}/{ledger_key(recipient_id)}").values())
    if summary is None and not logs:
        raise NotFound(f"No dispatches recorded for {recipient_id}", code="RECIPIENT_NOT_FOUND")

    recent = sorted(logs, key=lambda log: log.get("dispatchDate") or 0, reverse=True)[:10]

    monthly: dict[str, dict[str, float]] = {}
    products: dict[str, dict[str, float]] = {}
    for log in logs:
        bucket = monthly.setdefault(month_key(log.get("dispatchDate") or 0), {"dispatches": 0, "quantity": 0, "value": 0})
        bucket["dispatches"] += 1
        bucket["quantity"] += log.get("totalQuantity") or 0
        bucket["value"] += log.get("totalValue") or 0
        for item in log.get("items") or []:
            product = products.setdefault(item.get("productName") or "Unknown", {"quantity": 0, "value": 0, "dispatches": 0})
            product["quantity"] += item.get("quantity") or 0
            product["value"] += item.get("totalPrice") or 0
            product["dispatches"] += 1

    top_products = sorted(
        ({"product": name, **data} for name, data in products.items()),
        key=lambda entry: entry["value"],
        reverse=True,
    )[:5]

    return {
        "summary": summary or {},
        "recentDispatches": recent,
        "monthlyTrends": dict(sorted(monthly.items())),
        "topProducts": top_products,
    }


def recipient_summary_use_case(*, ledger: LedgerStore, recipient_type: str) -> list[dict[str, Any]]:
    rows = [
        {"recipientId": recipient_id, **data}
        for recipient_id, data in ledger.children(f"{ledger_key(recipient_type)}Tracking").items()
    ]
    return sorted(rows, key=lambda row: row.get("lastDispatchDate") or 0, reverse=True)


def list_dispatch_tracking_use_case(
    *,
    ledger: LedgerStore,
    recipient_type: str,
    recipient_id: Optional[str] = None,
    date_from: Optional[int] = None,
    date_to: Optional[int] = None,
) -> list[dict[str, Any]]:
    rows = [
        {"id": tracking_id, **record}
        for tracking_id, record in ledger.children(TRACKING_EVENTS_PATH).items()
        if record.get("recipientType") == recipient_type
    ]
    if recipient_id:
        rows = [row for row in rows if row.get("recipientId") == recipient_id]
    if date_from is not None:
        rows = [row for row in rows if (row.get("dispatchDate") or 0) >= date_from]
    if date_to is not None:
        rows = [row for row in rows if (row.get("dispatchDate") or 0) <= date_to]
    return sorted(rows, key=lambda row: row.get("dispatchDate") or 0, reverse=True)
