"""Finished-goods stock decrements and the inventory movement audit trail."""
from __future__ import annotations

import logging
from typing import Any

from ..ledger import LedgerStore, versioned_update
from ..schemas import Actor
from ..services.inventory_keys import (
    BULK_INVENTORY_COLLECTION,
    PACKAGED_INVENTORY_COLLECTION,
    InventoryKey,
)

logger = logging.getLogger(__name__)

MOVEMENTS_PATH = "fgInventoryMovements"
DEFAULT_LOCATION = "FG Store"

# Per-document record of which dispatch lines were already applied to the stock.
ALLOCATIONS_FIELD = "dispatchAllocations"


def _is_packaged(line: dict[str, Any]) -> bool:
    return line.get("type") != "bulk"


def _explicit_key(line: dict[str, Any]) -> InventoryKey | None:
    if not line.get("batchNumber"):
        return None
    if _is_packaged(line):
        if not line.get("variantName"):
            return None
        return InventoryKey(line["productId"], line["batchNumber"], line["variantName"])
    return InventoryKey(line["productId"], line["batchNumber"])


def _fifo_keys(ledger: LedgerStore, line: dict[str, Any], marker: str) -> list[InventoryKey]:
    """Stock documents of the line's product, oldest first."""
    collection = PACKAGED_INVENTORY_COLLECTION if _is_packaged(line) else BULK_INVENTORY_COLLECTION
    quantity_field = "unitsInStock" if _is_packaged(line) else "quantity"

    candidates: list[tuple[int, str, InventoryKey]] = []
    for document_key, doc in ledger.children(collection).items():
        if not isinstance(doc, dict) or doc.get("productId") != line["productId"]:
            continue
        if line.get("variantName") and doc.get("variantName") != line["variantName"]:
            continue
        if line.get("batchNumber") and doc.get("batchNumber") != line["batchNumber"]:
            continue
        already_applied = marker in (doc.get(ALLOCATIONS_FIELD) or {})
        if int(doc.get(quantity_field) or 0) <= 0 and not already_applied:
            continue
        try:
            key = InventoryKey.parse(collection, document_key)
        except ValueError:
            logger.warning(f"Skipping inventory document with malformed key {collection}/{document_key}")
            continue
        candidates.append((int(doc.get("createdAt") or 0), document_key, key))
    return [key for _created, _document_key, key in sorted(candidates)]


def _movement(
    *,
    line: dict[str, Any],
    key: InventoryKey | None,
    quantity: int,
    stock_before: int | None,
    stock_after: int | None,
    dispatch_id: str,
    recipient: dict[str, Any],
    actor: Actor,
    now: int,
) -> dict[str, Any]:
    return {
        "productId": line["productId"],
        "productName": line.get("productName"),
        "variantName": key.variant_name if key else line.get("variantName"),
        "batchNumber": key.batch_number if key else line.get("batchNumber"),
        "type": "out",
        "quantity": quantity,
        "stockBefore": stock_before,
        "stockAfter": stock_after,
        "reason": f"Dispatched to {recipient['type']}: {recipient['name']}",
        "location": line.get("fromLocation") or DEFAULT_LOCATION,
        "dispatchId": dispatch_id,
        "dispatchType": "external",
        "createdBy": actor.id,
        "createdByName": actor.name,
        "createdAt": now,
    }


def apply_dispatch_line_to_inventory(
    ledger: LedgerStore,
    *,
    dispatch_id: str,
    line_index: int,
    line: dict[str, Any],
    recipient: dict[str, Any],
    actor: Actor,
    now: int,
    attempts: int,
) -> list[dict[str, Any]]:
    """
    Take one dispatch line out of finished-goods stock.

    A line naming its batch (and variant, for packaged goods) hits exactly that
    document; otherwise stock is drawn from the product's documents oldest
    first. Stock never goes below zero and a missing document is skipped. Each
    decrement is a version-checked write that also records the line under
    ``dispatchAllocations``, so replaying the same line is a no-op. Movement
    entries use keys derived from the dispatch id and line index.
    """
    quantity = int(line.get("quantity") or 0)
    if quantity <= 0:
        return []

    marker = f"{dispatch_id}-{line_index}"
    explicit = _explicit_key(line)
    keys = [explicit] if explicit else _fifo_keys(ledger, line, marker)

    remaining = quantity
    movements: list[dict[str, Any]] = []
    for key in keys:
        outcome: dict[str, int] = {}

        def take(doc: dict[str, Any] | None, key: InventoryKey = key) -> dict[str, Any] | None:
            outcome.clear()
            if doc is None:
                return None
            allocations = dict(doc.get(ALLOCATIONS_FIELD) or {})
            if marker in allocations:
                outcome.update(allocations[marker])
                return None
            stock = int(doc.get(key.quantity_field) or 0)
            stock_after = max(0, stock - remaining)
            allocation = {
                "requested": remaining,
                "taken": stock - stock_after,
                "stockBefore": stock,
                "stockAfter": stock_after,
            }
            allocations[marker] = allocation
            outcome.update(allocation)
            return {
                **doc,
                key.quantity_field: stock_after,
                ALLOCATIONS_FIELD: allocations,
                "lastDispatched": now,
                "updatedAt": now,
                "updatedBy": actor.id,
            }

        versioned_update(ledger, key.ledger_path(), take, attempts=attempts)
        if not outcome:
            logger.warning(f"No inventory document at {key.ledger_path()}; skipping decrement")
            continue

        movements.append(
            _movement(
                line=line,
                key=key,
                quantity=outcome["requested"] if explicit else outcome["taken"],
                stock_before=outcome["stockBefore"],
                stock_after=outcome["stockAfter"],
                dispatch_id=dispatch_id,
                recipient=recipient,
                actor=actor,
                now=now,
            )
        )
        remaining -= outcome["taken"]
        if remaining <= 0:
            break

    if not movements:
        # The audit trail still records the outbound goods.
        movements.append(
            _movement(
                line=line,
                key=None,
                quantity=quantity,
                stock_before=None,
                stock_after=None,
                dispatch_id=dispatch_id,
                recipient=recipient,
                actor=actor,
                now=now,
            )
        )
    elif remaining > 0 and not explicit:
        logger.warning(f"Dispatch {dispatch_id} line {line_index}: {remaining} units not covered by stock")

    for n, movement in enumerate(movements):
        ledger.set(f"{MOVEMENTS_PATH}/{marker}-{n}", movement)
    return movements
