"""Normalization between ledger request documents and the typed request payload."""

from __future__ import annotations

from typing import Any, Mapping, Union

from pydantic import TypeAdapter

from ..schemas import ItemListPayload, RequestedItem, RequestPayload, SingleProductPayload

Payload = Union[SingleProductPayload, ItemListPayload]

_PAYLOAD_ADAPTER: TypeAdapter = TypeAdapter(RequestPayload)


def normalize_request_payload(raw: Mapping[str, Any]) -> Payload:
    """
    Build the typed payload from a stored request document.

    Mobile clients write direct-shop asks as flat ``product`` / ``quantity``
    fields and distributor / representative asks as an ``items`` map of
    ``{name, qty}``; both land here so the workflow never branches on field
    presence. Raises ValueError when neither shape is present or quantities
    are not positive.
    """
    if raw.get("kind"):
        return _PAYLOAD_ADAPTER.validate_python(dict(raw))

    items = raw.get("items")
    if items:
        return ItemListPayload(
            items={
                str(item_id): RequestedItem(
                    name=item.get("name") or str(item_id),
                    qty=item.get("qty") if item.get("qty") is not None else item.get("quantity"),
                    product_id=item.get("productId"),
                )
                for item_id, item in items.items()
            }
        )

    if raw.get("product"):
        return SingleProductPayload(
            product=raw["product"],
            quantity=raw.get("quantity"),
            product_id=raw.get("productId"),
        )

    raise ValueError("Request has neither a product nor an item list")


def payload_items(payload: Payload) -> list[tuple[str, RequestedItem]]:
    if isinstance(payload, SingleProductPayload):
        item_id = payload.product_id or payload.product
        return [(item_id, RequestedItem(name=payload.product, qty=payload.quantity, product_id=payload.product_id))]
    return list(payload.items.items())


def payload_total_quantity(payload: Payload) -> int:
    return sum(item.qty for _item_id, item in payload_items(payload))


def payload_to_document(payload: Payload) -> dict[str, Any]:
    """Ledger fields for a payload, in the layout clients already read."""
    if isinstance(payload, SingleProductPayload):
        return {
            "product": payload.product,
            "productId": payload.product_id,
            "quantity": payload.quantity,
        }
    return {
        "items": {
            item_id: {"name": item.name, "qty": item.qty, "productId": item.product_id}
            for item_id, item in payload.items.items()
        },
        "totalQuantity": payload_total_quantity(payload),
    }
