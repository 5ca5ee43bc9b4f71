import pytest
from pydantic import ValidationError

from fgflow.schemas import ItemListPayload, SingleProductPayload
from fgflow.services.request_payload import (
    normalize_request_payload,
    payload_items,
    payload_to_document,
    payload_total_quantity,
)


def test_flat_direct_shop_document_becomes_single_product() -> None:
    payload = normalize_request_payload({"product": "Syrup-X", "quantity": 50, "status": "pending"})

    assert isinstance(payload, SingleProductPayload)
    assert payload.product == "Syrup-X"
    assert payload_total_quantity(payload) == 50
    assert payload_items(payload)[0][0] == "Syrup-X"


def test_item_map_document_becomes_item_list() -> None:
    payload = normalize_request_payload(
        {
            "items": {
                "p1": {"name": "Syrup-X", "qty": 10},
                "p2": {"name": "Balm", "quantity": 4, "productId": "balm-01"},
            }
        }
    )

    assert isinstance(payload, ItemListPayload)
    assert payload_total_quantity(payload) == 14
    assert payload.items["p2"].product_id == "balm-01"


def test_tagged_payload_is_validated_by_kind() -> None:
    payload = normalize_request_payload({"kind": "single_product", "product": "Balm", "quantity": 2})

    assert isinstance(payload, SingleProductPayload)


def test_document_without_product_or_items_is_rejected() -> None:
    with pytest.raises(ValueError, match="neither a product nor an item list"):
        normalize_request_payload({"status": "pending"})


def test_non_positive_quantity_is_rejected() -> None:
    with pytest.raises(ValidationError):
        normalize_request_payload({"product": "Syrup-X", "quantity": 0})


def test_payload_to_document_keeps_client_layout() -> None:
    single = payload_to_document(SingleProductPayload(product="Syrup-X", quantity=5))
    listed = payload_to_document(ItemListPayload(items={"p1": {"name": "Balm", "qty": 3}}))

    assert single == {"product": "Syrup-X", "productId": None, "quantity": 5}
    assert listed["items"]["p1"] == {"name": "Balm", "qty": 3, "productId": None}
    assert listed["totalQuantity"] == 3
