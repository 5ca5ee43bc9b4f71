from __future__ import annotations

import pytest

from fgflow.domain_errors import (
    DomainError,
    InvalidStateTransition,
    MissingReason,
    NotFound,
    NotReadyForDispatch,
)
from fgflow.ledger import ledger_key
from fgflow.schemas import DirectShopRequestCreate, DispatchInputs, PriceUpdateIn, SingleProductPayload
from fgflow.services.release_codes import is_release_code
from fgflow.use_cases.direct_shop_requests import (
    approve_direct_shop_request_use_case,
    dispatch_direct_shop_request_use_case,
    get_direct_shop_request_use_case,
    list_direct_shop_requests_use_case,
    reject_direct_shop_request_use_case,
    submit_direct_shop_request_use_case,
)
from fgflow.use_cases.pricing import list_price_history_use_case, update_price_use_case


def _submit(ledger, hooks, shop, *, product="Syrup-X", quantity=50, product_id=None):
    return submit_direct_shop_request_use_case(
        ledger=ledger,
        data=DirectShopRequestCreate(
            payload=SingleProductPayload(product=product, quantity=quantity, product_id=product_id),
            shop_name="Corner Shop",
            shop_location="Galle Road",
        ),
        actor=shop,
        hooks=hooks,
    )


def _approved(ledger, hooks, shop, md, ho, **kwargs):
    request = _submit(ledger, hooks, shop, **kwargs)
    approve_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=md, hooks=hooks)
    approve_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=ho, hooks=hooks)
    return request["id"]


def _outbox(ledger, notification_type):
    return [entry for entry in ledger.children("notificationOutbox").values() if entry["type"] == notification_type]


def test_submit_creates_pending_request_and_notifies_md(ledger, hooks, shop) -> None:
    request = _submit(ledger, hooks, shop)

    stored = get_direct_shop_request_use_case(ledger=ledger, request_id=request["id"])
    assert stored["status"] == "pending"
    assert stored["product"] == "Syrup-X"
    assert stored["quantity"] == 50
    assert stored["requestedBy"] == "shop-1"
    assert stored["workflow"]["submitted"]["by"] == "shop-1"

    queued = _outbox(ledger, "direct_shop_request_submitted")
    assert [entry["target"] for entry in queued] == ["MainDirector"]


def test_full_chain_dispatches_and_decrements_inventory(ledger, hooks, shop, md, ho, fg) -> None:
    ledger.set(
        "finishedGoodsPackagedInventory/Syrup-X_500ml_B1",
        {"productId": "Syrup-X", "variantName": "500ml", "batchNumber": "B1", "unitsInStock": 80, "createdAt": 1},
    )
    request_id = _approved(ledger, hooks, shop, md, ho)

    result = dispatch_direct_shop_request_use_case(
        ledger=ledger,
        request_id=request_id,
        inputs=DispatchInputs(unit_price=120),
        actor=fg,
        hooks=hooks,
    )

    assert result.total_value == 6000
    assert result.total_quantity == 50
    assert is_release_code(result.release_code)

    request = get_direct_shop_request_use_case(ledger=ledger, request_id=request_id)
    assert request["status"] == "dispatched"
    assert request["dispatchId"] == result.dispatch_id
    assert request["releaseCode"] == result.release_code
    assert set(request["workflow"]) >= {"submitted", "mdApproved", "forwardedToHO", "hoApproved", "forwardedToFG", "dispatched"}

    stock = ledger.get("finishedGoodsPackagedInventory/Syrup-X_500ml_B1")
    assert stock["unitsInStock"] == 30

    dispatch = ledger.get(f"externalDispatches/{result.dispatch_id}")
    assert dispatch["recipientType"] == "direct_shop"
    assert dispatch["recipientId"] == "shop-1"
    assert dispatch["requestId"] == request_id

    assert [entry["target"] for entry in _outbox(ledger, "direct_shop_request_forwarded")] == ["HeadOfOperations"]
    assert [entry["target"] for entry in _outbox(ledger, "direct_shop_request_approved")] == ["FinishedGoodsStoreManager"]
    assert [entry["target"] for entry in _outbox(ledger, "direct_shop_request_completed")] == ["HeadOfOperations"]
    assert {entry["target"] for entry in _outbox(ledger, "dispatch_notification")} == {"shop-1", request_id}


def test_stock_never_goes_below_zero(ledger, hooks, shop, md, ho, fg) -> None:
    ledger.set(
        "finishedGoodsPackagedInventory/Syrup-X_500ml_B1",
        {"productId": "Syrup-X", "variantName": "500ml", "batchNumber": "B1", "unitsInStock": 20, "createdAt": 1},
    )
    request_id = _approved(ledger, hooks, shop, md, ho)

    dispatch_direct_shop_request_use_case(
        ledger=ledger, request_id=request_id, inputs=DispatchInputs(unit_price=120), actor=fg, hooks=hooks
    )

    assert ledger.get("finishedGoodsPackagedInventory/Syrup-X_500ml_B1")["unitsInStock"] == 0


def test_md_rejection_stops_the_request_and_notifies_the_shop(ledger, hooks, shop, md) -> None:
    request = _submit(ledger, hooks, shop)

    rejected = reject_direct_shop_request_use_case(
        ledger=ledger, request_id=request["id"], actor=md, reason="insufficient stock", hooks=hooks
    )

    assert rejected["status"] == "md_rejected"
    assert rejected["rejectionReason"] == "insufficient stock"
    assert ledger.children("externalDispatches") == {}

    (notice,) = _outbox(ledger, "direct_shop_request_rejected")
    assert notice["channel"] == "mobile"
    assert notice["target"] == request["id"]
    assert notice["payload"]["reason"] == "insufficient stock"


def test_rejection_requires_a_reason(ledger, hooks, shop, md) -> None:
    request = _submit(ledger, hooks, shop)

    with pytest.raises(MissingReason) as exc:
        reject_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=md, reason="  ", hooks=hooks)

    assert exc.value.http_status == 400
    assert get_direct_shop_request_use_case(ledger=ledger, request_id=request["id"])["status"] == "pending"


def test_ho_cannot_act_before_md(ledger, hooks, shop, ho) -> None:
    request = _submit(ledger, hooks, shop)

    with pytest.raises(InvalidStateTransition) as exc:
        approve_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=ho, hooks=hooks)

    assert exc.value.http_status == 409
    assert exc.value.details["expectedStatus"] == "md_approved_forwarded_to_ho"


def test_md_cannot_approve_twice(ledger, hooks, shop, md) -> None:
    request = _submit(ledger, hooks, shop)
    approve_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=md, hooks=hooks)

    with pytest.raises(InvalidStateTransition):
        approve_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=md, hooks=hooks)


def test_ho_rejection_after_md_approval(ledger, hooks, shop, md, ho) -> None:
    request = _submit(ledger, hooks, shop)
    approve_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=md, comments="ok", hooks=hooks)

    rejected = reject_direct_shop_request_use_case(
        ledger=ledger, request_id=request["id"], actor=ho, reason="price dispute", hooks=hooks
    )

    assert rejected["status"] == "ho_rejected"
    assert rejected["mdApprovalComments"] == "ok"
    assert rejected["workflow"]["rejected"]["role"] == "HeadOfOperations"


def test_rejected_request_cannot_be_approved(ledger, hooks, shop, md) -> None:
    request = _submit(ledger, hooks, shop)
    reject_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=md, reason="no", hooks=hooks)

    with pytest.raises(InvalidStateTransition):
        approve_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=md, hooks=hooks)


def test_fg_store_cannot_approve(ledger, hooks, shop, fg) -> None:
    request = _submit(ledger, hooks, shop)

    with pytest.raises(DomainError) as exc:
        approve_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=fg, hooks=hooks)

    assert exc.value.code == "APPROVAL_ROLE_NOT_ALLOWED"
    assert exc.value.http_status == 403


def test_dispatch_requires_ho_approval(ledger, hooks, shop, md, fg) -> None:
    request = _submit(ledger, hooks, shop)
    approve_direct_shop_request_use_case(ledger=ledger, request_id=request["id"], actor=md, hooks=hooks)

    with pytest.raises(NotReadyForDispatch) as exc:
        dispatch_direct_shop_request_use_case(
            ledger=ledger, request_id=request["id"], inputs=DispatchInputs(), actor=fg, hooks=hooks
        )

    assert exc.value.code == "REQUEST_NOT_APPROVED_FOR_DISPATCH"
    assert ledger.children("externalDispatches") == {}


def test_dispatched_request_cannot_be_dispatched_again(ledger, hooks, shop, md, ho, fg) -> None:
    request_id = _approved(ledger, hooks, shop, md, ho)
    dispatch_direct_shop_request_use_case(
        ledger=ledger, request_id=request_id, inputs=DispatchInputs(unit_price=10), actor=fg, hooks=hooks
    )

    with pytest.raises(NotReadyForDispatch):
        dispatch_direct_shop_request_use_case(
            ledger=ledger, request_id=request_id, inputs=DispatchInputs(unit_price=10), actor=fg, hooks=hooks
        )
    assert len(ledger.children("externalDispatches")) == 1


def test_missing_request_is_not_found(ledger, hooks, md) -> None:
    with pytest.raises(NotFound):
        approve_direct_shop_request_use_case(ledger=ledger, request_id="nope", actor=md, hooks=hooks)


def test_list_filters_by_status_and_shop(ledger, hooks, shop, md) -> None:
    first = _submit(ledger, hooks, shop)
    _submit(ledger, hooks, shop, product="Balm", quantity=5)
    reject_direct_shop_request_use_case(ledger=ledger, request_id=first["id"], actor=md, reason="no", hooks=hooks)

    pending = list_direct_shop_requests_use_case(ledger=ledger, status="pending")
    mine = list_direct_shop_requests_use_case(ledger=ledger, shop_id="shop-1")

    assert [row["product"] for row in pending] == ["Balm"]
    assert len(mine) == 2


def test_dispatch_uses_resolved_price_when_no_unit_price_given(ledger, hooks, shop, md, ho, fg) -> None:
    ledger.set(f"productPricing/{ledger_key('Syrup-X')}", {"productName": "Syrup-X", "currentPrice": 95})
    request_id = _approved(ledger, hooks, shop, md, ho, quantity=4)

    result = dispatch_direct_shop_request_use_case(
        ledger=ledger, request_id=request_id, inputs=DispatchInputs(), actor=fg, hooks=hooks
    )

    assert result.lines[0].unit_price == 95
    assert result.total_value == 380


def test_repeat_dispatch_of_uncatalogued_product_id_keeps_updated_price(ledger, hooks, shop, md, ho, fg) -> None:
    first_id = _approved(ledger, hooks, shop, md, ho, quantity=2, product_id="P-1")
    first = dispatch_direct_shop_request_use_case(
        ledger=ledger, request_id=first_id, inputs=DispatchInputs(), actor=fg, hooks=hooks
    )
    update_price_use_case(ledger=ledger, product_key="Syrup-X", data=PriceUpdateIn(price=150), actor=fg, hooks=hooks)

    second_id = _approved(ledger, hooks, shop, md, ho, quantity=2, product_id="P-1")
    second = dispatch_direct_shop_request_use_case(
        ledger=ledger, request_id=second_id, inputs=DispatchInputs(), actor=fg, hooks=hooks
    )

    assert first.lines[0].unit_price == 100
    assert second.lines[0].unit_price == 150
    assert ledger.get("productPricing/Syrup-X")["currentPrice"] == 150
    history = list_price_history_use_case(ledger=ledger, product_id="Syrup-X")
    assert sorted((entry["previousPrice"], entry["newPrice"]) for entry in history) == [(0, 100), (100, 150)]
