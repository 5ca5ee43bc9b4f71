from __future__ import annotations

import pytest

from fgflow.domain_errors import NotFound
from fgflow.use_cases.tracking import (
    list_dispatch_tracking_use_case,
    recipient_dispatch_analytics_use_case,
    recipient_summary_use_case,
    tracking_path,
    update_recipient_tracking,
)

MARCH = 1_741_356_300_000  # 2025-03-07
APRIL = 1_743_984_000_000  # 2025-04-07


def _dispatch(*, recipient_id="dist-1", at=MARCH, items=None, release_code="2503071405A1B2C3"):
    items = items or [{"productName": "Syrup", "quantity": 10, "unitPrice": 20, "totalPrice": 200}]
    return {
        "recipientType": "distributor",
        "recipientId": recipient_id,
        "recipientName": "North Distributors",
        "recipientRole": "Distributor",
        "recipientLocation": "Kandy",
        "shopName": None,
        "items": items,
        "totalItems": len(items),
        "totalQuantity": sum(item["quantity"] for item in items),
        "totalValue": sum(item["totalPrice"] for item in items),
        "dispatchedAt": at,
        "releaseCode": release_code,
        "dispatchedBy": "fg-1",
        "dispatchedByName": "Farah Store",
    }


def test_first_dispatch_creates_aggregate(ledger) -> None:
    aggregate = update_recipient_tracking(ledger, dispatch_id="d1", dispatch=_dispatch(), now=MARCH, attempts=3)

    assert aggregate["totalDispatches"] == 1
    assert aggregate["totalQuantityReceived"] == 10
    assert aggregate["totalValueReceived"] == 200
    assert aggregate["firstDispatchDate"] == MARCH
    assert aggregate["lastProductDispatched"] == "Syrup"
    assert ledger.get(tracking_path("distributor", "dist-1")) == aggregate
    assert ledger.get("externalDispatchTracking/d1")["releaseCode"] == "2503071405A1B2C3"
    assert ledger.get("detailedDispatchLogs/dist-1/d1")["totalValue"] == 200


def test_aggregate_accumulates_and_ignores_replays(ledger) -> None:
    update_recipient_tracking(ledger, dispatch_id="d1", dispatch=_dispatch(), now=MARCH, attempts=3)
    update_recipient_tracking(ledger, dispatch_id="d1", dispatch=_dispatch(), now=MARCH, attempts=3)
    aggregate = update_recipient_tracking(
        ledger,
        dispatch_id="d2",
        dispatch=_dispatch(at=APRIL, items=[{"productName": "Balm", "quantity": 5, "unitPrice": 40, "totalPrice": 200}]),
        now=APRIL,
        attempts=3,
    )

    assert aggregate["totalDispatches"] == 2
    assert aggregate["totalQuantityReceived"] == 15
    assert aggregate["totalValueReceived"] == 400
    assert aggregate["firstDispatchDate"] == MARCH
    assert aggregate["lastDispatchDate"] == APRIL
    assert aggregate["lastDispatchId"] == "d2"
    assert aggregate["recentDispatchIds"] == ["d1", "d2"]


def test_replay_is_ignored_after_many_newer_dispatches(ledger) -> None:
    update_recipient_tracking(ledger, dispatch_id="d0", dispatch=_dispatch(), now=MARCH, attempts=3)
    for index in range(1, 26):
        update_recipient_tracking(ledger, dispatch_id=f"d{index}", dispatch=_dispatch(), now=MARCH, attempts=3)

    aggregate = update_recipient_tracking(ledger, dispatch_id="d0", dispatch=_dispatch(), now=APRIL, attempts=3)

    assert "d0" not in aggregate["recentDispatchIds"]
    assert aggregate["totalDispatches"] == 26
    assert aggregate["totalValueReceived"] == 26 * 200
    assert aggregate["lastDispatchId"] == "d25"


def test_analytics_groups_by_month_and_product(ledger) -> None:
    update_recipient_tracking(ledger, dispatch_id="d1", dispatch=_dispatch(), now=MARCH, attempts=3)
    update_recipient_tracking(
        ledger,
        dispatch_id="d2",
        dispatch=_dispatch(
            at=APRIL,
            items=[
                {"productName": "Balm", "quantity": 5, "unitPrice": 100, "totalPrice": 500},
                {"productName": "Syrup", "quantity": 1, "unitPrice": 20, "totalPrice": 20},
            ],
        ),
        now=APRIL,
        attempts=3,
    )

    analytics = recipient_dispatch_analytics_use_case(ledger=ledger, recipient_type="distributor", recipient_id="dist-1")

    assert list(analytics["monthlyTrends"]) == ["2025-03", "2025-04"]
    assert analytics["monthlyTrends"]["2025-04"] == {"dispatches": 1, "quantity": 6, "value": 520}
    assert [entry["product"] for entry in analytics["topProducts"]] == ["Balm", "Syrup"]
    assert analytics["topProducts"][1]["quantity"] == 11
    assert [log["dispatchId"] for log in analytics["recentDispatches"]] == ["d2", "d1"]
    assert analytics["summary"]["totalDispatches"] == 2


def test_analytics_for_unknown_recipient_is_not_found(ledger) -> None:
    with pytest.raises(NotFound) as exc:
        recipient_dispatch_analytics_use_case(ledger=ledger, recipient_type="distributor", recipient_id="ghost")

    assert exc.value.code == "RECIPIENT_NOT_FOUND"


def test_summary_and_event_listing(ledger) -> None:
    update_recipient_tracking(ledger, dispatch_id="d1", dispatch=_dispatch(), now=MARCH, attempts=3)
    update_recipient_tracking(ledger, dispatch_id="d2", dispatch=_dispatch(recipient_id="dist-2", at=APRIL), now=APRIL, attempts=3)

    summary = recipient_summary_use_case(ledger=ledger, recipient_type="distributor")
    events = list_dispatch_tracking_use_case(ledger=ledger, recipient_type="distributor", date_from=APRIL)

    assert [row["recipientId"] for row in summary] == ["dist-2", "dist-1"]
    assert [row["dispatchId"] for row in events] == ["d2"]
    assert list_dispatch_tracking_use_case(ledger=ledger, recipient_type="direct_shop") == []
