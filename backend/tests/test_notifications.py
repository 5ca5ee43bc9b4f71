from __future__ import annotations

from datetime import datetime, timezone

from fgflow.ledger import ledger_key
from fgflow.services.mobile_push import parse_retry_after
from fgflow.use_cases import notifications
from fgflow.use_cases.notifications import (
    deliver_pending_notifications,
    notify_mobile,
    notify_role,
)

NOW = 1_741_356_300_000


def _deliver(ledger, *, now=NOW, push_sender=None, max_attempts=3):
    return deliver_pending_notifications(
        ledger,
        now_ms=now,
        batch_size=100,
        max_attempts=max_attempts,
        backoff_base_seconds=60,
        push_sender=push_sender,
    )


def _entry(ledger, key):
    return ledger.get(f"notificationOutbox/{key}")


def test_enqueue_is_idempotent_per_type_subject_and_target(ledger) -> None:
    notification = {"type": "direct_shop_request_submitted", "requestId": "r1"}

    first = notify_role(ledger, role="md", subject_id="r1", notification=notification, now_ms=NOW)
    second = notify_role(ledger, role="MainDirector", subject_id="r1", notification=notification, now_ms=NOW)

    assert first == ledger_key("direct_shop_request_submitted:r1:MainDirector")
    assert second is None
    assert len(ledger.children("notificationOutbox")) == 1


def test_role_delivery_fans_out_to_active_users(ledger) -> None:
    key = notify_role(
        ledger,
        role="HeadOfOperations",
        subject_id="r1",
        notification={"type": "direct_shop_request_forwarded", "message": "forwarded"},
        now_ms=NOW,
    )

    counters = _deliver(ledger)

    assert counters == {"total": 1, "sent": 1, "retried": 0, "failed": 0, "skipped": 0, "contended": 0, "errors": 0}
    assert ledger.get(f"notifications/ho-1/{key}")["message"] == "forwarded"
    assert ledger.get(f"notifications/ho-1/{key}")["status"] == "unread"
    assert ledger.get(f"notifications/ho-old/{key}") is None
    assert _entry(ledger, key)["deliveredTo"] == ["ho-1"]

    # Sent entries are not picked up again.
    assert _deliver(ledger)["total"] == 0


def test_role_without_users_is_skipped(ledger) -> None:
    key = notify_role(ledger, role="Auditor", subject_id="r1", notification={"type": "x"}, now_ms=NOW)

    counters = _deliver(ledger)

    assert counters["skipped"] == 1
    assert _entry(ledger, key)["status"] == "skipped"


def test_mobile_delivery_writes_feed_and_pushes(ledger) -> None:
    pushed = []
    key = notify_mobile(ledger, target_id="shop-1", subject_id="d1", notification={"type": "dispatch_notification"}, now_ms=NOW)

    _deliver(ledger, push_sender=lambda target, payload: pushed.append((target, payload["type"])) or (True, None))

    assert ledger.get(f"mobileNotifications/shop-1/{key}")["timestamp"] == NOW
    assert pushed == [("shop-1", "dispatch_notification")]
    assert _entry(ledger, key)["status"] == "sent"


def test_push_failure_backs_off_then_fails(ledger) -> None:
    key = notify_mobile(ledger, target_id="shop-1", subject_id="d1", notification={"type": "dispatch_notification"}, now_ms=NOW)
    failing = lambda target, payload: (False, "HTTP_502: bad gateway")  # noqa: E731

    _deliver(ledger, push_sender=failing)
    entry = _entry(ledger, key)
    assert entry["attempts"] == 1
    assert entry["nextRetryAt"] == NOW + 120_000
    assert entry["status"] == "pending"

    # Not due yet.
    assert _deliver(ledger, now=NOW + 1_000, push_sender=failing)["total"] == 0

    _deliver(ledger, now=NOW + 120_000, push_sender=failing)
    assert _entry(ledger, key)["nextRetryAt"] == NOW + 120_000 + 240_000

    _deliver(ledger, now=NOW + 360_000, push_sender=failing)
    entry = _entry(ledger, key)
    assert entry["status"] == "failed"
    assert entry["attempts"] == 3


def test_rate_limit_honours_retry_after(ledger) -> None:
    key = notify_mobile(ledger, target_id="shop-1", subject_id="d1", notification={"type": "dispatch_notification"}, now_ms=NOW)

    counters = _deliver(ledger, push_sender=lambda target, payload: (False, "RATE_LIMIT:30"))

    assert counters["retried"] == 1
    assert _entry(ledger, key)["nextRetryAt"] == NOW + 30_000


def test_gone_target_fails_immediately(ledger) -> None:
    key = notify_mobile(ledger, target_id="shop-1", subject_id="d1", notification={"type": "dispatch_notification"}, now_ms=NOW)

    counters = _deliver(ledger, push_sender=lambda target, payload: (False, "TARGET_GONE"))

    assert counters["failed"] == 1
    assert _entry(ledger, key)["status"] == "failed"


def test_enqueue_failure_never_raises(ledger, monkeypatch) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("ledger down")

    monkeypatch.setattr(ledger, "compare_and_set", broken)

    assert notify_mobile(ledger, target_id="shop-1", subject_id="d1", notification={"type": "x"}, now_ms=NOW) is None


def test_unreadable_retry_hint_falls_back_and_batch_continues(ledger) -> None:
    first = notify_mobile(ledger, target_id="shop-1", subject_id="d1", notification={"type": "dispatch_notification"}, now_ms=NOW)
    second = notify_mobile(ledger, target_id="shop-2", subject_id="d2", notification={"type": "dispatch_notification"}, now_ms=NOW)

    counters = _deliver(ledger, push_sender=lambda target, payload: (False, "RATE_LIMIT:Wed, 21 Oct 2026 07:28:00 GMT"))

    assert counters["retried"] == 2
    for key in (first, second):
        entry = _entry(ledger, key)
        assert entry["status"] == "pending"
        assert entry["attempts"] == 1
        assert entry["nextRetryAt"] == NOW + 60_000


def test_parse_retry_after_accepts_seconds_and_http_dates() -> None:
    now = datetime(2026, 10, 21, 7, 27, 0, tzinfo=timezone.utc)

    assert parse_retry_after("45", now=now) == 45
    assert parse_retry_after("Wed, 21 Oct 2026 07:28:00 GMT", now=now) == 60
    assert parse_retry_after("Wed, 21 Oct 2026 07:00:00 GMT", now=now) == 0
    assert parse_retry_after("soon", now=now) == 60
    assert parse_retry_after(None, now=now) == 60


def test_failure_on_one_entry_does_not_block_the_batch(ledger, monkeypatch) -> None:
    first = notify_mobile(ledger, target_id="shop-1", subject_id="d1", notification={"type": "dispatch_notification"}, now_ms=NOW)
    second = notify_mobile(ledger, target_id="shop-2", subject_id="d2", notification={"type": "dispatch_notification"}, now_ms=NOW)
    real = notifications._settle

    def settle_once_broken(ledger, *, key, **kwargs):
        if key == first:
            raise RuntimeError("ledger unavailable")
        return real(ledger, key=key, **kwargs)

    monkeypatch.setattr(notifications, "_settle", settle_once_broken)

    counters = _deliver(ledger)

    assert counters["errors"] == 1
    assert counters["sent"] == 1
    assert _entry(ledger, second)["status"] == "sent"
    assert _entry(ledger, first)["status"] == "delivering"


def test_overlapping_runs_deliver_each_entry_once(ledger) -> None:
    first = notify_mobile(ledger, target_id="shop-1", subject_id="d1", notification={"type": "dispatch_notification"}, now_ms=NOW)
    second = notify_mobile(ledger, target_id="shop-2", subject_id="d2", notification={"type": "dispatch_notification"}, now_ms=NOW)
    pushed = []
    overlapping = {}

    def sender(target, payload):
        pushed.append(target)
        if len(pushed) == 1:
            # A second beat run starts while the first push is in flight.
            overlapping.update(_deliver(ledger, push_sender=sender))
        return True, None

    counters = _deliver(ledger, push_sender=sender)

    assert sorted(pushed) == ["shop-1", "shop-2"]
    assert overlapping["sent"] == 1
    assert counters["sent"] == 1
    assert counters["contended"] == 1
    assert _entry(ledger, first)["status"] == "sent"
    assert _entry(ledger, second)["status"] == "sent"


def test_lapsed_claim_is_picked_up_again(ledger) -> None:
    key = notify_mobile(ledger, target_id="shop-1", subject_id="d1", notification={"type": "dispatch_notification"}, now_ms=NOW)
    ledger.update(f"notificationOutbox/{key}", {"status": "delivering", "claimedAt": NOW})

    assert _deliver(ledger, now=NOW + 60_000)["total"] == 0

    counters = _deliver(ledger, now=NOW + 300_000)

    assert counters["sent"] == 1
    assert _entry(ledger, key)["status"] == "sent"
