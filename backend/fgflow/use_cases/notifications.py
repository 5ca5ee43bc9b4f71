"""
Notification fan-out through a durable outbox.

Workflow code only enqueues: one ``notificationOutbox`` entry per
(type, subject, target), keyed deterministically so a repeated enqueue is a
no-op. Enqueue failures are logged and swallowed; notifications never fail the
operation that triggered them. The Celery worker calls
``deliver_pending_notifications`` to move entries into the per-user
``notifications`` and per-recipient ``mobileNotifications`` trees, with
exponential backoff between attempts. A worker claims an entry (status
``delivering``) before sending it; a claim left by a dead worker lapses after
``claim_timeout_seconds``.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from ..ledger import LedgerConflict, LedgerStore, ledger_key
from ..services.mobile_push import DEFAULT_RETRY_AFTER_SECONDS
from ..services.request_rules import normalize_role

logger = logging.getLogger(__name__)

OUTBOX_PATH = "notificationOutbox"
CHANNEL_ROLE = "role"
CHANNEL_MOBILE = "mobile"

OUTBOX_PENDING = "pending"
OUTBOX_SENT = "sent"
OUTBOX_FAILED = "failed"
OUTBOX_SKIPPED = "skipped"
OUTBOX_DELIVERING = "delivering"

PushSender = Callable[[str, dict[str, Any]], tuple[bool, "str | None"]]


def _enqueue(
    ledger: LedgerStore,
    *,
    channel: str,
    target: str,
    subject_id: str,
    notification: dict[str, Any],
    now_ms: int,
) -> str | None:
    notification_type = notification.get("type", "notification")
    try:
        key = ledger_key(f"{notification_type}:{subject_id}:{target}")
        entry = {
            "channel": channel,
            "target": target,
            "subjectId": subject_id,
            "type": notification_type,
            "payload": notification,
            "status": OUTBOX_PENDING,
            "attempts": 0,
            "nextRetryAt": None,
            "lastError": None,
            "createdAt": now_ms,
        }
        ledger.compare_and_set(f"{OUTBOX_PATH}/{key}", entry, expected_version=0)
        logger.info(f"Queued {channel} notification {notification_type} for {target}")
        return key
    except LedgerConflict:
        logger.info(f"Skipping duplicate notification {notification_type}:{subject_id}:{target}")
        return None
    except Exception:
        logger.error(f"Failed to queue {channel} notification {notification_type} for {target}", exc_info=True)
        return None


def notify_role(
    ledger: LedgerStore,
    *,
    role: str,
    subject_id: str,
    notification: dict[str, Any],
    now_ms: int,
) -> str | None:
    """Queue a notification for every user holding ``role``."""
    return _enqueue(
        ledger,
        channel=CHANNEL_ROLE,
        target=normalize_role(role),
        subject_id=subject_id,
        notification=notification,
        now_ms=now_ms,
    )


def notify_mobile(
    ledger: LedgerStore,
    *,
    target_id: str,
    subject_id: str,
    notification: dict[str, Any],
    now_ms: int,
) -> str | None:
    """Queue a notification on the mobile channel of a recipient or request id."""
    return _enqueue(
        ledger,
        channel=CHANNEL_MOBILE,
        target=str(target_id),
        subject_id=subject_id,
        notification=notification,
        now_ms=now_ms,
    )


def _users_with_role(ledger: LedgerStore, role: str) -> list[str]:
    users = ledger.children("users")
    return [
        user_id
        for user_id, user in users.items()
        if isinstance(user, dict) and normalize_role(user.get("role")) == role and user.get("isActive", True)
    ]


def _deliver_entry(
    ledger: LedgerStore,
    *,
    key: str,
    entry: dict[str, Any],
    push_sender: PushSender | None,
) -> tuple[str, list[str], str | None]:
    payload = entry.get("payload") or {}
    target = entry["target"]

    if entry["channel"] == CHANNEL_ROLE:
        user_ids = _users_with_role(ledger, target)
        if not user_ids:
            return OUTBOX_SKIPPED, [], f"No active users with role {target}"
        for user_id in user_ids:
            # Keyed by outbox entry: a retried delivery overwrites, never duplicates.
            ledger.set(
                f"notifications/{ledger_key(user_id)}/{key}",
                {**payload, "status": "unread", "createdAt": entry.get("createdAt")},
            )
        return OUTBOX_SENT, user_ids, None

    ledger.set(
        f"mobileNotifications/{ledger_key(target)}/{key}",
        {**payload, "timestamp": entry.get("createdAt")},
    )
    if push_sender is not None:
        ok, error = push_sender(target, payload)
        if not ok:
            return OUTBOX_PENDING, [target], error
    return OUTBOX_SENT, [target], None


def _retry_after_seconds(error: str) -> int:
    value = error.split(":", 1)[1].strip()
    try:
        return max(int(value), 0)
    except ValueError:
        logger.warning(f"Unreadable retry hint {value!r}; waiting {DEFAULT_RETRY_AFTER_SECONDS}s")
        return DEFAULT_RETRY_AFTER_SECONDS


def _is_due(entry: dict[str, Any], now_ms: int, claim_timeout_ms: int) -> bool:
    status = entry.get("status")
    if status == OUTBOX_PENDING:
        return entry.get("nextRetryAt") is None or entry["nextRetryAt"] <= now_ms
    if status == OUTBOX_DELIVERING:
        # The claiming worker died mid-delivery once its claim has lapsed.
        return (entry.get("claimedAt") or 0) + claim_timeout_ms <= now_ms
    return False


def _claim(ledger: LedgerStore, path: str, *, now_ms: int, claim_timeout_ms: int) -> dict[str, Any] | None:
    """Take an entry for this worker; None when it is not due or another worker got it first."""
    entry, version = ledger.get_versioned(path)
    if not isinstance(entry, dict) or not _is_due(entry, now_ms, claim_timeout_ms):
        return None
    claimed = {**entry, "status": OUTBOX_DELIVERING, "claimedAt": now_ms}
    try:
        ledger.compare_and_set(path, claimed, expected_version=version)
    except LedgerConflict:
        logger.info(f"Notification {path} claimed by another worker")
        return None
    return claimed


def _settle(
    ledger: LedgerStore,
    *,
    key: str,
    entry: dict[str, Any],
    now_ms: int,
    max_attempts: int,
    backoff_base_seconds: int,
    push_sender: PushSender | None,
) -> str:
    path = f"{OUTBOX_PATH}/{key}"
    try:
        status, delivered_to, error = _deliver_entry(ledger, key=key, entry=entry, push_sender=push_sender)
    except Exception as e:
        logger.error(f"Delivery of notification {key} raised", exc_info=True)
        status, delivered_to, error = OUTBOX_PENDING, [], f"EXCEPTION: {str(e)}"

    if status == OUTBOX_SENT:
        ledger.update(path, {"status": OUTBOX_SENT, "sentAt": now_ms, "deliveredTo": delivered_to, "lastError": None})
        return "sent"
    if status == OUTBOX_SKIPPED:
        ledger.update(path, {"status": OUTBOX_SKIPPED, "lastError": error})
        logger.warning(f"Skipped notification {key}: {error}")
        return "skipped"

    attempts = int(entry.get("attempts") or 0) + 1
    updates: dict[str, Any] = {"status": OUTBOX_PENDING, "attempts": attempts, "lastError": error}
    outcome = "retried"
    if error and error.startswith("RATE_LIMIT:"):
        retry_after = _retry_after_seconds(error)
        updates["nextRetryAt"] = now_ms + retry_after * 1000
        logger.warning(f"Rate limited for {retry_after}s: {key}")
    elif error == "TARGET_GONE" or attempts >= max_attempts:
        updates["status"] = OUTBOX_FAILED
        updates["failedAt"] = now_ms
        outcome = "failed"
        logger.error(f"Notification {key} failed after {attempts} attempts: {error}")
    else:
        backoff_seconds = 2 ** attempts * backoff_base_seconds
        updates["nextRetryAt"] = now_ms + backoff_seconds * 1000
        logger.warning(f"Retry {attempts}/{max_attempts} in {backoff_seconds}s: {key}")
    ledger.update(path, updates)
    return outcome


def deliver_pending_notifications(
    ledger: LedgerStore,
    *,
    now_ms: int,
    batch_size: int,
    max_attempts: int,
    backoff_base_seconds: int,
    claim_timeout_seconds: int = 300,
    push_sender: PushSender | None = None,
) -> dict[str, int]:
    """
    Deliver due outbox entries; returns counters for the worker log.

    Each entry is claimed with a version-checked write before anything is sent,
    so overlapping workers never deliver the same entry twice. A failure while
    handling one entry is logged and leaves the rest of the batch unaffected.
    """
    claim_timeout_ms = claim_timeout_seconds * 1000
    due = [
        key
        for key, entry in ledger.children(OUTBOX_PATH).items()
        if isinstance(entry, dict) and _is_due(entry, now_ms, claim_timeout_ms)
    ][:batch_size]

    counters = {"total": 0, "sent": 0, "retried": 0, "failed": 0, "skipped": 0, "contended": 0, "errors": 0}
    for key in due:
        path = f"{OUTBOX_PATH}/{key}"
        try:
            entry = _claim(ledger, path, now_ms=now_ms, claim_timeout_ms=claim_timeout_ms)
            if entry is None:
                counters["contended"] += 1
                continue
            counters["total"] += 1
            outcome = _settle(
                ledger,
                key=key,
                entry=entry,
                now_ms=now_ms,
                max_attempts=max_attempts,
                backoff_base_seconds=backoff_base_seconds,
                push_sender=push_sender,
            )
            counters[outcome] += 1
        except Exception:
            counters["errors"] += 1
            logger.error(f"Could not process notification {key}", exc_info=True)

    return counters
