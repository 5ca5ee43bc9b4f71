"""
Celery worker that drains the notification outbox.
"""
from celery import Celery
import logging

from .config import settings
from .database import SessionLocal
from .dependencies import get_memory_ledger
from .ledger import SqlLedgerStore
from .services.mobile_push import send_mobile_push
from .time_utils import now_ms
from .use_cases.notifications import deliver_pending_notifications

logger = logging.getLogger(__name__)

celery_app = Celery(
    "fgflow",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


@celery_app.task(name="deliver_notification_outbox")
def deliver_notification_outbox(batch_size: int | None = None):
    """Deliver due outbox entries to the in-app and mobile channels."""
    if settings.LEDGER_BACKEND.strip().lower() == "memory":
        return _deliver(get_memory_ledger(), batch_size)

    db = SessionLocal()
    try:
        return _deliver(SqlLedgerStore(db), batch_size)
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing outbox: {e}", exc_info=True)
        raise
    finally:
        db.close()


def _deliver(ledger, batch_size: int | None) -> dict[str, int]:
    counters = deliver_pending_notifications(
        ledger,
        now_ms=now_ms(),
        batch_size=batch_size or settings.NOTIFICATION_BATCH_SIZE,
        max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
        backoff_base_seconds=settings.NOTIFICATION_BACKOFF_BASE_SECONDS,
        claim_timeout_seconds=settings.NOTIFICATION_CLAIM_TIMEOUT_SECONDS,
        push_sender=send_mobile_push if settings.MOBILE_PUSH_URL else None,
    )
    logger.info(
        f"Processed {counters['total']} notifications: "
        f"{counters['sent']} sent, {counters['retried']} retried, "
        f"{counters['failed']} failed, {counters['skipped']} skipped, "
        f"{counters['contended']} claimed elsewhere, {counters['errors']} errors"
    )
    return counters


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'deliver-outbox-every-30s': {
        'task': 'deliver_notification_outbox',
        'schedule': 30.0,  # Every 30 seconds
    },
}
