"""
tasks/notification_tasks.py
Celery tasks that turn booking events into in-app notifications.

Usage (see services/booking/events.py):
    record_booking_event.delay(event.to_message())
"""

import logging
import uuid
from typing import Optional

from celery import Task
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from config.database import sync_database_url
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Base Task with DB session ──────────────────────────────────────────────────

class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True
    _session_factory: Optional[sessionmaker] = None

    def get_session(self) -> Session:
        """Get a synchronous SQLAlchemy session (Celery runs sync by default)."""
        if DatabaseTask._session_factory is None:
            engine = create_engine(sync_database_url(), pool_pre_ping=True)
            DatabaseTask._session_factory = sessionmaker(bind=engine)
        return DatabaseTask._session_factory()


# ── Notification Templates ─────────────────────────────────────────────────────

TEMPLATES = {
    "booking_created": {
        "title": "New Booking Request",
        "body": "{text}. Open your dashboard to confirm or reject it.",
    },
    "status_changed": {
        "title": "Booking {status}",
        "body": "{text}.",
    },
    "new_message": {
        "title": "New Message",
        "body": "New message on your booking: {text}",
    },
}


def _render(template: str, **kwargs) -> str:
    """Simple string template renderer."""
    for key, value in kwargs.items():
        template = template.replace(f"{{{key}}}", str(value))
    return template


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=60)
def record_booking_event(self, event: dict):
    """
    Store one booking event as a Notification for its recipient.
    Events for unknown accounts are dropped with a log line.
    """
    from shared.models.models import Account, Notification, NotificationType

    tmpl = TEMPLATES.get(event.get("kind"))
    if tmpl is None:
        logger.error(f"record_booking_event: unknown event kind {event.get('kind')!r}")
        return

    values = {
        "status": str(event.get("status", "")).capitalize(),
        "text": event.get("text") or "",
    }

    db = self.get_session()
    try:
        account_id = uuid.UUID(event["recipient_account_id"])
        if db.get(Account, account_id) is None:
            logger.warning(f"record_booking_event: account {account_id} not found")
            return

        notification = Notification(
            account_id=account_id,
            booking_id=uuid.UUID(event["booking_id"]),
            type=NotificationType(event["kind"]),
            title=_render(tmpl["title"], **values),
            body=_render(tmpl["body"], **values),
        )
        db.add(notification)
        db.commit()
        logger.info(f"Notification {event['kind']} stored for {account_id}")
        return str(notification.id)

    except Exception as e:
        db.rollback()
        logger.exception(f"record_booking_event failed: {e}")
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))
    finally:
        db.close()
