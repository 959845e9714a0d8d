"""
services/booking/events.py
Notification events emitted by the booking lifecycle.

The lifecycle manager hands events to a publisher after its transaction
commits. Delivery is best effort: a failed publish is logged and never
undoes the booking change.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import List, Optional

from shared.models.models import NotificationType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingEvent:
    recipient_account_id: uuid.UUID
    booking_id: uuid.UUID
    kind: NotificationType
    status: str
    text: Optional[str] = None

    def to_message(self) -> dict:
        """JSON-safe form passed to the worker."""
        message = asdict(self)
        message["recipient_account_id"] = str(self.recipient_account_id)
        message["booking_id"] = str(self.booking_id)
        message["kind"] = self.kind.value
        return message


class BookingEventPublisher:
    """Base publisher. Subclasses implement `_send`."""

    def publish(self, events: List[BookingEvent]) -> None:
        for event in events:
            try:
                self._send(event)
            except Exception as e:
                logger.warning(
                    f"Booking event {event.kind.value} for booking {event.booking_id} "
                    f"not delivered: {e}"
                )

    def _send(self, event: BookingEvent) -> None:
        raise NotImplementedError


class CeleryBookingEventPublisher(BookingEventPublisher):
    """Queues each event on the notification worker."""

    def _send(self, event: BookingEvent) -> None:
        from tasks.notification_tasks import record_booking_event

        record_booking_event.delay(event.to_message())


def get_event_publisher() -> BookingEventPublisher:
    """FastAPI dependency for the booking event publisher."""
    return CeleryBookingEventPublisher()
