"""
In-app notification dispatcher
Records notifications in the caller's unit of work so a state change and the
notification announcing it are committed together. Delivery channels (email,
push) read from the notifications table and are not part of this service.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from ..models import Notification

logger = logging.getLogger(__name__)

NOTIFICATION_TITLES = {
    "booking_request": "New booking request",
    "booking_accepted": "Booking accepted",
    "booking_declined": "Booking declined",
    "payment_pending": "Payment pending",
    "payment_completed": "Payment completed",
    "payment_failed": "Payment failed",
    "booking_completed": "Booking completed",
    "booking_cancelled_by_client": "Booking cancelled",
    "booking_cancelled_by_owner": "Booking cancelled",
    "booking_cancellation_confirmed": "Cancellation confirmed",
    "subscription_activated": "Subscription active",
    "subscription_cancelled": "Subscription cancelled",
}


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return NOTIFICATION_TITLES.get(self.type, self.type.replace("_", " ").capitalize())


@dataclass(frozen=True)
class Dispatch:
    """A notification addressed to a user, produced as a side effect of a state change"""

    user_id: str
    event: NotificationEvent


class NotificationDispatcher:
    """Fire-and-forget: send() never blocks on delivery and never raises for a bad recipient"""

    def __init__(self, db: Session):
        self.db = db

    def send(self, user_id: str, event: NotificationEvent) -> None:
        if not user_id:
            logger.warning(f"⚠️ Skipping {event.type} notification without recipient")
            return

        self.db.add(
            Notification(
                user_id=user_id,
                type=event.type,
                title=event.title,
                message=event.message,
                data=event.data,
                is_read=False,
            )
        )
        logger.info(f"📨 Queued {event.type} notification for user {user_id}")

    def send_all(self, dispatches: list[Dispatch]) -> None:
        for dispatch in dispatches:
            self.send(dispatch.user_id, dispatch.event)
