"""
Booking lifecycle state machine

    requested ──accept──> accepted ──start_payment──> pending_payment ──confirm_payment──> paid ──complete──> completed
        │                                                  │                                 │
        ├──decline──> declined                             └──payment_declined──> requested  │
        │                                                                                    │
        └──────────────── cancel (from requested, pending_payment, paid) ──> cancelled <─────┘

declined, cancelled and completed are terminal. Every transition that reaches a
status for the first time stamps the matching *_at column exactly once.

plan() validates and computes the change set without touching the booking, so
the caller can persist it with a compare-and-set on the source status.
transition() plans and applies the change in memory.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from ...errors import ConflictError, ForbiddenError
from ...models import Booking
from ...services.notification_service import Dispatch, NotificationEvent
from ...utils.clock import utcnow

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingAction(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    START_PAYMENT = "start_payment"
    CONFIRM_PAYMENT = "confirm_payment"
    PAYMENT_DECLINED = "payment_declined"
    COMPLETE = "complete"
    CANCEL = "cancel"


class Actor(str, Enum):
    CLIENT = "client"
    OWNER = "owner"
    SYSTEM = "system"


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset
    target: BookingStatus
    actors: frozenset
    timestamp_field: Optional[str] = None
    # False when the target is also reachable without this action
    repeatable_as_noop: bool = True


TRANSITIONS: dict[BookingAction, TransitionRule] = {
    BookingAction.ACCEPT: TransitionRule(
        sources=frozenset({BookingStatus.REQUESTED}),
        target=BookingStatus.ACCEPTED,
        actors=frozenset({Actor.OWNER}),
        timestamp_field="accepted_at",
    ),
    BookingAction.DECLINE: TransitionRule(
        sources=frozenset({BookingStatus.REQUESTED}),
        target=BookingStatus.DECLINED,
        actors=frozenset({Actor.OWNER}),
        timestamp_field="declined_at",
    ),
    BookingAction.START_PAYMENT: TransitionRule(
        sources=frozenset({BookingStatus.ACCEPTED}),
        target=BookingStatus.PENDING_PAYMENT,
        actors=frozenset({Actor.CLIENT, Actor.SYSTEM}),
    ),
    BookingAction.CONFIRM_PAYMENT: TransitionRule(
        sources=frozenset({BookingStatus.PENDING_PAYMENT}),
        target=BookingStatus.PAID,
        actors=frozenset({Actor.SYSTEM}),
        timestamp_field="paid_at",
    ),
    BookingAction.PAYMENT_DECLINED: TransitionRule(
        sources=frozenset({BookingStatus.PENDING_PAYMENT}),
        target=BookingStatus.REQUESTED,
        actors=frozenset({Actor.SYSTEM}),
        repeatable_as_noop=False,
    ),
    BookingAction.COMPLETE: TransitionRule(
        sources=frozenset({BookingStatus.PAID}),
        target=BookingStatus.COMPLETED,
        actors=frozenset({Actor.OWNER, Actor.SYSTEM}),
        timestamp_field="completed_at",
    ),
    BookingAction.CANCEL: TransitionRule(
        sources=frozenset(
            {BookingStatus.REQUESTED, BookingStatus.PENDING_PAYMENT, BookingStatus.PAID}
        ),
        target=BookingStatus.CANCELLED,
        actors=frozenset({Actor.CLIENT, Actor.OWNER}),
        timestamp_field="cancelled_at",
    ),
}


@dataclass
class Transition:
    """Outcome of planning an action against a booking"""

    action: BookingAction
    from_status: BookingStatus
    to_status: BookingStatus
    applied: bool
    changes: dict[str, Any] = field(default_factory=dict)
    side_effects: list[Dispatch] = field(default_factory=list)


class BookingStateMachine:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def allowed_actions(self, booking: Booking) -> list[BookingAction]:
        """Actions whose source set contains the booking's current status"""
        current = BookingStatus(booking.status)
        return [action for action, rule in TRANSITIONS.items() if current in rule.sources]

    def plan(
        self,
        booking: Booking,
        action: BookingAction,
        actor: Actor,
        context: Optional[dict[str, Any]] = None,
    ) -> Transition:
        """
        Validate an action and compute its effect without mutating the booking.

        Args:
            context: Extra fields merged into the notification data (e.g. penalty amounts)

        Raises:
            ForbiddenError: actor may not perform this action
            ConflictError: current status is not a valid source for the action
        """
        rule = TRANSITIONS[action]
        current = BookingStatus(booking.status)

        if actor not in rule.actors:
            raise ForbiddenError(
                f"{actor.value.capitalize()} is not allowed to {action.value.replace('_', ' ')} a booking"
            )

        if current == rule.target and rule.repeatable_as_noop:
            logger.debug(f"Booking {booking.id} already {current.value}; {action.value} is a no-op")
            return Transition(action=action, from_status=current, to_status=current, applied=False)

        if current not in rule.sources:
            raise ConflictError(current.value, rule.target.value, action.value)

        changes: dict[str, Any] = {"status": rule.target.value}
        if rule.timestamp_field and getattr(booking, rule.timestamp_field) is None:
            changes[rule.timestamp_field] = self.clock()

        return Transition(
            action=action,
            from_status=current,
            to_status=rule.target,
            applied=True,
            changes=changes,
            side_effects=self._side_effects(booking, action, actor, context or {}),
        )

    def transition(
        self,
        booking: Booking,
        action: BookingAction,
        actor: Actor,
        context: Optional[dict[str, Any]] = None,
    ) -> Transition:
        """Plan the action and apply the resulting changes to the booking in memory"""
        result = self.plan(booking, action, actor, context)
        self.apply(booking, result)
        return result

    @staticmethod
    def apply(booking: Booking, result: Transition) -> None:
        for key, value in result.changes.items():
            setattr(booking, key, value)
        if result.applied:
            logger.info(
                f"📋 Booking {booking.id}: {result.from_status.value} → {result.to_status.value} "
                f"({result.action.value})"
            )

    def _side_effects(
        self, booking: Booking, action: BookingAction, actor: Actor, context: dict[str, Any]
    ) -> list[Dispatch]:
        data = {"bookingId": booking.id, "postId": booking.post_id, **context}

        def notify(user_id: str, event_type: str, message: str) -> Dispatch:
            return Dispatch(user_id, NotificationEvent(type=event_type, message=message, data=data))

        if action == BookingAction.ACCEPT:
            return [notify(booking.client_id, "booking_accepted", "Your booking request was accepted")]
        if action == BookingAction.DECLINE:
            return [notify(booking.client_id, "booking_declined", "Your booking request was declined")]
        if action == BookingAction.START_PAYMENT:
            return [notify(booking.owner_id, "payment_pending", "The client started paying for a booking")]
        if action == BookingAction.CONFIRM_PAYMENT:
            return [
                notify(booking.owner_id, "payment_completed", "Payment received for your booking"),
                notify(booking.client_id, "payment_completed", "Your payment was approved"),
            ]
        if action == BookingAction.PAYMENT_DECLINED:
            return [
                notify(booking.owner_id, "payment_failed", "A payment for your booking was declined"),
                notify(booking.client_id, "payment_failed", "Your payment was declined, please try again"),
            ]
        if action == BookingAction.COMPLETE:
            return [notify(booking.client_id, "booking_completed", "Your booking was completed")]

        # Cancellation: tell the counterpart, confirm to the actor
        if actor == Actor.CLIENT:
            counterpart = notify(
                booking.owner_id, "booking_cancelled_by_client", "The client cancelled a booking"
            )
            confirmation_to = booking.client_id
        else:
            counterpart = notify(
                booking.client_id, "booking_cancelled_by_owner", "The owner cancelled your booking"
            )
            confirmation_to = booking.owner_id
        return [
            counterpart,
            notify(confirmation_to, "booking_cancellation_confirmed", "Your cancellation was registered"),
        ]
