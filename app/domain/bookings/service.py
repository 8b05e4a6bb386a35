"""Booking service - Business logic for the booking lifecycle"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ...config import FRONTEND_URL, PUBLIC_BASE_URL
from ...errors import ConflictError, ForbiddenError, NotFoundError, UpstreamError
from ...models import Booking
from ...services.notification_service import NotificationDispatcher, NotificationEvent
from ...unit_of_work import UnitOfWork
from ...utils.clock import as_naive_utc, utcnow
from ..authorization.role_store import AuthorizationRoleStore, RoleName
from ..billing.correlation import BookingReference
from ..billing.mercadopago_service import MercadoPagoService
from ..billing.sync import ExternalResourceSyncCoordinator
from .cancellation import (
    CancellationPenalty,
    CancellationPolicy,
    evaluate_cancellation_penalty,
    no_penalty,
)
from .repository import BookingRepository
from .schemas import BookingCreate
from .state_machine import Actor, BookingAction, BookingStateMachine, BookingStatus, Transition

logger = logging.getLogger(__name__)


class BookingService:
    """Service layer for booking business logic"""

    def __init__(
        self,
        db: Session,
        role_store: AuthorizationRoleStore,
        processor: Optional[MercadoPagoService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.repo = BookingRepository()
        self.role_store = role_store
        self.processor = processor
        self.clock = clock
        self.machine = BookingStateMachine(clock=clock)
        self.dispatcher = NotificationDispatcher(db)
        self.sync = ExternalResourceSyncCoordinator()

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repo.get(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        return booking

    def allowed_actions(self, booking: Booking) -> list[str]:
        return [action.value for action in self.machine.allowed_actions(booking)]

    @staticmethod
    def resolve_actor(booking: Booking, user_id: str) -> Actor:
        """Map the calling user to their side of the booking"""
        if user_id == booking.owner_id:
            return Actor.OWNER
        if user_id == booking.client_id:
            return Actor.CLIENT
        raise ForbiddenError("You are not a party to this booking")

    def create_booking(self, data: BookingCreate) -> Booking:
        """Create a booking request for a publisher's listing"""
        logger.info(f"📥 Booking request for post {data.postId} by client {data.clientId}")

        if not self.role_store.has_role(data.ownerId, RoleName.PUBLISHER):
            logger.warning(f"⚠️ Owner {data.ownerId} has no active publisher role")
            raise ForbiddenError("The listing owner cannot receive bookings")

        with UnitOfWork(self.db):
            booking = self.repo.create(
                self.db,
                post_id=data.postId,
                client_id=data.clientId,
                owner_id=data.ownerId,
                status=BookingStatus.REQUESTED.value,
                start_date=as_naive_utc(data.startDate),
                end_date=as_naive_utc(data.endDate),
                total_amount=data.totalAmount,
                currency=data.currency,
                guest_count=data.guestCount,
                client_data=data.clientData.model_dump() if data.clientData else None,
                cancellation_policies=[
                    CancellationPolicy.from_dict(policy.model_dump()).to_dict()
                    for policy in data.cancellationPolicies
                ],
            )
            # Flush so the notification can reference the generated booking id
            self.db.flush()
            self.dispatcher.send(
                booking.owner_id,
                NotificationEvent(
                    type="booking_request",
                    message="You received a new booking request",
                    data={"bookingId": booking.id, "postId": booking.post_id},
                ),
            )

        self.db.refresh(booking)
        logger.info(f"✅ Booking {booking.id} created")
        return booking

    def _commit_transition(
        self, booking: Booking, transition: Transition, extra_changes: Optional[dict[str, Any]] = None
    ) -> Transition:
        """Persist a planned transition with a compare-and-set on its source status"""
        changes = {**transition.changes, **(extra_changes or {})}

        with UnitOfWork(self.db):
            won = self.repo.update(self.db, booking.id, transition.from_status.value, changes)
            if won:
                self.dispatcher.send_all(transition.side_effects)

        self.db.refresh(booking)

        if not won:
            if booking.status == transition.to_status.value:
                logger.info(
                    f"ℹ️ Booking {booking.id} reached {booking.status} concurrently; "
                    f"{transition.action.value} is a no-op"
                )
                return Transition(
                    action=transition.action,
                    from_status=transition.to_status,
                    to_status=transition.to_status,
                    applied=False,
                )
            logger.warning(
                f"⚠️ Booking {booking.id} changed to {booking.status} while applying "
                f"{transition.action.value}"
            )
            raise ConflictError(booking.status, transition.to_status.value, transition.action.value)

        logger.info(
            f"📋 Booking {booking.id}: {transition.from_status.value} → {transition.to_status.value} "
            f"({transition.action.value})"
        )
        return transition

    def perform_action(
        self,
        booking_id: str,
        action: BookingAction,
        actor: Actor,
        extra_changes: Optional[dict[str, Any]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> tuple[Booking, Transition]:
        """
        Run a state machine action against a stored booking.

        Re-running an action whose target the booking already has is a no-op.

        Raises:
            NotFoundError, ForbiddenError, ConflictError
        """
        booking = self.get_booking(booking_id)
        transition = self.machine.plan(booking, action, actor, context)
        if not transition.applied:
            return booking, transition
        return booking, self._commit_transition(booking, transition, extra_changes)

    def transition_as_user(self, booking_id: str, action: BookingAction, user_id: str) -> Booking:
        """Accept, decline or complete on behalf of the calling user"""
        booking = self.get_booking(booking_id)
        actor = self.resolve_actor(booking, user_id)
        booking, _ = self.perform_action(booking_id, action, actor)
        return booking

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _penalty_for(self, booking: Booking, cancelled_by: Actor) -> CancellationPenalty:
        if cancelled_by != Actor.CLIENT:
            return no_penalty(booking.total_amount)

        policies = [CancellationPolicy.from_dict(p) for p in booking.cancellation_policies or []]
        return evaluate_cancellation_penalty(
            policies, booking.total_amount, booking.start_date, self.clock()
        )

    def _check_party(self, booking: Booking, user_id: Optional[str], cancelled_by: Actor) -> None:
        if user_id is None:
            return
        if self.resolve_actor(booking, user_id) != cancelled_by:
            raise ForbiddenError(f"Only the {cancelled_by.value} can cancel as {cancelled_by.value}")

    def quote_cancellation(
        self, booking_id: str, cancelled_by: Actor, user_id: Optional[str] = None
    ) -> CancellationPenalty:
        """Penalty a cancellation would carry at this moment"""
        booking = self.get_booking(booking_id)
        self._check_party(booking, user_id, cancelled_by)
        return self._penalty_for(booking, cancelled_by)

    def cancel_booking(
        self, booking_id: str, cancelled_by: Actor, user_id: Optional[str] = None
    ) -> dict:
        """
        Cancel a booking, recording the penalty and refund next to the unchanged total.

        Owner cancellations never carry a penalty. Cancelling an already cancelled
        booking returns the recorded outcome.
        """
        booking = self.get_booking(booking_id)
        self._check_party(booking, user_id, cancelled_by)

        if booking.status == BookingStatus.CANCELLED.value:
            return {
                "penaltyAmount": booking.penalty_amount or 0.0,
                "refundAmount": booking.refund_amount or 0.0,
                "message": "Booking was already cancelled",
            }

        penalty = self._penalty_for(booking, cancelled_by)
        logger.info(
            f"🧮 Cancellation of booking {booking.id} by {cancelled_by.value}: "
            f"penalty={penalty.penalty_amount}, refund={penalty.refund_amount}, "
            f"days_until_start={penalty.days_until_start}"
        )

        booking, _ = self.perform_action(
            booking.id,
            BookingAction.CANCEL,
            cancelled_by,
            extra_changes={
                "cancelled_by": cancelled_by.value,
                "penalty_amount": penalty.penalty_amount,
                "refund_amount": penalty.refund_amount,
            },
            context={
                "cancelledBy": cancelled_by.value,
                "penaltyAmount": penalty.penalty_amount,
                "refundAmount": penalty.refund_amount,
            },
        )

        penalty_amount = booking.penalty_amount or 0.0
        refund_amount = booking.refund_amount or 0.0
        if penalty_amount > 0:
            message = (
                f"Booking cancelled. A penalty of {penalty_amount:.2f} {booking.currency} applies; "
                f"{refund_amount:.2f} {booking.currency} will be refunded"
            )
        else:
            message = "Booking cancelled without penalty"

        return {"penaltyAmount": penalty_amount, "refundAmount": refund_amount, "message": message}

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def _preference_payload(
        self, booking: Booking, payer_email: Optional[str], return_url: Optional[str]
    ) -> dict:
        back_url = return_url or f"{FRONTEND_URL}/bookings/{booking.id}"
        payload = {
            "items": [
                {
                    "id": booking.post_id,
                    "title": f"Booking {booking.id}",
                    "quantity": 1,
                    "unit_price": booking.total_amount,
                    "currency_id": booking.currency,
                }
            ],
            "external_reference": BookingReference(booking.id).encode(),
            "notification_url": f"{PUBLIC_BASE_URL}/webhooks/mercadopago",
            "back_urls": {
                "success": f"{back_url}?payment=success",
                "failure": f"{back_url}?payment=failure",
                "pending": f"{back_url}?payment=pending",
            },
            "auto_return": "approved",
        }
        email = payer_email or (booking.client_data or {}).get("email")
        if email:
            payload["payer"] = {"email": email}
        return payload

    async def start_checkout(
        self,
        booking_id: str,
        user_id: str,
        payer_email: Optional[str] = None,
        return_url: Optional[str] = None,
    ) -> dict:
        """
        Create a MercadoPago checkout preference for an accepted booking and move it
        to pending_payment. Calling again while pending_payment returns the
        preference already on record.
        """
        booking = self.get_booking(booking_id)
        actor = self.resolve_actor(booking, user_id)
        transition = self.machine.plan(booking, BookingAction.START_PAYMENT, actor)

        payment_data = booking.payment_data or {}
        if not transition.applied and payment_data.get("preferenceId"):
            return {
                "bookingId": booking.id,
                "preferenceId": payment_data.get("preferenceId"),
                "initPoint": payment_data.get("initPoint"),
                "sandboxInitPoint": payment_data.get("sandboxInitPoint"),
                "status": booking.status,
            }

        if not self.processor:
            raise UpstreamError("Payment processor not configured")

        payload = self._preference_payload(booking, payer_email, return_url)

        async def create_preference():
            return await self.processor.create_preference(payload)

        def commit_local(preference: dict) -> dict:
            recorded = {
                **payment_data,
                "preferenceId": preference.get("id"),
                "initPoint": preference.get("init_point"),
                "sandboxInitPoint": preference.get("sandbox_init_point"),
            }
            if transition.applied:
                self._commit_transition(booking, transition, {"payment_data": recorded})
            else:
                with UnitOfWork(self.db):
                    booking.payment_data = recorded
                self.db.refresh(booking)
            return recorded

        recorded = await self.sync.run(f"booking {booking.id} checkout", create_preference, commit_local)
        logger.info(f"✅ Checkout preference {recorded.get('preferenceId')} created for booking {booking.id}")

        return {
            "bookingId": booking.id,
            "preferenceId": recorded.get("preferenceId"),
            "initPoint": recorded.get("initPoint"),
            "sandboxInitPoint": recorded.get("sandboxInitPoint"),
            "status": booking.status,
        }
