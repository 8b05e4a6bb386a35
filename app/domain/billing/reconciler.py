"""
Payment webhook reconciler

MercadoPago notifications only say "object X changed". Every handler re-fetches
the object from the API and reconciles local state against it, so a replayed or
forged body can never change anything by itself.

Error policy (the router turns these into HTTP answers):
    processor failure / timeout -> UpstreamError propagates, 5xx, processor retries
    database failure            -> propagates, 5xx, processor retries
    bad reference, unknown ids,
    irrelevant statuses         -> logged, acknowledged (retrying cannot help)
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import ConflictError, ValidationError
from ...models import Subscription
from ...services.notification_service import NotificationDispatcher, NotificationEvent
from ...unit_of_work import UnitOfWork
from ...utils.clock import utcnow
from ..authorization.coordinator import SubscriptionRoleCoordinator
from ..authorization.role_store import AuthorizationRoleStore
from ..bookings.service import BookingService
from ..bookings.state_machine import Actor, BookingAction, BookingStatus
from .correlation import BookingReference, SubscriptionReference
from .mercadopago_service import MercadoPagoService
from .repository import PlanRepository, SubscriptionRepository

logger = logging.getLogger(__name__)

# MercadoPago preapproval status -> local subscription status
SUBSCRIPTION_STATUS_MAP = {
    "authorized": "active",
    "cancelled": "cancelled",
    "paused": "paused",
}

# MercadoPago payment status -> booking action
BOOKING_PAYMENT_ACTIONS = {
    "approved": BookingAction.CONFIRM_PAYMENT,
    "pending": BookingAction.START_PAYMENT,
    "in_process": BookingAction.START_PAYMENT,
    "rejected": BookingAction.PAYMENT_DECLINED,
    "cancelled": BookingAction.PAYMENT_DECLINED,
}

BILLING_CYCLE_PERIODS = {
    "daily": relativedelta(days=1),
    "weekly": relativedelta(days=7),
    "monthly": relativedelta(months=1),
    "yearly": relativedelta(years=1),
}


class ReconcileOutcome(str, Enum):
    """What a webhook delivery amounted to; every outcome is acknowledged"""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    ALREADY_ACTIVE = "already_active"
    IGNORED = "ignored"
    INVALID_REFERENCE = "invalid_reference"
    REFERENCE_MISMATCH = "reference_mismatch"
    UNKNOWN_SUBSCRIPTION = "unknown_subscription"
    PLAN_NOT_FOUND = "plan_not_found"
    REFUSED = "refused"
    BOOKING_NOT_FOUND = "booking_not_found"
    BOOKING_CONFLICT = "booking_conflict"


def calculate_end_date(start: datetime, billing_cycle: Optional[str]) -> datetime:
    """End of the first billing period; unknown cycles are treated as monthly"""
    return start + BILLING_CYCLE_PERIODS.get(billing_cycle, BILLING_CYCLE_PERIODS["monthly"])


class PaymentWebhookReconciler:
    def __init__(
        self,
        db: Session,
        processor: MercadoPagoService,
        role_store: AuthorizationRoleStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.processor = processor
        self.clock = clock
        self.coordinator = SubscriptionRoleCoordinator(role_store)
        self.dispatcher = NotificationDispatcher(db)
        self.bookings = BookingService(db, role_store, processor, clock=clock)

    # ------------------------------------------------------------------
    # Subscription payments
    # ------------------------------------------------------------------

    async def handle_payment_event(self, payment_id: str) -> ReconcileOutcome:
        """Create the local subscription for the first approved payment of a plan"""
        payment = await self.processor.get_payment(payment_id)
        status = payment.get("status")

        if status != "approved":
            logger.info(f"ℹ️ Payment {payment_id} is {status}; nothing to reconcile")
            return ReconcileOutcome.IGNORED

        try:
            reference = SubscriptionReference.decode(payment.get("external_reference"))
        except ValidationError as e:
            logger.warning(f"⚠️ Payment {payment_id} has an unusable reference: {e.message}")
            return ReconcileOutcome.INVALID_REFERENCE

        user_id = reference.user_id
        existing = SubscriptionRepository.get_active_by_user(self.db, user_id)
        if existing:
            logger.info(
                f"ℹ️ User {user_id} already has active subscription {existing.id}; "
                f"payment {payment_id} acknowledged"
            )
            return ReconcileOutcome.ALREADY_ACTIVE

        plan = PlanRepository.get(self.db, reference.plan_id)
        if not plan:
            logger.critical(
                f"🚨 ALERT: approved payment {payment_id} references missing plan {reference.plan_id} "
                f"(user {user_id}). Manual reconciliation required."
            )
            return ReconcileOutcome.PLAN_NOT_FOUND

        preapproval_id = (payment.get("metadata") or {}).get("preapproval_id")
        now = self.clock()

        try:
            with UnitOfWork(self.db) as uow:
                subscription = SubscriptionRepository.create(
                    self.db,
                    external_status=status,
                    user_id=user_id,
                    plan_id=plan.id,
                    external_payment_id=str(payment.get("id") or payment_id),
                    external_subscription_id=str(preapproval_id) if preapproval_id else None,
                    status="active",
                    amount=payment.get("transaction_amount") or plan.price,
                    currency=payment.get("currency_id") or plan.currency,
                    start_date=now,
                    end_date=calculate_end_date(now, plan.billing_cycle),
                )
                self.coordinator.on_activated(uow, user_id)
                self._notify_subscription(user_id, "subscription_activated", plan.name, plan.id)
        except IntegrityError:
            if SubscriptionRepository.get_active_by_user(self.db, user_id):
                logger.info(
                    f"ℹ️ Concurrent delivery already activated a subscription for user {user_id}"
                )
                return ReconcileOutcome.ALREADY_ACTIVE
            logger.critical(
                f"🚨 ALERT: payment {payment_id} for user {user_id} conflicts with an existing "
                f"subscription record (preapproval {preapproval_id}). Manual reconciliation required."
            )
            return ReconcileOutcome.REFUSED

        logger.info(
            f"✅ Subscription {subscription.id} activated for user {user_id} on plan {plan.id} "
            f"until {subscription.end_date}"
        )
        return ReconcileOutcome.CREATED

    # ------------------------------------------------------------------
    # Subscription (preapproval) status changes
    # ------------------------------------------------------------------

    async def handle_subscription_status_event(self, preapproval_id: str) -> ReconcileOutcome:
        """Mirror a preapproval status change onto an existing local subscription"""
        preapproval = await self.processor.get_preapproval(preapproval_id)
        external_status = preapproval.get("status")

        try:
            reference = SubscriptionReference.decode(preapproval.get("external_reference"))
        except ValidationError as e:
            logger.warning(f"⚠️ Preapproval {preapproval_id} has an unusable reference: {e.message}")
            return ReconcileOutcome.INVALID_REFERENCE

        external_id = str(preapproval.get("id") or preapproval_id)
        subscription = SubscriptionRepository.get_by_external_id(self.db, external_id)
        if not subscription:
            logger.warning(
                f"⚠️ No local subscription for preapproval {external_id} (user {reference.user_id}); "
                f"acknowledged without changes"
            )
            return ReconcileOutcome.UNKNOWN_SUBSCRIPTION

        if subscription.user_id != reference.user_id:
            logger.critical(
                f"🚨 ALERT: preapproval {external_id} references user {reference.user_id} but "
                f"subscription {subscription.id} belongs to {subscription.user_id}"
            )
            return ReconcileOutcome.REFERENCE_MISMATCH

        new_status = SUBSCRIPTION_STATUS_MAP.get(external_status)
        if not new_status:
            logger.info(f"ℹ️ Preapproval {external_id} status {external_status} ignored")
            return ReconcileOutcome.IGNORED

        if new_status == subscription.status:
            logger.info(f"ℹ️ Subscription {subscription.id} already {new_status}")
            return ReconcileOutcome.UNCHANGED

        if new_status == "active":
            other = SubscriptionRepository.get_active_by_user(self.db, subscription.user_id)
            if other and other.id != subscription.id:
                logger.warning(
                    f"⚠️ Refusing to activate subscription {subscription.id}: user "
                    f"{subscription.user_id} already has active subscription {other.id}"
                )
                return ReconcileOutcome.REFUSED

        try:
            self._apply_status(subscription, new_status, external_status)
        except IntegrityError:
            logger.info(
                f"ℹ️ Concurrent delivery already activated a subscription for user "
                f"{subscription.user_id}"
            )
            return ReconcileOutcome.ALREADY_ACTIVE

        logger.info(
            f"✅ Subscription {subscription.id} is now {new_status} (MercadoPago: {external_status})"
        )
        return ReconcileOutcome.UPDATED

    def _apply_status(self, subscription: Subscription, new_status: str, external_status: str) -> None:
        user_id = subscription.user_id
        plan = PlanRepository.get(self.db, subscription.plan_id)
        plan_name = plan.name if plan else subscription.plan_id

        with UnitOfWork(self.db) as uow:
            SubscriptionRepository.update_status(self.db, subscription, new_status, external_status)
            if new_status == "active":
                self.coordinator.on_activated(uow, user_id)
                self._notify_subscription(user_id, "subscription_activated", plan_name, subscription.plan_id)
            elif new_status == "cancelled":
                self.coordinator.on_cancelled(uow, user_id)
                self._notify_subscription(
                    user_id, "subscription_cancelled", plan_name, subscription.plan_id
                )
            # paused: status and history only, roles are left as they are

    def _notify_subscription(self, user_id: str, event_type: str, plan_name: str, plan_id: str) -> None:
        if event_type == "subscription_activated":
            message = f"Your {plan_name} subscription is active. You can now publish listings."
        else:
            message = f"Your {plan_name} subscription was cancelled"
        self.dispatcher.send(
            user_id, NotificationEvent(type=event_type, message=message, data={"planId": plan_id})
        )

    # ------------------------------------------------------------------
    # Booking payments
    # ------------------------------------------------------------------

    async def handle_booking_payment_event(self, payment_id: str) -> ReconcileOutcome:
        """Drive a booking through its payment states from a checkout payment"""
        payment = await self.processor.get_payment(payment_id)
        status = payment.get("status")

        try:
            reference = BookingReference.decode(payment.get("external_reference"))
        except ValidationError as e:
            logger.warning(f"⚠️ Payment {payment_id} has an unusable reference: {e.message}")
            return ReconcileOutcome.INVALID_REFERENCE

        action = BOOKING_PAYMENT_ACTIONS.get(status)
        if not action:
            logger.info(f"ℹ️ Payment {payment_id} status {status} ignored for booking {reference.booking_id}")
            return ReconcileOutcome.IGNORED

        booking = self.bookings.repo.get(self.db, reference.booking_id)
        if not booking:
            logger.warning(f"⚠️ Payment {payment_id} references unknown booking {reference.booking_id}")
            return ReconcileOutcome.BOOKING_NOT_FOUND

        amount = payment.get("transaction_amount")
        if action == BookingAction.CONFIRM_PAYMENT and amount is not None and amount < booking.total_amount:
            logger.warning(
                f"⚠️ Payment {payment_id} amount {amount} is below booking {booking.id} "
                f"total {booking.total_amount}"
            )

        payment_ref = str(payment.get("id") or payment_id)
        if (
            action == BookingAction.PAYMENT_DECLINED
            and booking.status == BookingStatus.REQUESTED.value
            and (booking.payment_data or {}).get("paymentId") == payment_ref
        ):
            logger.info(f"ℹ️ Payment {payment_ref} was already declined for booking {booking.id}")
            return ReconcileOutcome.UNCHANGED

        payment_data = {
            **(booking.payment_data or {}),
            "paymentId": payment_ref,
            "status": status,
            "statusDetail": payment.get("status_detail"),
            "amount": amount,
            "currency": payment.get("currency_id"),
        }

        try:
            _, transition = self.bookings.perform_action(
                booking.id,
                action,
                Actor.SYSTEM,
                extra_changes={"payment_data": payment_data},
                context={"paymentId": payment_data["paymentId"]},
            )
        except ConflictError as e:
            logger.critical(
                f"🚨 ALERT: payment {payment_id} ({status}) cannot be applied to booking {booking.id}: "
                f"{e.message}. Manual review required."
            )
            return ReconcileOutcome.BOOKING_CONFLICT

        return ReconcileOutcome.UPDATED if transition.applied else ReconcileOutcome.UNCHANGED
