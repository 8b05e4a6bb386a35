"""
MercadoPago Webhook Handlers

    POST /webhooks/mercadopago/subscriptions  payment + preapproval events for plans
    POST /webhooks/mercadopago                payment events for booking checkouts

Answers:
    200 {received: true}  handled, ignorable or unknown event types
    400                   body is not a MercadoPago notification
    401                   signature check failed
    502 / 500             processor or database failure (MercadoPago retries)
"""

import json
import logging

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...database import get_db
from ...dependencies import get_mercadopago_service, get_role_store
from ...webhook_security import verify_mercadopago_webhook
from ..authorization.role_store import AuthorizationRoleStore
from .mercadopago_service import MercadoPagoService
from .reconciler import PaymentWebhookReconciler, ReconcileOutcome
from .schemas import WebhookNotification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/mercadopago", tags=["webhooks"])

PREAPPROVAL_EVENT_TYPES = {"preapproval", "subscription_preapproval"}


def get_reconciler(
    db: Session = Depends(get_db),
    processor: MercadoPagoService = Depends(get_mercadopago_service),
    role_store: AuthorizationRoleStore = Depends(get_role_store),
) -> PaymentWebhookReconciler:
    """Dependency injection for PaymentWebhookReconciler"""
    return PaymentWebhookReconciler(db, processor, role_store)


async def read_notification(request: Request) -> WebhookNotification:
    """Parse and authenticate a notification; the body is only trusted for the object id"""
    body = await request.body()

    try:
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("❌ Invalid JSON payload")
        raise HTTPException(status_code=400, detail="Invalid JSON") from None

    try:
        notification = WebhookNotification.model_validate(payload)
    except pydantic.ValidationError:
        logger.error(f"❌ Not a MercadoPago notification: {str(payload)[:200]}")
        raise HTTPException(status_code=400, detail="Invalid notification body") from None

    verify_mercadopago_webhook(request, notification.data.id, request.app.state.webhook_secret)

    logger.info(
        f"📥 Received MercadoPago webhook: type={notification.type}, action={notification.action}, "
        f"id={notification.data.id}"
    )
    return notification


def _ack(outcome: ReconcileOutcome) -> dict:
    return {"received": True, "outcome": outcome.value}


@router.post("/subscriptions")
async def handle_subscription_webhook(
    notification: WebhookNotification = Depends(read_notification),
    reconciler: PaymentWebhookReconciler = Depends(get_reconciler),
):
    """Reconcile subscription payments and preapproval status changes"""
    event_id = notification.data.id

    if notification.type == "payment":
        outcome = await reconciler.handle_payment_event(event_id)
    elif notification.type in PREAPPROVAL_EVENT_TYPES:
        outcome = await reconciler.handle_subscription_status_event(event_id)
    else:
        logger.info(f"ℹ️ Unhandled event type: {notification.type}")
        outcome = ReconcileOutcome.IGNORED

    logger.info(f"✅ Subscription webhook {notification.type}/{event_id}: {outcome.value}")
    return _ack(outcome)


@router.post("")
async def handle_booking_webhook(
    notification: WebhookNotification = Depends(read_notification),
    reconciler: PaymentWebhookReconciler = Depends(get_reconciler),
):
    """Reconcile checkout payments for bookings"""
    event_id = notification.data.id

    if notification.type == "payment":
        outcome = await reconciler.handle_booking_payment_event(event_id)
    else:
        logger.info(f"ℹ️ Unhandled event type: {notification.type}")
        outcome = ReconcileOutcome.IGNORED

    logger.info(f"✅ Booking webhook {notification.type}/{event_id}: {outcome.value}")
    return _ack(outcome)
