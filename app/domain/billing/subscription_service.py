"""Subscription service - Business logic for publisher subscriptions"""

import logging

from sqlalchemy.orm import Session

from ...config import FRONTEND_URL
from ...errors import ConflictError, NotFoundError, ValidationError
from ...models import Subscription
from .correlation import SubscriptionReference
from .mercadopago_service import MercadoPagoService
from .plan_service import auto_recurring
from .repository import PlanRepository, SubscriptionRepository
from .schemas import SubscriptionCheckoutRequest

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Service for subscription management"""

    def __init__(self, db: Session, processor: MercadoPagoService):
        self.db = db
        self.repo = SubscriptionRepository()
        self.processor = processor

    def list_subscriptions(self, user_id: str) -> list[Subscription]:
        return self.repo.list_by_user(self.db, user_id)

    async def create_checkout(self, request: SubscriptionCheckoutRequest) -> dict:
        """
        Start a recurring MercadoPago subscription (preapproval) for a plan.

        Nothing is stored locally: the subscription record is created by the
        payment webhook once the first charge is approved.
        """
        plan = PlanRepository.get(self.db, request.planId)
        if not plan:
            raise NotFoundError("Plan", request.planId)
        if not plan.is_active:
            raise ValidationError(f"Plan {plan.id} is not available for new subscriptions")

        existing = self.repo.get_active_by_user(self.db, request.userId)
        if existing:
            logger.warning(
                f"⚠️ User {request.userId} already has active subscription {existing.id}"
            )
            raise ConflictError(
                "active", "active", "subscribe", message="User already has an active subscription"
            )

        reference = SubscriptionReference(plan_id=plan.id, user_id=request.userId).encode()
        payload = {
            "reason": f"Subscription: {plan.name}",
            "external_reference": reference,
            "payer_email": request.payerEmail,
            "auto_recurring": auto_recurring(plan.billing_cycle, plan.price, plan.currency),
            "back_url": f"{FRONTEND_URL}/subscription/complete",
            "status": "pending",
        }
        if plan.external_plan_id:
            payload["preapproval_plan_id"] = plan.external_plan_id

        logger.info(f"🔄 Creating MercadoPago subscription for user {request.userId} on plan {plan.id}")
        preapproval = await self.processor.create_preapproval(payload)

        logger.info(f"✅ Preapproval {preapproval.get('id')} created ({reference})")
        return {
            "subscriptionId": str(preapproval.get("id")),
            "initPoint": preapproval.get("init_point"),
        }
