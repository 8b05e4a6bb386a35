"""Plan service - Plan catalog administration mirrored to MercadoPago"""

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from ...config import FRONTEND_URL
from ...errors import MarketplaceError, NotFoundError, PartialFailure
from ...models import Plan
from ...unit_of_work import UnitOfWork
from .mercadopago_service import MercadoPagoService
from .repository import PlanRepository
from .schemas import PlanCreate, PlanUpdate
from .sync import ExternalResourceSyncCoordinator

logger = logging.getLogger(__name__)

# billing cycle -> (frequency, frequency_type) as MercadoPago expects them
RECURRING_FREQUENCIES = {
    "daily": (1, "days"),
    "weekly": (7, "days"),
    "monthly": (1, "months"),
    "yearly": (12, "months"),
}


def auto_recurring(billing_cycle: str, price: float, currency: str) -> dict[str, Any]:
    frequency, frequency_type = RECURRING_FREQUENCIES.get(billing_cycle, RECURRING_FREQUENCIES["monthly"])
    return {
        "frequency": frequency,
        "frequency_type": frequency_type,
        "transaction_amount": price,
        "currency_id": currency,
    }


def _plan_fields(data: PlanUpdate) -> dict[str, Any]:
    """Map wire fields to model columns, dropping the ones not provided"""
    mapping = {
        "name": data.name,
        "description": data.description,
        "price": data.price,
        "currency": data.currency,
        "billing_cycle": data.billingCycle,
        "features": data.features,
        "max_posts": data.maxPosts,
        "max_bookings": data.maxBookings,
        "is_active": data.isActive,
        "is_visible": data.isVisible,
    }
    return {key: value for key, value in mapping.items() if value is not None}


class PlanService:
    """Service for plan management"""

    def __init__(self, db: Session, processor: MercadoPagoService):
        self.db = db
        self.repo = PlanRepository()
        self.processor = processor
        self.sync = ExternalResourceSyncCoordinator()

    def list_plans(self, include_hidden: bool = False) -> list[Plan]:
        plans = self.repo.list_all(self.db)
        if include_hidden:
            return plans
        return [plan for plan in plans if plan.is_active and plan.is_visible]

    def get_plan(self, plan_id: str) -> Plan:
        plan = self.repo.get(self.db, plan_id)
        if not plan:
            raise NotFoundError("Plan", plan_id)
        return plan

    def create_plan(self, data: PlanCreate) -> Plan:
        """Create a local plan; it is published to MercadoPago by the next sync"""
        with UnitOfWork(self.db):
            plan = self.repo.create(
                self.db,
                name=data.name,
                description=data.description,
                price=data.price,
                currency=data.currency,
                billing_cycle=data.billingCycle,
                features=data.features,
                max_posts=data.maxPosts,
                max_bookings=data.maxBookings,
                is_active=data.isActive,
                is_visible=data.isVisible,
            )
        self.db.refresh(plan)
        logger.info(f"✅ Plan {plan.id} ({plan.name}) created")
        return plan

    @staticmethod
    def external_payload(plan: Plan, overrides: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """preapproval_plan body for the plan as it will look after the overrides"""
        fields = {
            "name": plan.name,
            "price": plan.price,
            "currency": plan.currency,
            "billing_cycle": plan.billing_cycle,
            "is_active": plan.is_active,
            **(overrides or {}),
        }
        return {
            "reason": f"Subscription: {fields['name']}",
            "auto_recurring": auto_recurring(fields["billing_cycle"], fields["price"], fields["currency"]),
            "back_url": f"{FRONTEND_URL}/subscription/complete",
            "status": "active" if fields["is_active"] else "inactive",
        }

    async def update_plan(self, plan_id: str, data: PlanUpdate) -> Plan:
        """
        Update a plan. Linked plans are changed in MercadoPago first; the local row
        is only touched once the external update succeeded.
        """
        plan = self.get_plan(plan_id)
        fields = _plan_fields(data)

        sync_external = None
        if plan.external_plan_id:
            payload = self.external_payload(plan, fields)
            external_plan_id = plan.external_plan_id

            async def sync_external():
                return await self.processor.update_plan(external_plan_id, payload)

        def commit_local(_external) -> Plan:
            with UnitOfWork(self.db):
                self.repo.update(self.db, plan, **fields)
            self.db.refresh(plan)
            return plan

        return await self.sync.run(f"plan {plan.id}", sync_external, commit_local)

    async def _sync_plan(self, plan: Plan) -> Plan:
        payload = self.external_payload(plan)

        if plan.external_plan_id:
            external_plan_id = plan.external_plan_id

            async def sync_external():
                return await self.processor.update_plan(external_plan_id, payload)

            def commit_local(_external) -> Plan:
                return plan

        else:

            async def sync_external():
                return await self.processor.create_plan(payload)

            def commit_local(external: dict) -> Plan:
                with UnitOfWork(self.db):
                    plan.external_plan_id = str(external["id"])
                self.db.refresh(plan)
                return plan

        return await self.sync.run(f"plan {plan.id}", sync_external, commit_local)

    async def sync_plans(self) -> dict:
        """Push every local plan to MercadoPago, creating the ones not linked yet"""
        results = []
        success = errors = partial_failures = 0

        for plan in self.repo.list_all(self.db):
            try:
                await self._sync_plan(plan)
                success += 1
                results.append({"planId": plan.id, "status": "success"})
            except PartialFailure as e:
                partial_failures += 1
                results.append({"planId": plan.id, "status": "partial_failure", "error": e.message})
            except MarketplaceError as e:
                errors += 1
                results.append({"planId": plan.id, "status": "error", "error": e.message})

        logger.info(
            f"🔄 Plan sync finished: {success} synced, {errors} failed, {partial_failures} partial failures"
        )
        return {
            "success": success,
            "errors": errors,
            "partial_failures": partial_failures,
            "results": results,
        }
