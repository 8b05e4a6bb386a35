"""Billing repository - Database operations for plans and subscriptions"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Plan, Subscription
from ...utils.clock import utcnow


class PlanRepository:
    """Repository for the plan catalog"""

    @staticmethod
    def get(db: Session, plan_id: str) -> Optional[Plan]:
        """Get plan by ID"""
        return db.query(Plan).filter(Plan.id == plan_id).first()

    @staticmethod
    def list_all(db: Session) -> list[Plan]:
        """All plans, cheapest first"""
        return db.query(Plan).order_by(Plan.price.asc(), Plan.id.asc()).all()

    @staticmethod
    def create(db: Session, **fields) -> Plan:
        """Add a plan to the session (committed by the caller)"""
        plan = Plan(**fields)
        db.add(plan)
        return plan

    @staticmethod
    def update(db: Session, plan: Plan, **fields) -> Plan:
        """Apply field updates to a plan (committed by the caller)"""
        for key, value in fields.items():
            if value is not None:
                setattr(plan, key, value)
        return plan


class SubscriptionRepository:
    """Repository for subscription records"""

    @staticmethod
    def get(db: Session, subscription_id: str) -> Optional[Subscription]:
        """Get subscription by ID"""
        return db.query(Subscription).filter(Subscription.id == subscription_id).first()

    @staticmethod
    def get_active_by_user(db: Session, user_id: str) -> Optional[Subscription]:
        """Get the user's active subscription, if any"""
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.status == "active")
            .first()
        )

    @staticmethod
    def get_by_external_id(db: Session, external_subscription_id: str) -> Optional[Subscription]:
        """Get subscription by MercadoPago preapproval ID"""
        return (
            db.query(Subscription)
            .filter(Subscription.external_subscription_id == external_subscription_id)
            .first()
        )

    @staticmethod
    def list_by_user(db: Session, user_id: str) -> list[Subscription]:
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .all()
        )

    @staticmethod
    def create(db: Session, external_status: str, **fields) -> Subscription:
        """Add a subscription with its first status history entry (committed by the caller)"""
        subscription = Subscription(**fields)
        subscription.status_history = [
            {"timestamp": utcnow().isoformat(), "externalStatus": external_status}
        ]
        db.add(subscription)
        return subscription

    @staticmethod
    def update_status(
        db: Session, subscription: Subscription, status: str, external_status: str
    ) -> Subscription:
        """Set status and append to the status history (committed by the caller)"""
        subscription.status = status
        # Reassign so SQLAlchemy detects the JSON change
        subscription.status_history = list(subscription.status_history or []) + [
            {"timestamp": utcnow().isoformat(), "externalStatus": external_status}
        ]
        return subscription
