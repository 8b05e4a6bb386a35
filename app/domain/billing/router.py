"""Billing router - FastAPI endpoints for plans and subscriptions"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user_id, require_superadmin
from ...database import get_db
from ...dependencies import get_mercadopago_service
from ...errors import ForbiddenError
from .mercadopago_service import MercadoPagoService
from .plan_service import PlanService
from .schemas import (
    PlanCreate,
    PlanResponse,
    PlanSyncResponse,
    PlanUpdate,
    SubscriptionCheckoutRequest,
    SubscriptionCheckoutResponse,
    SubscriptionResponse,
)
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def get_plan_service(
    db: Session = Depends(get_db),
    processor: MercadoPagoService = Depends(get_mercadopago_service),
) -> PlanService:
    """Dependency injection for PlanService"""
    return PlanService(db, processor)


def get_subscription_service(
    db: Session = Depends(get_db),
    processor: MercadoPagoService = Depends(get_mercadopago_service),
) -> SubscriptionService:
    """Dependency injection for SubscriptionService"""
    return SubscriptionService(db, processor)


# ============================================================================
# PLANS
# ============================================================================


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(service: PlanService = Depends(get_plan_service)):
    """Plans open for subscription"""
    return [PlanResponse.from_plan(plan) for plan in service.list_plans()]


@router.get("/plans/all", response_model=list[PlanResponse])
async def list_all_plans(
    _admin_id: str = Depends(require_superadmin),
    service: PlanService = Depends(get_plan_service),
):
    """Every plan, including inactive and hidden ones"""
    return [PlanResponse.from_plan(plan) for plan in service.list_plans(include_hidden=True)]


@router.post("/plans", response_model=PlanResponse, status_code=201)
async def create_plan(
    data: PlanCreate,
    _admin_id: str = Depends(require_superadmin),
    service: PlanService = Depends(get_plan_service),
):
    return PlanResponse.from_plan(service.create_plan(data))


@router.post("/plans/sync", response_model=PlanSyncResponse)
async def sync_plans(
    _admin_id: str = Depends(require_superadmin),
    service: PlanService = Depends(get_plan_service),
):
    """Publish every plan to MercadoPago"""
    return await service.sync_plans()


@router.put("/plans/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: str,
    data: PlanUpdate,
    _admin_id: str = Depends(require_superadmin),
    service: PlanService = Depends(get_plan_service),
):
    """Update a plan (MercadoPago first when the plan is linked)"""
    plan = await service.update_plan(plan_id, data)
    return PlanResponse.from_plan(plan)


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================


@router.post("/subscriptions", response_model=SubscriptionCheckoutResponse)
async def create_subscription(
    data: SubscriptionCheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Start a recurring subscription; returns the MercadoPago checkout link"""
    if user_id != data.userId:
        raise ForbiddenError("Subscriptions can only be started for yourself")
    return await service.create_checkout(data)


@router.get("/subscriptions", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionService = Depends(get_subscription_service),
    status: Optional[str] = Query(None),
):
    """Subscriptions of the calling user, newest first"""
    subscriptions = service.list_subscriptions(user_id)
    if status:
        subscriptions = [s for s in subscriptions if s.status == status]
    return [SubscriptionResponse.from_subscription(s) for s in subscriptions]
