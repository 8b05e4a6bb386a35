"""Billing domain schemas - Pydantic models for validation"""

import re
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, field_validator

from ...models import Plan, Subscription

BILLING_CYCLES = {"daily", "weekly", "monthly", "yearly"}
# Processor object ids end up in API paths
RESOURCE_ID_PATTERN = re.compile(r"[A-Za-z0-9-]+")


def _validate_cycle(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if v not in BILLING_CYCLES:
        raise ValueError("billingCycle must be one of daily, weekly, monthly, yearly")
    return v


class WebhookData(BaseModel):
    id: Union[str, int]

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: Union[str, int]) -> str:
        v = str(v).strip()
        if not v:
            raise ValueError("data.id is required")
        if not RESOURCE_ID_PATTERN.fullmatch(v):
            raise ValueError("data.id must contain only letters, digits and hyphens")
        return v


class WebhookNotification(BaseModel):
    """MercadoPago notification body: a wake-up signal carrying only the object id"""

    type: Optional[str] = None
    action: Optional[str] = None
    data: WebhookData


class PlanCreate(BaseModel):
    """Schema for creating a subscription plan"""

    name: str
    description: Optional[str] = None
    price: float
    currency: str = "ARS"
    billingCycle: str = "monthly"
    features: list[str] = []
    maxPosts: int = 0
    maxBookings: int = 0
    isActive: bool = True
    isVisible: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("price must be greater than 0")
        return v

    @field_validator("billingCycle")
    @classmethod
    def validate_cycle(cls, v: str) -> str:
        return _validate_cycle(v)


class PlanUpdate(BaseModel):
    """Schema for updating a plan; omitted fields are left unchanged"""

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    billingCycle: Optional[str] = None
    features: Optional[list[str]] = None
    maxPosts: Optional[int] = None
    maxBookings: Optional[int] = None
    isActive: Optional[bool] = None
    isVisible: Optional[bool] = None

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("price must be greater than 0")
        return v

    @field_validator("billingCycle")
    @classmethod
    def validate_cycle(cls, v: Optional[str]) -> Optional[str]:
        return _validate_cycle(v)


class PlanResponse(BaseModel):
    """Schema for plan response"""

    id: str
    name: str
    description: Optional[str] = None
    price: float
    currency: str
    billingCycle: str
    features: list[Any] = []
    maxPosts: int
    maxBookings: int
    isActive: bool
    isVisible: bool
    externalPlanId: Optional[str] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_plan(cls, plan: Plan):
        return cls(
            id=plan.id,
            name=plan.name,
            description=plan.description,
            price=plan.price,
            currency=plan.currency,
            billingCycle=plan.billing_cycle,
            features=plan.features or [],
            maxPosts=plan.max_posts,
            maxBookings=plan.max_bookings,
            isActive=plan.is_active,
            isVisible=plan.is_visible,
            externalPlanId=plan.external_plan_id,
            updatedAt=plan.updated_at,
        )


class PlanSyncItem(BaseModel):
    planId: str
    status: str  # "success" | "error" | "partial_failure"
    error: Optional[str] = None


class PlanSyncResponse(BaseModel):
    success: int
    errors: int
    partial_failures: int
    results: list[PlanSyncItem]


class SubscriptionCheckoutRequest(BaseModel):
    """Schema for starting a recurring subscription"""

    planId: str
    userId: str
    payerEmail: str

    @field_validator("payerEmail")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("payerEmail must be a valid email address")
        return v.strip()


class SubscriptionCheckoutResponse(BaseModel):
    subscriptionId: str
    initPoint: Optional[str] = None


class SubscriptionResponse(BaseModel):
    """Schema for subscription response"""

    id: str
    userId: str
    planId: str
    status: str
    amount: Optional[float] = None
    currency: Optional[str] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    externalSubscriptionId: Optional[str] = None
    statusHistory: list[dict] = []

    @classmethod
    def from_subscription(cls, subscription: Subscription):
        return cls(
            id=subscription.id,
            userId=subscription.user_id,
            planId=subscription.plan_id,
            status=subscription.status,
            amount=subscription.amount,
            currency=subscription.currency,
            startDate=subscription.start_date,
            endDate=subscription.end_date,
            externalSubscriptionId=subscription.external_subscription_id,
            statusHistory=subscription.status_history or [],
        )
