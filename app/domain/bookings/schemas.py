"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ...models import Booking
from .state_machine import Actor


class CancellationPolicyInput(BaseModel):
    """Schema for a listing cancellation policy"""

    daysThreshold: int
    type: str  # "fixed" | "percentage"
    amount: float

    @field_validator("daysThreshold")
    @classmethod
    def validate_days(cls, v: int) -> int:
        if v < 0:
            raise ValueError("daysThreshold must be >= 0")
        return v

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in {"fixed", "percentage"}:
            raise ValueError("type must be 'fixed' or 'percentage'")
        return v

    @model_validator(mode="after")
    def validate_amount(self):
        if self.amount < 0:
            raise ValueError("amount must be >= 0")
        if self.type == "percentage" and self.amount > 100:
            raise ValueError("percentage amount cannot exceed 100")
        return self


class ClientContact(BaseModel):
    """Contact snapshot stored with the booking"""

    name: str
    email: str
    phone: Optional[str] = None
    notes: Optional[str] = None


class BookingCreate(BaseModel):
    """Schema for a booking request"""

    postId: str
    clientId: str
    ownerId: str
    startDate: datetime
    endDate: datetime
    totalAmount: float
    currency: str = "ARS"
    guestCount: int = 1
    clientData: Optional[ClientContact] = None
    cancellationPolicies: list[CancellationPolicyInput] = []

    @field_validator("totalAmount")
    @classmethod
    def validate_amount(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("totalAmount must be greater than 0")
        return v

    @field_validator("guestCount")
    @classmethod
    def validate_guests(cls, v: int) -> int:
        if v < 1:
            raise ValueError("guestCount must be at least 1")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        if len(v) != 3:
            raise ValueError("currency must be a 3-letter ISO code")
        return v.upper()

    @model_validator(mode="after")
    def validate_dates(self):
        if self.startDate >= self.endDate:
            raise ValueError("startDate must be before endDate")
        if self.clientId == self.ownerId:
            raise ValueError("Owners cannot book their own listing")
        return self


class CancelRequest(BaseModel):
    """Schema for cancelling a booking"""

    cancelledBy: Actor

    @field_validator("cancelledBy")
    @classmethod
    def validate_party(cls, v: Actor) -> Actor:
        if v == Actor.SYSTEM:
            raise ValueError("cancelledBy must be 'client' or 'owner'")
        return v


class CancelResponse(BaseModel):
    penaltyAmount: float
    refundAmount: float
    message: str


class CancellationQuoteResponse(BaseModel):
    """Penalty a cancellation would carry right now; nothing is changed"""

    appliedPolicy: Optional[dict] = None
    penaltyAmount: float
    refundAmount: float
    daysUntilStart: int


class CheckoutRequest(BaseModel):
    """Schema for starting a booking payment"""

    payerEmail: Optional[str] = None
    returnUrl: Optional[str] = None


class CheckoutResponse(BaseModel):
    bookingId: str
    preferenceId: Optional[str] = None
    initPoint: Optional[str] = None
    sandboxInitPoint: Optional[str] = None
    status: str


class BookingResponse(BaseModel):
    """Schema for booking response"""

    id: str
    postId: str
    clientId: str
    ownerId: str
    status: str
    startDate: datetime
    endDate: datetime
    totalAmount: float
    currency: str
    guestCount: int
    clientData: Optional[dict] = None
    cancellationPolicies: list[dict] = []
    cancelledBy: Optional[str] = None
    penaltyAmount: Optional[float] = None
    refundAmount: Optional[float] = None
    acceptedAt: Optional[datetime] = None
    declinedAt: Optional[datetime] = None
    paidAt: Optional[datetime] = None
    cancelledAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    allowedActions: list[str] = []

    @classmethod
    def from_booking(cls, booking: Booking, allowed_actions: Optional[list[str]] = None):
        return cls(
            id=booking.id,
            postId=booking.post_id,
            clientId=booking.client_id,
            ownerId=booking.owner_id,
            status=booking.status,
            startDate=booking.start_date,
            endDate=booking.end_date,
            totalAmount=booking.total_amount,
            currency=booking.currency,
            guestCount=booking.guest_count,
            clientData=booking.client_data,
            cancellationPolicies=booking.cancellation_policies or [],
            cancelledBy=booking.cancelled_by,
            penaltyAmount=booking.penalty_amount,
            refundAmount=booking.refund_amount,
            acceptedAt=booking.accepted_at,
            declinedAt=booking.declined_at,
            paidAt=booking.paid_at,
            cancelledAt=booking.cancelled_at,
            completedAt=booking.completed_at,
            createdAt=booking.created_at,
            allowedActions=allowed_actions or [],
        )
