"""
Correlation references stored as `external_reference` on MercadoPago objects.

The same codec builds the reference when the processor object is created and
parses it when a webhook is reconciled, so both sides agree on the format:

    subscription_<planId>_<userId>
    booking_<bookingId>
"""

from dataclasses import dataclass
from typing import Optional

from ...errors import ValidationError

SEPARATOR = "_"


def _check_segment(name: str, value: Optional[str]) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError(f"Correlation field '{name}' is required")
    if SEPARATOR in value:
        raise ValidationError(f"Correlation field '{name}' must not contain '{SEPARATOR}': {value}")
    return value


def _split(reference: Optional[str], prefix: str, fields: int) -> list[str]:
    if not reference or not isinstance(reference, str):
        raise ValidationError("Missing external reference")

    parts = reference.split(SEPARATOR)
    if len(parts) != fields + 1 or parts[0] != prefix:
        raise ValidationError(f"Invalid {prefix} reference: {reference!r}")
    if not all(parts[1:]):
        raise ValidationError(f"Empty field in {prefix} reference: {reference!r}")
    return parts[1:]


@dataclass(frozen=True)
class SubscriptionReference:
    """Links a processor payment/preapproval to (plan, user)"""

    plan_id: str
    user_id: str

    PREFIX = "subscription"

    def encode(self) -> str:
        plan_id = _check_segment("plan_id", self.plan_id)
        user_id = _check_segment("user_id", self.user_id)
        return SEPARATOR.join([self.PREFIX, plan_id, user_id])

    @classmethod
    def decode(cls, reference: Optional[str]) -> "SubscriptionReference":
        plan_id, user_id = _split(reference, cls.PREFIX, 2)
        return cls(plan_id=plan_id, user_id=user_id)


@dataclass(frozen=True)
class BookingReference:
    """Links a processor checkout payment to a booking"""

    booking_id: str

    PREFIX = "booking"

    def encode(self) -> str:
        booking_id = _check_segment("booking_id", self.booking_id)
        return SEPARATOR.join([self.PREFIX, booking_id])

    @classmethod
    def decode(cls, reference: Optional[str]) -> "BookingReference":
        (booking_id,) = _split(reference, cls.PREFIX, 1)
        return cls(booking_id=booking_id)
