"""
Cancellation penalty evaluation

Policies describe how close to the start date a cancellation may happen before a
penalty applies. The tightest threshold the cancellation has crossed into wins:

    policies [7d fixed 50, 3d percentage 100], total 500
    5 days before start -> 7d policy -> penalty 50, refund 450
    2 days before start -> 3d policy -> penalty 500, refund 0
    10 days before start -> no policy -> free cancellation

Everything here is pure so a disputed cancellation can be recomputed exactly.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from ...errors import ValidationError
from ...utils.clock import as_naive_utc

SECONDS_PER_DAY = 86400


class PolicyType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


@dataclass(frozen=True)
class CancellationPolicy:
    days_threshold: int
    type: PolicyType
    amount: float

    def __post_init__(self):
        if self.days_threshold < 0:
            raise ValidationError("Cancellation policy days threshold must be >= 0")
        if self.amount < 0:
            raise ValidationError("Cancellation policy amount must be >= 0")
        if self.type == PolicyType.PERCENTAGE and self.amount > 100:
            raise ValidationError("Percentage cancellation policy cannot exceed 100")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CancellationPolicy":
        """Build from a stored snapshot (snake_case) or wire payload (camelCase)"""
        days = data.get("days_threshold", data.get("daysThreshold"))
        try:
            return cls(
                days_threshold=int(days),
                type=PolicyType(data.get("type")),
                amount=float(data.get("amount")),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid cancellation policy: {data}") from e

    def to_dict(self) -> dict[str, Any]:
        return {"days_threshold": self.days_threshold, "type": self.type.value, "amount": self.amount}

    def penalty_for(self, total_amount: float) -> float:
        if self.type == PolicyType.FIXED:
            return min(self.amount, total_amount)
        return total_amount * self.amount / 100


@dataclass(frozen=True)
class CancellationPenalty:
    applied_policy: Optional[CancellationPolicy]
    penalty_amount: float
    refund_amount: float
    days_until_start: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "appliedPolicy": self.applied_policy.to_dict() if self.applied_policy else None,
            "penaltyAmount": self.penalty_amount,
            "refundAmount": self.refund_amount,
            "daysUntilStart": self.days_until_start,
        }


def days_until_start(start_date: datetime, evaluation_time: datetime) -> int:
    """Whole days left before start, rounded up; 0 once the start has passed"""
    delta = as_naive_utc(start_date) - as_naive_utc(evaluation_time)
    return max(0, math.ceil(delta.total_seconds() / SECONDS_PER_DAY))


def select_policy(
    policies: Iterable[CancellationPolicy], days_left: int
) -> Optional[CancellationPolicy]:
    """Smallest threshold that is still >= days_left; None when cancelling earlier than all of them"""
    for policy in sorted(policies, key=lambda p: p.days_threshold):
        if policy.days_threshold >= days_left:
            return policy
    return None


def evaluate_cancellation_penalty(
    policies: Iterable[CancellationPolicy],
    total_amount: float,
    start_date: datetime,
    evaluation_time: datetime,
) -> CancellationPenalty:
    days_left = days_until_start(start_date, evaluation_time)
    policy = select_policy(policies, days_left)

    penalty = round(policy.penalty_for(total_amount), 2) if policy else 0.0
    return CancellationPenalty(
        applied_policy=policy,
        penalty_amount=penalty,
        refund_amount=round(total_amount - penalty, 2),
        days_until_start=days_left,
    )


def no_penalty(total_amount: float) -> CancellationPenalty:
    """Outcome for cancellations that never carry a penalty (owner-initiated)"""
    return CancellationPenalty(
        applied_policy=None,
        penalty_amount=0.0,
        refund_amount=round(total_amount, 2),
        days_until_start=0,
    )
