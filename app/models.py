import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    """Generate a string UUID primary key"""
    return str(uuid.uuid4())


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=generate_id)
    post_id = Column(String(64), index=True, nullable=False)  # Listing the booking is for
    client_id = Column(String(64), index=True, nullable=False)
    owner_id = Column(String(64), index=True, nullable=False)  # Publisher who owns the listing
    # requested, accepted, declined, pending_payment, paid, cancelled, completed
    status = Column(String(32), default="requested", nullable=False, index=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    total_amount = Column(Float, nullable=False)
    currency = Column(String(3), default="ARS", nullable=False)
    guest_count = Column(Integer, default=1, nullable=False)
    client_data = Column(JSON, nullable=True)  # Contact snapshot: name, email, phone, notes
    # Snapshot of the listing's cancellation policies at booking time; never updated afterwards
    cancellation_policies = Column(JSON, default=list, nullable=False)
    payment_data = Column(JSON, nullable=True)  # Last processor payment seen for this booking

    # Cancellation outcome (total_amount is never modified by a cancellation)
    cancelled_by = Column(String(16), nullable=True)  # client, owner
    penalty_amount = Column(Float, nullable=True)
    refund_amount = Column(Float, nullable=True)

    # Transition timestamps - each set once, when the status is first reached
    accepted_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Plan(Base):
    __tablename__ = "plans"

    id = Column(String(64), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    currency = Column(String(3), default="ARS", nullable=False)
    billing_cycle = Column(String(20), default="monthly", nullable=False)  # daily, weekly, monthly, yearly
    features = Column(JSON, default=list, nullable=False)
    max_posts = Column(Integer, default=0, nullable=False)
    max_bookings = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    # MercadoPago preapproval_plan id; when set, local edits must be mirrored there first
    external_plan_id = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one active subscription per user; closes the check-then-insert race
        Index(
            "uq_subscriptions_user_active",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(64), index=True, nullable=False)
    plan_id = Column(String(64), index=True, nullable=False)
    external_payment_id = Column(String(255), nullable=True)
    # MercadoPago preapproval id; absent until the processor links the payment to a preapproval
    external_subscription_id = Column(String(255), unique=True, nullable=True)
    status = Column(String(20), default="pending", nullable=False)  # pending, active, cancelled, paused
    amount = Column(Float, nullable=True)
    currency = Column(String(3), nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    status_history = Column(JSON, default=list, nullable=False)  # [{timestamp, externalStatus}]
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    role = Column(String(32), nullable=False)  # superadmin, publisher, client
    is_active = Column(Boolean, default=True, nullable=False)
    assigned_by = Column(String(64), nullable=True)  # "system" for subscription-driven grants
    assigned_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(64), index=True, nullable=False)
    type = Column(String(64), nullable=False)  # booking_request, booking_accepted, payment_completed...
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
