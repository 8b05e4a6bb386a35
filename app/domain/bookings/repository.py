"""Booking repository - Database operations for bookings"""

from typing import Any, Optional

from sqlalchemy.orm import Session

from ...models import Booking


class BookingRepository:
    """Repository for booking database operations. Writes are committed by the caller"""

    @staticmethod
    def get(db: Session, booking_id: str) -> Optional[Booking]:
        """Get booking by ID"""
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def create(db: Session, **fields) -> Booking:
        """Add a new booking to the session"""
        booking = Booking(**fields)
        db.add(booking)
        return booking

    @staticmethod
    def update(db: Session, booking_id: str, expected_status: str, changes: dict[str, Any]) -> bool:
        """
        Compare-and-set update guarded by the booking's current status.

        Returns False when the booking is no longer in expected_status, i.e. a
        concurrent transition got there first; nothing is written in that case.
        """
        updated = (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.status == expected_status)
            .update(changes, synchronize_session=False)
        )
        return updated == 1
