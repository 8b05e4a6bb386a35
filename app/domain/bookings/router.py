"""Booking router - FastAPI endpoints for the booking lifecycle"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user_id
from ...database import get_db
from ...dependencies import get_mercadopago_service, get_role_store
from ...errors import ForbiddenError
from ..authorization.role_store import AuthorizationRoleStore
from ..billing.mercadopago_service import MercadoPagoService
from .schemas import (
    BookingCreate,
    BookingResponse,
    CancellationQuoteResponse,
    CancelRequest,
    CancelResponse,
    CheckoutRequest,
    CheckoutResponse,
)
from .service import BookingService
from .state_machine import Actor, BookingAction

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(
    db: Session = Depends(get_db),
    role_store: AuthorizationRoleStore = Depends(get_role_store),
    processor: MercadoPagoService = Depends(get_mercadopago_service),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, role_store, processor)


def _response(service: BookingService, booking) -> BookingResponse:
    return BookingResponse.from_booking(booking, service.allowed_actions(booking))


@router.post("", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Request a booking; the caller must be the booking's client"""
    if user_id != data.clientId:
        logger.warning(f"⚠️ User {user_id} tried to book on behalf of {data.clientId}")
        raise ForbiddenError("Bookings can only be requested by the client")
    booking = service.create_booking(data)
    return _response(service, booking)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Get a booking; visible to its client and owner"""
    booking = service.get_booking(booking_id)
    service.resolve_actor(booking, user_id)
    return _response(service, booking)


@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.transition_as_user(booking_id, BookingAction.ACCEPT, user_id)
    return _response(service, booking)


@router.post("/{booking_id}/decline", response_model=BookingResponse)
async def decline_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.transition_as_user(booking_id, BookingAction.DECLINE, user_id)
    return _response(service, booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.transition_as_user(booking_id, BookingAction.COMPLETE, user_id)
    return _response(service, booking)


@router.post("/{booking_id}/cancel", response_model=CancelResponse)
async def cancel_booking(
    booking_id: str,
    data: CancelRequest,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Cancel a booking and report the penalty/refund split"""
    return service.cancel_booking(booking_id, data.cancelledBy, user_id)


@router.get("/{booking_id}/cancellation-quote", response_model=CancellationQuoteResponse)
async def get_cancellation_quote(
    booking_id: str,
    cancelled_by: Actor = Query(Actor.CLIENT, alias="cancelledBy"),
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Preview the penalty a cancellation would carry right now"""
    penalty = service.quote_cancellation(booking_id, cancelled_by, user_id)
    return penalty.to_dict()


@router.post("/{booking_id}/checkout", response_model=CheckoutResponse)
async def start_checkout(
    booking_id: str,
    data: Optional[CheckoutRequest] = None,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    """Create a MercadoPago checkout for an accepted booking"""
    data = data or CheckoutRequest()
    return await service.start_checkout(booking_id, user_id, data.payerEmail, data.returnUrl)
