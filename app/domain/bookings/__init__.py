"""
Bookings Domain

Booking requests, the booking lifecycle state machine, cancellation penalties
and checkout through MercadoPago.
"""
