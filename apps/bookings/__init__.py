"""Bookings app package.

Reservations of guest spots on experience sessions: the session ledger,
the booking lifecycle (PENDING holds that expire, confirmation and
cancellation) and the confirmation side effects that run once a booking
is paid. Capacity is checked and claimed inside one transaction under a
session row lock.
"""
