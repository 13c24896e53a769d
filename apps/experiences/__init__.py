"""Experiences app package.

Bookable products published by organizers and their scheduled,
capacity-bounded sessions. Bookings reference sessions but never own them.
"""
