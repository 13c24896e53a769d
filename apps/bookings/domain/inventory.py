"""
Session Inventory Aggregate

Capacity accounting for one session. It is loaded inside the booking
transaction after the session row is locked, so ``reserved_guests`` is
authoritative for the lifetime of that transaction.

Only CONFIRMED bookings and PENDING bookings whose hold has not expired
count toward ``reserved_guests``.
"""

from dataclasses import dataclass
from uuid import UUID

from shared.domain.base import Aggregate
from shared.domain.errors import CapacityExceeded, ValidationError


@dataclass(eq=False, kw_only=True)
class SessionInventory(Aggregate):
    """
    Inventory Aggregate Root

    Usage:
        inventory = load_session_inventory(session_id, lock=True)
        inventory.reserve(guests)   # raises CapacityExceeded
        Booking.objects.create(...)
    """

    session_id: UUID
    capacity: int
    reserved_guests: int = 0

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError("Session capacity must be positive")
        if self.reserved_guests < 0:
            raise ValueError("Reserved guests cannot be negative")

    @property
    def available_spots(self) -> int:
        return self.capacity - self.reserved_guests

    def can_reserve(self, guests: int) -> bool:
        return 0 < guests <= self.available_spots

    def reserve(self, guests: int) -> int:
        """
        Claim ``guests`` spots, returning the spots left afterwards.

        Raises:
            ValidationError: guests is not positive or exceeds the capacity
            CapacityExceeded: not enough spots left right now
        """
        if guests < 1:
            raise ValidationError("Guest count must be a positive integer")
        if guests > self.capacity:
            raise ValidationError(
                f"Guest count ({guests}) exceeds session capacity ({self.capacity})"
            )
        if guests > self.available_spots:
            raise CapacityExceeded(requested=guests, available=self.available_spots)

        self.reserved_guests += guests
        return self.available_spots

    def __str__(self):
        return f"Session {self.session_id}: {self.reserved_guests}/{self.capacity}"
