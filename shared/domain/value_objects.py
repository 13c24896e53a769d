"""
Common Value Objects

- Money: amount with an ISO currency, convertible to provider minor units
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from shared.domain.base import ValueObject

SUPPORTED_CURRENCIES = ('MAD', 'USD', 'EUR', 'GBP', 'CAD', 'AUD', 'AED')


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Immutable, never negative. Payment providers exchange amounts in
    minor units (cents, centimes), see ``minor_units``.
    """
    amount: Decimal
    currency: str = 'MAD'

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        object.__setattr__(self, 'currency', (self.currency or '').upper())
        if self.amount < 0:
            raise ValueError("Amount cannot be negative")
        if not self.currency:
            raise ValueError("Currency is required")
        if self.currency not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency: {self.currency}")

    @classmethod
    def from_minor_units(cls, minor: int, currency: str) -> 'Money':
        return cls(Decimal(minor) / Decimal(100), currency)

    @property
    def minor_units(self) -> int:
        return int((self.amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

    def __add__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            raise TypeError("Can only add Money to Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot add different currencies: {self.currency} and {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            raise TypeError("Can only subtract Money from Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot subtract different currencies: {self.currency} and {other.currency}")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor) -> 'Money':
        """Multiply by a count (guests) or a rate."""
        if isinstance(factor, bool) or not isinstance(factor, (int, float, Decimal)):
            raise TypeError("Can only multiply Money by number")
        return Money(self.amount * Decimal(str(factor)), self.currency)

    def __str__(self):
        return f"{self.amount:,.2f} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"
