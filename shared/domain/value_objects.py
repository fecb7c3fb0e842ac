"""
Common Value Objects

Value objects used across multiple domains:
- Money: Represents a fixed-point monetary amount with currency
- StayPeriod: Represents the check-in to check-out window of a booking
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN

from shared.domain.base import ValueObject

# Number of minor-unit digits per ISO 4217 currency
MINOR_UNITS = {
    'AED': 2,
    'USD': 2,
    'EUR': 2,
    'GBP': 2,
    'KZT': 2,
    'RUB': 2,
    'SAR': 2,
    'JPY': 0,
    'BHD': 3,
    'KWD': 3,
    'OMR': 3,
}


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Represents a signed monetary amount with currency.
    Amounts are Decimals; floats are rejected so no binary rounding
    ever reaches the ledger.
    """
    amount: Decimal
    currency: str = 'AED'

    def __post_init__(self):
        if isinstance(self.amount, float):
            raise TypeError("Money amounts must be Decimal, int or str, not float")
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if not self.currency:
            raise ValueError("Currency is required")
        currency = self.currency.upper()
        if currency not in MINOR_UNITS:
            raise ValueError(f"Unsupported currency: {self.currency}")
        object.__setattr__(self, 'currency', currency)

    @classmethod
    def zero(cls, currency: str = 'AED') -> 'Money':
        return cls(Decimal('0'), currency)

    @property
    def exponent(self) -> Decimal:
        """Smallest representable unit, e.g. Decimal('0.01') for AED"""
        return Decimal(1).scaleb(-MINOR_UNITS[self.currency])

    def truncate(self) -> 'Money':
        """Round toward zero to the currency's minor unit"""
        return Money(self.amount.quantize(self.exponent, rounding=ROUND_DOWN), self.currency)

    def _check_currency(self, other: 'Money', operation: str):
        if not isinstance(other, Money):
            raise TypeError(f"Can only {operation} Money and Money")
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} different currencies: {self.currency} and {other.currency}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money objects"""
        self._check_currency(other, 'add')
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        """Subtract two money objects"""
        self._check_currency(other, 'subtract')
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __mul__(self, factor) -> 'Money':
        """Multiply money by a Decimal or int factor (result is not rounded)"""
        if isinstance(factor, float) or not isinstance(factor, (int, Decimal)):
            raise TypeError("Can only multiply Money by Decimal or int")
        return Money(self.amount * factor, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def __str__(self):
        return f"{self.amount:,.{MINOR_UNITS[self.currency]}f} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"


@dataclass(frozen=True)
class StayPeriod(ValueObject):
    """
    Stay period value object

    The window from check-in (inclusive) to check-out (exclusive).
    Cancellation policies are evaluated against the time left until check-in.
    """
    check_in: datetime
    check_out: datetime

    def __post_init__(self):
        if self.check_in >= self.check_out:
            raise ValueError(
                f"Check-in ({self.check_in}) must be before check-out ({self.check_out})"
            )

    def hours_until_check_in(self, now: datetime) -> Decimal:
        """Hours from `now` until check-in; negative once the stay has started"""
        seconds = Decimal(str((self.check_in - now).total_seconds()))
        return seconds / Decimal(3600)

    def has_ended(self, now: datetime) -> bool:
        return now >= self.check_out

    def __str__(self):
        return f"{self.check_in:%d.%m.%Y %H:%M} - {self.check_out:%d.%m.%Y %H:%M}"
