"""
Money and Currency Module

ISO 4217 currency codes and an immutable Money value with proper Decimal
precision. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .config import get_config

# Set global decimal context for financial precision
getcontext().prec = 28

Numeric = Union[Decimal, int, str]


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places
    GBP = ("GBP", 2)  # British Pound, 2 decimal places
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places
    CAD = ("CAD", 2)  # Canadian Dollar, 2 decimal places
    CHF = ("CHF", 2)  # Swiss Franc, 2 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit (0.01 for USD)"""
        return Decimal('0.1') ** self.precision


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.

    Amounts are rounded HALF_UP to the currency precision on construction, so
    every intermediate result of a schedule calculation is a whole number of
    cents.
    """
    amount: Decimal
    currency: Currency = Currency.USD

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))

        rounded = self.amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency = Currency.USD) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Numeric) -> 'Money':
        return Money(self.amount * to_decimal(multiplier), self.currency)

    def __truediv__(self, divisor: Numeric) -> 'Money':
        return Money(self.amount / to_decimal(divisor), self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def is_close(self, other: 'Money', tolerance: Optional[Numeric] = None) -> bool:
        """True when both amounts differ by at most ``tolerance``

        Defaults to the configured ``balance_tolerance``.
        """
        self._check_currency(other, "compare")
        if tolerance is None:
            tolerance = get_config().balance_tolerance
        return abs(self.amount - other.amount) <= to_decimal(tolerance)

    def min(self, other: 'Money') -> 'Money':
        return self if self <= other else other

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert a number to Decimal without going through binary floating point.

    Floats are converted via ``str`` so ``0.05`` becomes ``Decimal('0.05')``.

    Raises:
        ValueError: If the value cannot be interpreted as a number
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert boolean {value!r} to Decimal")
    try:
        return Decimal(str(value).strip())
    except ArithmeticError:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


def default_currency() -> Currency:
    """Currency named by the ``default_currency`` setting"""
    code = get_config().default_currency.strip().upper()
    try:
        return Currency[code]
    except KeyError:
        raise ValueError(f"Unsupported default currency: {code}")


def money(value: Numeric, currency: Optional[Currency] = None) -> Money:
    """Shorthand constructor used by handlers and tests

    Uses the configured default currency when none is given.
    """
    if isinstance(value, Money):
        return value
    return Money(to_decimal(value), currency or default_currency())
