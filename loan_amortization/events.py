"""
Loan Events Module

Life-cycle events that change a loan after origination, and the notes-tag
convention used to pass handler options (``strategy:reduce_payment``,
``mode:deferral``) alongside an event.
"""

import re
from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from .currency import to_decimal
from .exceptions import InvalidInputError


class LoanEventType(Enum):
    """Kinds of loan event the engine understands"""
    GRACE_PERIOD = "grace_period"
    SKIP_PAYMENT = "skip_payment"
    SKIP_PAYMENTS = "skip_payments"
    PARTIAL_PAYMENT = "partial_payment"
    EXTRA_PAYMENT = "extra_payment"
    PAYMENT_HOLIDAY = "payment_holiday"
    RATE_CHANGE = "rate_change"
    ARREARS_PAYMENT = "arrears_payment"
    ACCRUAL = "accrual"

    @classmethod
    def values(cls):
        return [member.value for member in cls]


_TAG_PATTERN = re.compile(r'([A-Za-z_]+)\s*:\s*([^\s;,]+)')


def parse_tags(notes: Optional[str]) -> Dict[str, str]:
    """Extract ``key:value`` tokens from free-text notes.

    Tokens may be separated by whitespace, commas or semicolons. Keys are
    lower-cased; later occurrences of a key win.
    """
    if not notes:
        return {}
    return {key.lower(): value for key, value in _TAG_PATTERN.findall(notes)}


@dataclass(frozen=True)
class LoanEvent:
    """A single event against a loan"""
    event_type: LoanEventType
    amount: Decimal
    event_date: date
    new_rate: Optional[Decimal] = None
    months_to_skip: Optional[int] = None
    notes: Optional[str] = None
    loan_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.event_type, LoanEventType):
            object.__setattr__(self, 'event_type', coerce_event_type(self.event_type))
        try:
            object.__setattr__(self, 'amount', to_decimal(self.amount))
            if self.new_rate is not None:
                object.__setattr__(self, 'new_rate', to_decimal(self.new_rate))
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from exc

    @property
    def type_name(self) -> str:
        return self.event_type.value

    def tag(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Value of a ``key:value`` tag in the notes, or ``default``"""
        return parse_tags(self.notes).get(key.lower(), default)


def coerce_event_type(value: Union[str, LoanEventType]) -> LoanEventType:
    """Resolve an event type from its string value"""
    if isinstance(value, LoanEventType):
        return value
    try:
        return LoanEventType(str(value).strip().lower())
    except ValueError:
        raise InvalidInputError(f"Unknown event type: {value}")
