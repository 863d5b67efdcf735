"""
Loan Module

Data model the engine operates on: the loan itself, its rate periods and its
amortization schedule rows, plus the calendar helpers used to date payments.

Loans are immutable. Event handlers never change a loan in place; they build
a new Loan (``Loan.with_changes``) carrying the same id, so a caller holding
the previous value can compare before and after.
"""

from decimal import Decimal
from datetime import datetime, timezone, timedelta, date
from dataclasses import dataclass, replace
from typing import Optional, Tuple
import calendar

from .currency import Money, Currency
from .arrears import Arrears
from .config import get_config
from .exceptions import InvalidInputError


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


@dataclass(frozen=True)
class RatePeriod:
    """Interval during which a loan's annual interest rate is constant"""
    loan_id: Optional[str]
    rate: Decimal
    start_date: date
    end_date: Optional[date] = None     # None = open-ended
    id: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.rate, Decimal):
            object.__setattr__(self, 'rate', Decimal(str(self.rate)))
        if self.rate < Decimal('0') or self.rate > Decimal('1'):
            raise InvalidInputError(f"Rate period rate must be between 0 and 1, got {self.rate}")
        if self.end_date is not None and self.end_date < self.start_date:
            raise InvalidInputError(
                f"Rate period ends ({self.end_date}) before it starts ({self.start_date})"
            )

    @property
    def is_open_ended(self) -> bool:
        return self.end_date is None

    def contains(self, on_date: date) -> bool:
        """Check whether the period's date range covers ``on_date``"""
        if on_date < self.start_date:
            return False
        return self.end_date is None or on_date <= self.end_date


@dataclass(frozen=True)
class ScheduleRow:
    """Single entry in an amortization schedule"""
    payment_number: int
    payment_date: date
    payment_amount: Money
    principal_portion: Money
    interest_portion: Money
    balance: Money
    rate_period_id: Optional[int] = None
    rate: Optional[Decimal] = None
    balloon_amount: Optional[Money] = None  # Final row of a balloon schedule only

    def __post_init__(self):
        # Validate that payment equals principal + interest
        calculated_payment = self.principal_portion + self.interest_portion
        tolerance = get_config().balance_tolerance
        if abs(calculated_payment.amount - self.payment_amount.amount) > tolerance:
            raise InvalidInputError(
                f"Payment amount {self.payment_amount.to_string()} does not equal "
                f"principal {self.principal_portion.to_string()} + "
                f"interest {self.interest_portion.to_string()}"
            )

    def renumbered(self, payment_number: int) -> 'ScheduleRow':
        return replace(self, payment_number=payment_number)


@dataclass(frozen=True)
class Loan:
    """Loan with its terms, current position and schedule"""
    id: str
    principal: Money
    annual_rate: Decimal                # e.g. 0.05 for 5%
    months: int                         # Total term in months
    start_date: date                    # Due date of payment 1
    current_balance: Optional[Money] = None
    balloon_amount: Optional[Money] = None
    rate_periods: Tuple[RatePeriod, ...] = ()
    schedule: Tuple[ScheduleRow, ...] = ()
    arrears: Tuple[Arrears, ...] = ()
    payments_made: int = 0
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.annual_rate, Decimal):
            object.__setattr__(self, 'annual_rate', Decimal(str(self.annual_rate)))
        if self.current_balance is None:
            object.__setattr__(self, 'current_balance', self.principal)
        for name in ('rate_periods', 'schedule', 'arrears'):
            object.__setattr__(self, name, tuple(getattr(self, name)))

        if not self.principal.is_positive():
            raise InvalidInputError(f"Principal must be positive, got {self.principal.to_string()}")
        if self.annual_rate < Decimal('0') or self.annual_rate > Decimal('1'):
            raise InvalidInputError(f"Annual rate must be between 0 and 1 (0-100%), got {self.annual_rate}")
        if self.months <= 0:
            raise InvalidInputError(f"Term must be a positive number of months, got {self.months}")
        if self.current_balance.is_negative():
            raise InvalidInputError("Current balance cannot be negative")
        if self.current_balance.currency != self.principal.currency:
            raise InvalidInputError("Current balance currency must match principal currency")
        if self.balloon_amount is not None and not self.balloon_amount.is_positive():
            raise InvalidInputError("Balloon amount must be positive when present")
        if not 0 <= self.payments_made <= self.months:
            raise InvalidInputError(
                f"Payments made ({self.payments_made}) must be between 0 and the term ({self.months})"
            )

        object.__setattr__(self, 'rate_periods', self._normalize_rate_periods(self.rate_periods))

    def _normalize_rate_periods(self, periods: Tuple[RatePeriod, ...]) -> Tuple[RatePeriod, ...]:
        ordered = sorted(periods, key=lambda p: p.start_date)
        normalized = []
        for index, period in enumerate(ordered):
            if period.id is None or period.loan_id is None:
                period = replace(
                    period,
                    id=period.id if period.id is not None else index + 1,
                    loan_id=period.loan_id if period.loan_id is not None else self.id,
                )
            if normalized:
                previous = normalized[-1]
                if previous.end_date is None:
                    raise InvalidInputError("Only the last rate period may be open-ended")
                if period.start_date <= previous.end_date:
                    raise InvalidInputError(
                        f"Rate periods overlap: {previous.start_date}..{previous.end_date} "
                        f"and {period.start_date}"
                    )
                if period.start_date != previous.end_date + timedelta(days=1):
                    raise InvalidInputError(
                        f"Rate periods must be contiguous: gap after {previous.end_date}"
                    )
            normalized.append(period)
        return tuple(normalized)

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def monthly_rate(self) -> Decimal:
        return self.annual_rate / Decimal('12')

    @property
    def remaining_months(self) -> int:
        return self.months - self.payments_made

    @property
    def next_payment_date(self) -> date:
        """Due date of the first unpaid period"""
        return add_months(self.start_date, self.payments_made)

    @property
    def maturity_date(self) -> date:
        """Due date of the final payment"""
        return add_months(self.start_date, self.months - 1)

    @property
    def is_paid_off(self) -> bool:
        return self.current_balance.is_zero()

    @property
    def total_arrears(self) -> Money:
        """Outstanding principal and interest arrears (penalties excluded)"""
        total = Money.zero(self.currency)
        for item in self.arrears:
            total = total + item.total_amount
        return total

    @property
    def total_penalties(self) -> Money:
        total = Money.zero(self.currency)
        for item in self.arrears:
            total = total + item.penalty_amount
        return total

    @property
    def has_active_arrears(self) -> bool:
        return any(not item.is_cleared for item in self.arrears)

    def arrears_overdue_by(self, days: int) -> Tuple[Arrears, ...]:
        """Active arrears at least ``days`` overdue"""
        return tuple(a for a in self.arrears if not a.is_cleared and a.days_overdue >= days)

    def rate_period_on(self, on_date: date) -> Optional[RatePeriod]:
        """Rate period applying on a date

        Dates before the first period fall back to the first period and dates
        after a closed final period to the last one.
        """
        if not self.rate_periods:
            return None
        for period in self.rate_periods:
            if period.contains(on_date):
                return period
        if on_date < self.rate_periods[0].start_date:
            return self.rate_periods[0]
        return self.rate_periods[-1]

    def scheduled_payment_for(self, event_date: date) -> Optional[ScheduleRow]:
        """Unpaid schedule row due on or after ``event_date``

        Falls back to the last unpaid row when the event is dated after the
        final due date.
        """
        unpaid = [row for row in self.schedule if row.payment_number > self.payments_made]
        if not unpaid:
            return None
        for row in unpaid:
            if row.payment_date >= event_date:
                return row
        return unpaid[-1]

    def history(self) -> Tuple[ScheduleRow, ...]:
        """Rows for periods already settled"""
        return tuple(row for row in self.schedule if row.payment_number <= self.payments_made)

    def with_changes(self, **changes) -> 'Loan':
        """Copy of this loan with ``changes`` applied and ``updated_at`` stamped"""
        changes.setdefault('updated_at', datetime.now(timezone.utc))
        return replace(self, **changes)
