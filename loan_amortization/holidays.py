"""
Payment Holiday Module

Payment holidays suspend a loan's installments for up to a year. Interest for
the holiday is capitalized either with the term unchanged (accrual) or with
the term extended by the holiday (deferral).

Holiday records follow an approval workflow:
PENDING -> APPROVED -> ACTIVE
"""

import uuid
from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Union

from .currency import Money
from .loans import Loan, add_months
from .events import LoanEvent, LoanEventType
from .handlers import EventHandler, event_month_count
from .recalculation import project_remaining
from .exceptions import InvalidInputError, SequencingError, HolidayConfigurationError


class HolidayMode(Enum):
    """How holiday interest is handled"""
    ACCRUAL = "accrual"      # Capitalized, term unchanged
    DEFERRAL = "deferral"    # Capitalized, term extended


class HolidayStatus(Enum):
    """Payment holiday workflow states"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"


@dataclass(frozen=True)
class PaymentHoliday:
    """Payment holiday granted on a loan"""
    loan_id: str
    months: int
    mode: HolidayMode
    reason: str
    start_date: date
    balance: Money              # Balance when the holiday was created
    annual_rate: Decimal
    status: HolidayStatus = HolidayStatus.PENDING
    approved_by: Optional[str] = None
    approval_note: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def end_date(self) -> date:
        return add_months(self.start_date, self.months)

    @property
    def interest_handling(self) -> str:
        return self.mode.value

    @property
    def interest(self) -> Money:
        """Interest accruing on the holiday balance over the holiday"""
        monthly_rate = self.annual_rate / Decimal('12')
        return Money(self.balance.amount * monthly_rate * Decimal(self.months), self.balance.currency)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'months': self.months,
            'interest_handling': self.interest_handling,
            'reason': self.reason,
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'status': self.status.value,
            'approved_by': self.approved_by,
            'approval_note': self.approval_note,
        }


class PaymentHolidayHandler(EventHandler):
    """
    Grants payment holidays.

    Options are read from the event notes: ``mode:deferral`` (accrual is the
    default) and ``reason:<text>``. The month count comes from
    ``months_to_skip``, falling back to the event amount.
    """

    event_types = (LoanEventType.PAYMENT_HOLIDAY,)
    priority_key = "payment_holiday"

    def create_holiday(self, loan: Loan, months: int, mode: Union[str, HolidayMode],
                       reason: str, start_date: date) -> PaymentHoliday:
        """New holiday record awaiting approval"""
        if not isinstance(mode, HolidayMode):
            try:
                mode = HolidayMode(str(mode).lower())
            except ValueError:
                raise InvalidInputError(f"Unknown holiday mode: {mode}")

        return PaymentHoliday(
            loan_id=loan.id,
            months=months,
            mode=mode,
            reason=reason or "",
            start_date=start_date,
            balance=loan.current_balance,
            annual_rate=loan.annual_rate,
        )

    def is_valid_holiday(self, loan: Loan, months: int) -> bool:
        """Holiday length within policy and within the remaining term"""
        if months < 1 or months > self.config.max_holiday_months:
            return False
        return months <= loan.remaining_months

    def calculate_accrued_interest(self, holiday: PaymentHoliday) -> Money:
        return holiday.interest

    def calculate_deferred_interest(self, holiday: PaymentHoliday) -> Money:
        return holiday.interest

    def apply_accrual(self, loan: Loan, holiday: PaymentHoliday) -> Loan:
        """Capitalize holiday interest, keeping the maturity date"""
        interest = self._interest_on(loan, holiday)
        return loan.with_changes(current_balance=loan.current_balance + interest)

    def apply_deferral(self, loan: Loan, holiday: PaymentHoliday) -> Loan:
        """Capitalize holiday interest and push maturity out by the holiday"""
        interest = self._interest_on(loan, holiday)
        return loan.with_changes(
            current_balance=loan.current_balance + interest,
            months=loan.months + holiday.months,
        )

    def _interest_on(self, loan: Loan, holiday: PaymentHoliday) -> Money:
        return Money(
            loan.current_balance.amount * loan.monthly_rate * Decimal(holiday.months),
            loan.currency
        )

    def approve_holiday(self, holiday: PaymentHoliday, approver: str,
                        note: Optional[str] = None) -> PaymentHoliday:
        if holiday.status != HolidayStatus.PENDING:
            raise SequencingError(
                f"Cannot approve holiday {holiday.id} in status {holiday.status.value}"
            )
        return replace(holiday, status=HolidayStatus.APPROVED,
                       approved_by=approver, approval_note=note)

    def activate_holiday(self, holiday: PaymentHoliday) -> PaymentHoliday:
        if holiday.status != HolidayStatus.APPROVED:
            raise SequencingError(
                f"Cannot activate holiday {holiday.id} in status {holiday.status.value}"
            )
        return replace(holiday, status=HolidayStatus.ACTIVE)

    def recalculate_schedule(self, loan: Loan, holiday: PaymentHoliday) -> Dict[str, Any]:
        """
        Unpaid schedule from the start of the holiday to maturity.

        The holiday months come first as zero-payment rows. Accrual squeezes
        the balance into the months left after the holiday, so the schedule
        keeps its length; deferral keeps the full remaining term after the
        holiday and is longer by the holiday months.
        """
        adjusted = self._apply_mode(loan, holiday)
        schedule = self.recalculation.rebuild_schedule(adjusted, deferred_periods=holiday.months)
        periods = tuple(row for row in schedule if row.payment_number > loan.payments_made)

        return {
            'loan_id': loan.id,
            'holiday_start_date': holiday.start_date,
            'holiday_end_date': holiday.end_date,
            'interest_handling': holiday.interest_handling,
            'new_balance': adjusted.current_balance,
            'new_term': adjusted.months,
            'periods': periods,
        }

    def _apply_mode(self, loan: Loan, holiday: PaymentHoliday) -> Loan:
        if holiday.mode == HolidayMode.DEFERRAL:
            return self.apply_deferral(loan, holiday)
        return self.apply_accrual(loan, holiday)

    def holiday_from_event(self, loan: Loan, event: LoanEvent) -> PaymentHoliday:
        return self.create_holiday(
            loan,
            months=event_month_count(event),
            mode=event.tag("mode", HolidayMode.ACCRUAL.value),
            reason=event.tag("reason") or event.notes or "",
            start_date=event.event_date,
        )

    def handle(self, loan: Loan, event: LoanEvent) -> Loan:
        try:
            holiday = self.holiday_from_event(loan, event)
        except InvalidInputError as exc:
            raise self._rejected(loan, event, str(exc), HolidayConfigurationError) from exc

        if not self.is_valid_holiday(loan, holiday.months):
            raise self._rejected(
                loan, event,
                f"Invalid payment holiday of {holiday.months} months for loan {loan.id} "
                f"({loan.remaining_months} months remaining, limit {self.config.max_holiday_months})",
                HolidayConfigurationError
            )

        updated = self._apply_mode(loan, holiday)
        if project_remaining(updated, holiday.months) is None and updated.current_balance.is_positive():
            raise self._rejected(
                loan, event,
                f"Accrual holiday of {holiday.months} months leaves no payments on loan {loan.id}",
                HolidayConfigurationError
            )
        updated = self._with_schedule(updated, deferred_periods=holiday.months)

        self._applied(
            loan, event,
            f"Payment holiday of {holiday.months} months ({holiday.interest_handling}) "
            f"applied to loan {loan.id}",
            **holiday.to_dict()
        )
        return updated
