"""
Loan Event Handlers Module

One handler per kind of loan event. A handler validates the event against
the loan, then returns a new Loan with balance, term, arrears and schedule
updated. The loan passed in is never modified.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple, Type

from .currency import Money, money
from .loans import Loan, RatePeriod, ScheduleRow, add_months
from .arrears import Arrears
from .events import LoanEvent, LoanEventType
from .recalculation import ScheduleRecalculationService, project_remaining
from .strategies import select_strategy
from .config import AmortizationConfig, get_config
from .logging_config import log_action
from .exceptions import AmortizationError, InvalidInputError, SequencingError


class EventHandler(ABC):
    """Base class for loan event handlers"""

    event_types: Tuple[LoanEventType, ...] = ()
    priority_key: str = ""

    def __init__(self, config: Optional[AmortizationConfig] = None,
                 recalculation: Optional[ScheduleRecalculationService] = None):
        self.config = config or get_config()
        self.recalculation = recalculation or ScheduleRecalculationService()
        self.logger = logging.getLogger("loan_amortization.handlers")

    def supports(self, event: LoanEvent) -> bool:
        """Check whether this handler processes the event's type"""
        return event.event_type in self.event_types

    def get_priority(self) -> int:
        """Ordering key when several events are processed together; lower runs first"""
        return self.config.handler_priorities()[self.priority_key]

    @abstractmethod
    def handle(self, loan: Loan, event: LoanEvent) -> Loan:
        """Apply the event and return the updated loan"""
        pass

    def _with_schedule(self, loan: Loan, deferred_periods: int = 0) -> Loan:
        return replace(loan, schedule=self.recalculation.rebuild_schedule(loan, deferred_periods))

    def _applied(self, loan: Loan, event: LoanEvent, message: str, **extra) -> None:
        log_action(
            self.logger, "info", message,
            loan_id=loan.id, action="event_applied",
            event_type=event.type_name, extra=extra or None
        )

    def _rejected(self, loan: Loan, event: LoanEvent, message: str,
                  error_class: Type[AmortizationError] = InvalidInputError) -> AmortizationError:
        """Log a rejected event and build the error to raise"""
        log_action(
            self.logger, "warning", message,
            loan_id=loan.id, action="event_rejected", event_type=event.type_name
        )
        return error_class(message)

    def _month_count(self, loan: Loan, event: LoanEvent) -> int:
        try:
            return event_month_count(event)
        except InvalidInputError as exc:
            raise self._rejected(loan, event, str(exc)) from exc


def event_month_count(event: LoanEvent) -> int:
    """Month count carried by an event: ``months_to_skip`` or else ``amount``

    Raises:
        InvalidInputError: If the count is not a whole number
    """
    count = event.months_to_skip if event.months_to_skip is not None else event.amount
    value = Decimal(str(count))
    if value != value.to_integral_value():
        raise InvalidInputError(f"Number of months must be a whole number, got {count}")
    return int(value)


@dataclass(frozen=True)
class GracePeriodResult:
    """Outcome of placing a loan in a grace period"""
    loan_id: str
    grace_months: int
    start_date: date
    end_date: date
    months_after_grace: int
    accrued_interest: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': LoanEventType.GRACE_PERIOD.value,
            'loan_id': self.loan_id,
            'grace_months': self.grace_months,
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'months_after_grace': self.months_after_grace,
            'accrued_interest': self.accrued_interest.amount,
        }


class GracePeriodHandler(EventHandler):
    """
    Suspends payments for a number of months.

    The term is extended by the grace months, which appear in the schedule as
    zero-payment rows. Interest for the grace period is reported, not added
    to the balance.
    """

    event_types = (LoanEventType.GRACE_PERIOD,)
    priority_key = "grace_period"

    def apply_grace_period(self, loan: Loan, months: int) -> GracePeriodResult:
        if months <= 0:
            raise InvalidInputError(f"Grace period must be at least 1 month, got {months}")

        start_date = loan.next_payment_date
        accrued = loan.current_balance * (loan.monthly_rate * Decimal(months))

        return GracePeriodResult(
            loan_id=loan.id,
            grace_months=months,
            start_date=start_date,
            end_date=add_months(start_date, months),
            months_after_grace=loan.months + months,
            accrued_interest=accrued,
        )

    def handle(self, loan: Loan, event: LoanEvent) -> Loan:
        months = self._month_count(loan, event)
        if months <= 0:
            raise self._rejected(loan, event, f"Grace period must be at least 1 month, got {months}")

        result = self.apply_grace_period(loan, months)
        updated = loan.with_changes(months=result.months_after_grace)
        updated = self._with_schedule(updated, deferred_periods=months)

        self._applied(
            loan, event,
            f"Grace period of {months} months applied to loan {loan.id}",
            **result.to_dict()
        )
        return updated


class SkipPaymentHandler(EventHandler):
    """
    Defers one or more regular payments.

    Each skipped payment extends the term by a month and adds a fee of the
    configured rate (2% by default) on ``balance / months`` to the balance.
    """

    event_types = (LoanEventType.SKIP_PAYMENT, LoanEventType.SKIP_PAYMENTS)
    priority_key = "skip_payment"

    def calculate_penalty(self, loan: Loan, count: int) -> Money:
        per_period = loan.current_balance.amount / Decimal(loan.months)
        return Money(per_period * self.config.skip_payment_penalty_rate * Decimal(count), loan.currency)

    def handle(self, loan: Loan, event: LoanEvent) -> Loan:
        count = self._month_count(loan, event)
        limit = self.config.max_skip_payments
        if count > limit:
            raise self._rejected(loan, event, f"Cannot skip more than {limit} payments")
        if count < 1:
            raise self._rejected(loan, event, "Must skip at least 1 payment")

        penalty = self.calculate_penalty(loan, count)
        updated = loan.with_changes(
            months=loan.months + count,
            current_balance=loan.current_balance + penalty,
        )
        updated = self._with_schedule(updated, deferred_periods=count)

        self._applied(
            loan, event,
            f"Skipped {count} payment(s) on loan {loan.id}, penalty {penalty.to_string()}",
            skipped=count, penalty=penalty.amount, new_term=updated.months
        )
        return updated


class ExtraPaymentHandler(EventHandler):
    """
    Applies a lump-sum payment against principal.

    ``strategy:reduce_term`` in the notes (the default) keeps the current
    payment and shortens the term; ``strategy:reduce_payment`` keeps the term
    and lowers the payment.
    """

    event_types = (LoanEventType.EXTRA_PAYMENT,)
    priority_key = "extra_payment"

    REDUCE_TERM = "reduce_term"
    REDUCE_PAYMENT = "reduce_payment"

    def handle(self, loan: Loan, event: LoanEvent) -> Loan:
        amount = money(event.amount, loan.currency)
        if not amount.is_positive():
            raise self._rejected(loan, event, "Extra payment must be greater than zero")
        if amount > loan.current_balance:
            raise self._rejected(loan, event, "Extra payment cannot exceed remaining balance")

        mode = event.tag("strategy", self.REDUCE_TERM).lower()
        if mode not in (self.REDUCE_TERM, self.REDUCE_PAYMENT):
            raise self._rejected(loan, event, f"Unknown extra payment strategy: {mode}")

        new_balance = loan.current_balance - amount
        months = loan.months
        if mode == self.REDUCE_TERM:
            months = self._reduced_term(loan, new_balance)

        updated = loan.with_changes(current_balance=new_balance, months=months)
        updated = self._with_schedule(updated)

        self._applied(
            loan, event,
            f"Extra payment {amount.to_string()} applied to loan {loan.id}",
            strategy=mode, new_balance=new_balance.amount,
            new_term=updated.months, previous_term=loan.months
        )
        return updated

    def _reduced_term(self, loan: Loan, new_balance: Money) -> int:
        """Term that keeps the pre-payment installment on the reduced balance

        The installment and the new term both come from the strategy that
        will regenerate the schedule, so balloon loans amortize only the part
        above the balloon and variable-rate loans use the current period's
        rate.
        """
        if new_balance.is_zero():
            return max(loan.payments_made, 1)

        current = project_remaining(loan)
        if current is None:
            return loan.months
        payment = select_strategy(current).calculate_payment(current)

        reduced = project_remaining(replace(loan, current_balance=new_balance))
        needed = select_strategy(reduced).calculate_term(reduced, payment)
        if needed is None:
            return loan.months
        return loan.payments_made + min(needed, loan.remaining_months)


class PartialPaymentHandler(EventHandler):
    """
    Records a payment smaller than the regular installment.

    The payment settles the period's interest first, then principal. The
    unpaid part of the installment is carried as principal arrears and the
    remaining schedule is regenerated from the new balance.
    """

    event_types = (LoanEventType.PARTIAL_PAYMENT,)
    priority_key = "partial_payment"

    def regular_payment_row(self, loan: Loan, on_date: date) -> Optional[ScheduleRow]:
        """Scheduled row the payment is measured against"""
        if not loan.schedule:
            loan = self._with_schedule(loan)
        return loan.scheduled_payment_for(on_date)

    def handle(self, loan: Loan, event: LoanEvent) -> Loan:
        amount = money(event.amount, loan.currency)
        if amount.is_negative():
            raise self._rejected(loan, event, "Partial payment cannot be negative")
        if loan.remaining_months <= 0:
            raise self._rejected(
                loan, event, f"Loan {loan.id} has no unpaid periods", SequencingError
            )

        due = self.regular_payment_row(loan, event.event_date)
        if due is None:
            raise self._rejected(
                loan, event, f"Loan {loan.id} has no scheduled payment to apply against",
                SequencingError
            )
        regular = due.payment_amount
        if amount > regular:
            raise self._rejected(
                loan, event,
                f"Partial payment {amount.to_string()} exceeds regular payment "
                f"{regular.to_string()}; record it as an extra payment",
                SequencingError
            )

        monthly_rate = due.rate / Decimal('12') if due.rate is not None else loan.monthly_rate
        interest_due = Money(loan.current_balance.amount * monthly_rate, loan.currency)
        interest_paid = amount.min(interest_due)
        principal_paid = (amount - interest_paid).min(loan.current_balance)
        new_balance = loan.current_balance - principal_paid

        number = loan.payments_made + 1
        due_date = add_months(loan.start_date, number - 1)
        recorded = ScheduleRow(
            payment_number=number,
            payment_date=due_date,
            payment_amount=interest_paid + principal_paid,
            principal_portion=principal_paid,
            interest_portion=interest_paid,
            balance=new_balance,
            rate_period_id=due.rate_period_id,
            rate=due.rate,
        )

        arrears = loan.arrears
        shortfall = regular - amount
        if shortfall.is_positive():
            arrears = arrears + (Arrears(
                loan_id=loan.id,
                principal_amount=shortfall,
                interest_amount=Money.zero(loan.currency),
                days_overdue=max(0, (event.event_date - due_date).days),
            ),)

        updated = loan.with_changes(
            current_balance=new_balance,
            payments_made=number,
            arrears=arrears,
            schedule=loan.history() + (recorded,),
        )
        updated = self._with_schedule(updated)

        self._applied(
            loan, event,
            f"Partial payment {amount.to_string()} of {regular.to_string()} applied to loan {loan.id}",
            interest_paid=interest_paid.amount, principal_paid=principal_paid.amount,
            shortfall=shortfall.amount, payment_number=number
        )
        return updated


class RateChangeHandler(EventHandler):
    """
    Moves the loan to a new annual rate from the event date onwards.

    The rate period covering the event date is closed the day before, later
    periods are dropped, and an open-ended period at the new rate is added.
    """

    event_types = (LoanEventType.RATE_CHANGE,)
    priority_key = "rate_change"

    def build_rate_periods(self, loan: Loan, new_rate: Decimal, effective: date) -> Tuple[RatePeriod, ...]:
        day_before = effective - timedelta(days=1)

        if not loan.rate_periods:
            if effective <= loan.start_date:
                periods = [RatePeriod(loan.id, new_rate, loan.start_date)]
            else:
                periods = [
                    RatePeriod(loan.id, loan.annual_rate, loan.start_date, day_before),
                    RatePeriod(loan.id, new_rate, effective),
                ]
        else:
            kept: List[RatePeriod] = [p for p in loan.rate_periods if p.start_date < effective]
            if not kept:
                periods = [RatePeriod(loan.id, new_rate, loan.rate_periods[0].start_date)]
            else:
                # Close the last surviving period the day before the change
                kept[-1] = replace(kept[-1], end_date=day_before)
                periods = kept + [RatePeriod(loan.id, new_rate, effective)]

        return tuple(
            replace(period, id=index, loan_id=loan.id)
            for index, period in enumerate(periods, start=1)
        )

    def handle(self, loan: Loan, event: LoanEvent) -> Loan:
        new_rate = event.new_rate
        if new_rate is None:
            raise self._rejected(loan, event, "Rate change requires a new rate")
        if new_rate < Decimal('0') or new_rate > Decimal('1'):
            raise self._rejected(loan, event, f"New rate must be between 0 and 1, got {new_rate}")

        updated = loan.with_changes(
            annual_rate=new_rate,
            rate_periods=self.build_rate_periods(loan, new_rate, event.event_date),
        )
        updated = self._with_schedule(updated)

        self._applied(
            loan, event,
            f"Rate on loan {loan.id} changed from {loan.annual_rate} to {new_rate}",
            previous_rate=loan.annual_rate, new_rate=new_rate,
            effective_date=event.event_date.isoformat()
        )
        return updated


class ArrearsPaymentHandler(EventHandler):
    """
    Pays down outstanding arrears, oldest first.

    Each arrears record is settled penalty, then interest, then principal.
    Principal recovered from arrears also reduces the loan balance.
    """

    event_types = (LoanEventType.ARREARS_PAYMENT,)
    priority_key = "arrears_payment"

    def handle(self, loan: Loan, event: LoanEvent) -> Loan:
        amount = money(event.amount, loan.currency)
        if not amount.is_positive():
            raise self._rejected(loan, event, "Arrears payment must be greater than zero")

        outstanding = sorted(
            (item for item in loan.arrears if not item.is_cleared),
            key=lambda item: item.created_at
        )
        if not outstanding:
            raise self._rejected(
                loan, event, f"Loan {loan.id} has no outstanding arrears", SequencingError
            )

        total_due = Money.zero(loan.currency)
        for item in outstanding:
            total_due = total_due + item.total_due
        if amount > total_due:
            raise self._rejected(
                loan, event,
                f"Arrears payment {amount.to_string()} exceeds amount owed {total_due.to_string()}",
                SequencingError
            )

        remaining = amount
        principal_recovered = Money.zero(loan.currency)
        settled = {}
        for item in outstanding:
            if remaining.is_zero():
                break
            paid = remaining.min(item.total_due)
            after = item.apply_payment(paid)
            principal_recovered = principal_recovered + (item.principal_amount - after.principal_amount)
            remaining = remaining - paid
            settled[id(item)] = after

        updated = loan.with_changes(
            arrears=tuple(settled.get(id(item), item) for item in loan.arrears),
            current_balance=loan.current_balance - principal_recovered.min(loan.current_balance),
        )
        updated = self._with_schedule(updated)

        self._applied(
            loan, event,
            f"Arrears payment {amount.to_string()} applied to loan {loan.id}",
            principal_recovered=principal_recovered.amount,
            arrears_remaining=updated.total_arrears.amount
        )
        return updated
