"""
Schedule Recalculation Module

Rebuilds the unpaid part of a loan's schedule after an event and answers
payoff and interest questions about the remaining term.
"""

import logging
from datetime import date
from dataclasses import replace
from typing import Optional, Tuple, Union

from .currency import Money, Numeric, money
from .loans import Loan, ScheduleRow, add_months
from .events import LoanEventType
from .strategies import select_strategy


logger = logging.getLogger("loan_amortization.recalculation")


RECALCULATING_EVENTS = frozenset({
    LoanEventType.EXTRA_PAYMENT,
    LoanEventType.SKIP_PAYMENT,
    LoanEventType.SKIP_PAYMENTS,
    LoanEventType.PARTIAL_PAYMENT,
    LoanEventType.RATE_CHANGE,
    LoanEventType.GRACE_PERIOD,
    LoanEventType.PAYMENT_HOLIDAY,
    LoanEventType.ARREARS_PAYMENT,
})


def project_remaining(loan: Loan, deferred_periods: int = 0) -> Optional[Loan]:
    """
    Loan describing only the unpaid remainder of ``loan``.

    The projection starts at the first payment after any deferred periods,
    borrows the current balance over the months left, and keeps the balloon
    only while it is still below that balance. Returns None when nothing is
    left to amortize.
    """
    periods = loan.remaining_months - deferred_periods
    if periods <= 0 or loan.current_balance.is_zero():
        return None

    balloon = loan.balloon_amount
    if balloon is not None and balloon >= loan.current_balance:
        balloon = None

    return replace(
        loan,
        principal=loan.current_balance,
        current_balance=loan.current_balance,
        months=periods,
        start_date=add_months(loan.start_date, loan.payments_made + deferred_periods),
        balloon_amount=balloon,
        schedule=(),
        arrears=(),
        payments_made=0,
    )


class ScheduleRecalculationService:
    """Schedule regeneration and payoff projections for event handlers"""

    def should_recalculate(self, event_type: Union[str, LoanEventType]) -> bool:
        """Check whether an event of this type changes the schedule"""
        if not isinstance(event_type, LoanEventType):
            try:
                event_type = LoanEventType(str(event_type))
            except ValueError:
                return False
        return event_type in RECALCULATING_EVENTS

    def calculate_monthly_payment(self, loan: Loan) -> Money:
        """Regular payment on the current balance over the remaining term

        Uses the loan's own strategy, so a balloon loan amortizes only the
        part above the balloon and a variable-rate loan uses the rate of its
        next due date.
        """
        projection = project_remaining(loan)
        if projection is None:
            return Money.zero(loan.currency)
        return select_strategy(projection).calculate_payment(projection)

    def calculate_remaining_payments(self, loan: Loan) -> int:
        """Payments still needed at the current monthly payment"""
        projection = project_remaining(loan)
        if projection is None:
            return 0
        strategy = select_strategy(projection)
        needed = strategy.calculate_term(projection, strategy.calculate_payment(projection))
        if needed is None:
            return loan.remaining_months
        return min(needed, loan.remaining_months)

    def calculate_early_payoff_date(self, loan: Loan, extra_monthly: Numeric) -> date:
        """Date of the final payment when ``extra_monthly`` is added to each payment"""
        months, _ = self._simulate(loan, money(extra_monthly, loan.currency))
        return add_months(loan.next_payment_date, max(months, 1) - 1)

    def calculate_total_interest(self, loan: Loan) -> Money:
        """Interest still to be paid under the regenerated remaining schedule"""
        total = Money.zero(loan.currency)
        projection = project_remaining(loan)
        if projection is None:
            return total
        for row in select_strategy(projection).calculate_schedule(projection):
            total = total + row.interest_portion
        return total

    def calculate_interest_savings(self, loan: Loan, extra_monthly: Numeric) -> Money:
        """Interest saved by adding ``extra_monthly`` to every payment"""
        _, without_extra = self._simulate(loan, Money.zero(loan.currency))
        _, with_extra = self._simulate(loan, money(extra_monthly, loan.currency))
        return without_extra - with_extra

    def _simulate(self, loan: Loan, extra: Money) -> Tuple[int, Money]:
        """Month-by-month payoff at the current payment plus ``extra``

        Returns the number of payments made and the interest paid. The loop
        is bounded by the remaining term; the last month clears the balance.
        """
        balance = loan.current_balance
        interest_paid = Money.zero(loan.currency)
        payment = self.calculate_monthly_payment(loan) + extra
        months = 0

        for month in range(1, loan.remaining_months + 1):
            if balance.is_zero():
                break
            interest = Money(balance.amount * loan.monthly_rate, loan.currency)
            if month == loan.remaining_months:
                principal = balance
            else:
                principal = (payment - interest).min(balance)
                if principal.is_negative():
                    principal = Money.zero(loan.currency)
            interest_paid = interest_paid + interest
            balance = balance - principal
            months = month

        return months, interest_paid

    def rebuild_schedule(self, loan: Loan, deferred_periods: int = 0) -> Tuple[ScheduleRow, ...]:
        """
        Schedule with settled history kept and the unpaid part regenerated.

        Args:
            loan: Loan whose balance, term and rates already reflect the event
            deferred_periods: Zero-payment rows to place before amortization
                resumes (grace periods and payment holidays)

        Returns:
            Rows numbered 1..months
        """
        rows = list(loan.history())
        zero = Money.zero(loan.currency)

        deferred = min(max(deferred_periods, 0), loan.remaining_months)
        for offset in range(1, deferred + 1):
            number = loan.payments_made + offset
            rows.append(ScheduleRow(
                payment_number=number,
                payment_date=add_months(loan.start_date, number - 1),
                payment_amount=zero,
                principal_portion=zero,
                interest_portion=zero,
                balance=loan.current_balance,
            ))

        projection = project_remaining(loan, deferred)
        if projection is not None:
            strategy = select_strategy(projection)
            first = loan.payments_made + deferred
            for row in strategy.calculate_schedule(projection):
                number = first + row.payment_number
                rows.append(replace(
                    row,
                    payment_number=number,
                    payment_date=add_months(loan.start_date, number - 1),
                ))
            logger.debug(
                f"Rebuilt schedule for loan {loan.id} with {strategy.name} strategy: "
                f"{projection.months} periods from payment {first + 1}"
            )

        return tuple(rows)
