"""
Amortization Strategies Module

Schedule generators for the supported repayment structures:
- Standard: level payment over the whole term
- Balloon: level payment on the amortizing part, lump sum at maturity
- Variable rate: level payment re-computed at every rate period boundary

``select_strategy`` picks the first strategy that supports a loan, trying
balloon, then variable rate, then standard.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_CEILING
from typing import List, Optional, Tuple

from .currency import Money
from .loans import Loan, ScheduleRow, add_months
from .exceptions import InvalidInputError


def calculate_level_payment(balance: Decimal, monthly_rate: Decimal, periods: int) -> Decimal:
    """
    Level payment that amortizes ``balance`` over ``periods`` months.

    Uses the annuity formula P * r * (1+r)^n / ((1+r)^n - 1), or plain
    division when the rate is zero. The result is not rounded.
    """
    if periods <= 0:
        raise InvalidInputError(f"Number of periods must be positive, got {periods}")
    if monthly_rate == 0:
        return balance / Decimal(periods)

    factor = (Decimal('1') + monthly_rate) ** periods
    return balance * monthly_rate * factor / (factor - Decimal('1'))


def months_to_amortize(balance: Decimal, monthly_rate: Decimal, payment: Decimal) -> Optional[int]:
    """
    Number of payments of ``payment`` needed to clear ``balance``.

    Returns None when the payment does not cover the monthly interest, so the
    balance would never amortize.
    """
    if balance <= 0:
        return 0
    if payment <= 0:
        return None
    if monthly_rate == 0:
        return int((balance / payment).to_integral_value(rounding=ROUND_CEILING))

    interest = balance * monthly_rate
    if payment <= interest:
        return None

    periods = (payment / (payment - interest)).ln() / (Decimal('1') + monthly_rate).ln()
    # Rounding residue can push an exact whole number just above it
    return max(1, int((periods - Decimal('1E-9')).to_integral_value(rounding=ROUND_CEILING)))


class AmortizationStrategy(ABC):
    """Abstract schedule generator"""

    name = "abstract"

    @abstractmethod
    def supports(self, loan: Loan) -> bool:
        """Check whether this strategy can generate the loan's schedule"""
        pass

    def amortizing_amount(self, loan: Loan) -> Decimal:
        """Part of the principal the level payment pays down"""
        return loan.principal.amount

    def payment_rate(self, loan: Loan) -> Decimal:
        """Monthly rate the first level payment is computed at"""
        return loan.monthly_rate

    def calculate_payment(self, loan: Loan) -> Money:
        """Regular payment for the first period"""
        amount = calculate_level_payment(self.amortizing_amount(loan), self.payment_rate(loan), loan.months)
        return Money(amount, loan.currency)

    def calculate_term(self, loan: Loan, payment: Money) -> Optional[int]:
        """
        Shortest term whose regular payment does not exceed ``payment``.

        Solved on the same amortizing amount and rate ``calculate_payment``
        uses, so re-running the strategy over the returned term gives a
        payment at or just below ``payment``. None when ``payment`` never
        pays the loan down.
        """
        return months_to_amortize(self.amortizing_amount(loan), self.payment_rate(loan), payment.amount)

    @abstractmethod
    def calculate_schedule(self, loan: Loan) -> List[ScheduleRow]:
        """Full schedule of exactly ``loan.months`` rows"""
        pass

    def _row(self, number: int, loan: Loan, payment: Money, balance: Money,
             monthly_rate: Decimal, final: bool, **extra) -> Tuple[ScheduleRow, Money]:
        """Build one row and the balance after it

        Returns a ``(row, new_balance)`` pair. The final row pays off whatever
        is left; earlier rows never take the balance below zero.
        """
        interest = Money(balance.amount * monthly_rate, balance.currency)
        principal = payment - interest

        if principal.is_negative():
            # Payment does not cover interest: interest-only row
            principal = Money.zero(balance.currency)
        if principal > balance:
            principal = balance
        if final:
            # Pay exactly what's left
            principal = balance

        payment = principal + interest
        new_balance = balance - principal
        row = ScheduleRow(
            payment_number=number,
            payment_date=add_months(loan.start_date, number - 1),
            payment_amount=payment,
            principal_portion=principal,
            interest_portion=interest,
            balance=new_balance,
            **extra
        )
        return row, new_balance


class StandardStrategy(AmortizationStrategy):
    """Level payment over the full term"""

    name = "standard"

    def supports(self, loan: Loan) -> bool:
        return loan.balloon_amount is None and not loan.rate_periods

    def calculate_schedule(self, loan: Loan) -> List[ScheduleRow]:
        payment = self.calculate_payment(loan)
        balance = loan.principal
        schedule = []

        for number in range(1, loan.months + 1):
            row, balance = self._row(
                number, loan, payment, balance, loan.monthly_rate,
                final=(number == loan.months)
            )
            schedule.append(row)

        return schedule


class BalloonPaymentStrategy(AmortizationStrategy):
    """
    Level payment on ``principal - balloon`` with the balloon settled at maturity.

    Interest accrues on the full outstanding balance. The final row pays off
    the remaining balance, which includes the balloon, and records the
    configured balloon amount.
    """

    name = "balloon"

    def supports(self, loan: Loan) -> bool:
        return loan.balloon_amount is not None

    def _validate(self, loan: Loan) -> Money:
        if loan.balloon_amount is None:
            raise InvalidInputError(f"Loan {loan.id} has no balloon amount")
        if loan.balloon_amount >= loan.principal:
            raise InvalidInputError(
                f"Balloon amount {loan.balloon_amount.to_string()} must be less than "
                f"principal {loan.principal.to_string()}"
            )
        return loan.balloon_amount

    def amortizing_amount(self, loan: Loan) -> Decimal:
        return loan.principal.amount - self._validate(loan).amount

    def calculate_schedule(self, loan: Loan) -> List[ScheduleRow]:
        payment = self.calculate_payment(loan)
        balance = loan.principal
        schedule = []

        for number in range(1, loan.months + 1):
            final = number == loan.months
            row, balance = self._row(
                number, loan, payment, balance, loan.monthly_rate, final=final,
                balloon_amount=loan.balloon_amount if final else None
            )
            schedule.append(row)

        return schedule


class VariableRateStrategy(AmortizationStrategy):
    """
    Schedule across consecutive rate periods.

    The payment is re-levelled over the remaining rows whenever the rate
    period covering a payment date changes, so payments are constant within
    each period.
    """

    name = "variable_rate"

    def supports(self, loan: Loan) -> bool:
        return bool(loan.rate_periods)

    def _initial_rate(self, loan: Loan) -> Decimal:
        period = loan.rate_period_on(loan.start_date)
        if period is None:
            raise InvalidInputError(f"Loan {loan.id} has no rate periods")
        return period.rate

    def payment_rate(self, loan: Loan) -> Decimal:
        return self._initial_rate(loan) / Decimal('12')

    def calculate_schedule(self, loan: Loan) -> List[ScheduleRow]:
        self._initial_rate(loan)

        balance = loan.principal
        schedule = []
        current_period_id: Optional[int] = None
        payment = Money.zero(loan.currency)
        monthly_rate = Decimal('0')

        for number in range(1, loan.months + 1):
            period = loan.rate_period_on(add_months(loan.start_date, number - 1))

            if number == 1 or period.id != current_period_id:
                current_period_id = period.id
                monthly_rate = period.rate / Decimal('12')
                remaining = loan.months - number + 1
                payment = Money(
                    calculate_level_payment(balance.amount, monthly_rate, remaining),
                    loan.currency
                )

            row, balance = self._row(
                number, loan, payment, balance, monthly_rate,
                final=(number == loan.months),
                rate_period_id=period.id, rate=period.rate
            )
            schedule.append(row)

        return schedule


DEFAULT_STRATEGIES = (BalloonPaymentStrategy(), VariableRateStrategy(), StandardStrategy())


def select_strategy(loan: Loan) -> AmortizationStrategy:
    """First strategy in priority order that supports the loan"""
    for strategy in DEFAULT_STRATEGIES:
        if strategy.supports(loan):
            return strategy
    raise InvalidInputError(f"No amortization strategy supports loan {loan.id}")
