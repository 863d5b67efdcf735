"""
Arrears Module

Amounts that fell due and were not paid, split into principal, interest and
penalty buckets. Payments against arrears follow a fixed waterfall: penalty
first, then interest, then principal.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field, replace
from typing import Optional

from .currency import Money, Currency, Numeric, money
from .exceptions import InvalidInputError


@dataclass(frozen=True)
class Arrears:
    """Outstanding overdue amounts for a loan"""
    loan_id: str
    principal_amount: Money
    interest_amount: Money
    penalty_amount: Optional[Money] = None
    days_overdue: int = 0
    id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.penalty_amount is None:
            object.__setattr__(self, 'penalty_amount', Money.zero(self.principal_amount.currency))

        for bucket in (self.principal_amount, self.interest_amount, self.penalty_amount):
            if bucket.is_negative():
                raise InvalidInputError("Arrears amounts cannot be negative")
            if bucket.currency != self.principal_amount.currency:
                raise InvalidInputError("Arrears buckets must share one currency")
        if self.days_overdue < 0:
            raise InvalidInputError("Days overdue cannot be negative")

    @property
    def currency(self) -> Currency:
        return self.principal_amount.currency

    @property
    def total_amount(self) -> Money:
        """Principal plus interest in arrears. Penalties are reported separately."""
        return self.principal_amount + self.interest_amount

    @property
    def total_due(self) -> Money:
        """Everything needed to clear the arrears, penalties included"""
        return self.total_amount + self.penalty_amount

    @property
    def is_cleared(self) -> bool:
        return (self.principal_amount.is_zero()
                and self.interest_amount.is_zero()
                and self.penalty_amount.is_zero())

    def apply_payment(self, amount: Numeric) -> 'Arrears':
        """
        Apply a payment through the waterfall.

        Args:
            amount: Payment towards the arrears

        Returns:
            New Arrears with the buckets reduced. Any surplus beyond
            ``total_due`` is not carried; see ``remainder_after``.

        Raises:
            InvalidInputError: If amount is negative
        """
        remaining = self._payment(amount)

        penalty_paid = remaining.min(self.penalty_amount)
        remaining = remaining - penalty_paid

        interest_paid = remaining.min(self.interest_amount)
        remaining = remaining - interest_paid

        principal_paid = remaining.min(self.principal_amount)

        return replace(
            self,
            penalty_amount=self.penalty_amount - penalty_paid,
            interest_amount=self.interest_amount - interest_paid,
            principal_amount=self.principal_amount - principal_paid,
        )

    def remainder_after(self, amount: Numeric) -> Money:
        """Part of ``amount`` left over once these arrears are cleared"""
        payment = self._payment(amount)
        if payment <= self.total_due:
            return Money.zero(self.currency)
        return payment - self.total_due

    def add_penalty(self, amount: Numeric) -> 'Arrears':
        penalty = self._payment(amount)
        return replace(self, penalty_amount=self.penalty_amount + penalty)

    def _payment(self, amount: Numeric) -> Money:
        value = money(amount, self.currency)
        if value.currency != self.currency:
            raise InvalidInputError(
                f"Cannot apply {value.currency.code} to {self.currency.code} arrears"
            )
        if value.is_negative():
            raise InvalidInputError(f"Amount cannot be negative, got {value.to_string()}")
        return value
