"""
Test suite for arrears module

Tests the penalty, interest, principal payment waterfall.
"""

import pytest
from decimal import Decimal

from loan_amortization.currency import Money, Currency
from loan_amortization.arrears import Arrears
from loan_amortization.exceptions import InvalidInputError


class TestArrears:
    """Test Arrears buckets and totals"""

    def setup_method(self):
        self.arrears = Arrears(
            loan_id="LOAN-1",
            principal_amount=Money('100.00'),
            interest_amount=Money('30.00'),
            penalty_amount=Money('10.00'),
            days_overdue=20,
        )

    def test_totals(self):
        """Test total excludes penalties and total_due includes them"""
        assert self.arrears.total_amount == Money('130.00')
        assert self.arrears.total_due == Money('140.00')
        assert not self.arrears.is_cleared

    def test_penalty_defaults_to_zero(self):
        arrears = Arrears("LOAN-1", Money('5'), Money('0'))
        assert arrears.penalty_amount == Money('0')

    def test_rejects_negative_buckets(self):
        with pytest.raises(InvalidInputError, match="cannot be negative"):
            Arrears("LOAN-1", Money('-1'), Money('0'))

    def test_rejects_mixed_currencies(self):
        with pytest.raises(InvalidInputError, match="one currency"):
            Arrears("LOAN-1", Money('1'), Money('1', Currency.EUR))


class TestWaterfall:
    """Test payment allocation order"""

    def setup_method(self):
        self.arrears = Arrears(
            loan_id="LOAN-1",
            principal_amount=Money('100.00'),
            interest_amount=Money('30.00'),
            penalty_amount=Money('10.00'),
        )

    def test_penalty_paid_first(self):
        result = self.arrears.apply_payment(Decimal('5'))

        assert result.penalty_amount == Money('5.00')
        assert result.interest_amount == Money('30.00')
        assert result.principal_amount == Money('100.00')

    def test_interest_paid_before_principal(self):
        result = self.arrears.apply_payment(Decimal('25'))

        assert result.penalty_amount.is_zero()
        assert result.interest_amount == Money('15.00')
        assert result.principal_amount == Money('100.00')

    def test_principal_paid_last(self):
        result = self.arrears.apply_payment(Decimal('90'))

        assert result.penalty_amount.is_zero()
        assert result.interest_amount.is_zero()
        assert result.principal_amount == Money('50.00')

    def test_full_payment_clears(self):
        result = self.arrears.apply_payment(Money('140.00'))
        assert result.is_cleared

    def test_surplus_is_reported_not_carried(self):
        result = self.arrears.apply_payment(Decimal('200'))

        assert result.is_cleared
        assert self.arrears.remainder_after(Decimal('200')) == Money('60.00')
        assert self.arrears.remainder_after(Decimal('100')) == Money('0')

    def test_original_unchanged(self):
        self.arrears.apply_payment(Decimal('140'))
        assert self.arrears.total_due == Money('140.00')

    def test_rejects_negative_payment(self):
        with pytest.raises(InvalidInputError, match="cannot be negative"):
            self.arrears.apply_payment(Decimal('-1'))

    def test_zero_payment_is_noop(self):
        assert self.arrears.apply_payment(Decimal('0')) == self.arrears

    def test_add_penalty(self):
        result = self.arrears.add_penalty(Decimal('2.50'))
        assert result.penalty_amount == Money('12.50')
        assert result.total_amount == Money('130.00')

    def test_add_negative_penalty_rejected(self):
        with pytest.raises(InvalidInputError):
            self.arrears.add_penalty(Decimal('-2'))
