"""
Test suite for event payload validation

Tests the LoanEventRequest model and EventValidator field errors.
"""

import pytest
from decimal import Decimal
from datetime import date

from pydantic import ValidationError

from loan_amortization.currency import Money
from loan_amortization.loans import Loan
from loan_amortization.events import LoanEventType
from loan_amortization.schemas import LoanEventRequest, EventValidator


def make_loan():
    return Loan(
        id="LOAN-1",
        principal=Money(Decimal('25000')),
        annual_rate=Decimal('0.05'),
        months=60,
        start_date=date(2025, 1, 1),
    )


class TestLoanEventRequest:
    """Test payload model parsing"""

    def test_valid_payload(self):
        request = LoanEventRequest(event_type='Extra_Payment', event_date='2025-02-01', amount=500)

        assert request.event_type == 'extra_payment'
        assert request.amount == Decimal('500')
        assert request.parsed_date == date(2025, 2, 1)

    def test_to_event(self):
        request = LoanEventRequest(
            event_type='rate_change', event_date='2025-06-01', new_rate='0.035', loan_id=7
        )
        event = request.to_event()

        assert event.event_type == LoanEventType.RATE_CHANGE
        assert event.new_rate == Decimal('0.035')
        assert event.amount == Decimal('0')
        assert event.loan_id == '7'

    def test_bad_date_format(self):
        with pytest.raises(ValidationError, match="expected YYYY-MM-DD"):
            LoanEventRequest(event_type='extra_payment', event_date='02/01/2025', amount=500)

    def test_unknown_type(self):
        with pytest.raises(ValidationError, match="Unsupported event type"):
            LoanEventRequest(event_type='invalid_type', event_date='2025-02-01')


class TestEventValidator:
    """Test field error reporting"""

    def setup_method(self):
        self.validator = EventValidator()
        self.loan = make_loan()

    def test_extra_payment_valid(self):
        errors = self.validator.validate(
            {'event_type': 'extra_payment', 'event_date': '2025-02-01', 'amount': 500}, self.loan
        )
        assert errors == {}

    def test_extra_payment_exceeds_balance(self):
        errors = self.validator.validate(
            {'event_type': 'extra_payment', 'event_date': '2025-02-01', 'amount': 30000}, self.loan
        )
        assert 'amount' in errors

    def test_extra_payment_negative(self):
        errors = self.validator.validate(
            {'event_type': 'extra_payment', 'event_date': '2025-02-01', 'amount': -100}, self.loan
        )
        assert errors['amount'] == "Amount must be greater than zero"

    def test_extra_payment_missing_amount(self):
        errors = self.validator.validate(
            {'event_type': 'extra_payment', 'event_date': '2025-02-01'}, self.loan
        )
        assert 'amount' in errors

    def test_partial_payment_allows_zero(self):
        errors = self.validator.validate(
            {'event_type': 'partial_payment', 'event_date': '2025-02-01', 'amount': 0}, self.loan
        )
        assert errors == {}

    def test_skip_payment_valid(self):
        errors = self.validator.validate(
            {'event_type': 'skip_payment', 'event_date': '2025-02-01', 'months_to_skip': 2}, self.loan
        )
        assert errors == {}

    def test_skip_payment_exceeds_max(self):
        errors = self.validator.validate(
            {'event_type': 'skip_payment', 'event_date': '2025-02-01', 'months_to_skip': 13}, self.loan
        )
        assert errors['months_to_skip'] == "Cannot skip more than 12 payments"

    def test_fractional_month_amount(self):
        errors = self.validator.validate(
            {'event_type': 'skip_payment', 'event_date': '2025-02-01', 'amount': '12.9'}, self.loan
        )
        assert errors['amount'] == "Number of months must be a whole number"

    def test_fractional_months_to_skip(self):
        errors = self.validator.validate(
            {'event_type': 'grace_period', 'event_date': '2025-02-01', 'months_to_skip': 2.5}, self.loan
        )
        assert 'months_to_skip' in errors

    def test_holiday_exceeds_max(self):
        errors = self.validator.validate(
            {'event_type': 'payment_holiday', 'event_date': '2025-02-01', 'amount': 13}, self.loan
        )
        assert 'amount' in errors

    def test_rate_change_valid(self):
        errors = self.validator.validate(
            {'event_type': 'rate_change', 'event_date': '2025-06-01', 'new_rate': 0.035}, self.loan
        )
        assert errors == {}

    def test_rate_change_invalid_rate(self):
        errors = self.validator.validate(
            {'event_type': 'rate_change', 'event_date': '2025-06-01', 'new_rate': 1.5}, self.loan
        )
        assert 'new_rate' in errors

    def test_rate_change_missing_rate(self):
        errors = self.validator.validate(
            {'event_type': 'rate_change', 'event_date': '2025-06-01'}, self.loan
        )
        assert 'new_rate' in errors

    def test_event_date_before_loan_start(self):
        errors = self.validator.validate(
            {'event_type': 'extra_payment', 'event_date': '2024-12-01', 'amount': 500}, self.loan
        )
        assert 'event_date' in errors

    def test_invalid_date_format(self):
        errors = self.validator.validate(
            {'event_type': 'extra_payment', 'event_date': '02/01/2025', 'amount': 500}, self.loan
        )
        assert 'event_date' in errors
        assert not errors['event_date'].startswith("Value error")

    def test_missing_type(self):
        errors = self.validator.validate({'event_date': '2025-02-01', 'amount': 500}, self.loan)
        assert 'event_type' in errors

    def test_invalid_type(self):
        errors = self.validator.validate(
            {'event_type': 'invalid_type', 'event_date': '2025-02-01', 'amount': 500}, self.loan
        )
        assert errors['event_type'] == "Unsupported event type: invalid_type"

    def test_without_loan(self):
        errors = self.validator.validate(
            {'event_type': 'extra_payment', 'event_date': '2020-01-01', 'amount': 30000}
        )
        assert errors == {}

    def test_supported_types(self):
        types = self.validator.get_supported_types()

        assert 'extra_payment' in types
        assert 'skip_payment' in types
        assert 'rate_change' in types
        assert self.validator.is_supported_type('extra_payment')
        assert not self.validator.is_supported_type('invalid_type')
