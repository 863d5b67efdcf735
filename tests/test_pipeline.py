"""
Test suite for the event pipeline

Tests handler registration and priorities, dispatch, batch processing and
impact previews.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_amortization.currency import Money
from loan_amortization.loans import Loan
from loan_amortization.events import LoanEvent, LoanEventType
from loan_amortization.handlers import EventHandler, ExtraPaymentHandler
from loan_amortization.pipeline import EventPipeline
from loan_amortization.config import AmortizationConfig
from loan_amortization.exceptions import UnsupportedEventError, InvalidInputError


def make_loan(**overrides):
    fields = dict(
        id="LOAN-1",
        principal=Money(Decimal('10000')),
        annual_rate=Decimal('0.05'),
        months=60,
        start_date=date(2024, 1, 1),
    )
    fields.update(overrides)
    return Loan(**fields)


class RecordingHandler(EventHandler):
    """Handler that records the events it sees"""

    event_types = tuple(LoanEventType)
    priority_key = "extra_payment"

    def __init__(self, seen, **kwargs):
        super().__init__(**kwargs)
        self.seen = seen

    def handle(self, loan, event):
        self.seen.append(event.type_name)
        return loan


class TestRegistry:
    """Test handler registration"""

    def test_default_priorities(self):
        pipeline = EventPipeline.default()

        assert pipeline.priorities() == {
            'GracePeriodHandler': 10,
            'SkipPaymentHandler': 20,
            'ExtraPaymentHandler': 30,
            'PaymentHolidayHandler': 40,
            'RateChangeHandler': 50,
            'PartialPaymentHandler': 60,
            'ArrearsPaymentHandler': 100,
        }

    def test_registry_sorted_by_priority(self):
        priorities = [r.priority for r in EventPipeline.default().registrations]
        assert priorities == sorted(priorities)

    def test_priorities_from_config(self):
        config = AmortizationConfig(extra_payment_priority=5)
        pipeline = EventPipeline.default(config)

        assert pipeline.priorities()['ExtraPaymentHandler'] == 5
        assert isinstance(pipeline.registrations[0].handler, ExtraPaymentHandler)

    def test_explicit_priority_and_predicate(self):
        seen = []
        pipeline = EventPipeline.default()
        pipeline.register(
            RecordingHandler(seen), priority=1,
            predicate=lambda e: e.event_type == LoanEventType.EXTRA_PAYMENT
        )

        loan = make_loan()
        result = pipeline.dispatch(loan, LoanEvent(LoanEventType.EXTRA_PAYMENT, Decimal('500'), date(2024, 1, 1)))

        assert seen == ['extra_payment']
        assert result is loan


class TestDispatch:
    """Test routing single events"""

    def setup_method(self):
        self.pipeline = EventPipeline.default()
        self.loan = make_loan()

    def test_routes_to_handler(self):
        event = LoanEvent(LoanEventType.SKIP_PAYMENT, Decimal('1'), date(2024, 1, 1))
        updated = self.pipeline.dispatch(self.loan, event)

        assert updated.months == 61
        assert updated.current_balance == Money('10003.33')

    def test_unsupported_event(self):
        event = LoanEvent(LoanEventType.ACCRUAL, Decimal('0'), date(2024, 1, 1))
        with pytest.raises(UnsupportedEventError, match="accrual"):
            self.pipeline.dispatch(self.loan, event)

    def test_handler_errors_propagate(self):
        event = LoanEvent(LoanEventType.EXTRA_PAYMENT, Decimal('0'), date(2024, 1, 1))
        with pytest.raises(InvalidInputError):
            self.pipeline.dispatch(self.loan, event)

    def test_handler_for(self):
        event = LoanEvent(LoanEventType.EXTRA_PAYMENT, Decimal('1'), date(2024, 1, 1))
        assert isinstance(self.pipeline.handler_for(event), ExtraPaymentHandler)


class TestProcess:
    """Test batch processing order"""

    def test_ordered_by_date_then_priority(self):
        seen = []
        pipeline = EventPipeline()
        config = AmortizationConfig()
        for event_type, key in ((LoanEventType.GRACE_PERIOD, 'grace_period'),
                                (LoanEventType.EXTRA_PAYMENT, 'extra_payment'),
                                (LoanEventType.SKIP_PAYMENT, 'skip_payment')):
            handler = RecordingHandler(seen, config=config)
            pipeline.register(
                handler, priority=config.handler_priorities()[key],
                predicate=lambda e, t=event_type: e.event_type == t
            )

        events = [
            LoanEvent(LoanEventType.EXTRA_PAYMENT, Decimal('100'), date(2024, 3, 1)),
            LoanEvent(LoanEventType.SKIP_PAYMENT, Decimal('1'), date(2024, 3, 1)),
            LoanEvent(LoanEventType.GRACE_PERIOD, Decimal('1'), date(2024, 3, 1)),
            LoanEvent(LoanEventType.EXTRA_PAYMENT, Decimal('100'), date(2024, 2, 1)),
        ]
        pipeline.process(make_loan(), events)

        assert seen == ['extra_payment', 'grace_period', 'skip_payment', 'extra_payment']

    def test_events_accumulate(self):
        pipeline = EventPipeline.default()
        loan = make_loan()
        events = [
            LoanEvent(LoanEventType.EXTRA_PAYMENT, Decimal('500'), date(2024, 2, 1)),
            LoanEvent(LoanEventType.EXTRA_PAYMENT, Decimal('500'), date(2024, 3, 1)),
        ]
        updated = pipeline.process(loan, events)

        assert updated.current_balance == Money('9000.00')
        assert loan.current_balance == Money('10000')

    def test_unsupported_event_stops_batch(self):
        pipeline = EventPipeline.default()
        events = [
            LoanEvent(LoanEventType.EXTRA_PAYMENT, Decimal('500'), date(2024, 2, 1)),
            LoanEvent(LoanEventType.ACCRUAL, Decimal('0'), date(2024, 3, 1)),
        ]
        with pytest.raises(UnsupportedEventError):
            pipeline.process(make_loan(), events)


class TestPreview:
    """Test impact previews"""

    def test_extra_payment_impact(self):
        pipeline = EventPipeline.default()
        loan = make_loan()
        impact = pipeline.preview(loan, LoanEvent(LoanEventType.EXTRA_PAYMENT, Decimal('500'), date(2024, 1, 1)))

        assert impact['original_balance'] == Money('10000')
        assert impact['new_balance'] == Money('9500')
        assert impact['balance_change'] == Money('-500')
        assert impact['original_months'] == 60
        assert impact['months_change'] == -3
        assert impact['original_payment'] == Money('188.71')
        assert impact['interest_savings'].is_positive()
        assert loan.current_balance == Money('10000')
