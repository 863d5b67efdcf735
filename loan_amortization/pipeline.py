"""
Event Pipeline Module

Routes loan events to their handlers. Handlers are registered with a
priority and an optional predicate; the registry is kept sorted so lookups
and batch processing follow priority order.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .loans import Loan
from .events import LoanEvent
from .handlers import (
    EventHandler, GracePeriodHandler, SkipPaymentHandler, ExtraPaymentHandler,
    PartialPaymentHandler, RateChangeHandler, ArrearsPaymentHandler
)
from .holidays import PaymentHolidayHandler
from .recalculation import ScheduleRecalculationService
from .config import AmortizationConfig, get_config
from .logging_config import log_action
from .exceptions import UnsupportedEventError


EventPredicate = Callable[[LoanEvent], bool]


@dataclass(frozen=True)
class HandlerRegistration:
    """Handler entry in the pipeline registry"""
    handler: EventHandler
    priority: int
    predicate: EventPredicate

    def matches(self, event: LoanEvent) -> bool:
        return self.predicate(event)


class EventPipeline:
    """Priority-ordered registry of loan event handlers"""

    def __init__(self, recalculation: Optional[ScheduleRecalculationService] = None):
        self._registrations: List[HandlerRegistration] = []
        self.recalculation = recalculation or ScheduleRecalculationService()
        self.logger = logging.getLogger("loan_amortization.pipeline")

    @classmethod
    def default(cls, config: Optional[AmortizationConfig] = None) -> 'EventPipeline':
        """Pipeline with every built-in handler registered"""
        config = config or get_config()
        pipeline = cls()
        for handler_class in (GracePeriodHandler, SkipPaymentHandler, ExtraPaymentHandler,
                              PaymentHolidayHandler, RateChangeHandler, PartialPaymentHandler,
                              ArrearsPaymentHandler):
            pipeline.register(handler_class(config=config, recalculation=pipeline.recalculation))
        return pipeline

    def register(self, handler: EventHandler, priority: Optional[int] = None,
                 predicate: Optional[EventPredicate] = None) -> None:
        """
        Add a handler to the registry.

        Args:
            handler: Handler to register
            priority: Overrides ``handler.get_priority()``
            predicate: Overrides ``handler.supports``
        """
        registration = HandlerRegistration(
            handler=handler,
            priority=handler.get_priority() if priority is None else priority,
            predicate=predicate or handler.supports,
        )
        self._registrations.append(registration)
        # Stable: equal priorities keep registration order
        self._registrations.sort(key=lambda r: r.priority)
        self.logger.debug(
            f"Registered {type(handler).__name__} with priority {registration.priority}"
        )

    @property
    def registrations(self) -> List[HandlerRegistration]:
        return list(self._registrations)

    def priorities(self) -> Dict[str, int]:
        """Priority per registered handler class name"""
        return {type(r.handler).__name__: r.priority for r in self._registrations}

    def find_registration(self, event: LoanEvent) -> HandlerRegistration:
        for registration in self._registrations:
            if registration.matches(event):
                return registration
        raise UnsupportedEventError(f"No handler registered for event type {event.type_name}")

    def handler_for(self, event: LoanEvent) -> EventHandler:
        return self.find_registration(event).handler

    def dispatch(self, loan: Loan, event: LoanEvent) -> Loan:
        """Apply a single event and return the updated loan"""
        try:
            handler = self.handler_for(event)
        except UnsupportedEventError:
            log_action(
                self.logger, "warning", f"Unsupported event {event.type_name} for loan {loan.id}",
                loan_id=loan.id, action="event_unsupported", event_type=event.type_name
            )
            raise

        self.logger.debug(f"Dispatching {event.type_name} for loan {loan.id} to {type(handler).__name__}")
        return handler.handle(loan, event)

    def process(self, loan: Loan, events: Iterable[LoanEvent]) -> Loan:
        """
        Apply several events in order of event date, then handler priority.

        Events are applied one after another, each to the loan produced by the
        previous one. An error stops processing; the input loan is unchanged.
        """
        keyed = []
        for index, event in enumerate(events):
            registration = self.find_registration(event)
            keyed.append((event.event_date, registration.priority, index, event))
        keyed.sort(key=lambda item: item[:3])

        current = loan
        for _, _, _, event in keyed:
            current = self.dispatch(current, event)

        log_action(
            self.logger, "info", f"Processed {len(keyed)} events for loan {loan.id}",
            loan_id=loan.id, action="batch_processed",
            extra={'events': [item[3].type_name for item in keyed]}
        )
        return current

    def preview(self, loan: Loan, event: LoanEvent) -> Dict[str, Any]:
        """Impact an event would have, leaving the loan as it is"""
        updated = self.dispatch(loan, event)
        service = self.recalculation

        original_interest = service.calculate_total_interest(loan)
        new_interest = service.calculate_total_interest(updated)

        return {
            'loan_id': loan.id,
            'event_type': event.type_name,
            'original_balance': loan.current_balance,
            'new_balance': updated.current_balance,
            'balance_change': updated.current_balance - loan.current_balance,
            'original_months': loan.months,
            'new_months': updated.months,
            'months_change': updated.months - loan.months,
            'original_payment': service.calculate_monthly_payment(loan),
            'new_payment': service.calculate_monthly_payment(updated),
            'original_total_interest': original_interest,
            'new_total_interest': new_interest,
            'interest_savings': original_interest - new_interest,
        }
