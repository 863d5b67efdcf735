"""
Event Payload Schemas Module

Pydantic models for raw loan event payloads and a validator that reports
field errors before an event reaches the pipeline.
"""

from decimal import Decimal
from datetime import datetime, date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .loans import Loan
from .events import LoanEvent, LoanEventType
from .config import AmortizationConfig, get_config


DATE_FORMAT = "%Y-%m-%d"


class LoanEventRequest(BaseModel):
    """Raw loan event payload"""
    event_type: str = Field(..., description="Event type (extra_payment, skip_payment, ...)")
    event_date: str = Field(..., description="Event date as YYYY-MM-DD")
    amount: Optional[Decimal] = Field(None, description="Payment amount or month count")
    new_rate: Optional[Decimal] = Field(None, description="New annual rate for rate changes")
    months_to_skip: Optional[int] = Field(None, description="Months to skip or suspend")
    notes: Optional[str] = Field(None, description="Free text with optional key:value tags")
    loan_id: Optional[str] = None

    @field_validator('event_type')
    @classmethod
    def validate_event_type(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in LoanEventType.values():
            raise ValueError(f"Unsupported event type: {v}")
        return value

    @field_validator('event_date')
    @classmethod
    def validate_event_date(cls, v: str) -> str:
        try:
            datetime.strptime(v, DATE_FORMAT)
        except ValueError:
            raise ValueError(f"Invalid date format '{v}', expected YYYY-MM-DD")
        return v

    @field_validator('new_rate')
    @classmethod
    def validate_new_rate(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and (v < 0 or v > 1):
            raise ValueError("Rate must be between 0 and 1 (0-100%)")
        return v

    @field_validator('loan_id', mode='before')
    @classmethod
    def coerce_loan_id(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @property
    def parsed_date(self) -> date:
        return datetime.strptime(self.event_date, DATE_FORMAT).date()

    def to_event(self) -> LoanEvent:
        return LoanEvent(
            event_type=LoanEventType(self.event_type),
            amount=self.amount if self.amount is not None else Decimal('0'),
            event_date=self.parsed_date,
            new_rate=self.new_rate,
            months_to_skip=self.months_to_skip,
            notes=self.notes,
            loan_id=self.loan_id,
        )


class EventValidator:
    """
    Field-level validation of event payloads.

    ``validate`` never raises; it returns a mapping of field name to error
    message, empty when the payload is acceptable.
    """

    AMOUNT_REQUIRED = {
        LoanEventType.EXTRA_PAYMENT,
        LoanEventType.PARTIAL_PAYMENT,
        LoanEventType.ARREARS_PAYMENT,
    }
    MONTHS_REQUIRED = {
        LoanEventType.SKIP_PAYMENT,
        LoanEventType.SKIP_PAYMENTS,
        LoanEventType.GRACE_PERIOD,
        LoanEventType.PAYMENT_HOLIDAY,
    }

    def __init__(self, config: Optional[AmortizationConfig] = None):
        self.config = config or get_config()

    def get_supported_types(self) -> List[str]:
        return LoanEventType.values()

    def is_supported_type(self, event_type: str) -> bool:
        return event_type in LoanEventType.values()

    def validate(self, data: Dict[str, Any], loan: Optional[Loan] = None) -> Dict[str, str]:
        try:
            request = LoanEventRequest.model_validate(data)
        except ValidationError as exc:
            return self._field_errors(exc)

        errors: Dict[str, str] = {}
        event_type = LoanEventType(request.event_type)

        if loan is not None and request.parsed_date < loan.start_date:
            errors['event_date'] = "Event date cannot be before loan start date"

        if event_type in self.AMOUNT_REQUIRED:
            self._check_amount(request, event_type, loan, errors)
        if event_type in self.MONTHS_REQUIRED:
            self._check_months(request, event_type, errors)
        if event_type == LoanEventType.RATE_CHANGE and request.new_rate is None:
            errors['new_rate'] = "New rate is required for rate changes"

        return errors

    def _check_amount(self, request: LoanEventRequest, event_type: LoanEventType,
                      loan: Optional[Loan], errors: Dict[str, str]) -> None:
        amount = request.amount
        if amount is None:
            errors['amount'] = "Amount is required"
        elif event_type == LoanEventType.PARTIAL_PAYMENT:
            if amount < 0:
                errors['amount'] = "Amount cannot be negative"
        elif amount <= 0:
            errors['amount'] = "Amount must be greater than zero"
        elif (event_type == LoanEventType.EXTRA_PAYMENT and loan is not None
                and amount > loan.current_balance.amount):
            errors['amount'] = "Extra payment cannot exceed remaining balance"

    def _check_months(self, request: LoanEventRequest, event_type: LoanEventType,
                      errors: Dict[str, str]) -> None:
        field = 'months_to_skip'
        months = request.months_to_skip
        if months is None:
            if request.amount is None:
                errors[field] = "Number of months is required"
                return
            if request.amount != request.amount.to_integral_value():
                errors['amount'] = "Number of months must be a whole number"
                return
            field, months = 'amount', int(request.amount)

        if months < 1:
            errors[field] = "Must be at least 1 month"
        elif event_type in (LoanEventType.SKIP_PAYMENT, LoanEventType.SKIP_PAYMENTS):
            if months > self.config.max_skip_payments:
                errors[field] = f"Cannot skip more than {self.config.max_skip_payments} payments"
        elif event_type == LoanEventType.PAYMENT_HOLIDAY:
            if months > self.config.max_holiday_months:
                errors[field] = f"Payment holiday cannot exceed {self.config.max_holiday_months} months"

    def _field_errors(self, exc: ValidationError) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        for error in exc.errors():
            field = str(error['loc'][0]) if error['loc'] else '__root__'
            message = error['msg']
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            errors.setdefault(field, message)
        return errors
