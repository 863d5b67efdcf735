"""Exception hierarchy for the amortization engine."""


class AmortizationError(Exception):
    """Base exception for all amortization engine errors."""


class InvalidInputError(AmortizationError, ValueError):
    """Raised for non-positive, excessive or otherwise invalid amounts and terms."""


class SequencingError(AmortizationError):
    """Raised when an event reaches the wrong handler or arrives out of order.

    A "partial" payment that exceeds the regular scheduled amount is the
    typical case: it has to be recorded as an extra payment instead.
    """


class HolidayConfigurationError(AmortizationError):
    """Raised when a payment holiday that failed validation is applied."""


class UnsupportedEventError(AmortizationError):
    """Raised when no registered handler supports an event type."""
