"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Dict

from pydantic_settings import BaseSettings


class AmortizationConfig(BaseSettings):
    """Amortization engine configuration"""

    # Money handling
    default_currency: str = "USD"
    balance_tolerance: Decimal = Decimal("0.02")  # Allowed drift on schedule invariants

    # Business rules
    max_skip_payments: int = 12
    skip_payment_penalty_rate: Decimal = Decimal("0.02")  # Of balance / months, per skip
    max_holiday_months: int = 12

    # Handler priorities (lower runs earlier). These are integrator-owned:
    # the defaults reproduce the grace/skip/extra ordering and put partial
    # payments and arrears clearing after them.
    grace_period_priority: int = 10
    skip_payment_priority: int = 20
    extra_payment_priority: int = 30
    payment_holiday_priority: int = 40
    rate_change_priority: int = 50
    partial_payment_priority: int = 60
    arrears_payment_priority: int = 100

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    class Config:
        env_prefix = "AMORTIZATION_"
        env_file = ".env"
        case_sensitive = False

    def handler_priorities(self) -> Dict[str, int]:
        """Priority per event type, as used by the event pipeline"""
        return {
            "grace_period": self.grace_period_priority,
            "skip_payment": self.skip_payment_priority,
            "extra_payment": self.extra_payment_priority,
            "payment_holiday": self.payment_holiday_priority,
            "rate_change": self.rate_change_priority,
            "partial_payment": self.partial_payment_priority,
            "arrears_payment": self.arrears_payment_priority,
        }


# Global configuration instance
config = AmortizationConfig()


def get_config() -> AmortizationConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> AmortizationConfig:
    """Reload configuration from environment"""
    global config
    config = AmortizationConfig()
    return config
