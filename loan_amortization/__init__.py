"""
Loan Amortization Engine

Amortization schedule generation (standard, balloon, variable rate) and the
loan event pipeline (extra, skipped and partial payments, grace periods,
payment holidays, rate changes) using Decimal money throughout.
"""

__version__ = "1.0.0"
