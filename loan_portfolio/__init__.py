"""
Loan Portfolio Service

Tracks customers and interest-bearing loans, generates interest installment
schedules, records payments and manages the soft-delete/restore lifecycle.
"""

__version__ = "1.0.0"
