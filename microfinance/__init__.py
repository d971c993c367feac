"""
Microfinance Lending Core

Back-office lending engine for microfinance institutions: loan origination,
repayment schedules, payment allocation and audit trails, with all
financial math done in Decimal.
"""

__version__ = "1.0.0"
