"""
Loan Repayment Accounting Engine

Derives a loan's financial state (remaining balance, next due date, overdue
amount, missed payments, per-period schedule) from its terms and a ledger of
repayment events, using Decimal arithmetic and per-loan atomic updates.
"""

__version__ = "1.0.0"
