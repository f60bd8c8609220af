"""Shared builders for loan and repayment records"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from loan_accounting.loans import Loan, LoanStatus, PaymentType, Repayment, RepaymentType


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def make_loan():
    """Monthly loan of 12000 over 12 months, installment 1100 (100 flat interest)"""
    def build(**overrides) -> Loan:
        fields = dict(
            id="LOAN001",
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
            borrower_name="Asha Raman",
            principal_amount=Decimal('12000'),
            interest_rate=Decimal('100'),
            repayment_type=RepaymentType.MONTHLY,
            duration=12,
            disbursement_date=date(2024, 1, 1),
            installment_amount=Decimal('1100'),
            status=LoanStatus.ACTIVE
        )
        fields.update(overrides)
        return Loan(**fields)
    return build


@pytest.fixture
def make_repayment():
    counter = iter(range(1, 10_000))
    
    def build(period: int, amount: str = '1100', paid_date: date = date(2024, 2, 1),
              payment_type: PaymentType = PaymentType.FULL, repayment_id: str = None,
              loan_id: str = "LOAN001", created_at: datetime = BASE_TIME) -> Repayment:
        return Repayment(
            id=repayment_id or f"REP{next(counter):04d}",
            created_at=created_at,
            updated_at=created_at,
            loan_id=loan_id,
            amount=Decimal(amount),
            paid_date=paid_date,
            payment_type=payment_type,
            period=period
        )
    return build
