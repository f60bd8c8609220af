"""
Overdue/Missed Calculator

The single algorithm that derives a loan's overdue amount and missed payment
count. Every period whose due date is on or before ``as_of`` (capped at the
loan's duration) is checked:

- a Full repayment for the period settles it;
- an InterestOnly repayment leaves the principal portion overdue;
- no repayment leaves the whole installment overdue.

Each unsettled period counts as one missed payment.
"""

from datetime import date
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from .errors import ComputationError
from .loans import Loan, LoanStatus, Repayment, RepaymentType, ZERO, quantize_money
from .periods import periods_elapsed
from .schedule import group_by_period


@dataclass(frozen=True)
class OverdueState:
    """Derived overdue totals"""
    overdue_amount: Decimal
    missed_payments: int


NO_OVERDUE = OverdueState(overdue_amount=ZERO, missed_payments=0)


@dataclass
class OverdueResult:
    """Success/failure wrapper so a zero result is never confused with a failed one"""
    loan_id: str
    state: Optional[OverdueState] = None
    error: Optional[ComputationError] = None
    
    @property
    def ok(self) -> bool:
        return self.error is None
    
    def unwrap(self) -> OverdueState:
        if self.error is not None:
            raise self.error
        return self.state


def principal_portion(loan: Loan) -> Decimal:
    """
    Principal part of one installment.
    
    Monthly loans carry a flat per-period interest equal to ``interest_rate``;
    Weekly loans spread the principal over ``duration - 1`` periods.
    """
    if loan.repayment_type == RepaymentType.MONTHLY:
        portion = loan.installment_amount - loan.interest_rate
    else:
        if loan.duration < 2:
            raise ComputationError(
                f"Weekly loan {loan.id} needs a duration of at least 2 periods",
                details={"loan_id": loan.id, "duration": loan.duration}
            )
        portion = quantize_money(loan.principal_amount / Decimal(loan.duration - 1))
    
    if portion < 0:
        raise ComputationError(
            f"Loan {loan.id} has a negative principal portion {portion}",
            details={"loan_id": loan.id}
        )
    return portion


def compute_overdue_state(loan: Loan, repayments: Iterable[Repayment], as_of: date) -> OverdueState:
    """
    Compute overdue amount and missed payments as of a date.
    
    Args:
        loan: Loan terms and current status
        repayments: The loan's complete repayment ledger
        as_of: Evaluation date
        
    Returns:
        OverdueState; zero for loans that are not Active
        
    Raises:
        ComputationError: if the ledger or terms violate an invariant
    """
    if loan.status != LoanStatus.ACTIVE:
        return NO_OVERDUE
    
    expected_periods = min(
        periods_elapsed(as_of, loan.disbursement_date, loan.repayment_type),
        loan.duration
    )
    grouped = group_by_period(loan, repayments)
    
    overdue_amount = ZERO
    missed_payments = 0
    
    for period in range(1, expected_periods + 1):
        entries = grouped.get(period, [])
        if any(r.is_full for r in entries):
            continue
        if entries:
            # Only interest-only repayments recorded for this period
            overdue_amount += principal_portion(loan)
        else:
            overdue_amount += loan.installment_amount
        missed_payments += 1
    
    if missed_payments < 0 or overdue_amount < 0:
        raise ComputationError(
            f"Negative overdue state for loan {loan.id}",
            details={"loan_id": loan.id}
        )
    
    return OverdueState(
        overdue_amount=quantize_money(overdue_amount),
        missed_payments=missed_payments
    )


def evaluate_overdue_state(loan: Loan, repayments: Iterable[Repayment], as_of: date) -> OverdueResult:
    """Run compute_overdue_state and capture a ComputationError as a failed result"""
    try:
        return OverdueResult(loan_id=loan.id, state=compute_overdue_state(loan, repayments, as_of))
    except ComputationError as e:
        return OverdueResult(loan_id=loan.id, error=e)
