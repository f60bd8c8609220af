"""
Loan Module

Loan and repayment records, their lifecycle enums, the installment formula
used at origination, and the conversion to and from storage dictionaries.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import datetime, date
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum

from .storage import StorageRecord
from .errors import ComputationError


CENT = Decimal('0.01')
ZERO = Decimal('0')


def quantize_money(amount: Decimal) -> Decimal:
    """Round an amount to cents"""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class RepaymentType(Enum):
    """Payment cadence of a loan"""
    MONTHLY = "Monthly"
    WEEKLY = "Weekly"


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "Active"          # Repayments expected
    COMPLETED = "Completed"    # Remaining amount reached zero
    DEFAULTED = "Defaulted"    # Assigned externally, never derived


class PaymentType(Enum):
    """Kinds of repayment"""
    FULL = "full"                    # Reduces the remaining amount
    INTEREST_ONLY = "interestOnly"   # Covers the period's interest only


def calculate_installment_amount(
    principal_amount: Decimal,
    interest_rate: Decimal,
    duration: int,
    repayment_type: RepaymentType
) -> Decimal:
    """
    Expected payment per period at origination.
    
    Monthly loans repay principal/duration plus a flat per-month interest
    (``interest_rate`` is an amount, not a percentage). Weekly loans embed the
    interest by collecting principal over one week fewer than the duration.
    """
    if repayment_type == RepaymentType.MONTHLY:
        installment = principal_amount / Decimal(duration) + interest_rate
    else:
        installment = principal_amount / Decimal(max(1, duration - 1))
    return quantize_money(installment)


@dataclass
class Loan(StorageRecord):
    """Loan terms plus the state derived from its repayment ledger"""
    borrower_name: str
    principal_amount: Decimal
    interest_rate: Decimal              # Flat interest per month for Monthly loans
    repayment_type: RepaymentType
    duration: int                       # Number of periods
    disbursement_date: date             # Period-0 anchor
    installment_amount: Decimal
    document_charge: Decimal = ZERO
    contact: Optional[str] = None
    purpose: Optional[str] = None
    owner_id: Optional[str] = None
    
    # Derived state
    remaining_amount: Optional[Decimal] = None
    status: LoanStatus = LoanStatus.ACTIVE
    overdue_amount: Decimal = ZERO
    missed_payments: int = 0
    next_payment_date: Optional[date] = None
    
    def __post_init__(self):
        if self.remaining_amount is None:
            self.remaining_amount = self.principal_amount
    
    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE
    
    @property
    def is_completed(self) -> bool:
        return self.status == LoanStatus.COMPLETED
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert loan to dictionary"""
        result = super().to_dict()
        result['repayment_type'] = self.repayment_type.value
        result['status'] = self.status.value
        result['disbursement_date'] = self.disbursement_date.isoformat()
        result['next_payment_date'] = (
            self.next_payment_date.isoformat() if self.next_payment_date else None
        )
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        """Convert dictionary to loan"""
        try:
            next_payment_date = data.get('next_payment_date')
            return cls(
                id=data['id'],
                created_at=datetime.fromisoformat(data['created_at']),
                updated_at=datetime.fromisoformat(data['updated_at']),
                borrower_name=data['borrower_name'],
                principal_amount=Decimal(data['principal_amount']),
                interest_rate=Decimal(data['interest_rate']),
                repayment_type=RepaymentType(data['repayment_type']),
                duration=int(data['duration']),
                disbursement_date=date.fromisoformat(data['disbursement_date']),
                installment_amount=Decimal(data['installment_amount']),
                document_charge=Decimal(data.get('document_charge', '0')),
                contact=data.get('contact'),
                purpose=data.get('purpose'),
                owner_id=data.get('owner_id'),
                remaining_amount=Decimal(data['remaining_amount']),
                status=LoanStatus(data['status']),
                overdue_amount=Decimal(data.get('overdue_amount', '0')),
                missed_payments=int(data.get('missed_payments', 0)),
                next_payment_date=date.fromisoformat(next_payment_date) if next_payment_date else None
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise ComputationError(
                f"Malformed loan record {data.get('id')}: {e}",
                details={"loan_id": data.get('id')}
            ) from e


@dataclass
class Repayment(StorageRecord):
    """A single repayment event; immutable once recorded, but deletable"""
    loan_id: str
    amount: Decimal
    paid_date: date
    payment_type: PaymentType
    period: int                         # Schedule period this repayment satisfies
    
    @property
    def is_full(self) -> bool:
        return self.payment_type == PaymentType.FULL
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert repayment to dictionary"""
        result = super().to_dict()
        result['payment_type'] = self.payment_type.value
        result['paid_date'] = self.paid_date.isoformat()
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Repayment':
        """Convert dictionary to repayment"""
        try:
            period = data['period']
            if period is None:
                raise ValueError("repayment has no period")
            return cls(
                id=data['id'],
                created_at=datetime.fromisoformat(data['created_at']),
                updated_at=datetime.fromisoformat(data['updated_at']),
                loan_id=data['loan_id'],
                amount=Decimal(data['amount']),
                paid_date=date.fromisoformat(data['paid_date']),
                payment_type=PaymentType(data['payment_type']),
                period=int(period)
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise ComputationError(
                f"Malformed repayment record {data.get('id')}: {e}",
                details={"repayment_id": data.get('id'), "loan_id": data.get('loan_id')}
            ) from e


@dataclass(frozen=True)
class LoanDerivedState:
    """The fields recomputed from the ledger after every mutation"""
    remaining_amount: Decimal
    status: LoanStatus
    next_payment_date: Optional[date]
    overdue_amount: Decimal
    missed_payments: int
    
    @classmethod
    def of(cls, loan: Loan) -> 'LoanDerivedState':
        return cls(
            remaining_amount=loan.remaining_amount,
            status=loan.status,
            next_payment_date=loan.next_payment_date,
            overdue_amount=loan.overdue_amount,
            missed_payments=loan.missed_payments
        )
    
    def apply_to(self, loan: Loan) -> None:
        loan.remaining_amount = self.remaining_amount
        loan.status = self.status
        loan.next_payment_date = self.next_payment_date
        loan.overdue_amount = self.overdue_amount
        loan.missed_payments = self.missed_payments
