"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..loans import Loan, Repayment
from ..schedule import ScheduleEntry


class CreateLoanRequest(BaseModel):
    borrower_name: str
    principal_amount: Decimal
    interest_rate: Decimal = Field(Decimal('0'), description="Flat interest per period (Monthly loans)")
    repayment_type: str = Field(..., description="Monthly or Weekly")
    duration: int = Field(..., description="Number of periods")
    disbursement_date: date
    installment_amount: Optional[Decimal] = Field(None, description="Computed from the terms when omitted")
    document_charge: Decimal = Decimal('0')
    contact: Optional[str] = None
    purpose: Optional[str] = None


class UpdateLoanTermsRequest(BaseModel):
    principal_amount: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    document_charge: Optional[Decimal] = None
    repayment_type: Optional[str] = None
    duration: Optional[int] = None
    disbursement_date: Optional[date] = None
    installment_amount: Optional[Decimal] = None
    recalculate_installment: bool = False


class RepaymentRequest(BaseModel):
    amount: Decimal
    paid_date: date
    payment_type: str = Field("full", description="full or interestOnly")
    period: int


def loan_to_response(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "borrower_name": loan.borrower_name,
        "contact": loan.contact,
        "purpose": loan.purpose,
        "principal_amount": str(loan.principal_amount),
        "interest_rate": str(loan.interest_rate),
        "document_charge": str(loan.document_charge),
        "repayment_type": loan.repayment_type.value,
        "duration": loan.duration,
        "disbursement_date": loan.disbursement_date.isoformat(),
        "installment_amount": str(loan.installment_amount),
        "remaining_amount": str(loan.remaining_amount),
        "status": loan.status.value,
        "overdue_amount": str(loan.overdue_amount),
        "missed_payments": loan.missed_payments,
        "next_payment_date": loan.next_payment_date.isoformat() if loan.next_payment_date else None
    }


def repayment_to_response(repayment: Repayment) -> Dict[str, Any]:
    return {
        "id": repayment.id,
        "loan_id": repayment.loan_id,
        "amount": str(repayment.amount),
        "paid_date": repayment.paid_date.isoformat(),
        "payment_type": repayment.payment_type.value,
        "period": repayment.period
    }


def schedule_entry_to_response(entry: ScheduleEntry) -> Dict[str, Any]:
    return {
        "period": entry.period,
        "due_date": entry.due_date.isoformat(),
        "amount": str(entry.expected_amount),
        "status": entry.status.value,
        "actual_payment_date": entry.actual_payment_date.isoformat() if entry.actual_payment_date else None,
        "repayment": repayment_to_response(entry.repayment) if entry.repayment else None
    }
