"""
Loan endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ..config import LedgerConfig
from ..service import LoanService
from .dependencies import get_loan_service, get_settings
from .schemas import CreateLoanRequest, UpdateLoanTermsRequest, loan_to_response


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Create a new loan"""
    loan = service.create_loan(
        borrower_name=request.borrower_name,
        principal_amount=request.principal_amount,
        interest_rate=request.interest_rate,
        repayment_type=request.repayment_type,
        duration=request.duration,
        disbursement_date=request.disbursement_date,
        installment_amount=request.installment_amount,
        document_charge=request.document_charge,
        contact=request.contact,
        purpose=request.purpose
    )
    return loan_to_response(loan)


@router.post("/update-overdue")
async def refresh_overdue(
    api_key: Optional[str] = None,
    as_of: Optional[date] = None,
    service: LoanService = Depends(get_loan_service),
    settings: LedgerConfig = Depends(get_settings)
):
    """Recompute overdue amounts for every active loan"""
    if settings.overdue_refresh_api_key and api_key != settings.overdue_refresh_api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")
    
    report = service.refresh_overdue_states(as_of)
    return {"message": "Overdue amounts updated", **report}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    service: LoanService = Depends(get_loan_service)
):
    """Get loan details"""
    return loan_to_response(service.get_loan(loan_id))


@router.patch("/{loan_id}")
async def update_loan_terms(
    loan_id: str,
    request: UpdateLoanTermsRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Edit loan terms and recompute its state"""
    loan = service.update_loan_terms(
        loan_id,
        principal_amount=request.principal_amount,
        interest_rate=request.interest_rate,
        document_charge=request.document_charge,
        repayment_type=request.repayment_type,
        duration=request.duration,
        disbursement_date=request.disbursement_date,
        installment_amount=request.installment_amount,
        recalculate_installment=request.recalculate_installment
    )
    return loan_to_response(loan)


@router.post("/{loan_id}/default")
async def mark_defaulted(
    loan_id: str,
    service: LoanService = Depends(get_loan_service)
):
    """Mark a loan as defaulted"""
    return loan_to_response(service.mark_defaulted(loan_id))


@router.post("/{loan_id}/update-overdue")
async def recompute_loan(
    loan_id: str,
    as_of: Optional[date] = None,
    service: LoanService = Depends(get_loan_service)
):
    """Recompute one loan's derived state"""
    return loan_to_response(service.recompute(loan_id, as_of))


@router.get("/{loan_id}/summary")
async def get_loan_summary(
    loan_id: str,
    service: LoanService = Depends(get_loan_service)
):
    """Repayment totals and interest collected"""
    summary = service.loan_summary(loan_id)
    for key in ("full_paid", "interest_only_paid", "interest_collected", "profit", "remaining_amount"):
        summary[key] = str(summary[key])
    summary["final_due_date"] = summary["final_due_date"].isoformat()
    return summary
