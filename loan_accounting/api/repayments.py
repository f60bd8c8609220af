"""
Repayment endpoints
"""

from fastapi import APIRouter, Depends, status

from ..service import LoanService
from .dependencies import get_loan_service
from .schemas import RepaymentRequest, loan_to_response, repayment_to_response


router = APIRouter()


@router.get("/{loan_id}/repayments")
async def list_repayments(
    loan_id: str,
    service: LoanService = Depends(get_loan_service)
):
    """Get the loan's repayment ledger"""
    return [repayment_to_response(r) for r in service.get_repayments(loan_id)]


@router.post("/{loan_id}/repayments", status_code=status.HTTP_201_CREATED)
async def add_repayment(
    loan_id: str,
    request: RepaymentRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Record a repayment"""
    repayment = service.add_repayment(
        loan_id,
        amount=request.amount,
        paid_date=request.paid_date,
        payment_type=request.payment_type,
        period=request.period
    )
    return {
        "repayment": repayment_to_response(repayment),
        "loan": loan_to_response(service.get_loan(loan_id))
    }


@router.delete("/{loan_id}/repayments/{repayment_id}")
async def delete_repayment(
    loan_id: str,
    repayment_id: str,
    service: LoanService = Depends(get_loan_service)
):
    """Delete a repayment"""
    loan = service.delete_repayment(repayment_id, loan_id=loan_id)
    return {"message": "Repayment deleted", "loan": loan_to_response(loan)}
