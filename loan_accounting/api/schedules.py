"""
Payment schedule endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..config import LedgerConfig
from ..schedule import ScheduleStatus, filter_schedule_window, paginate
from ..service import LoanService
from .dependencies import get_loan_service, get_settings
from .schemas import schedule_entry_to_response


router = APIRouter()


@router.get("/{loan_id}/payment-schedules")
async def get_payment_schedules(
    loan_id: str,
    page: int = 1,
    page_size: Optional[int] = None,
    status: Optional[str] = None,
    include_all: bool = False,
    service: LoanService = Depends(get_loan_service),
    settings: LedgerConfig = Depends(get_settings)
):
    """Get the loan's payment schedule"""
    status_filter = None
    if status:
        try:
            status_filter = ScheduleStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown schedule status: {status}")
    
    entries = service.get_schedule(loan_id)
    
    if include_all:
        if status_filter is not None:
            entries = [e for e in entries if e.status == status_filter]
        return {
            "schedules": [schedule_entry_to_response(e) for e in entries],
            "total_count": len(entries)
        }
    
    visible = filter_schedule_window(
        entries,
        today=service.clock.today(),
        window_days=settings.schedule_window_days,
        status=status_filter
    )
    result = paginate(visible, page, page_size or settings.default_page_size)
    return {
        "schedules": [schedule_entry_to_response(e) for e in result.entries],
        "total_count": result.total_count,
        "page": result.page,
        "page_size": result.page_size,
        "total_pages": result.total_pages
    }
