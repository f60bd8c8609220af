"""
Schedule Projector

Joins calendar periods with the repayment ledger to produce a per-period
status view, and resolves the next due date. Display windowing and
pagination are separate filters over the full projection.

When several repayments declare the same period, the representative is the
one with the latest paid date; ties fall to the latest ``created_at`` and then
the greater id, so the choice does not depend on ledger order.
"""

from datetime import date, timedelta
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set
import math

from .errors import ComputationError
from .loans import Loan, LoanStatus, Repayment
from .periods import due_date


class ScheduleStatus(Enum):
    """Display status of a schedule period"""
    PENDING = "Pending"
    PAID = "Paid"
    INTEREST_ONLY = "InterestOnly"
    OVERDUE = "Overdue"


@dataclass
class ScheduleEntry:
    """One derived (never persisted) schedule period"""
    period: int
    due_date: date
    expected_amount: Decimal
    status: ScheduleStatus
    repayment: Optional[Repayment] = None
    
    @property
    def actual_payment_date(self) -> Optional[date]:
        return self.repayment.paid_date if self.repayment else None


@dataclass
class SchedulePage:
    """A page of schedule entries"""
    entries: List[ScheduleEntry]
    total_count: int
    page: int
    page_size: int
    
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0


def group_by_period(loan: Loan, repayments: Iterable[Repayment]) -> Dict[int, List[Repayment]]:
    """
    Group a loan's ledger by declared period.
    
    Raises:
        ComputationError: if the ledger holds entries that cannot belong to this loan
    """
    grouped: Dict[int, List[Repayment]] = {}
    for repayment in repayments:
        if repayment.loan_id != loan.id:
            raise ComputationError(
                f"Repayment {repayment.id} belongs to loan {repayment.loan_id}, not {loan.id}",
                details={"loan_id": loan.id, "repayment_id": repayment.id}
            )
        if repayment.period < 1:
            raise ComputationError(
                f"Repayment {repayment.id} declares invalid period {repayment.period}",
                details={"loan_id": loan.id, "repayment_id": repayment.id}
            )
        if repayment.amount <= 0:
            raise ComputationError(
                f"Repayment {repayment.id} has non-positive amount {repayment.amount}",
                details={"loan_id": loan.id, "repayment_id": repayment.id}
            )
        grouped.setdefault(repayment.period, []).append(repayment)
    return grouped


def representative(repayments: List[Repayment]) -> Optional[Repayment]:
    """Latest repayment by paid date (then created_at, then id)"""
    if not repayments:
        return None
    return max(repayments, key=lambda r: (r.paid_date, r.created_at, r.id))


def full_payment_periods(loan: Loan, repayments: Iterable[Repayment]) -> Set[int]:
    """Periods that have at least one Full repayment"""
    grouped = group_by_period(loan, repayments)
    return {period for period, entries in grouped.items() if any(r.is_full for r in entries)}


def project(loan: Loan, repayments: Iterable[Repayment],
            today: Optional[date] = None) -> List[ScheduleEntry]:
    """
    Full schedule for periods 1..duration.
    
    Args:
        loan: Loan whose terms define the calendar
        repayments: The loan's complete repayment ledger
        today: Reference date for the Overdue status (defaults to date.today())
        
    Returns:
        One ScheduleEntry per period, in period order
    """
    if today is None:
        today = date.today()
    
    grouped = group_by_period(loan, repayments)
    schedule = []
    
    for period in range(1, loan.duration + 1):
        period_due = due_date(loan.disbursement_date, loan.repayment_type, period)
        chosen = representative(grouped.get(period, []))
        
        if chosen is not None:
            status = ScheduleStatus.PAID if chosen.is_full else ScheduleStatus.INTEREST_ONLY
        elif period_due < today:
            status = ScheduleStatus.OVERDUE
        else:
            status = ScheduleStatus.PENDING
        
        schedule.append(ScheduleEntry(
            period=period,
            due_date=period_due,
            expected_amount=loan.installment_amount,
            status=status,
            repayment=chosen
        ))
    
    return schedule


def filter_schedule_window(
    entries: Iterable[ScheduleEntry],
    today: date,
    window_days: int = 7,
    status: Optional[ScheduleStatus] = None
) -> List[ScheduleEntry]:
    """
    Display window over a full projection: every settled or past-due period
    plus those falling due within ``window_days``, newest period first.
    """
    horizon = today + timedelta(days=window_days)
    visible = [
        entry for entry in entries
        if entry.status in (ScheduleStatus.PAID, ScheduleStatus.INTEREST_ONLY, ScheduleStatus.OVERDUE)
        or entry.due_date <= horizon
    ]
    if status is not None:
        visible = [entry for entry in visible if entry.status == status]
    visible.sort(key=lambda entry: entry.period, reverse=True)
    return visible


def paginate(entries: List[ScheduleEntry], page: int = 1, page_size: int = 10) -> SchedulePage:
    """Slice entries into a 1-based page"""
    page = max(1, page)
    page_size = max(1, page_size)
    start = (page - 1) * page_size
    return SchedulePage(
        entries=entries[start:start + page_size],
        total_count=len(entries),
        page=page,
        page_size=page_size
    )


def next_due(loan: Loan, repayments: Iterable[Repayment]) -> Optional[date]:
    """
    Due date of the earliest period without a Full repayment.
    
    Returns None when the loan is completed or every period is fully paid.
    """
    if loan.status == LoanStatus.COMPLETED or loan.remaining_amount <= 0:
        return None
    
    paid_periods = full_payment_periods(loan, repayments)
    for period in range(1, loan.duration + 1):
        if period not in paid_periods:
            return due_date(loan.disbursement_date, loan.repayment_type, period)
    return None
