"""
Period Calendar

Maps a period index to its due date. Period 0 is the disbursement date;
period ``p`` falls ``p`` months (Monthly) or ``p`` weeks (Weekly) later.

Monthly due dates are always computed from the disbursement date rather than
chained from the previous due date, and clamp to the last day of the target
month: a loan disbursed on Jan 31 is due Feb 29 (leap year), Mar 31, Apr 30.
"""

import calendar
from datetime import date, timedelta

from .loans import RepaymentType


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the end of the target month"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_date(disbursement_date: date, repayment_type: RepaymentType, period: int) -> date:
    """Due date of ``period`` (1-based) for a loan disbursed on ``disbursement_date``"""
    if repayment_type == RepaymentType.MONTHLY:
        return add_months(disbursement_date, period)
    return disbursement_date + timedelta(days=7 * period)


def periods_elapsed(as_of: date, disbursement_date: date, repayment_type: RepaymentType) -> int:
    """
    Number of completed intervals between disbursement and ``as_of``.
    
    A period counts once its due date is on or before ``as_of``.
    """
    if as_of <= disbursement_date:
        return 0
    
    if repayment_type == RepaymentType.WEEKLY:
        return (as_of - disbursement_date).days // 7
    
    months = (as_of.year - disbursement_date.year) * 12 + (as_of.month - disbursement_date.month)
    # The clamped due date of the current month may still lie ahead of as_of
    if months > 0 and add_months(disbursement_date, months) > as_of:
        months -= 1
    return months
