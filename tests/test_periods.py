"""
Tests for the period calendar

Due dates must be reproducible from the disbursement date alone, and the
elapsed-period count must agree with them on every day.
"""

import pytest
from datetime import date, timedelta

from loan_accounting.loans import RepaymentType
from loan_accounting.periods import add_months, due_date, periods_elapsed


class TestDueDate:
    """Test due date calculation"""
    
    def test_monthly_first_period(self):
        assert due_date(date(2024, 1, 1), RepaymentType.MONTHLY, 1) == date(2024, 2, 1)
    
    def test_monthly_crosses_year(self):
        assert due_date(date(2024, 1, 1), RepaymentType.MONTHLY, 12) == date(2025, 1, 1)
    
    def test_weekly_periods(self):
        """Weekly loan disbursed 2024-01-01"""
        assert due_date(date(2024, 1, 1), RepaymentType.WEEKLY, 1) == date(2024, 1, 8)
        assert due_date(date(2024, 1, 1), RepaymentType.WEEKLY, 10) == date(2024, 3, 11)
    
    def test_month_end_clamps_without_drift(self):
        """Jan 31 disbursement clamps each month independently"""
        start = date(2024, 1, 31)
        assert due_date(start, RepaymentType.MONTHLY, 1) == date(2024, 2, 29)
        assert due_date(start, RepaymentType.MONTHLY, 2) == date(2024, 3, 31)
        assert due_date(start, RepaymentType.MONTHLY, 3) == date(2024, 4, 30)
    
    def test_non_leap_february(self):
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)


class TestPeriodsElapsed:
    """Test elapsed period counting"""
    
    def test_monthly_mid_month(self):
        assert periods_elapsed(date(2024, 4, 15), date(2024, 1, 1), RepaymentType.MONTHLY) == 3
    
    def test_due_date_counts_as_elapsed(self):
        assert periods_elapsed(date(2024, 4, 1), date(2024, 1, 1), RepaymentType.MONTHLY) == 3
        assert periods_elapsed(date(2024, 3, 31), date(2024, 1, 1), RepaymentType.MONTHLY) == 2
    
    def test_before_disbursement(self):
        assert periods_elapsed(date(2023, 12, 1), date(2024, 1, 1), RepaymentType.MONTHLY) == 0
        assert periods_elapsed(date(2024, 1, 1), date(2024, 1, 1), RepaymentType.WEEKLY) == 0
    
    def test_month_end_disbursement(self):
        start = date(2024, 1, 31)
        assert periods_elapsed(date(2024, 2, 28), start, RepaymentType.MONTHLY) == 0
        assert periods_elapsed(date(2024, 2, 29), start, RepaymentType.MONTHLY) == 1
    
    def test_weekly(self):
        start = date(2024, 1, 1)
        assert periods_elapsed(date(2024, 1, 14), start, RepaymentType.WEEKLY) == 1
        assert periods_elapsed(date(2024, 1, 15), start, RepaymentType.WEEKLY) == 2
    
    @pytest.mark.parametrize("start", [date(2024, 1, 1), date(2024, 1, 31), date(2023, 8, 30)])
    @pytest.mark.parametrize("cadence", [RepaymentType.MONTHLY, RepaymentType.WEEKLY])
    def test_agrees_with_due_dates(self, start, cadence):
        """Every day, the count equals the number of due dates on or before it"""
        for offset in range(0, 400):
            as_of = start + timedelta(days=offset)
            expected = sum(1 for p in range(1, 60) if due_date(start, cadence, p) <= as_of)
            assert periods_elapsed(as_of, start, cadence) == expected
