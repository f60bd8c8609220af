"""
Tests for the schedule projector

Covers per-period status, the representative repayment choice, the display
window, pagination and next-due resolution.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from loan_accounting.errors import ComputationError
from loan_accounting.loans import LoanStatus, PaymentType, RepaymentType
from loan_accounting.schedule import (
    ScheduleStatus, filter_schedule_window, next_due, paginate, project, representative
)


class TestProject:
    """Test full schedule projection"""

    def test_unpaid_schedule(self, make_loan):
        schedule = project(make_loan(), [], today=date(2024, 4, 15))

        assert len(schedule) == 12
        assert [e.period for e in schedule] == list(range(1, 13))
        assert schedule[0].due_date == date(2024, 2, 1)
        assert schedule[-1].due_date == date(2025, 1, 1)
        assert all(e.expected_amount == Decimal('1100') for e in schedule)
        assert [e.status for e in schedule[:3]] == [ScheduleStatus.OVERDUE] * 3
        assert schedule[3].status == ScheduleStatus.PENDING
        assert schedule[0].actual_payment_date is None

    def test_due_today_is_pending(self, make_loan):
        schedule = project(make_loan(), [], today=date(2024, 4, 1))
        assert schedule[2].due_date == date(2024, 4, 1)
        assert schedule[2].status == ScheduleStatus.PENDING

    def test_paid_and_interest_only(self, make_loan, make_repayment):
        repayments = [
            make_repayment(1, paid_date=date(2024, 2, 1)),
            make_repayment(2, amount='100', paid_date=date(2024, 3, 2), payment_type=PaymentType.INTEREST_ONLY)
        ]
        schedule = project(make_loan(), repayments, today=date(2024, 4, 15))

        assert schedule[0].status == ScheduleStatus.PAID
        assert schedule[0].actual_payment_date == date(2024, 2, 1)
        assert schedule[1].status == ScheduleStatus.INTEREST_ONLY
        assert schedule[1].repayment.amount == Decimal('100')
        assert schedule[2].status == ScheduleStatus.OVERDUE

    def test_latest_repayment_represents_period(self, make_loan, make_repayment):
        """A later interest-only entry wins over an earlier full one"""
        repayments = [
            make_repayment(1, paid_date=date(2024, 2, 1)),
            make_repayment(1, amount='100', paid_date=date(2024, 2, 5), payment_type=PaymentType.INTEREST_ONLY)
        ]
        schedule = project(make_loan(), repayments, today=date(2024, 2, 10))
        assert schedule[0].status == ScheduleStatus.INTEREST_ONLY
        assert schedule[0].actual_payment_date == date(2024, 2, 5)

    def test_representative_ignores_ledger_order(self, make_repayment):
        early = datetime(2024, 2, 1, 9, tzinfo=timezone.utc)
        late = datetime(2024, 2, 1, 17, tzinfo=timezone.utc)
        first = make_repayment(1, repayment_id="A", created_at=early)
        second = make_repayment(1, repayment_id="B", created_at=late, payment_type=PaymentType.INTEREST_ONLY)

        assert representative([first, second]).id == "B"
        assert representative([second, first]).id == "B"

        tie_a = make_repayment(1, repayment_id="A")
        tie_b = make_repayment(1, repayment_id="B")
        assert representative([tie_b, tie_a]).id == "B"
        assert representative([]) is None

    def test_foreign_repayment_rejected(self, make_loan, make_repayment):
        with pytest.raises(ComputationError, match="belongs to loan"):
            project(make_loan(), [make_repayment(1, loan_id="OTHER")], today=date(2024, 4, 15))

    def test_non_positive_amount_rejected(self, make_loan, make_repayment):
        with pytest.raises(ComputationError, match="non-positive"):
            project(make_loan(), [make_repayment(1, amount='0')], today=date(2024, 4, 15))


class TestScheduleWindow:
    """Test display window and pagination"""

    def test_window_hides_far_future(self, make_loan):
        schedule = project(make_loan(), [], today=date(2024, 4, 15))
        visible = filter_schedule_window(schedule, today=date(2024, 4, 15), window_days=7)
        assert [e.period for e in visible] == [3, 2, 1]

    def test_wider_window(self, make_loan):
        schedule = project(make_loan(), [], today=date(2024, 4, 15))
        visible = filter_schedule_window(schedule, today=date(2024, 4, 15), window_days=20)
        assert [e.period for e in visible] == [4, 3, 2, 1]

    def test_prepaid_future_period_visible(self, make_loan, make_repayment):
        schedule = project(make_loan(), [make_repayment(6, paid_date=date(2024, 4, 10))], today=date(2024, 4, 15))
        visible = filter_schedule_window(schedule, today=date(2024, 4, 15))
        assert [e.period for e in visible] == [6, 3, 2, 1]

    def test_status_filter(self, make_loan, make_repayment):
        schedule = project(make_loan(), [make_repayment(1)], today=date(2024, 4, 15))
        visible = filter_schedule_window(schedule, today=date(2024, 4, 15), status=ScheduleStatus.OVERDUE)
        assert [e.period for e in visible] == [3, 2]

    def test_paginate(self, make_loan):
        schedule = project(make_loan(), [], today=date(2024, 4, 15))

        page = paginate(schedule, page=2, page_size=5)
        assert [e.period for e in page.entries] == [6, 7, 8, 9, 10]
        assert page.total_count == 12
        assert page.total_pages == 3

        last = paginate(schedule, page=3, page_size=5)
        assert [e.period for e in last.entries] == [11, 12]

        beyond = paginate(schedule, page=9, page_size=5)
        assert beyond.entries == []


class TestNextDue:
    """Test next due date resolution"""

    def test_no_repayments(self, make_loan):
        assert next_due(make_loan(), []) == date(2024, 2, 1)

    def test_after_full_payment(self, make_loan, make_repayment):
        assert next_due(make_loan(), [make_repayment(1)]) == date(2024, 3, 1)

    def test_interest_only_does_not_advance(self, make_loan, make_repayment):
        repayment = make_repayment(1, amount='100', payment_type=PaymentType.INTEREST_ONLY)
        assert next_due(make_loan(), [repayment]) == date(2024, 2, 1)

    def test_out_of_order_payment(self, make_loan, make_repayment):
        assert next_due(make_loan(), [make_repayment(2)]) == date(2024, 2, 1)

    def test_any_full_settles_period(self, make_loan, make_repayment):
        repayments = [
            make_repayment(1, paid_date=date(2024, 2, 1)),
            make_repayment(1, amount='100', paid_date=date(2024, 2, 5), payment_type=PaymentType.INTEREST_ONLY)
        ]
        assert next_due(make_loan(), repayments) == date(2024, 3, 1)

    def test_all_periods_paid(self, make_loan, make_repayment):
        loan = make_loan(principal_amount=Decimal('30000'))
        repayments = [make_repayment(p) for p in range(1, 13)]
        assert next_due(loan, repayments) is None

    def test_completed_loan(self, make_loan):
        loan = make_loan(status=LoanStatus.COMPLETED, remaining_amount=Decimal('0'))
        assert next_due(loan, []) is None

    def test_weekly(self, make_loan, make_repayment):
        loan = make_loan(repayment_type=RepaymentType.WEEKLY, duration=10)
        assert next_due(loan, [make_repayment(1)]) == date(2024, 1, 15)
