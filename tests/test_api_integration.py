"""
Integration tests for the Loan Accounting API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from datetime import date
from decimal import Decimal
from fastapi.testclient import TestClient

from loan_accounting.api import create_app
from loan_accounting.api.dependencies import LoanAccountingSystem, get_loan_service, get_settings
from loan_accounting.clock import FixedClock
from loan_accounting.config import LedgerConfig
from loan_accounting.storage import InMemoryStorage


@pytest.fixture
def system():
    """In-memory engine with the clock pinned to 2024-04-15"""
    return LoanAccountingSystem(
        storage=InMemoryStorage(),
        clock=FixedClock(date(2024, 4, 15)),
        config=LedgerConfig(database_url="memory://", overdue_refresh_api_key="secret")
    )


@pytest.fixture
def client(system):
    app = create_app()
    app.dependency_overrides[get_loan_service] = lambda: system.loan_service
    app.dependency_overrides[get_settings] = lambda: system.config
    return TestClient(app)


@pytest.fixture
def loan(client):
    r = client.post("/loans", json={
        "borrower_name": "Asha Raman",
        "principal_amount": "12000",
        "interest_rate": "100",
        "repayment_type": "Monthly",
        "duration": 12,
        "disbursement_date": "2024-01-01",
        "document_charge": "250"
    })
    assert r.status_code == 201
    return r.json()


class TestHealthEndpoints:
    """Test health endpoint"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


class TestLoanFlow:
    """End-to-end loan management tests"""

    def test_create_loan(self, loan):
        assert loan["status"] == "Active"
        assert Decimal(loan["installment_amount"]) == Decimal('1100')
        assert Decimal(loan["remaining_amount"]) == Decimal('12000')
        assert Decimal(loan["overdue_amount"]) == Decimal('3300')
        assert loan["missed_payments"] == 3
        assert loan["next_payment_date"] == "2024-02-01"

    def test_create_invalid_loan(self, client):
        r = client.post("/loans", json={
            "borrower_name": "Asha Raman",
            "principal_amount": "12000",
            "repayment_type": "Fortnightly",
            "duration": 12,
            "disbursement_date": "2024-01-01"
        })
        assert r.status_code == 400
        assert r.json()["type"] == "ValidationError"

    def test_get_loan(self, client, loan):
        r = client.get(f"/loans/{loan['id']}")
        assert r.status_code == 200
        assert r.json() == loan

    def test_update_terms(self, client, loan):
        r = client.patch(f"/loans/{loan['id']}", json={"disbursement_date": "2024-03-01"})
        assert r.status_code == 200
        data = r.json()
        assert data["next_payment_date"] == "2024-04-01"
        assert data["missed_payments"] == 1

    def test_mark_defaulted(self, client, loan):
        r = client.post(f"/loans/{loan['id']}/default")
        assert r.status_code == 200
        assert r.json()["status"] == "Defaulted"

        r = client.post(f"/loans/{loan['id']}/repayments", json={
            "amount": "1100", "paid_date": "2024-02-01", "payment_type": "full", "period": 1
        })
        assert r.status_code == 409

    def test_summary(self, client, loan):
        client.post(f"/loans/{loan['id']}/repayments", json={
            "amount": "1100", "paid_date": "2024-02-01", "period": 1
        })
        r = client.get(f"/loans/{loan['id']}/summary")
        assert r.status_code == 200
        data = r.json()
        assert data["repayment_count"] == 1
        assert Decimal(data["profit"]) == Decimal('350')
        assert data["final_due_date"] == "2025-01-01"


class TestRepaymentFlow:
    """End-to-end repayment tests"""

    def test_add_repayment(self, client, loan):
        r = client.post(f"/loans/{loan['id']}/repayments", json={
            "amount": "1100", "paid_date": "2024-02-01", "payment_type": "full", "period": 1
        })
        assert r.status_code == 201
        data = r.json()
        assert data["repayment"]["period"] == 1
        assert Decimal(data["loan"]["remaining_amount"]) == Decimal('10900')
        assert data["loan"]["missed_payments"] == 2
        assert data["loan"]["next_payment_date"] == "2024-03-01"

        r = client.get(f"/loans/{loan['id']}/repayments")
        assert [rep["id"] for rep in r.json()] == [data["repayment"]["id"]]

    def test_overpayment(self, client, loan):
        r = client.post(f"/loans/{loan['id']}/repayments", json={
            "amount": "13000", "paid_date": "2024-02-01", "payment_type": "full", "period": 1
        })
        assert r.status_code == 400
        assert "exceed" in r.json()["error"]

        loaded = client.get(f"/loans/{loan['id']}").json()
        assert Decimal(loaded["remaining_amount"]) == Decimal('12000')

    def test_period_beyond_duration(self, client, loan):
        r = client.post(f"/loans/{loan['id']}/repayments", json={
            "amount": "1100", "paid_date": "2024-02-01", "payment_type": "full", "period": 13
        })
        assert r.status_code == 409

    def test_delete_repayment(self, client, loan):
        created = client.post(f"/loans/{loan['id']}/repayments", json={
            "amount": "12000", "paid_date": "2024-02-01", "payment_type": "full", "period": 1
        }).json()
        assert created["loan"]["status"] == "Completed"

        r = client.delete(f"/loans/{loan['id']}/repayments/{created['repayment']['id']}")
        assert r.status_code == 200
        assert r.json()["loan"]["status"] == "Active"
        assert Decimal(r.json()["loan"]["remaining_amount"]) == Decimal('12000')

    def test_delete_unknown_repayment(self, client, loan):
        r = client.delete(f"/loans/{loan['id']}/repayments/missing")
        assert r.status_code == 404


class TestScheduleFlow:
    """Payment schedule endpoint tests"""

    def test_default_window(self, client, loan):
        r = client.get(f"/loans/{loan['id']}/payment-schedules")
        assert r.status_code == 200
        data = r.json()
        assert [s["period"] for s in data["schedules"]] == [3, 2, 1]
        assert all(s["status"] == "Overdue" for s in data["schedules"])
        assert data["total_count"] == 3
        assert data["total_pages"] == 1

    def test_include_all(self, client, loan):
        client.post(f"/loans/{loan['id']}/repayments", json={
            "amount": "100", "paid_date": "2024-02-03", "payment_type": "interestOnly", "period": 1
        })
        r = client.get(f"/loans/{loan['id']}/payment-schedules", params={"include_all": True})
        schedules = r.json()["schedules"]
        assert len(schedules) == 12
        assert schedules[0]["status"] == "InterestOnly"
        assert schedules[0]["actual_payment_date"] == "2024-02-03"
        assert schedules[-1]["status"] == "Pending"

    def test_status_filter_and_paging(self, client, loan):
        r = client.get(f"/loans/{loan['id']}/payment-schedules",
                       params={"status": "Overdue", "page": 2, "page_size": 2})
        data = r.json()
        assert [s["period"] for s in data["schedules"]] == [1]
        assert data["total_pages"] == 2

    def test_unknown_status(self, client, loan):
        r = client.get(f"/loans/{loan['id']}/payment-schedules", params={"status": "Late"})
        assert r.status_code == 400


class TestOverdueRefresh:
    """Batch and single-loan overdue refresh"""

    def test_requires_api_key(self, client, loan):
        assert client.post("/loans/update-overdue").status_code == 401
        assert client.post("/loans/update-overdue", params={"api_key": "wrong"}).status_code == 401

    def test_batch_refresh(self, client, loan):
        r = client.post("/loans/update-overdue", params={"api_key": "secret", "as_of": "2024-06-15"})
        assert r.status_code == 200
        data = r.json()
        assert data["loans_processed"] == 1
        assert data["loans_updated"] == 1
        assert data["updates"][0]["new_missed_payments"] == 5

    def test_single_loan_refresh(self, client, loan):
        r = client.post(f"/loans/{loan['id']}/update-overdue", params={"as_of": "2024-02-15"})
        assert r.status_code == 200
        assert r.json()["missed_payments"] == 1


class TestEndpointErrors:
    """Test error responses"""

    def test_nonexistent_loan(self, client):
        r = client.get("/loans/missing")
        assert r.status_code == 404
        assert r.json()["type"] == "NotFoundError"

    def test_repayments_of_nonexistent_loan(self, client):
        assert client.get("/loans/missing/repayments").status_code == 404
        assert client.get("/loans/missing/payment-schedules").status_code == 404
