"""
Loan Repository

Typed persistence contract for loans and their repayment ledger. Atomicity is
part of the contract: ``atomic(loan_id)`` serialises every read-compute-write
sequence on one loan and wraps it in a storage transaction, while work on
different loans takes different locks.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional
import threading

from .errors import NotFoundError
from .loans import Loan, LoanDerivedState, LoanStatus, Repayment
from .storage import StorageInterface


class LoanRepository(ABC):
    """Persistence operations the accounting engine depends on"""
    
    @abstractmethod
    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Load a loan, or None if it does not exist"""
    
    @abstractmethod
    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """All loans, optionally restricted to one status"""
    
    @abstractmethod
    def list_loan_ids(self, status: Optional[LoanStatus] = None) -> List[str]:
        """Ids of all loans, optionally restricted to one status, without decoding them"""
    
    @abstractmethod
    def save_loan(self, loan: Loan) -> None:
        """Insert or replace a loan"""
    
    @abstractmethod
    def save_loan_derived_state(self, loan_id: str, fields: LoanDerivedState) -> Loan:
        """Persist the derived fields of an existing loan and return it"""
    
    @abstractmethod
    def get_repayment(self, repayment_id: str) -> Optional[Repayment]:
        """Load a repayment, or None if it does not exist"""
    
    @abstractmethod
    def get_repayments(self, loan_id: str) -> List[Repayment]:
        """The loan's full ledger ordered by paid date"""
    
    @abstractmethod
    def insert_repayment(self, repayment: Repayment) -> None:
        """Append a repayment to the ledger"""
    
    @abstractmethod
    def delete_repayment(self, repayment_id: str) -> bool:
        """Remove a repayment; False if it did not exist"""
    
    @abstractmethod
    def atomic(self, loan_id: str):
        """Context manager making the enclosed work atomic for one loan"""


class LoanLockRegistry:
    """One re-entrant lock per loan id"""
    
    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()
    
    def get(self, loan_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(loan_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[loan_id] = lock
            return lock


class StorageLoanRepository(LoanRepository):
    """LoanRepository over any StorageInterface backend"""
    
    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"
        self.repayments_table = "repayments"
        self._locks = LoanLockRegistry()
    
    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None
    
    def _loan_records(self, status: Optional[LoanStatus]) -> List[Dict[str, Any]]:
        if status is None:
            return self.storage.load_all(self.loans_table)
        return self.storage.find(self.loans_table, {"status": status.value})
    
    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        return [Loan.from_dict(data) for data in self._loan_records(status)]
    
    def list_loan_ids(self, status: Optional[LoanStatus] = None) -> List[str]:
        return [data["id"] for data in self._loan_records(status)]
    
    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())
    
    def save_loan_derived_state(self, loan_id: str, fields: LoanDerivedState) -> Loan:
        loan = self.get_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found", details={"loan_id": loan_id})
        fields.apply_to(loan)
        loan.updated_at = datetime.now(timezone.utc)
        self.save_loan(loan)
        return loan
    
    def get_repayment(self, repayment_id: str) -> Optional[Repayment]:
        data = self.storage.load(self.repayments_table, repayment_id)
        if data:
            return Repayment.from_dict(data)
        return None
    
    def get_repayments(self, loan_id: str) -> List[Repayment]:
        repayments_data = self.storage.find(self.repayments_table, {"loan_id": loan_id})
        repayments = [Repayment.from_dict(data) for data in repayments_data]
        repayments.sort(key=lambda r: (r.paid_date, r.created_at))
        return repayments
    
    def insert_repayment(self, repayment: Repayment) -> None:
        self.storage.save(self.repayments_table, repayment.id, repayment.to_dict())
    
    def delete_repayment(self, repayment_id: str) -> bool:
        return self.storage.delete(self.repayments_table, repayment_id)
    
    @contextmanager
    def atomic(self, loan_id: str) -> Iterator[None]:
        with self._locks.get(loan_id):
            with self.storage.atomic():
                yield
