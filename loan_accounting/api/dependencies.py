"""
Engine wiring and FastAPI dependencies
"""

from typing import Optional

from ..audit import AuditTrail
from ..cache import ScheduleCache
from ..clock import Clock
from ..config import LedgerConfig, get_config
from ..repository import StorageLoanRepository
from ..service import LoanService
from ..storage import StorageInterface, create_storage


class LoanAccountingSystem:
    """Loan accounting engine with all components initialized"""
    
    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.repository = StorageLoanRepository(self.storage)
        self.audit_trail = AuditTrail(self.storage)
        self.schedule_cache = ScheduleCache(ttl_seconds=self.config.schedule_cache_ttl_seconds)
        self.loan_service = LoanService(
            self.repository,
            audit_trail=self.audit_trail,
            clock=clock,
            schedule_cache=self.schedule_cache
        )


_system: Optional[LoanAccountingSystem] = None


def get_system() -> LoanAccountingSystem:
    """Process-wide system, created on first use from configuration"""
    global _system
    if _system is None:
        _system = LoanAccountingSystem()
    return _system


def get_loan_service() -> LoanService:
    return get_system().loan_service


def get_settings() -> LedgerConfig:
    return get_system().config
