"""
Loan State Updater

Orchestrates every mutation of a loan: validate the request, read the loan
and its ledger under the loan's atomic scope, derive the new state from the
full ledger, then persist the ledger change and the derived fields together.
Audit events are chained once the loan's transaction has committed.
Also hosts loan creation, the batch overdue refresh and the read paths used
by API routes and export formatters.
"""

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
import uuid

from .audit import AuditEventType, AuditTrail
from .cache import ScheduleCache
from .clock import Clock, SystemClock
from .errors import ComputationError, NotFoundError, StateConflictError, ValidationError
from .loans import (
    Loan, LoanDerivedState, LoanStatus, PaymentType, Repayment, RepaymentType,
    ZERO, calculate_installment_amount, quantize_money
)
from .logging_config import get_logger, log_action
from .overdue import compute_overdue_state, evaluate_overdue_state
from .periods import due_date
from .repository import LoanRepository
from .schedule import ScheduleEntry, next_due, project


logger = get_logger("loan_accounting.service")

AuditRecord = Tuple[AuditEventType, Dict[str, Any]]


def derive_loan_state(loan: Loan, repayments: List[Repayment], as_of: date) -> LoanDerivedState:
    """
    Recompute every derived field of a loan from its terms and full ledger.
    
    remaining = principal - sum(Full repayments), clamped at zero. Status is
    Completed iff remaining reaches zero, except that an externally assigned
    Defaulted status is kept.
    
    Raises:
        ComputationError: if the ledger cannot belong to these terms
    """
    for repayment in repayments:
        if repayment.period > loan.duration:
            raise ComputationError(
                f"Repayment {repayment.id} declares period {repayment.period} "
                f"beyond loan duration {loan.duration}",
                details={"loan_id": loan.id, "repayment_id": repayment.id}
            )
    
    full_paid = sum((r.amount for r in repayments if r.is_full), ZERO)
    remaining = loan.principal_amount - full_paid
    if remaining < 0:
        remaining = ZERO
    
    if loan.status == LoanStatus.DEFAULTED:
        status = LoanStatus.DEFAULTED
    elif remaining <= 0:
        status = LoanStatus.COMPLETED
    else:
        status = LoanStatus.ACTIVE
    
    candidate = replace(loan, remaining_amount=remaining, status=status)
    overdue = compute_overdue_state(candidate, repayments, as_of)
    
    return LoanDerivedState(
        remaining_amount=remaining,
        status=status,
        next_payment_date=next_due(candidate, repayments),
        overdue_amount=overdue.overdue_amount,
        missed_payments=overdue.missed_payments
    )


def _to_amount(value: Union[Decimal, int, float, str], field_name: str = "amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"Invalid {field_name}: {value!r}", details={"field": field_name}) from e
    if not amount.is_finite():
        raise ValidationError(f"Invalid {field_name}: {value!r}", details={"field": field_name})
    return amount


def _to_date(value: Union[date, str], field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"Malformed {field_name}: {value!r}", details={"field": field_name})
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    # A full ISO timestamp is accepted and reduced to its date
    try:
        return datetime.fromisoformat(value).date()
    except ValueError as e:
        raise ValidationError(f"Malformed {field_name}: {value!r}", details={"field": field_name}) from e


def _to_payment_type(value: Union[PaymentType, str]) -> PaymentType:
    if isinstance(value, PaymentType):
        return value
    try:
        return PaymentType(value)
    except ValueError as e:
        raise ValidationError(f"Unknown payment type: {value!r}", details={"field": "payment_type"}) from e


def _to_repayment_type(value: Union[RepaymentType, str]) -> RepaymentType:
    if isinstance(value, RepaymentType):
        return value
    try:
        return RepaymentType(value)
    except ValueError as e:
        raise ValidationError(f"Unknown repayment type: {value!r}", details={"field": "repayment_type"}) from e


def _to_period(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Period must be an integer, got {value!r}", details={"field": "period"})
    if value < 1:
        raise ValidationError(f"Period must be at least 1, got {value}", details={"field": "period"})
    return value


def _validate_terms(principal_amount: Decimal, interest_rate: Decimal, document_charge: Decimal,
                    repayment_type: RepaymentType, duration: int) -> None:
    if principal_amount <= 0:
        raise ValidationError("Principal amount must be greater than zero", details={"field": "principal_amount"})
    if interest_rate < 0:
        raise ValidationError("Interest rate cannot be negative", details={"field": "interest_rate"})
    if document_charge < 0:
        raise ValidationError("Document charge cannot be negative", details={"field": "document_charge"})
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 1:
        raise ValidationError(f"Duration must be a positive integer, got {duration!r}", details={"field": "duration"})
    if repayment_type == RepaymentType.WEEKLY and duration < 2:
        raise ValidationError("Weekly loans need a duration of at least 2 weeks", details={"field": "duration"})


class LoanService:
    """
    Loan State Updater and read paths over a LoanRepository
    """
    
    def __init__(
        self,
        repository: LoanRepository,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Clock] = None,
        schedule_cache: Optional[ScheduleCache] = None
    ):
        self.repository = repository
        self.audit_trail = audit_trail
        self.clock = clock or SystemClock()
        self.schedule_cache = schedule_cache
    
    # Loan lifecycle
    
    def create_loan(
        self,
        borrower_name: str,
        principal_amount: Union[Decimal, int, str],
        interest_rate: Union[Decimal, int, str],
        repayment_type: Union[RepaymentType, str],
        duration: int,
        disbursement_date: Union[date, str],
        installment_amount: Optional[Union[Decimal, int, str]] = None,
        document_charge: Union[Decimal, int, str] = ZERO,
        contact: Optional[str] = None,
        purpose: Optional[str] = None,
        owner_id: Optional[str] = None
    ) -> Loan:
        """
        Create an Active loan with remaining amount equal to principal
        
        The installment amount is computed from the terms when not supplied.
        """
        if not borrower_name:
            raise ValidationError("Borrower name is required", details={"field": "borrower_name"})
        principal = _to_amount(principal_amount, "principal_amount")
        rate = _to_amount(interest_rate, "interest_rate")
        charge = _to_amount(document_charge, "document_charge")
        cadence = _to_repayment_type(repayment_type)
        disbursed = _to_date(disbursement_date, "disbursement_date")
        _validate_terms(principal, rate, charge, cadence, duration)
        
        if installment_amount is None:
            installment = calculate_installment_amount(principal, rate, duration, cadence)
        else:
            installment = _to_amount(installment_amount, "installment_amount")
            if installment <= 0:
                raise ValidationError("Installment amount must be greater than zero",
                                      details={"field": "installment_amount"})
        
        now = self.clock.now()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            borrower_name=borrower_name,
            principal_amount=principal,
            interest_rate=rate,
            repayment_type=cadence,
            duration=duration,
            disbursement_date=disbursed,
            installment_amount=installment,
            document_charge=charge,
            contact=contact,
            purpose=purpose,
            owner_id=owner_id
        )
        
        with self.repository.atomic(loan.id):
            derive_loan_state(loan, [], self.clock.today()).apply_to(loan)
            self.repository.save_loan(loan)
        self._audit(loan.id, [(AuditEventType.LOAN_CREATED, {
            "principal_amount": principal,
            "interest_rate": rate,
            "repayment_type": cadence,
            "duration": duration,
            "disbursement_date": disbursed,
            "installment_amount": installment
        })])
        
        log_action(logger, "info", "Loan created", action="loan_created", resource=loan.id,
                   extra={"principal_amount": str(principal), "repayment_type": cadence.value})
        return loan
    
    def add_repayment(
        self,
        loan_id: str,
        amount: Union[Decimal, int, str],
        paid_date: Union[date, str],
        payment_type: Union[PaymentType, str],
        period: int
    ) -> Repayment:
        """
        Record a repayment and recompute the loan's derived state
        
        Raises:
            ValidationError: non-positive amount, Full amount above the remaining balance,
                bad period or date
            NotFoundError: unknown loan
            StateConflictError: completed loan, Full payment on a defaulted loan,
                or period beyond the loan's duration
            ComputationError: the recomputation hit an invariant violation
        """
        value = _to_amount(amount)
        if value <= 0:
            raise ValidationError("Payment amount must be greater than zero", details={"field": "amount"})
        paid_on = _to_date(paid_date, "paid_date")
        kind = _to_payment_type(payment_type)
        period = _to_period(period)
        
        with self.repository.atomic(loan_id):
            loan = self._require_loan(loan_id)
            
            if period > loan.duration:
                raise StateConflictError(
                    f"Period {period} exceeds loan duration {loan.duration}",
                    details={"loan_id": loan_id, "period": period}
                )
            if loan.is_completed:
                raise StateConflictError(f"Loan {loan_id} is already completed", details={"loan_id": loan_id})
            if kind == PaymentType.FULL:
                if loan.status == LoanStatus.DEFAULTED:
                    raise StateConflictError(
                        f"Loan {loan_id} is defaulted; its balance cannot change",
                        details={"loan_id": loan_id}
                    )
                if value > loan.remaining_amount:
                    raise ValidationError(
                        "Payment amount cannot exceed the remaining balance",
                        details={"loan_id": loan_id, "remaining_amount": str(loan.remaining_amount)}
                    )
            
            now = self.clock.now()
            repayment = Repayment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan_id,
                amount=value,
                paid_date=paid_on,
                payment_type=kind,
                period=period
            )
            
            ledger = self.repository.get_repayments(loan_id) + [repayment]
            state = self._derive(loan, ledger)
            
            self.repository.insert_repayment(repayment)
            updated = self.repository.save_loan_derived_state(loan_id, state)
            
            events: List[AuditRecord] = [(AuditEventType.REPAYMENT_RECORDED, {
                "repayment_id": repayment.id,
                "amount": value,
                "payment_type": kind,
                "period": period,
                "paid_date": paid_on,
                "remaining_amount": updated.remaining_amount
            })]
            if not loan.is_completed and updated.is_completed:
                events.append((AuditEventType.LOAN_COMPLETED, {"repayment_id": repayment.id}))
        
        self._audit(loan_id, events)
        self._invalidate(loan_id)
        log_action(logger, "info", "Repayment added", action="repayment_added", resource=loan_id,
                   extra={"repayment_id": repayment.id, "amount": str(value),
                          "payment_type": kind.value, "period": period})
        return repayment
    
    def delete_repayment(self, repayment_id: str, loan_id: Optional[str] = None) -> Loan:
        """
        Remove a repayment and recompute the loan's derived state
        
        Deleting a Full repayment restores its amount to the remaining balance
        and reopens a Completed loan. When ``loan_id`` is given the repayment
        must belong to that loan.
        """
        found = self.repository.get_repayment(repayment_id)
        if found is None or (loan_id is not None and found.loan_id != loan_id):
            raise NotFoundError(f"Repayment {repayment_id} not found", details={"repayment_id": repayment_id})
        loan_id = found.loan_id
        
        with self.repository.atomic(loan_id):
            repayment = self.repository.get_repayment(repayment_id)
            if repayment is None:
                raise NotFoundError(f"Repayment {repayment_id} not found", details={"repayment_id": repayment_id})
            loan = self._require_loan(loan_id)
            
            if repayment.is_full and loan.status == LoanStatus.DEFAULTED:
                raise StateConflictError(
                    f"Loan {loan_id} is defaulted; its balance cannot change",
                    details={"loan_id": loan_id, "repayment_id": repayment_id}
                )
            
            ledger = [r for r in self.repository.get_repayments(loan_id) if r.id != repayment_id]
            state = self._derive(loan, ledger)
            
            self.repository.delete_repayment(repayment_id)
            updated = self.repository.save_loan_derived_state(loan_id, state)
            
            events: List[AuditRecord] = [(AuditEventType.REPAYMENT_DELETED, {
                "repayment_id": repayment_id,
                "amount": repayment.amount,
                "payment_type": repayment.payment_type,
                "period": repayment.period,
                "remaining_amount": updated.remaining_amount
            })]
            if loan.is_completed and updated.is_active:
                events.append((AuditEventType.LOAN_REOPENED, {"repayment_id": repayment_id}))
        
        self._audit(loan_id, events)
        self._invalidate(loan_id)
        log_action(logger, "info", "Repayment deleted", action="repayment_deleted", resource=loan_id,
                   extra={"repayment_id": repayment_id})
        return updated
    
    def update_loan_terms(
        self,
        loan_id: str,
        principal_amount: Optional[Union[Decimal, int, str]] = None,
        interest_rate: Optional[Union[Decimal, int, str]] = None,
        document_charge: Optional[Union[Decimal, int, str]] = None,
        repayment_type: Optional[Union[RepaymentType, str]] = None,
        duration: Optional[int] = None,
        disbursement_date: Optional[Union[date, str]] = None,
        installment_amount: Optional[Union[Decimal, int, str]] = None,
        recalculate_installment: bool = False
    ) -> Loan:
        """
        Edit loan terms and re-run the full recomputation
        
        The installment amount only changes when given explicitly or when
        ``recalculate_installment`` is set.
        """
        with self.repository.atomic(loan_id):
            loan = self._require_loan(loan_id)
            changes: Dict[str, Any] = {}
            
            if principal_amount is not None:
                principal = _to_amount(principal_amount, "principal_amount")
                if principal != loan.principal_amount:
                    if not loan.is_active:
                        raise StateConflictError(
                            f"Cannot change the principal of a {loan.status.value} loan",
                            details={"loan_id": loan_id}
                        )
                    changes["principal_amount"] = principal
            if interest_rate is not None:
                changes["interest_rate"] = _to_amount(interest_rate, "interest_rate")
            if document_charge is not None:
                changes["document_charge"] = _to_amount(document_charge, "document_charge")
            if repayment_type is not None:
                changes["repayment_type"] = _to_repayment_type(repayment_type)
            if duration is not None:
                changes["duration"] = duration
            if disbursement_date is not None:
                changes["disbursement_date"] = _to_date(disbursement_date, "disbursement_date")
            if installment_amount is not None:
                installment = _to_amount(installment_amount, "installment_amount")
                if installment <= 0:
                    raise ValidationError("Installment amount must be greater than zero",
                                          details={"field": "installment_amount"})
                changes["installment_amount"] = installment
            
            edited = replace(loan, **changes)
            _validate_terms(edited.principal_amount, edited.interest_rate, edited.document_charge,
                            edited.repayment_type, edited.duration)
            
            if recalculate_installment and installment_amount is None:
                edited.installment_amount = calculate_installment_amount(
                    edited.principal_amount, edited.interest_rate, edited.duration, edited.repayment_type
                )
                changes["installment_amount"] = edited.installment_amount
            
            repayments = self.repository.get_repayments(loan_id)
            full_paid = sum((r.amount for r in repayments if r.is_full), ZERO)
            if edited.principal_amount < full_paid:
                raise ValidationError(
                    "Principal amount cannot be below the total already repaid",
                    details={"loan_id": loan_id, "full_paid": str(full_paid)}
                )
            beyond = sorted({r.period for r in repayments if r.period > edited.duration})
            if beyond:
                raise StateConflictError(
                    f"Recorded repayments reference periods {beyond} beyond duration {edited.duration}",
                    details={"loan_id": loan_id, "periods": beyond}
                )
            
            self._derive(edited, repayments).apply_to(edited)
            edited.updated_at = self.clock.now()
            self.repository.save_loan(edited)
            
            events: List[AuditRecord] = [(AuditEventType.LOAN_TERMS_UPDATED, {"changes": changes})]
            if loan.is_active and edited.is_completed:
                events.append((AuditEventType.LOAN_COMPLETED, {}))
        
        self._audit(loan_id, events)
        self._invalidate(loan_id)
        log_action(logger, "info", "Loan terms updated", action="loan_terms_updated", resource=loan_id,
                   extra={"fields": sorted(changes)})
        return edited
    
    def mark_defaulted(self, loan_id: str) -> Loan:
        """Assign the Defaulted status; it is never reverted automatically"""
        with self.repository.atomic(loan_id):
            loan = self._require_loan(loan_id)
            if loan.status == LoanStatus.DEFAULTED:
                return loan
            if loan.is_completed:
                raise StateConflictError(f"Loan {loan_id} is already completed", details={"loan_id": loan_id})
            
            loan.status = LoanStatus.DEFAULTED
            state = self._derive(loan, self.repository.get_repayments(loan_id))
            updated = self.repository.save_loan_derived_state(loan_id, state)
        
        self._audit(loan_id, [(AuditEventType.LOAN_DEFAULTED, {
            "remaining_amount": updated.remaining_amount
        })])
        self._invalidate(loan_id)
        log_action(logger, "warning", "Loan marked defaulted", action="loan_defaulted", resource=loan_id)
        return updated
    
    def recompute(self, loan_id: str, as_of: Optional[date] = None) -> Loan:
        """Re-derive and persist a single loan's state"""
        with self.repository.atomic(loan_id):
            loan = self._require_loan(loan_id)
            state = self._derive(loan, self.repository.get_repayments(loan_id), as_of)
            updated = self.repository.save_loan_derived_state(loan_id, state)
        self._invalidate(loan_id)
        return updated
    
    def refresh_overdue_states(self, as_of: Optional[date] = None) -> Dict[str, Any]:
        """
        Recompute overdue amount and missed payments for every Active loan
        
        Only loans whose values changed are written. A loan whose computation
        fails is reported under ``failures`` and left untouched.
        
        Returns:
            Report with processed/updated counts, per-loan changes and failures
        """
        as_of = as_of or self.clock.today()
        report: Dict[str, Any] = {
            "loans_processed": 0,
            "loans_updated": 0,
            "updates": [],
            "failures": []
        }
        
        for loan_id in self.repository.list_loan_ids(LoanStatus.ACTIVE):
            with self.repository.atomic(loan_id):
                try:
                    loan = self.repository.get_loan(loan_id)
                    if loan is None or not loan.is_active:
                        continue
                    repayments = self.repository.get_repayments(loan_id)
                except ComputationError as e:
                    report["loans_processed"] += 1
                    self._refresh_failed(report, loan_id, e)
                    continue
                report["loans_processed"] += 1
                
                result = evaluate_overdue_state(loan, repayments, as_of)
                if not result.ok:
                    self._refresh_failed(report, loan_id, result.error)
                    continue
                
                state = result.state
                if (state.overdue_amount == loan.overdue_amount
                        and state.missed_payments == loan.missed_payments):
                    continue
                
                current = LoanDerivedState.of(loan)
                self.repository.save_loan_derived_state(loan_id, replace(
                    current,
                    overdue_amount=state.overdue_amount,
                    missed_payments=state.missed_payments
                ))
                report["loans_updated"] += 1
                report["updates"].append({
                    "loan_id": loan_id,
                    "previous_overdue_amount": str(loan.overdue_amount),
                    "new_overdue_amount": str(state.overdue_amount),
                    "previous_missed_payments": loan.missed_payments,
                    "new_missed_payments": state.missed_payments
                })
            self._invalidate(loan_id)
        
        log_action(logger, "info", "Overdue states refreshed", action="overdue_refreshed",
                   extra={"processed": report["loans_processed"], "updated": report["loans_updated"],
                          "failed": len(report["failures"])})
        return report
    
    # Read paths
    
    def get_loan(self, loan_id: str) -> Loan:
        return self._require_loan(loan_id)
    
    def get_repayments(self, loan_id: str) -> List[Repayment]:
        self._require_loan(loan_id)
        return self.repository.get_repayments(loan_id)
    
    def get_schedule(self, loan_id: str, today: Optional[date] = None) -> List[ScheduleEntry]:
        """
        Full projection for a loan; served from the schedule cache when one
        is configured and no explicit reference date is given.
        """
        def build() -> List[ScheduleEntry]:
            loan = self._require_loan(loan_id)
            return project(loan, self.repository.get_repayments(loan_id), today or self.clock.today())
        
        if self.schedule_cache is None or today is not None:
            return build()
        return self.schedule_cache.get_or_compute(loan_id, build)
    
    def loan_summary(self, loan_id: str) -> Dict[str, Any]:
        """Repayment totals and interest collected, for export formatters"""
        loan = self._require_loan(loan_id)
        repayments = self.repository.get_repayments(loan_id)
        full_paid = sum((r.amount for r in repayments if r.is_full), ZERO)
        interest_only_paid = sum((r.amount for r in repayments if not r.is_full), ZERO)
        
        if loan.repayment_type == RepaymentType.MONTHLY:
            interest_collected = loan.interest_rate * len(repayments)
        else:
            total_paid = full_paid + interest_only_paid
            interest_collected = max(ZERO, total_paid - loan.principal_amount)
        
        return {
            "loan_id": loan.id,
            "repayment_count": len(repayments),
            "full_paid": quantize_money(full_paid),
            "interest_only_paid": quantize_money(interest_only_paid),
            "interest_collected": quantize_money(interest_collected),
            "profit": quantize_money(interest_collected + loan.document_charge),
            "remaining_amount": loan.remaining_amount,
            "final_due_date": due_date(loan.disbursement_date, loan.repayment_type, loan.duration)
        }
    
    # Internals
    
    def _require_loan(self, loan_id: str) -> Loan:
        loan = self.repository.get_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found", details={"loan_id": loan_id})
        return loan
    
    def _derive(self, loan: Loan, repayments: Iterable[Repayment],
                as_of: Optional[date] = None) -> LoanDerivedState:
        try:
            return derive_loan_state(loan, list(repayments), as_of or self.clock.today())
        except ComputationError:
            log_action(logger, "error", "Loan state recomputation failed", action="recompute",
                       resource=loan.id, exc_info=True)
            raise
    
    def _refresh_failed(self, report: Dict[str, Any], loan_id: str, error: ComputationError) -> None:
        report["failures"].append({"loan_id": loan_id, "error": error.message})
        log_action(logger, "error", "Overdue refresh failed", action="overdue_refreshed",
                   resource=loan_id, extra={"error": error.message})
    
    def _audit(self, loan_id: str, events: List[AuditRecord]) -> None:
        """Chain events for a committed mutation onto the audit trail"""
        if self.audit_trail is None:
            return
        for event_type, metadata in events:
            self.audit_trail.log_event(event_type, "loan", loan_id, metadata)
    
    def _invalidate(self, loan_id: str) -> None:
        if self.schedule_cache is not None:
            self.schedule_cache.invalidate(loan_id)
