"""
Loan Module

Handles loan creation, rescheduling when terms change, interest payment
marking, principal closure, and the soft-delete/restore lifecycle.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
import uuid

from .clock import Clock
from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime, parse_decimal
from .audit import AuditTrail, AuditEventType
from .customers import CustomerManager
from .schedule import (
    InterestFrequency, InterestPayment, PaymentStatus,
    generate_interest_payments, validate_terms, round2
)
from .exceptions import (
    ValidationError, NotFoundError, AuthorizationError,
    InvalidLoanStateError, ConcurrencyError
)
from .logging_config import get_logger, log_action


logger = get_logger(__name__)

# Changing any of these regenerates the pending installments
SCHEDULE_FIELDS = ('principal', 'interest_rate', 'start_date', 'end_date', 'interest_frequency')
UPDATABLE_FIELDS = SCHEDULE_FIELDS + ('remarks', 'contract_note')


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"      # Interest accruing, principal outstanding
    CLOSED = "closed"      # Principal repaid or explicitly closed
    DELETED = "deleted"    # Soft deleted, restorable


@dataclass
class Loan(StorageRecord):
    """Loan with its interest installment schedule"""
    customer_id: str
    principal: Decimal
    interest_rate: Decimal               # Annual percentage, e.g. 12 for 12%
    start_date: date
    end_date: date
    interest_frequency: InterestFrequency
    interest_payments: List[InterestPayment] = field(default_factory=list)
    status: LoanStatus = LoanStatus.ACTIVE
    principal_paid: bool = False
    user_id: Optional[str] = None
    remarks: Optional[str] = None
    contract_note: Optional[str] = None
    deleted_at: Optional[datetime] = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.status == LoanStatus.DELETED

    @property
    def paid_payments(self) -> List[InterestPayment]:
        return [p for p in self.interest_payments if p.is_paid]

    @property
    def pending_payments(self) -> List[InterestPayment]:
        return [p for p in self.interest_payments if not p.is_paid]

    @property
    def total_interest(self) -> Decimal:
        return sum((p.amount for p in self.interest_payments), Decimal('0'))

    @property
    def paid_interest(self) -> Decimal:
        return sum((p.amount for p in self.paid_payments), Decimal('0'))

    @property
    def pending_interest(self) -> Decimal:
        return sum((p.amount for p in self.pending_payments), Decimal('0'))

    def get_payment(self, payment_id: str) -> Optional[InterestPayment]:
        for payment in self.interest_payments:
            if payment.id == payment_id:
                return payment
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            customer_id=data['customer_id'],
            principal=parse_decimal(data['principal']),
            interest_rate=parse_decimal(data['interest_rate']),
            start_date=parse_date(data['start_date']),
            end_date=parse_date(data['end_date']),
            interest_frequency=InterestFrequency(data['interest_frequency']),
            interest_payments=[InterestPayment.from_dict(p) for p in data.get('interest_payments', [])],
            status=LoanStatus(data.get('status', LoanStatus.ACTIVE.value)),
            principal_paid=bool(data.get('principal_paid', False)),
            user_id=data.get('user_id'),
            remarks=data.get('remarks'),
            contract_note=data.get('contract_note'),
            deleted_at=parse_datetime(data.get('deleted_at')),
            version=data.get('version', 1)
        )


def _uncovered_spans(start: date, end: date,
                     paid: List[InterestPayment]) -> List[Tuple[date, date]]:
    """Sub-periods of [start, end) not covered by any paid installment"""
    spans = []
    cursor = start
    for payment in sorted(paid, key=lambda p: p.period_start):
        if payment.period_end <= cursor or payment.period_start >= end:
            continue
        if payment.period_start > cursor:
            spans.append((cursor, payment.period_start))
        cursor = max(cursor, payment.period_end)
        if cursor >= end:
            break
    if cursor < end:
        spans.append((cursor, end))
    return spans


def merge_schedule(paid: List[InterestPayment],
                   regenerated: List[InterestPayment]) -> List[InterestPayment]:
    """
    Combine preserved paid installments with a regenerated schedule.

    A regenerated installment fully covered by paid periods is dropped. One
    that is partly covered is trimmed to the uncovered part, due at its new
    period end; a paid period strictly inside it splits it in two, each
    part charged the full periodic amount like any short period. The
    result is ordered by period start then due date.
    """
    kept = []
    for payment in regenerated:
        spans = _uncovered_spans(payment.period_start, payment.period_end, paid)
        for index, (period_start, period_end) in enumerate(spans):
            piece = payment if index == 0 else replace(payment, id=str(uuid.uuid4()))
            piece.period_start = period_start
            piece.period_end = period_end
            piece.due_date = period_end
            kept.append(piece)

    merged = list(paid) + kept
    merged.sort(key=lambda p: (p.period_start, p.due_date))
    return merged


class LoanManager:
    """
    Manages the loan lifecycle: active -> closed, active/closed -> deleted,
    deleted -> active (restore) and deleted -> removed (permanent delete).
    """

    def __init__(
        self,
        storage: StorageInterface,
        customer_manager: CustomerManager,
        clock: Clock,
        audit_trail: Optional[AuditTrail] = None,
        restore_window_days: int = 30
    ):
        self.storage = storage
        self.customer_manager = customer_manager
        self.clock = clock
        self.audit_trail = audit_trail
        self.restore_window_days = restore_window_days

        self.loans_table = "loans"

    def create_loan(
        self,
        customer_id: str,
        principal: Decimal,
        interest_rate: Decimal,
        start_date: date,
        end_date: date,
        interest_frequency: InterestFrequency,
        user_id: Optional[str] = None,
        remarks: Optional[str] = None,
        contract_note: Optional[str] = None
    ) -> Loan:
        """
        Create a new active loan with a freshly generated interest schedule

        Args:
            customer_id: Borrower customer ID
            principal: Amount lent
            interest_rate: Annual interest rate in percent
            start_date: Loan start date
            end_date: Loan end date
            interest_frequency: How often interest is due
            user_id: Owning user account
            remarks: Optional free-text remarks
            contract_note: Optional contract attachment (opaque string)

        Returns:
            The stored Loan
        """
        if not customer_id:
            raise ValidationError("Customer ID is required")
        principal = self._parse_amount(principal, "principal")
        interest_rate = self._parse_amount(interest_rate, "interest_rate")
        start_date = self._parse_date(start_date, "start_date")
        end_date = self._parse_date(end_date, "end_date")
        interest_frequency = self._parse_frequency(interest_frequency)
        validate_terms(principal, interest_rate, start_date, end_date)

        if not self.customer_manager.exists(customer_id, user_id):
            raise NotFoundError(f"Customer {customer_id} not found")

        now = self.clock.now()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=customer_id,
            principal=principal,
            interest_rate=interest_rate,
            start_date=start_date,
            end_date=end_date,
            interest_frequency=interest_frequency,
            interest_payments=generate_interest_payments(
                principal, interest_rate, start_date, end_date, interest_frequency
            ),
            status=LoanStatus.ACTIVE,
            principal_paid=False,
            user_id=user_id,
            remarks=remarks or None,
            contract_note=contract_note
        )
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

        self._record(AuditEventType.LOAN_CREATED, loan, user_id, {
            "customer_id": customer_id,
            "principal": principal,
            "interest_rate": interest_rate,
            "start_date": start_date,
            "end_date": end_date,
            "interest_frequency": interest_frequency.value,
            "installments": len(loan.interest_payments)
        })
        return loan

    def get_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """Get loan by ID, raising NotFoundError when absent"""
        if not loan_id:
            raise ValidationError("Loan ID is required")
        data = self.storage.load(self.loans_table, loan_id)
        if data is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        loan = Loan.from_dict(data)
        if user_id is not None and loan.user_id != user_id:
            raise AuthorizationError("Unauthorized to access this loan")
        return loan

    def list_loans(
        self,
        user_id: Optional[str] = None,
        status: Optional[LoanStatus] = None,
        include_deleted: bool = False,
        customer_id: Optional[str] = None
    ) -> List[Loan]:
        """
        List loans, oldest first. Soft-deleted loans are hidden unless
        include_deleted is set or status is DELETED.
        """
        filters = {}
        if user_id is not None:
            filters["user_id"] = user_id
        if customer_id is not None:
            filters["customer_id"] = customer_id
        if status is not None:
            filters["status"] = LoanStatus(status).value

        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters)]
        if status is None and not include_deleted:
            loans = [loan for loan in loans if not loan.is_deleted]

        loans.sort(key=lambda loan: loan.created_at)
        return loans

    def update_loan(
        self,
        loan_id: str,
        changes: Dict[str, Any],
        user_id: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> Loan:
        """
        Apply a partial update, rescheduling pending installments when any
        schedule term changes. Paid installments are kept unchanged.

        Args:
            loan_id: Loan ID
            changes: Field name to new value; None values are ignored
            user_id: Acting user, checked against the loan owner
            expected_version: Reject the write unless the stored version matches

        Returns:
            Updated Loan
        """
        loan = self.get_loan(loan_id, user_id)

        if expected_version is not None and expected_version != loan.version:
            raise ConcurrencyError(
                f"Loan {loan_id} was modified concurrently "
                f"(expected version {expected_version}, found {loan.version})"
            )
        if loan.is_deleted:
            raise InvalidLoanStateError("Deleted loans cannot be updated; restore the loan first")

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update loan fields: {', '.join(sorted(unknown))}")

        updates = self._normalize_changes(changes)

        needs_reschedule = any(
            name in updates and updates[name] != getattr(loan, name)
            for name in SCHEDULE_FIELDS
        )

        effective = {name: updates.get(name, getattr(loan, name)) for name in SCHEDULE_FIELDS}
        validate_terms(effective['principal'], effective['interest_rate'],
                       effective['start_date'], effective['end_date'])

        previous_count = len(loan.interest_payments)
        for name, value in updates.items():
            setattr(loan, name, value)

        if needs_reschedule:
            regenerated = generate_interest_payments(
                effective['principal'],
                effective['interest_rate'],
                effective['start_date'],
                effective['end_date'],
                effective['interest_frequency']
            )
            loan.interest_payments = merge_schedule(loan.paid_payments, regenerated)

        loan.updated_at = self.clock.now()
        self._save_loan(loan)

        if needs_reschedule:
            self._record(AuditEventType.LOAN_RESCHEDULED, loan, user_id, {
                "changed_fields": sorted(updates),
                "preserved_paid": len(loan.paid_payments),
                "previous_installments": previous_count,
                "installments": len(loan.interest_payments)
            })
        else:
            self._record(AuditEventType.LOAN_UPDATED, loan, user_id, {
                "changed_fields": sorted(updates)
            })
        return loan

    def mark_interest_paid(
        self,
        loan_id: str,
        payment_id: str,
        paid_on: date,
        remarks: Optional[str] = None,
        manual_amount: Optional[Decimal] = None,
        user_id: Optional[str] = None
    ) -> Loan:
        """
        Mark one installment paid. Calling again for the same installment
        overwrites it; earlier values are kept only in the audit trail.

        Args:
            loan_id: Loan ID
            payment_id: Installment ID within the loan
            paid_on: Date the payment was received
            remarks: Optional remarks; the existing remarks are kept when omitted
            manual_amount: Amount actually received, defaults to the scheduled amount
            user_id: Acting user

        Returns:
            Updated Loan
        """
        if not payment_id:
            raise ValidationError("Payment ID and paid on date are required")
        paid_on = self._parse_date(paid_on, "paid_on")

        if manual_amount is not None:
            manual_amount = self._parse_amount(manual_amount, "manual_amount")
            if manual_amount < 0:
                raise ValidationError("Invalid manual amount. Must be a non-negative number.")

        loan = self.get_loan(loan_id, user_id)
        payment = loan.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Interest payment not found within the loan")

        previous = {
            "status": payment.status.value,
            "paid_on": payment.paid_on,
            "amount_paid": payment.amount_paid,
            "remarks": payment.remarks
        }

        payment.status = PaymentStatus.PAID
        payment.paid_on = paid_on
        payment.amount_paid = round2(manual_amount) if manual_amount is not None else payment.amount
        payment.is_manual_amount = manual_amount is not None
        payment.remarks = remarks or payment.remarks or None

        loan.updated_at = self.clock.now()
        self._save_loan(loan)

        self._record(AuditEventType.INTEREST_PAYMENT_MARKED_PAID, loan, user_id, {
            "payment_id": payment.id,
            "previous": previous,
            "paid_on": payment.paid_on,
            "amount_paid": payment.amount_paid,
            "is_manual_amount": payment.is_manual_amount,
            "remarks": payment.remarks
        })
        return loan

    def mark_principal_paid(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """Record principal repayment and close the loan; repeat calls are no-ops"""
        loan = self.get_loan(loan_id, user_id)

        if loan.principal_paid and loan.status == LoanStatus.CLOSED:
            return loan
        if loan.is_deleted:
            raise InvalidLoanStateError("Cannot mark principal paid on a deleted loan")

        loan.principal_paid = True
        loan.status = LoanStatus.CLOSED
        loan.updated_at = self.clock.now()
        self._save_loan(loan)

        self._record(AuditEventType.PRINCIPAL_MARKED_PAID, loan, user_id, {
            "principal": loan.principal
        })
        return loan

    def close_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """Close an active loan without recording principal repayment"""
        loan = self.get_loan(loan_id, user_id)

        if loan.status == LoanStatus.CLOSED:
            return loan
        if loan.is_deleted:
            raise InvalidLoanStateError("Cannot close a deleted loan")

        loan.status = LoanStatus.CLOSED
        loan.updated_at = self.clock.now()
        self._save_loan(loan)

        self._record(AuditEventType.LOAN_CLOSED, loan, user_id, {
            "principal_paid": loan.principal_paid
        })
        return loan

    def soft_delete_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """Move a loan to the trash; the restore window starts at deleted_at"""
        loan = self.get_loan(loan_id, user_id)

        if loan.is_deleted:
            return loan

        previous_status = loan.status
        now = self.clock.now()
        loan.status = LoanStatus.DELETED
        loan.deleted_at = now
        loan.updated_at = now
        self._save_loan(loan)

        self._record(AuditEventType.LOAN_SOFT_DELETED, loan, user_id, {
            "previous_status": previous_status.value
        })
        return loan

    def restore_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """Bring a soft-deleted loan back to active"""
        loan = self.get_loan(loan_id, user_id)

        if not loan.is_deleted:
            raise InvalidLoanStateError("Only deleted loans can be restored")

        deleted_at = loan.deleted_at
        loan.status = LoanStatus.ACTIVE
        loan.deleted_at = None
        loan.updated_at = self.clock.now()
        self._save_loan(loan)

        self._record(AuditEventType.LOAN_RESTORED, loan, user_id, {
            "deleted_at": deleted_at
        })
        return loan

    def permanently_delete_loan(self, loan_id: str, user_id: Optional[str] = None) -> None:
        """Irreversibly remove a soft-deleted loan"""
        loan = self.get_loan(loan_id, user_id)

        if not loan.is_deleted:
            raise InvalidLoanStateError("Move the loan to trash before deleting it permanently")

        self.storage.delete(self.loans_table, loan.id)
        self._record(AuditEventType.LOAN_PERMANENTLY_DELETED, loan, user_id, {
            "customer_id": loan.customer_id
        })

    def days_left_to_restore(self, loan: Loan, now: Optional[datetime] = None) -> int:
        """Whole days remaining in the restore window of a soft-deleted loan"""
        if not loan.deleted_at:
            return 0
        now = now or self.clock.now()
        days_passed = (now - loan.deleted_at).days
        return max(0, self.restore_window_days - days_passed)

    def purge_expired_deleted_loans(
        self,
        user_id: Optional[str] = None,
        days_to_expire: Optional[int] = None
    ) -> int:
        """
        Permanently delete soft-deleted loans older than the restore window

        Returns:
            Number of loans removed
        """
        window = self.restore_window_days if days_to_expire is None else days_to_expire
        if window < 0:
            raise ValidationError("days_to_expire must not be negative")

        now = self.clock.now()
        removed = 0
        for loan in self.list_loans(user_id=user_id, status=LoanStatus.DELETED):
            if loan.deleted_at is None or (now - loan.deleted_at).days < window:
                continue
            self.storage.delete(self.loans_table, loan.id)
            self._record(AuditEventType.LOAN_PERMANENTLY_DELETED, loan, user_id, {
                "customer_id": loan.customer_id,
                "expired": True
            })
            removed += 1

        log_action(logger, "info", f"Purged {removed} expired deleted loans",
                   user_id=user_id, action="purge_deleted_loans", resource="loans",
                   extra={"days_to_expire": window})
        return removed

    def _save_loan(self, loan: Loan) -> None:
        """Persist the loan, bumping its version"""
        loan.version += 1
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _record(self, event_type: AuditEventType, loan: Loan,
                user_id: Optional[str], metadata: Dict[str, Any]) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="loan",
                entity_id=loan.id,
                metadata=metadata,
                user_id=user_id
            )
        log_action(logger, "info", f"Loan {event_type.value.replace('_', ' ')}",
                   user_id=user_id, action=event_type.value, loan_id=loan.id,
                   customer_id=loan.customer_id)

    def _normalize_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Parse submitted values into model types, dropping omitted ones"""
        updates = {}
        for name, value in changes.items():
            if value is None:
                continue
            if name == 'remarks' and value == '':
                continue
            if name in ('principal', 'interest_rate'):
                value = self._parse_amount(value, name)
            elif name in ('start_date', 'end_date'):
                value = self._parse_date(value, name)
            elif name == 'interest_frequency':
                value = self._parse_frequency(value)
            updates[name] = value
        return updates

    @staticmethod
    def _parse_amount(value: Any, name: str) -> Decimal:
        if value is None:
            raise ValidationError(f"{name} is required")
        try:
            amount = parse_decimal(value)
        except (ArithmeticError, ValueError, TypeError):
            raise ValidationError(f"Invalid {name}: {value}")
        if not amount.is_finite():
            raise ValidationError(f"Invalid {name}: {value}")
        return amount

    @staticmethod
    def _parse_date(value: Any, name: str) -> date:
        if value is None or value == '':
            raise ValidationError(f"{name} is required")
        try:
            return parse_date(value)
        except (ValueError, TypeError):
            raise ValidationError(f"Invalid {name}: {value}. Use ISO format (YYYY-MM-DD)")

    @staticmethod
    def _parse_frequency(value: Any) -> InterestFrequency:
        if isinstance(value, InterestFrequency):
            return value
        try:
            return InterestFrequency(value)
        except ValueError:
            raise ValidationError(f"Unsupported interest frequency: {value}")
