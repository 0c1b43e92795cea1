"""
Test suite for the loan lifecycle

Covers creation, rescheduling with paid installments preserved, interest and
principal marking, soft delete/restore and permanent deletion.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from loan_portfolio.audit import AuditTrail, AuditEventType
from loan_portfolio.clock import FixedClock
from loan_portfolio.customers import CustomerManager
from loan_portfolio.exceptions import (
    ValidationError, NotFoundError, AuthorizationError,
    InvalidLoanStateError, ConcurrencyError
)
from loan_portfolio.loans import LoanManager, LoanStatus, Loan, merge_schedule
from loan_portfolio.schedule import InterestFrequency, PaymentStatus, generate_interest_payments
from loan_portfolio.storage import InMemoryStorage


USER = "user_1"


class LoanTestCase:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.clock = FixedClock(datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc))
        self.audit_trail = AuditTrail(self.storage, self.clock)
        self.customer_manager = CustomerManager(self.storage, self.clock, self.audit_trail)
        self.loan_manager = LoanManager(
            self.storage, self.customer_manager, self.clock, self.audit_trail,
            restore_window_days=30
        )
        self.customer = self.customer_manager.create_customer(
            "Asha Rao", "9876543210", "asha@example.com", user_id=USER
        )

    def create_loan(self, **overrides):
        values = dict(
            customer_id=self.customer.id,
            principal=Decimal('120000'),
            interest_rate=Decimal('12'),
            start_date=date(2024, 1, 1),
            end_date=date(2025, 1, 1),
            interest_frequency=InterestFrequency.MONTHLY,
            user_id=USER
        )
        values.update(overrides)
        return self.loan_manager.create_loan(**values)


class TestCreateLoan(LoanTestCase):

    def test_create_generates_schedule(self):
        loan = self.create_loan(remarks="family friend")

        assert loan.status == LoanStatus.ACTIVE
        assert loan.principal_paid is False
        assert loan.deleted_at is None
        assert loan.version == 1
        assert loan.user_id == USER
        assert loan.remarks == "family friend"
        assert len(loan.interest_payments) == 12
        assert all(p.amount == Decimal('1200.00') for p in loan.interest_payments)
        assert loan.created_at == self.clock.now()

    def test_create_accepts_wire_values(self):
        loan = self.create_loan(principal="50000", interest_rate="9",
                                start_date="2024-01-01", end_date="2025-01-01",
                                interest_frequency="half-yearly")

        assert loan.principal == Decimal('50000')
        assert loan.interest_frequency == InterestFrequency.HALF_YEARLY
        assert [p.amount for p in loan.interest_payments] == [Decimal('2250.00')] * 2

    def test_loan_is_persisted(self):
        loan = self.create_loan()
        loaded = self.loan_manager.get_loan(loan.id, USER)

        assert loaded.id == loan.id
        assert loaded.principal == Decimal('120000')
        assert [p.id for p in loaded.interest_payments] == [p.id for p in loan.interest_payments]

    def test_unknown_customer(self):
        with pytest.raises(NotFoundError):
            self.create_loan(customer_id="missing")

    def test_customer_of_another_user(self):
        with pytest.raises(NotFoundError):
            self.create_loan(user_id="user_2")

    def test_invalid_terms(self):
        with pytest.raises(ValidationError):
            self.create_loan(principal=Decimal('0'))
        with pytest.raises(ValidationError):
            self.create_loan(end_date=date(2023, 12, 31))
        with pytest.raises(ValidationError, match="Invalid start_date"):
            self.create_loan(start_date="01/01/2024")
        with pytest.raises(ValidationError, match="Unsupported interest frequency"):
            self.create_loan(interest_frequency="fortnightly")

    def test_create_is_audited(self):
        loan = self.create_loan()
        events = self.audit_trail.get_events_for_entity("loan", loan.id)

        assert len(events) == 1
        assert events[0].event_type == AuditEventType.LOAN_CREATED
        assert events[0].metadata["installments"] == 12
        assert events[0].user_id == USER


class TestGetAndListLoans(LoanTestCase):

    def test_get_missing_loan(self):
        with pytest.raises(NotFoundError):
            self.loan_manager.get_loan("missing")

    def test_ownership_is_enforced(self):
        loan = self.create_loan()

        with pytest.raises(AuthorizationError):
            self.loan_manager.get_loan(loan.id, "user_2")
        with pytest.raises(AuthorizationError):
            self.loan_manager.soft_delete_loan(loan.id, "user_2")

    def test_list_filters(self):
        first = self.create_loan()
        second = self.create_loan(principal=Decimal('5000'))
        self.loan_manager.close_loan(second.id, USER)
        deleted = self.create_loan(principal=Decimal('7000'))
        self.loan_manager.soft_delete_loan(deleted.id, USER)

        assert {l.id for l in self.loan_manager.list_loans(user_id=USER)} == {first.id, second.id}
        assert [l.id for l in self.loan_manager.list_loans(user_id=USER, status=LoanStatus.ACTIVE)] == [first.id]
        assert [l.id for l in self.loan_manager.list_loans(user_id=USER, status=LoanStatus.DELETED)] == [deleted.id]
        assert len(self.loan_manager.list_loans(user_id=USER, include_deleted=True)) == 3
        assert self.loan_manager.list_loans(user_id="user_2") == []

    def test_list_by_customer(self):
        other = self.customer_manager.create_customer("Ben", "555", "ben@example.com", user_id=USER)
        mine = self.create_loan()
        self.create_loan(customer_id=other.id)

        loans = self.loan_manager.list_loans(user_id=USER, customer_id=self.customer.id)
        assert [l.id for l in loans] == [mine.id]


class TestUpdateLoan(LoanTestCase):

    def test_reschedule_preserves_paid_installments(self):
        loan = self.create_loan()
        first = loan.interest_payments[0]
        self.loan_manager.mark_interest_paid(loan.id, first.id, date(2024, 2, 1), user_id=USER)

        updated = self.loan_manager.update_loan(loan.id, {"interest_rate": Decimal('15')}, user_id=USER)

        payments = updated.interest_payments
        assert len(payments) == 12
        assert payments[0].id == first.id
        assert payments[0].status == PaymentStatus.PAID
        assert payments[0].amount == Decimal('1200.00')
        assert payments[0].paid_on == date(2024, 2, 1)
        assert all(p.amount == Decimal('1500.00') for p in payments[1:])
        assert all(p.status == PaymentStatus.PENDING for p in payments[1:])
        assert payments[1].period_start == date(2024, 2, 1)
        assert updated.interest_rate == Decimal('15')

    def test_reschedule_regenerates_pending_ids(self):
        loan = self.create_loan()
        old_ids = {p.id for p in loan.interest_payments}

        updated = self.loan_manager.update_loan(
            loan.id, {"interest_frequency": "quarterly"}, user_id=USER
        )

        assert len(updated.interest_payments) == 4
        assert not old_ids & {p.id for p in updated.interest_payments}
        events = self.audit_trail.get_events_for_entity("loan", loan.id)
        assert events[-1].event_type == AuditEventType.LOAN_RESCHEDULED

    def test_extending_end_date(self):
        loan = self.create_loan()
        updated = self.loan_manager.update_loan(loan.id, {"end_date": "2025-07-01"}, user_id=USER)

        assert len(updated.interest_payments) == 18
        assert updated.interest_payments[-1].due_date == date(2025, 7, 1)

    def test_non_schedule_change_keeps_installments(self):
        loan = self.create_loan()
        ids = [p.id for p in loan.interest_payments]

        updated = self.loan_manager.update_loan(
            loan.id, {"remarks": "call before due date", "principal": "120000"}, user_id=USER
        )

        assert [p.id for p in updated.interest_payments] == ids
        assert updated.remarks == "call before due date"
        events = self.audit_trail.get_events_for_entity("loan", loan.id)
        assert events[-1].event_type == AuditEventType.LOAN_UPDATED

    def test_empty_remarks_are_ignored(self):
        loan = self.create_loan(remarks="keep me")
        updated = self.loan_manager.update_loan(loan.id, {"remarks": ""}, user_id=USER)
        assert updated.remarks == "keep me"

    def test_invalid_effective_terms_rejected_before_write(self):
        loan = self.create_loan()

        with pytest.raises(ValidationError):
            self.loan_manager.update_loan(loan.id, {"end_date": "2023-06-01"}, user_id=USER)

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.end_date == date(2025, 1, 1)
        assert stored.version == 1

    def test_unknown_fields_rejected(self):
        loan = self.create_loan()
        with pytest.raises(ValidationError, match="status"):
            self.loan_manager.update_loan(loan.id, {"status": "closed"}, user_id=USER)

    def test_version_increments_and_conflicts(self):
        loan = self.create_loan()
        updated = self.loan_manager.update_loan(loan.id, {"remarks": "a"}, expected_version=1)
        assert updated.version == 2

        with pytest.raises(ConcurrencyError):
            self.loan_manager.update_loan(loan.id, {"remarks": "b"}, expected_version=1)

    def test_deleted_loan_cannot_be_updated(self):
        loan = self.create_loan()
        self.loan_manager.soft_delete_loan(loan.id, USER)

        with pytest.raises(InvalidLoanStateError):
            self.loan_manager.update_loan(loan.id, {"remarks": "x"}, user_id=USER)

    def assert_contiguous(self, loan):
        payments = loan.interest_payments
        for previous, current in zip(payments, payments[1:]):
            assert current.period_start == previous.period_end
        assert payments[-1].period_end == loan.end_date
        assert all(p.due_date == p.period_end for p in payments)

    def test_frequency_change_after_payment_leaves_no_gap(self):
        loan = self.create_loan()
        first = loan.interest_payments[0]
        self.loan_manager.mark_interest_paid(loan.id, first.id, date(2024, 2, 1), user_id=USER)

        updated = self.loan_manager.update_loan(
            loan.id, {"interest_frequency": "quarterly"}, user_id=USER
        )

        payments = updated.interest_payments
        assert len(payments) == 5
        assert payments[0].id == first.id
        assert payments[1].period_start == date(2024, 2, 1)
        assert payments[1].period_end == date(2024, 4, 1)
        assert payments[1].amount == Decimal('3600.00')
        assert payments[1].status == PaymentStatus.PENDING
        self.assert_contiguous(updated)

    def test_start_date_shift_after_payment_leaves_no_gap(self):
        loan = self.create_loan()
        first = loan.interest_payments[0]
        self.loan_manager.mark_interest_paid(loan.id, first.id, date(2024, 2, 1), user_id=USER)

        updated = self.loan_manager.update_loan(loan.id, {"start_date": "2024-01-15"}, user_id=USER)

        payments = updated.interest_payments
        assert len(payments) == 13
        assert payments[0].id == first.id
        assert payments[1].period_start == date(2024, 2, 1)
        assert payments[1].due_date == date(2024, 2, 15)
        assert payments[2].period_start == date(2024, 2, 15)
        assert payments[-1].period_end == date(2025, 1, 1)
        self.assert_contiguous(updated)

    def test_paid_period_inside_new_period_splits_it(self):
        loan = self.create_loan()
        third = loan.interest_payments[2]
        self.loan_manager.mark_interest_paid(loan.id, third.id, date(2024, 4, 1), user_id=USER)

        updated = self.loan_manager.update_loan(
            loan.id, {"interest_frequency": "yearly"}, user_id=USER
        )

        payments = updated.interest_payments
        assert [(p.period_start, p.period_end) for p in payments] == [
            (date(2024, 1, 1), date(2024, 3, 1)),
            (date(2024, 3, 1), date(2024, 4, 1)),
            (date(2024, 4, 1), date(2025, 1, 1)),
        ]
        assert payments[1].id == third.id
        assert payments[0].id != payments[2].id
        assert payments[2].amount == Decimal('14400.00')
        self.assert_contiguous(updated)


class TestMergeSchedule:

    def test_fully_covered_period_dropped(self):
        paid = generate_interest_payments("1000", "12", date(2024, 1, 1), date(2024, 3, 1), "monthly")[:1]
        paid[0].status = PaymentStatus.PAID
        regenerated = generate_interest_payments("1000", "24", date(2024, 1, 1), date(2024, 3, 1), "monthly")

        merged = merge_schedule(paid, regenerated)

        assert [p.id for p in merged] == [paid[0].id, regenerated[1].id]

    def test_partly_covered_period_is_trimmed(self):
        paid = generate_interest_payments("1000", "12", date(2024, 1, 1), date(2024, 7, 1), "monthly")[:1]
        paid[0].status = PaymentStatus.PAID
        regenerated = generate_interest_payments("1000", "12", date(2024, 1, 1), date(2024, 7, 1), "quarterly")

        merged = merge_schedule(paid, regenerated)

        assert [p.id for p in merged] == [paid[0].id, regenerated[0].id, regenerated[1].id]
        assert merged[1].period_start == date(2024, 2, 1)
        assert merged[1].period_end == date(2024, 4, 1)
        assert merged[1].due_date == date(2024, 4, 1)


class TestMarkInterestPaid(LoanTestCase):

    def test_mark_paid_with_scheduled_amount(self):
        loan = self.create_loan()
        payment_id = loan.interest_payments[0].id

        updated = self.loan_manager.mark_interest_paid(
            loan.id, payment_id, date(2024, 2, 3), remarks="UPI", user_id=USER
        )

        payment = updated.get_payment(payment_id)
        assert payment.status == PaymentStatus.PAID
        assert payment.paid_on == date(2024, 2, 3)
        assert payment.amount_paid == Decimal('1200.00')
        assert payment.is_manual_amount is False
        assert payment.remarks == "UPI"
        assert updated.version == 2
        assert updated.updated_at == self.clock.now()

    def test_manual_amount(self):
        loan = self.create_loan()
        payment_id = loan.interest_payments[1].id

        updated = self.loan_manager.mark_interest_paid(
            loan.id, payment_id, "2024-03-01", manual_amount="1000", user_id=USER
        )

        payment = updated.get_payment(payment_id)
        assert payment.amount_paid == Decimal('1000.00')
        assert payment.amount == Decimal('1200.00')
        assert payment.is_manual_amount is True

    def test_zero_manual_amount_is_allowed(self):
        loan = self.create_loan()
        payment_id = loan.interest_payments[0].id

        updated = self.loan_manager.mark_interest_paid(
            loan.id, payment_id, date(2024, 2, 1), manual_amount=Decimal('0')
        )
        assert updated.get_payment(payment_id).amount_paid == Decimal('0.00')

    def test_negative_manual_amount(self):
        loan = self.create_loan()
        with pytest.raises(ValidationError, match="non-negative"):
            self.loan_manager.mark_interest_paid(
                loan.id, loan.interest_payments[0].id, date(2024, 2, 1), manual_amount=Decimal('-1')
            )

    def test_unknown_payment(self):
        loan = self.create_loan()
        with pytest.raises(NotFoundError):
            self.loan_manager.mark_interest_paid(loan.id, "missing", date(2024, 2, 1))

    def test_remarking_overwrites_and_keeps_history(self):
        loan = self.create_loan()
        payment_id = loan.interest_payments[0].id

        self.loan_manager.mark_interest_paid(loan.id, payment_id, date(2024, 2, 1), remarks="cash")
        updated = self.loan_manager.mark_interest_paid(
            loan.id, payment_id, date(2024, 2, 5), manual_amount=Decimal('1100')
        )

        payment = updated.get_payment(payment_id)
        assert payment.paid_on == date(2024, 2, 5)
        assert payment.amount_paid == Decimal('1100.00')
        assert payment.remarks == "cash"

        amendments = self.audit_trail.get_payment_amendments(loan.id, payment_id)
        assert len(amendments) == 2
        assert amendments[1].metadata["previous"]["paid_on"] == "2024-02-01"
        assert amendments[1].metadata["amount_paid"] == "1100.00"


class TestPrincipalAndClose(LoanTestCase):

    def test_mark_principal_paid_closes_loan(self):
        loan = self.create_loan()
        updated = self.loan_manager.mark_principal_paid(loan.id, USER)

        assert updated.principal_paid is True
        assert updated.status == LoanStatus.CLOSED
        assert updated.version == 2

    def test_mark_principal_paid_is_idempotent(self):
        loan = self.create_loan()
        self.loan_manager.mark_principal_paid(loan.id, USER)
        again = self.loan_manager.mark_principal_paid(loan.id, USER)

        assert again.version == 2
        events = self.audit_trail.get_events_for_entity("loan", loan.id)
        assert [e.event_type for e in events].count(AuditEventType.PRINCIPAL_MARKED_PAID) == 1

    def test_close_loan(self):
        loan = self.create_loan()
        closed = self.loan_manager.close_loan(loan.id, USER)

        assert closed.status == LoanStatus.CLOSED
        assert closed.principal_paid is False
        assert self.loan_manager.close_loan(loan.id, USER).version == closed.version

    def test_interest_can_be_marked_on_closed_loan(self):
        loan = self.create_loan()
        self.loan_manager.mark_principal_paid(loan.id, USER)

        updated = self.loan_manager.mark_interest_paid(
            loan.id, loan.interest_payments[-1].id, date(2025, 1, 1), user_id=USER
        )
        assert updated.interest_payments[-1].is_paid


class TestSoftDeleteAndRestore(LoanTestCase):

    def test_soft_delete(self):
        loan = self.create_loan()
        deleted = self.loan_manager.soft_delete_loan(loan.id, USER)

        assert deleted.status == LoanStatus.DELETED
        assert deleted.deleted_at == self.clock.now()
        assert deleted.updated_at == self.clock.now()

    def test_soft_delete_twice_keeps_original_timestamp(self):
        loan = self.create_loan()
        first = self.loan_manager.soft_delete_loan(loan.id, USER)
        self.clock.advance(days=3)
        second = self.loan_manager.soft_delete_loan(loan.id, USER)

        assert second.deleted_at == first.deleted_at

    def test_closed_loan_can_be_deleted(self):
        loan = self.create_loan()
        self.loan_manager.close_loan(loan.id, USER)
        assert self.loan_manager.soft_delete_loan(loan.id, USER).is_deleted

    def test_restore(self):
        loan = self.create_loan()
        self.loan_manager.soft_delete_loan(loan.id, USER)
        self.clock.advance(days=2)
        restored = self.loan_manager.restore_loan(loan.id, USER)

        assert restored.status == LoanStatus.ACTIVE
        assert restored.deleted_at is None
        assert [p.id for p in restored.interest_payments] == [p.id for p in loan.interest_payments]

    def test_restore_requires_deleted_loan(self):
        loan = self.create_loan()
        with pytest.raises(InvalidLoanStateError):
            self.loan_manager.restore_loan(loan.id, USER)

    def test_days_left_to_restore(self):
        loan = self.create_loan()
        deleted = self.loan_manager.soft_delete_loan(loan.id, USER)

        assert self.loan_manager.days_left_to_restore(deleted) == 30
        self.clock.advance(days=10, hours=5)
        assert self.loan_manager.days_left_to_restore(deleted) == 20
        self.clock.advance(days=40)
        assert self.loan_manager.days_left_to_restore(deleted) == 0

    def test_days_left_for_live_loan(self):
        loan = self.create_loan()
        assert self.loan_manager.days_left_to_restore(loan) == 0


class TestPermanentDelete(LoanTestCase):

    def test_permanent_delete_requires_trash(self):
        loan = self.create_loan()
        with pytest.raises(InvalidLoanStateError):
            self.loan_manager.permanently_delete_loan(loan.id, USER)

    def test_permanent_delete(self):
        loan = self.create_loan()
        self.loan_manager.soft_delete_loan(loan.id, USER)
        self.loan_manager.permanently_delete_loan(loan.id, USER)

        with pytest.raises(NotFoundError):
            self.loan_manager.get_loan(loan.id)
        events = self.audit_trail.get_events_for_entity("loan", loan.id)
        assert events[-1].event_type == AuditEventType.LOAN_PERMANENTLY_DELETED

    def test_purge_expired_deleted_loans(self):
        old = self.create_loan()
        self.loan_manager.soft_delete_loan(old.id, USER)
        self.clock.advance(days=20)
        recent = self.create_loan()
        self.loan_manager.soft_delete_loan(recent.id, USER)
        self.clock.advance(days=11)

        removed = self.loan_manager.purge_expired_deleted_loans(user_id=USER)

        assert removed == 1
        assert not self.storage.exists("loans", old.id)
        assert self.storage.exists("loans", recent.id)

    def test_purge_with_custom_window(self):
        loan = self.create_loan()
        self.loan_manager.soft_delete_loan(loan.id, USER)
        self.clock.advance(days=1)

        assert self.loan_manager.purge_expired_deleted_loans(user_id=USER, days_to_expire=10) == 0
        assert self.loan_manager.purge_expired_deleted_loans(user_id=USER, days_to_expire=1) == 1


class TestLoanDocument(LoanTestCase):

    def test_round_trip(self):
        loan = self.create_loan(contract_note="contract.pdf")
        self.loan_manager.soft_delete_loan(loan.id, USER)
        stored = self.storage.load("loans", loan.id)

        assert stored["principal"] == "120000"
        assert stored["status"] == "deleted"
        assert stored["interest_frequency"] == "monthly"
        restored = Loan.from_dict(stored)
        assert restored.contract_note == "contract.pdf"
        assert restored.deleted_at == self.clock.now()

    def test_overdue_installments(self):
        loan = self.create_loan()
        today = self.clock.today()
        statuses = [p.effective_status(today) for p in loan.interest_payments]

        # Due Feb 1 through May 1 are past; Jun 1 is due today
        assert statuses[:4] == [PaymentStatus.OVERDUE] * 4
        assert statuses[4] == PaymentStatus.PENDING
