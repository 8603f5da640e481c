"""
Unit Tests for the Postponement / Regularization State Machine
"""

from datetime import date
from decimal import Decimal

import pytest

from billing_engine.calculators.amount import AmountComposer
from billing_engine.calculators.commitment import PostponementStateMachine
from billing_engine.exceptions import AlreadyRegularized, CommitmentAlreadyOpen, ValidationFailed
from billing_engine.models import (
    CommitmentState,
    Payment,
    PaymentDraft,
    PaymentMethod,
    PaymentStatus,
    Regularization,
)

DUE = date(2025, 6, 15)
PROMISE = date(2025, 6, 25)


def _commitment(**overrides):
    values = dict(
        id=42,
        account_id=1,
        amount=Decimal("100.00"),
        base_amount=Decimal("100"),
        due_date=DUE,
        engagement_date=PROMISE,
        status=PaymentStatus.PENDING,
    )
    values.update(overrides)
    return Payment(**values)


class TestCommitmentState:

    @pytest.fixture
    def machine(self):
        return PostponementStateMachine()

    def test_normal_payment_has_no_commitment(self, machine):
        payment = _commitment(engagement_date=None)
        assert machine.state_of(payment) == CommitmentState.NO_COMMITMENT

    def test_voided_commitment_has_no_commitment(self, machine):
        assert machine.state_of(_commitment(status=PaymentStatus.VOIDED)) == CommitmentState.NO_COMMITMENT

    def test_pending_before_promise_is_committed(self, machine):
        assert machine.state_of(_commitment(), date(2025, 6, 20)) == CommitmentState.COMMITTED

    def test_pending_on_promise_date_is_committed(self, machine):
        assert machine.state_of(_commitment(), PROMISE) == CommitmentState.COMMITTED

    def test_pending_after_promise_is_lapsed(self, machine):
        assert machine.state_of(_commitment(), date(2025, 6, 26)) == CommitmentState.LAPSED

    def test_paid_commitment_is_regularized(self, machine):
        payment = _commitment(status=PaymentStatus.LATE_PAYMENT, payment_date=date(2025, 6, 20))
        assert machine.state_of(payment) == CommitmentState.REGULARIZED

    def test_reclassified_unpaid_commitment_is_lapsed(self, machine):
        payment = _commitment(status=PaymentStatus.LATE_PAYMENT)
        assert machine.state_of(payment) == CommitmentState.LAPSED


class TestGuard:

    def test_no_open_commitment_passes(self):
        PostponementStateMachine().guard(1, None)

    def test_open_commitment_rejects_new_payment(self):
        open_commitment = _commitment()
        with pytest.raises(CommitmentAlreadyOpen) as exc_info:
            PostponementStateMachine().guard(1, open_commitment)

        assert exc_info.value.commitment is open_commitment
        data = exc_info.value.to_dict()
        assert data["commitment_id"] == 42
        assert data["engagement_date"] == "2025-06-25"


class TestOpen:

    @pytest.fixture
    def machine(self):
        return PostponementStateMachine()

    @pytest.fixture
    def composition(self):
        return AmountComposer().compose(Decimal("100"), reconnection=True)

    def test_opens_pending_commitment(self, machine, composition):
        draft = PaymentDraft(account_id=1, engagement_date=PROMISE, reconnection=True)
        payment = machine.open(draft, DUE, composition, today=date(2025, 6, 10))

        assert payment.status == PaymentStatus.PENDING
        assert payment.is_open_commitment
        assert payment.due_date == DUE
        assert payment.amount == Decimal("110.00")
        assert payment.payment_date is None
        assert payment.method is None

    def test_engagement_date_today_is_allowed(self, machine, composition):
        draft = PaymentDraft(account_id=1, engagement_date=date(2025, 6, 10))
        payment = machine.open(draft, DUE, composition, today=date(2025, 6, 10))
        assert payment.engagement_date == date(2025, 6, 10)

    def test_engagement_date_in_past_rejected(self, machine, composition):
        draft = PaymentDraft(account_id=1, engagement_date=date(2025, 6, 9))
        with pytest.raises(ValidationFailed) as exc_info:
            machine.open(draft, DUE, composition, today=date(2025, 6, 10))
        assert exc_info.value.field == "engagement_date"


class TestRegularize:

    @pytest.fixture
    def machine(self):
        return PostponementStateMachine()

    def test_paid_before_due_date_is_on_time(self, machine):
        result = machine.regularize(
            _commitment(), Regularization(date(2025, 6, 14), PaymentMethod.CASH, "R-1")
        )
        assert result.status == PaymentStatus.PAYMENT_DAILY
        assert result.payment_date == date(2025, 6, 14)
        assert result.method == PaymentMethod.CASH
        assert result.reference == "R-1"

    def test_paid_after_due_date_is_late(self, machine):
        # Measured against the due date, not the promise date
        result = machine.regularize(
            _commitment(), Regularization(date(2025, 6, 20), PaymentMethod.YAPE, "OP-77")
        )
        assert result.status == PaymentStatus.LATE_PAYMENT

    def test_preserves_financial_fields(self, machine):
        commitment = _commitment(amount=Decimal("80.00"), discount=Decimal("20"))
        result = machine.regularize(commitment, Regularization(DUE, PaymentMethod.CASH, "R-1"))
        assert result.amount == Decimal("80.00")
        assert result.discount == Decimal("20")
        assert result.engagement_date == PROMISE

    def test_lapsed_commitment_can_be_regularized(self, machine):
        lapsed = _commitment(status=PaymentStatus.LATE_PAYMENT)
        result = machine.regularize(lapsed, Regularization(date(2025, 7, 2), PaymentMethod.CASH, "R-9"))
        assert result.status == PaymentStatus.LATE_PAYMENT
        assert result.payment_date == date(2025, 7, 2)

    def test_second_regularization_rejected(self, machine):
        first = machine.regularize(_commitment(), Regularization(DUE, PaymentMethod.CASH, "R-1"))
        with pytest.raises(AlreadyRegularized) as exc_info:
            machine.regularize(first, Regularization(DUE, PaymentMethod.CASH, "R-2"))
        assert exc_info.value.to_dict()["status"] == "PAYMENT_DAILY"

    def test_requires_payment_date(self, machine):
        with pytest.raises(ValidationFailed) as exc_info:
            machine.regularize(_commitment(), Regularization(None, PaymentMethod.CASH, "R-1"))
        assert exc_info.value.field == "payment_date"

    def test_requires_reference(self, machine):
        with pytest.raises(ValidationFailed) as exc_info:
            machine.regularize(_commitment(), Regularization(DUE, PaymentMethod.CASH, None))
        assert exc_info.value.field == "reference"

    def test_transfer_requires_transfer_name(self, machine):
        with pytest.raises(ValidationFailed) as exc_info:
            machine.regularize(_commitment(), Regularization(DUE, PaymentMethod.TRANSFER, "T-1"))
        assert exc_info.value.field == "transfer_name"

    def test_normal_payment_cannot_be_regularized(self, machine):
        with pytest.raises(ValidationFailed):
            machine.regularize(
                _commitment(engagement_date=None), Regularization(DUE, PaymentMethod.CASH, "R-1")
            )

    def test_voided_commitment_cannot_be_regularized(self, machine):
        with pytest.raises(ValidationFailed, match="voided"):
            machine.regularize(
                _commitment(status=PaymentStatus.VOIDED), Regularization(DUE, PaymentMethod.CASH, "R-1")
            )


class TestEvaluate:

    @pytest.fixture
    def machine(self):
        return PostponementStateMachine()

    def test_lapsed_commitment_becomes_late(self, machine):
        result = machine.evaluate(_commitment(), date(2025, 6, 26))
        assert result.status == PaymentStatus.LATE_PAYMENT
        assert result.payment_date is None

    def test_commitment_within_promise_is_unchanged(self, machine):
        commitment = _commitment()
        assert machine.evaluate(commitment, PROMISE) is commitment
