"""
Unit Tests for Input Validation
"""

from datetime import date
from decimal import Decimal

import pytest

from billing_engine.exceptions import ValidationFailed
from billing_engine.models import (
    IntakeRequest,
    Payment,
    PaymentDraft,
    PaymentMethod,
    PaymentStatus,
    StatusMode,
)
from billing_engine.validators import InputValidator


@pytest.fixture
def validator():
    return InputValidator()


def _payment(**overrides):
    values = dict(
        id=None,
        account_id=1,
        amount=Decimal("100.00"),
        base_amount=Decimal("100"),
        due_date=date(2025, 1, 31),
        payment_date=date(2025, 1, 30),
        status=PaymentStatus.PAYMENT_DAILY,
        method=PaymentMethod.CASH,
        reference="R-1",
    )
    values.update(overrides)
    return Payment(**values)


class TestValidateDraft:

    def test_negative_discount(self, validator):
        with pytest.raises(ValidationFailed):
            validator.validate_draft(PaymentDraft(account_id=1, discount=Decimal("-5")))

    def test_manual_mode_cannot_create_voided(self, validator):
        draft = PaymentDraft(account_id=1, status_mode=StatusMode.MANUAL, status=PaymentStatus.VOIDED)
        with pytest.raises(ValidationFailed):
            validator.validate_draft(draft)

    def test_commitment_cannot_have_payment_date(self, validator):
        draft = PaymentDraft(account_id=1, engagement_date=date(2025, 2, 5), payment_date=date(2025, 1, 20))
        with pytest.raises(ValidationFailed) as exc_info:
            validator.validate_draft(draft)
        assert exc_info.value.field == "payment_date"

    def test_commitment_is_always_pending(self, validator):
        draft = PaymentDraft(
            account_id=1,
            engagement_date=date(2025, 2, 5),
            status_mode=StatusMode.MANUAL,
            status=PaymentStatus.PAYMENT_DAILY,
        )
        with pytest.raises(ValidationFailed):
            validator.validate_draft(draft)


class TestValidatePayment:

    def test_valid_paid_payment(self, validator):
        validator.validate_payment(_payment())

    def test_requires_due_date(self, validator):
        with pytest.raises(ValidationFailed):
            validator.validate_payment(_payment(due_date=None))

    def test_minimum_amount(self, validator):
        with pytest.raises(ValidationFailed) as exc_info:
            validator.validate_payment(_payment(amount=Decimal("0.00")))
        assert exc_info.value.field == "amount"

    def test_zero_amount_allowed_when_fully_discounted(self, validator):
        validator.validate_payment(_payment(amount=Decimal("0.00"), discount=Decimal("100")))

    def test_on_time_status_requires_payment_date(self, validator):
        with pytest.raises(ValidationFailed):
            validator.validate_payment(_payment(payment_date=None, method=None, reference=None))

    def test_unpaid_late_payment_needs_no_instrument(self, validator):
        validator.validate_payment(
            _payment(status=PaymentStatus.LATE_PAYMENT, payment_date=None, method=None, reference=None)
        )

    def test_transfer_name_only_for_transfers(self, validator):
        validator.validate_payment(_payment(method=PaymentMethod.PLIN))
        with pytest.raises(ValidationFailed):
            validator.validate_payment(_payment(method=PaymentMethod.TRANSFER))


class TestValidatePaymentDate:

    def test_today_and_past_accepted(self, validator):
        validator.validate_payment_date(date(2025, 1, 20), date(2025, 1, 20))
        validator.validate_payment_date(date(2024, 12, 31), date(2025, 1, 20))

    def test_missing_date_accepted(self, validator):
        validator.validate_payment_date(None, date(2025, 1, 20))

    def test_future_date_rejected(self, validator):
        with pytest.raises(ValidationFailed) as exc_info:
            validator.validate_payment_date(date(2025, 1, 21), date(2025, 1, 20))
        assert exc_info.value.field == "payment_date"


class TestValidateIntake:

    def _request(self, **overrides):
        values = dict(
            identity_number="12345678",
            name="Rosa",
            last_name="Quispe",
            installation_id=11,
            anchor_date=date(2025, 1, 31),
            plan_price=Decimal("100"),
        )
        values.update(overrides)
        return IntakeRequest(**values)

    def test_valid(self, validator):
        validator.validate_intake(self._request())

    def test_requires_name(self, validator):
        with pytest.raises(ValidationFailed):
            validator.validate_intake(self._request(name="  "))

    def test_requires_anchor_date(self, validator):
        with pytest.raises(ValidationFailed) as exc_info:
            validator.validate_intake(self._request(anchor_date=None))
        assert exc_info.value.field == "anchor_date"

    def test_negative_plan_price(self, validator):
        with pytest.raises(ValidationFailed):
            validator.validate_intake(self._request(plan_price=Decimal("-1")))
