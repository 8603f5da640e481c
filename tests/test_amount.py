"""
Unit Tests for Amount Composition

Tests verify composed amounts against known expected values.
"""

from datetime import date
from decimal import Decimal

import pytest

from billing_engine.calculators.amount import AmountComposer, quantize_money
from billing_engine.exceptions import DiscountExceedsBase, ValidationFailed
from billing_engine.models import Payment, PaymentStatus, PaymentUpdate


class TestQuantizeMoney:
    """Test the money rounding utility."""

    def test_rounds_up_at_half(self):
        # 0.005 rounds to 0.01 (ROUND_HALF_UP)
        assert quantize_money(Decimal("0.005")) == Decimal("0.01")

    def test_rounds_down_below_half(self):
        assert quantize_money(Decimal("0.004")) == Decimal("0.00")

    def test_preserves_exact_cents(self):
        assert quantize_money(Decimal("79.90")) == Decimal("79.90")


class TestCompose:

    @pytest.fixture
    def composer(self):
        return AmountComposer()

    def test_base_only(self, composer):
        result = composer.compose(Decimal("100"))
        assert result.amount == Decimal("100.00")
        assert result.reconnection_fee == Decimal("0")
        assert result.clamped is False

    def test_reconnection_and_discount(self, composer):
        # 100 + 10 - 30 = 80.00
        result = composer.compose(Decimal("100"), reconnection=True, discount=Decimal("30"))
        assert result.amount == Decimal("80.00")
        assert result.reconnection_fee == Decimal("10.00")

    def test_rounds_half_up(self, composer):
        result = composer.compose(Decimal("59.905"))
        assert result.amount == Decimal("59.91")

    def test_discount_equal_to_charge_is_zero_without_warning(self, composer):
        result = composer.compose(Decimal("50"), discount=Decimal("50"))
        assert result.amount == Decimal("0.00")
        assert result.clamped is False
        assert result.warnings == []

    def test_discount_exceeding_charge_clamps_to_zero(self, composer):
        with pytest.warns(DiscountExceedsBase):
            result = composer.compose(Decimal("50"), discount=Decimal("70"))

        assert result.amount == Decimal("0.00")
        assert result.clamped is True
        assert len(result.warnings) == 1

    def test_reconnection_counts_toward_clamp_threshold(self, composer):
        # 50 + 10 - 55 = 5.00, no clamp
        result = composer.compose(Decimal("50"), reconnection=True, discount=Decimal("55"))
        assert result.amount == Decimal("5.00")
        assert result.clamped is False

    def test_negative_discount_rejected(self, composer):
        with pytest.raises(ValidationFailed) as exc_info:
            composer.compose(Decimal("50"), discount=Decimal("-1"))
        assert exc_info.value.field == "discount"

    def test_negative_base_rejected(self, composer):
        with pytest.raises(ValidationFailed):
            composer.compose(Decimal("-1"))


class TestRecompose:

    @pytest.fixture
    def composer(self):
        return AmountComposer()

    def _payment(self, status=PaymentStatus.PENDING, **overrides):
        values = dict(
            id=1,
            account_id=1,
            amount=Decimal("100.00"),
            base_amount=Decimal("100"),
            due_date=date(2025, 6, 15),
            status=status,
        )
        values.update(overrides)
        return Payment(**values)

    def test_adding_reconnection_recomputes(self, composer):
        result = composer.recompose(self._payment(), PaymentUpdate(reconnection=True))
        assert result.amount == Decimal("110.00")

    def test_keeps_existing_discount_when_only_reconnection_changes(self, composer):
        payment = self._payment(discount=Decimal("20"), amount=Decimal("80.00"))
        result = composer.recompose(payment, PaymentUpdate(reconnection=True))
        assert result.amount == Decimal("90.00")

    def test_uses_frozen_base_amount(self, composer):
        # Base amount recorded at creation, not the current plan price
        payment = self._payment(base_amount=Decimal("79.90"), amount=Decimal("79.90"))
        result = composer.recompose(payment, PaymentUpdate(discount=Decimal("9.90")))
        assert result.amount == Decimal("70.00")

    def test_nothing_changed_returns_none(self, composer):
        assert composer.recompose(self._payment(), PaymentUpdate(reference="X")) is None

    @pytest.mark.parametrize("status", [PaymentStatus.PAYMENT_DAILY, PaymentStatus.LATE_PAYMENT])
    def test_terminal_payment_is_frozen(self, composer, status):
        payment = self._payment(status=status, payment_date=date(2025, 6, 10))
        assert composer.recompose(payment, PaymentUpdate(discount=Decimal("10"))) is None
