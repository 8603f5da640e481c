"""
Amount Composition

Derives a payment's charged amount from the plan price, the reconnection
surcharge and the discount. Uses Decimal with ROUND_HALF_UP rounding.
"""

import logging
import warnings
from decimal import ROUND_HALF_UP, Decimal

from ..exceptions import DiscountExceedsBase, ValidationFailed
from ..models import AmountComposition, Payment, PaymentUpdate

logger = logging.getLogger(__name__)


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places using half-up rounding."""
    return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


class AmountComposer:
    """Composes and recomposes payment amounts."""

    RECONNECTION_FEE = Decimal('10.00')

    def compose(self, base_amount: Decimal, reconnection: bool = False, discount: Decimal = Decimal('0')) -> AmountComposition:
        """
        amount = round2(base + (reconnection ? fee : 0) - discount)

        A discount larger than the charge clamps the amount to 0.00 and emits
        a DiscountExceedsBase warning instead of failing.
        """
        if base_amount < 0:
            raise ValidationFailed(f"base_amount cannot be negative, got: {base_amount}", field="base_amount")
        if discount < 0:
            raise ValidationFailed(f"discount cannot be negative, got: {discount}", field="discount")

        fee = self.RECONNECTION_FEE if reconnection else Decimal('0')
        gross = base_amount + fee
        amount = quantize_money(gross - discount)

        result = AmountComposition(
            base_amount=base_amount,
            reconnection_fee=fee,
            discount=discount,
            amount=amount,
        )

        if amount < 0:
            message = f"Discount {discount} exceeds charge {gross}; amount clamped to 0.00"
            logger.warning(message)
            warnings.warn(message, DiscountExceedsBase, stacklevel=2)
            result.amount = Decimal('0.00')
            result.clamped = True
            result.warnings.append(message)

        return result

    def recompose(self, payment: Payment, changes: PaymentUpdate) -> AmountComposition | None:
        """
        Recompute the amount of an existing payment after a change.

        Returns None when nothing that feeds the amount changed, or when the
        payment already reached a terminal paid state (its amount is frozen
        and only a manual correction may alter it).
        """
        if payment.is_terminal_paid:
            return None
        if changes.reconnection is None and changes.discount is None:
            return None

        reconnection = payment.reconnection if changes.reconnection is None else changes.reconnection
        discount = payment.discount if changes.discount is None else changes.discount
        return self.compose(payment.base_amount, reconnection, discount)
