"""
Write-time Validation for the Billing Engine

Validates drafts and fully built payments before anything is sent to the
billing service. Raises ValidationFailed with clear messages for any
constraint violation.
"""

from datetime import date
from decimal import Decimal

from .exceptions import ValidationFailed
from .models import IntakeRequest, Payment, PaymentDraft, PaymentMethod, PaymentStatus, StatusMode

IDENTITY_LENGTH = 8


def normalize_identity(raw) -> str:
    """Keep only the digits of an identity number."""
    return "".join(ch for ch in str(raw or "") if ch.isdigit())


class InputValidator:
    """Validates billing input according to business rules."""

    MIN_AMOUNT = Decimal('0.01')

    def validate_draft(self, draft: PaymentDraft) -> None:
        """Validate a payment draft before its amount and status are derived."""
        if draft.discount < 0:
            raise ValidationFailed(f"discount cannot be negative, got: {draft.discount}", field="discount")

        if draft.engagement_date is not None:
            self._validate_postponement_draft(draft)
            return

        if draft.status_mode == StatusMode.MANUAL:
            if draft.status is None:
                raise ValidationFailed("status is required when status_mode is 'manual'", field="status")
            if draft.status == PaymentStatus.VOIDED:
                raise ValidationFailed("A new payment cannot be created as VOIDED", field="status")

    def validate_payment(self, payment: Payment) -> None:
        """Validate a fully composed payment right before it is persisted."""
        if payment.due_date is None:
            raise ValidationFailed("due_date is required", field="due_date")

        self._validate_amount(payment)

        if payment.is_postponement and payment.status == PaymentStatus.PENDING:
            if payment.method is not None or payment.reference:
                raise ValidationFailed(
                    "A payment commitment cannot carry a payment method or reference", field="method"
                )
            return

        if payment.status == PaymentStatus.PAYMENT_DAILY and payment.payment_date is None:
            raise ValidationFailed("payment_date is required for status PAYMENT_DAILY", field="payment_date")

        if payment.is_settled:
            self.validate_settlement(payment.method, payment.reference, payment.transfer_name)

    def validate_payment_date(self, payment_date: date | None, today: date) -> None:
        """The date money was received cannot be later than today."""
        if payment_date is not None and payment_date > today:
            raise ValidationFailed(
                f"payment_date cannot be in the future, got: {payment_date} (today is {today})",
                field="payment_date",
            )

    def validate_settlement(self, method: PaymentMethod | None, reference: str | None, transfer_name: str | None) -> None:
        """Payment-instrument fields required once money was received."""
        if method is None:
            raise ValidationFailed("method is required for a paid payment", field="method")
        if not reference:
            raise ValidationFailed("reference is required for a paid payment", field="reference")
        if method == PaymentMethod.TRANSFER and not transfer_name:
            raise ValidationFailed("transfer_name is required for TRANSFER payments", field="transfer_name")

    def validate_identity(self, identity_number: str) -> str:
        """Return the normalized identity number or raise ValidationFailed."""
        clean = normalize_identity(identity_number)
        if not clean:
            raise ValidationFailed("identity_number is required", field="identity_number")
        if len(clean) != IDENTITY_LENGTH:
            raise ValidationFailed(
                f"identity_number must have {IDENTITY_LENGTH} digits, got: {len(clean)}", field="identity_number"
            )
        return clean

    def validate_intake(self, request: IntakeRequest) -> None:
        self.validate_identity(request.identity_number)

        if not request.name.strip():
            raise ValidationFailed("name is required", field="name")
        if request.anchor_date is None:
            raise ValidationFailed("anchor_date (first payment date) is required", field="anchor_date")
        if request.plan_price < 0:
            raise ValidationFailed(f"plan_price cannot be negative, got: {request.plan_price}", field="plan_price")

    def _validate_postponement_draft(self, draft: PaymentDraft) -> None:
        if draft.payment_date is not None:
            raise ValidationFailed("A payment commitment cannot have a payment_date", field="payment_date")
        if draft.method is not None or draft.reference:
            raise ValidationFailed("A payment commitment cannot carry a payment method or reference", field="method")
        if draft.status_mode == StatusMode.MANUAL and draft.status not in (None, PaymentStatus.PENDING):
            raise ValidationFailed("A payment commitment is always created as PENDING", field="status")

    def _validate_amount(self, payment: Payment) -> None:
        if payment.amount < 0:
            raise ValidationFailed(f"amount cannot be negative, got: {payment.amount}", field="amount")

        # 0.00 is only reachable when the discount covers the whole charge
        if payment.amount < self.MIN_AMOUNT and payment.discount <= 0:
            raise ValidationFailed(f"amount must be at least {self.MIN_AMOUNT}, got: {payment.amount}", field="amount")
