"""
Postponement / Regularization State Machine

A postponement (payment commitment) records a client's promise to pay by a
future date without generating a receipt:

    NO_COMMITMENT -> COMMITTED -> REGULARIZED   (operator records the payment)
                              \\-> LAPSED        (promise date passed unpaid)

At most one commitment may be open per account. Every other payment for the
account is rejected until the open one is regularized; otherwise the count
of settled cycles, and with it every later due date, would be wrong.
"""

import logging
from dataclasses import replace
from datetime import date

from ..exceptions import AlreadyRegularized, CommitmentAlreadyOpen, ValidationFailed
from ..models import AmountComposition, CommitmentState, Payment, PaymentDraft, PaymentStatus, Regularization
from ..validators import InputValidator
from .status import classify_payment

logger = logging.getLogger(__name__)


class PostponementStateMachine:
    """Opens, regularizes and lapses payment commitments."""

    def __init__(self, validator: InputValidator | None = None):
        self.validator = validator or InputValidator()

    def state_of(self, payment: Payment, today: date | None = None) -> CommitmentState:
        """
        Current commitment state of a payment.

        Without ``today`` an open commitment is reported as COMMITTED even if
        its promise date has passed; pass ``today`` to detect lapses.
        """
        if not payment.is_postponement or payment.status == PaymentStatus.VOIDED:
            return CommitmentState.NO_COMMITMENT

        if payment.status == PaymentStatus.PENDING:
            if today is not None and today > payment.engagement_date:
                return CommitmentState.LAPSED
            return CommitmentState.COMMITTED

        if payment.payment_date is not None:
            return CommitmentState.REGULARIZED

        # Reclassified LATE_PAYMENT without money received
        return CommitmentState.LAPSED

    def guard(self, account_id, open_commitment: Payment | None) -> None:
        """Reject any new payment while a commitment is open for the account."""
        if open_commitment is not None:
            logger.warning(
                f"Rejected new payment for account {account_id}: "
                f"commitment {open_commitment.id} is still open"
            )
            raise CommitmentAlreadyOpen(account_id, open_commitment)

    def open(self, draft: PaymentDraft, due_date: date, composition: AmountComposition, today: date) -> Payment:
        """Build a new commitment for the cycle due on ``due_date``."""
        if draft.engagement_date is None:
            raise ValidationFailed("engagement_date is required for a payment commitment", field="engagement_date")
        if draft.engagement_date < today:
            raise ValidationFailed(
                f"engagement_date cannot be in the past, got: {draft.engagement_date}", field="engagement_date"
            )

        return Payment(
            id=None,
            account_id=draft.account_id,
            amount=composition.amount,
            base_amount=composition.base_amount,
            due_date=due_date,
            engagement_date=draft.engagement_date,
            status=PaymentStatus.PENDING,
            reconnection=draft.reconnection,
            discount=composition.discount,
            advance_payment=draft.advance_payment,
            status_mode=draft.status_mode,
        )

    def regularize(self, payment: Payment, regularization: Regularization) -> Payment:
        """
        Convert a commitment into a final payment.

        The final status is measured against the payment's original due date,
        not its promise date. Regularizing twice raises AlreadyRegularized
        instead of touching the financial fields again.
        """
        state = self.state_of(payment)

        if state == CommitmentState.REGULARIZED:
            raise AlreadyRegularized(payment)
        if state == CommitmentState.NO_COMMITMENT:
            if payment.status == PaymentStatus.VOIDED:
                raise ValidationFailed(f"Payment {payment.id} is voided and cannot be regularized")
            raise ValidationFailed(f"Payment {payment.id} is not a payment commitment")

        if regularization.payment_date is None:
            raise ValidationFailed("payment_date is required to regularize a commitment", field="payment_date")
        self.validator.validate_settlement(
            regularization.method, regularization.reference, regularization.transfer_name
        )
        if payment.due_date is None:
            raise ValidationFailed(f"Payment {payment.id} has no due date", field="due_date")

        status = classify_payment(payment.due_date, regularization.payment_date, regularization.payment_date)

        return replace(
            payment,
            payment_date=regularization.payment_date,
            method=regularization.method,
            reference=regularization.reference,
            transfer_name=regularization.transfer_name,
            status=status,
        )

    def evaluate(self, payment: Payment, today: date) -> Payment:
        """Reclassify an open commitment whose promise date has passed as LATE_PAYMENT."""
        if payment.status == PaymentStatus.PENDING and self.state_of(payment, today) == CommitmentState.LAPSED:
            return replace(payment, status=PaymentStatus.LATE_PAYMENT)
        return payment
