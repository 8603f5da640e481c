"""
Payment Status Classifier

Two explicit strategies decide a payment's status at creation time:

- AutomaticStatusStrategy derives it from the payment's dates.
- ManualStatusStrategy takes the status chosen by the operator.
"""

from datetime import date

from ..exceptions import ValidationFailed
from ..models import PaymentStatus, StatusMode


def classify_payment(due_date: date, payment_date: date | None, today: date) -> PaymentStatus:
    """
    Classify a normal (non-postponement) payment.

    Rules, in order:
    1. paid on or before the due date  -> PAYMENT_DAILY
    2. paid after the due date         -> LATE_PAYMENT
    3. unpaid, due date not yet passed -> PENDING
    4. unpaid, due date passed         -> LATE_PAYMENT
    """
    if payment_date is not None:
        if payment_date <= due_date:
            return PaymentStatus.PAYMENT_DAILY
        return PaymentStatus.LATE_PAYMENT

    if today <= due_date:
        return PaymentStatus.PENDING
    return PaymentStatus.LATE_PAYMENT


class AutomaticStatusStrategy:
    mode = StatusMode.AUTOMATIC

    def resolve(
        self,
        due_date: date,
        payment_date: date | None,
        today: date,
        requested: PaymentStatus | None = None,
    ) -> PaymentStatus:
        return classify_payment(due_date, payment_date, today)


class ManualStatusStrategy:
    mode = StatusMode.MANUAL

    def resolve(
        self,
        due_date: date,
        payment_date: date | None,
        today: date,
        requested: PaymentStatus | None = None,
    ) -> PaymentStatus:
        if requested is None:
            raise ValidationFailed("status is required when status_mode is 'manual'", field="status")
        return requested


STATUS_STRATEGIES = {
    StatusMode.AUTOMATIC: AutomaticStatusStrategy(),
    StatusMode.MANUAL: ManualStatusStrategy(),
}


def strategy_for(mode: StatusMode):
    return STATUS_STRATEGIES[mode]
