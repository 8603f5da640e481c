"""
Typed Exceptions for the Billing Engine

Every failure the engine can detect has its own class with a machine-readable
``code`` and the structured data an operator needs to act on it.

    BillingError (ValueError)
    |
    +-- ValidationFailed
    +-- MissingBillingAnchor
    +-- CommitmentAlreadyOpen
    +-- AlreadyRegularized
    +-- IdentityAlreadyRegistered
    +-- AccountNotFound
    +-- PaymentNotFound
    +-- GatewayError

DiscountExceedsBase is a warning, not an error: the amount is clamped at
zero and processing continues.
"""


class BillingError(ValueError):
    """Base class for all billing engine errors."""

    code = "BILLING_ERROR"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message}


class ValidationFailed(BillingError):
    """A required field is missing or invalid for the attempted transition."""

    code = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class MissingBillingAnchor(BillingError):
    """The account has no anchor date, so no due date can be derived."""

    code = "MISSING_BILLING_ANCHOR"

    def __init__(self, account_id):
        super().__init__(
            f"Account {account_id} has no billing anchor date configured. "
            "Set the first payment date before registering payments."
        )
        self.account_id = account_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["account_id"] = self.account_id
        return data


class CommitmentAlreadyOpen(BillingError):
    """The account already has an open postponement."""

    code = "COMMITMENT_ALREADY_OPEN"
    http_status = 409

    def __init__(self, account_id, commitment):
        super().__init__(
            f"Account {account_id} already has an open payment commitment "
            f"(payment {commitment.id}, promised for {commitment.engagement_date}). "
            "Regularize it before registering a new payment."
        )
        self.account_id = account_id
        self.commitment = commitment

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["account_id"] = self.account_id
        data["commitment_id"] = self.commitment.id
        data["engagement_date"] = (
            self.commitment.engagement_date.isoformat() if self.commitment.engagement_date else None
        )
        return data


class AlreadyRegularized(BillingError):
    """The commitment was already converted into a final payment."""

    code = "ALREADY_REGULARIZED"
    http_status = 409

    def __init__(self, payment):
        super().__init__(f"Payment {payment.id} was already regularized with status {payment.status.value}")
        self.payment = payment

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["payment_id"] = self.payment.id
        data["status"] = self.payment.status.value
        return data


class IdentityAlreadyRegistered(BillingError):
    """The identity number belongs to an existing account."""

    code = "IDENTITY_ALREADY_REGISTERED"
    http_status = 409

    def __init__(self, identity_number: str, account=None):
        super().__init__(f"Identity number {identity_number} is already registered")
        self.identity_number = identity_number
        self.account = account

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["identity_number"] = self.identity_number
        if self.account is not None:
            data["account_id"] = self.account.id
        return data


class AccountNotFound(BillingError):
    code = "ACCOUNT_NOT_FOUND"
    http_status = 404

    def __init__(self, account_id):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class PaymentNotFound(BillingError):
    code = "PAYMENT_NOT_FOUND"
    http_status = 404

    def __init__(self, payment_id):
        super().__init__(f"Payment {payment_id} not found")
        self.payment_id = payment_id


class GatewayError(BillingError):
    """The remote billing service failed; no state was changed."""

    code = "GATEWAY_ERROR"
    http_status = 502

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DiscountExceedsBase(UserWarning):
    """The discount was larger than the charge; the amount was clamped to zero."""

    code = "DISCOUNT_EXCEEDS_BASE"
