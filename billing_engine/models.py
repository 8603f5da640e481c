"""
Domain Models for the Billing Engine

These dataclasses provide type-safe representations of all billing entities.
All monetary values use Decimal for precision; all calendar values are
``datetime.date``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .processor import AdvancePaymentFollowUp


def parse_date(value) -> date | None:
    """Accept a date, a datetime or an ISO ``YYYY-MM-DD`` string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}. Expected YYYY-MM-DD") from None


def parse_money(value, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


# =============================================================================
# ENUMERATIONS
# =============================================================================


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAYMENT_DAILY = "PAYMENT_DAILY"  # paid on or before the due date
    LATE_PAYMENT = "LATE_PAYMENT"  # paid after the due date, or overdue unpaid
    VOIDED = "VOIDED"


TERMINAL_PAID_STATUSES = frozenset({PaymentStatus.PAYMENT_DAILY, PaymentStatus.LATE_PAYMENT})


class PaymentMethod(str, Enum):
    TRANSFER = "TRANSFER"
    CASH = "CASH"
    YAPE = "YAPE"
    PLIN = "PLIN"
    OTHER = "OTHER"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    INACTIVE = "INACTIVE"


class ConfigPaymentStatus(str, Enum):
    """Coarse billing status of an installation, owned by the remote reconciler."""

    PAID = "PAID"
    EXPIRING = "EXPIRING"
    EXPIRED = "EXPIRED"
    SUSPENDED = "SUSPENDED"


class StatusMode(str, Enum):
    """How a payment's status was decided when it was created."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class CommitmentState(str, Enum):
    NO_COMMITMENT = "NO_COMMITMENT"
    COMMITTED = "COMMITTED"
    REGULARIZED = "REGULARIZED"
    LAPSED = "LAPSED"


def _optional_enum(enum_cls, value):
    if value is None or value == "":
        return None
    return enum_cls(value)


# =============================================================================
# ENTITIES
# =============================================================================


@dataclass
class Account:
    """A client of the ISP, identified by a national identity number."""

    id: int | None
    identity_number: str
    name: str = ""
    last_name: str = ""
    phone: str | None = None
    address: str | None = None
    status: AccountStatus = AccountStatus.ACTIVE
    installations: list[int] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.last_name}".strip()

    @classmethod
    def from_dict(cls, data: dict) -> "Account":
        return cls(
            id=data.get("id"),
            identity_number=str(data["identity_number"]),
            name=data.get("name", ""),
            last_name=data.get("last_name", ""),
            phone=data.get("phone"),
            address=data.get("address"),
            status=AccountStatus(data.get("status", AccountStatus.ACTIVE.value)),
            installations=list(data.get("installations", [])),
        )


@dataclass
class BillingConfig:
    """Billing configuration of one service installation."""

    id: int | None
    account_id: int
    installation_id: int | None
    anchor_date: date | None  # due date of the very first cycle
    advance_payment: bool = False  # immutable after intake
    plan_price: Decimal = Decimal("0")
    payment_status: ConfigPaymentStatus = ConfigPaymentStatus.PAID

    @classmethod
    def from_dict(cls, data: dict) -> "BillingConfig":
        return cls(
            id=data.get("id"),
            account_id=data["account_id"],
            installation_id=data.get("installation_id"),
            anchor_date=parse_date(data.get("anchor_date")),
            advance_payment=data.get("advance_payment", False),
            plan_price=parse_money(data.get("plan_price")),
            payment_status=ConfigPaymentStatus(data.get("payment_status", ConfigPaymentStatus.PAID.value)),
        )


@dataclass
class Payment:
    """One billing cycle attempt, or one postponement."""

    id: int | None
    account_id: int
    amount: Decimal
    base_amount: Decimal
    due_date: date | None
    payment_date: date | None = None
    engagement_date: date | None = None  # promised payment date, postponements only
    status: PaymentStatus = PaymentStatus.PENDING
    method: PaymentMethod | None = None
    reference: str | None = None
    transfer_name: str | None = None
    reconnection: bool = False
    discount: Decimal = Decimal("0")
    advance_payment: bool = False
    status_mode: StatusMode = StatusMode.AUTOMATIC
    code: str | None = None

    @property
    def is_terminal_paid(self) -> bool:
        return self.status in TERMINAL_PAID_STATUSES

    @property
    def is_settled(self) -> bool:
        """Money was actually collected, so the payment consumes a billing cycle."""
        return self.is_terminal_paid and self.payment_date is not None

    @property
    def is_postponement(self) -> bool:
        return self.engagement_date is not None

    @property
    def is_open_commitment(self) -> bool:
        return self.status == PaymentStatus.PENDING and self.engagement_date is not None

    @classmethod
    def from_dict(cls, data: dict) -> "Payment":
        return cls(
            id=data.get("id"),
            account_id=data["account_id"],
            amount=parse_money(data.get("amount")),
            base_amount=parse_money(data.get("base_amount")),
            due_date=parse_date(data.get("due_date")),
            payment_date=parse_date(data.get("payment_date")),
            engagement_date=parse_date(data.get("engagement_date")),
            status=PaymentStatus(data.get("status", PaymentStatus.PENDING.value)),
            method=_optional_enum(PaymentMethod, data.get("method")),
            reference=data.get("reference"),
            transfer_name=data.get("transfer_name"),
            reconnection=data.get("reconnection", False),
            discount=parse_money(data.get("discount")),
            advance_payment=data.get("advance_payment", False),
            status_mode=StatusMode(data.get("status_mode", StatusMode.AUTOMATIC.value)),
            code=data.get("code"),
        )


# =============================================================================
# OPERATION INPUTS
# =============================================================================


@dataclass
class PaymentDraft:
    """A payment the operator is about to register.

    The due date and base amount are not part of the draft: both are derived
    from the account's billing configuration when the payment is created.
    """

    account_id: int
    payment_date: date | None = None
    engagement_date: date | None = None
    method: PaymentMethod | None = None
    reference: str | None = None
    transfer_name: str | None = None
    reconnection: bool = False
    discount: Decimal = Decimal("0")
    status_mode: StatusMode = StatusMode.AUTOMATIC
    status: PaymentStatus | None = None  # only read in manual mode
    advance_payment: bool = False  # set by record_advance_payment only

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentDraft":
        return cls(
            account_id=data["account_id"],
            payment_date=parse_date(data.get("payment_date")),
            engagement_date=parse_date(data.get("engagement_date")),
            method=_optional_enum(PaymentMethod, data.get("method")),
            reference=data.get("reference") or None,
            transfer_name=data.get("transfer_name") or None,
            reconnection=data.get("reconnection", False),
            discount=parse_money(data.get("discount")),
            status_mode=StatusMode(data.get("status_mode", StatusMode.AUTOMATIC.value)),
            status=_optional_enum(PaymentStatus, data.get("status")),
        )


@dataclass
class PaymentUpdate:
    """Changes to an existing payment. ``None`` means unchanged."""

    reconnection: bool | None = None
    discount: Decimal | None = None
    payment_date: date | None = None
    method: PaymentMethod | None = None
    reference: str | None = None
    transfer_name: str | None = None
    status: PaymentStatus | None = None  # manual override
    amount: Decimal | None = None  # manual correction of a frozen amount
    recalculate_status: bool = False  # re-run automatic classification

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentUpdate":
        discount = data.get("discount")
        amount = data.get("amount")
        return cls(
            reconnection=data.get("reconnection"),
            discount=Decimal(str(discount)) if discount is not None else None,
            payment_date=parse_date(data.get("payment_date")),
            method=_optional_enum(PaymentMethod, data.get("method")),
            reference=data.get("reference"),
            transfer_name=data.get("transfer_name"),
            status=_optional_enum(PaymentStatus, data.get("status")),
            amount=Decimal(str(amount)) if amount is not None else None,
            recalculate_status=data.get("recalculate_status", False),
        )


@dataclass
class Regularization:
    """What the operator supplies to convert a commitment into a payment."""

    payment_date: date | None
    method: PaymentMethod | None
    reference: str | None
    transfer_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Regularization":
        return cls(
            payment_date=parse_date(data.get("payment_date")),
            method=_optional_enum(PaymentMethod, data.get("method")),
            reference=data.get("reference") or None,
            transfer_name=data.get("transfer_name") or None,
        )


@dataclass
class IntakeRequest:
    """A new client with its first installation, as captured by the intake wizard."""

    identity_number: str
    name: str
    last_name: str
    installation_id: int | None
    anchor_date: date | None
    plan_price: Decimal
    advance_payment: bool = False
    phone: str | None = None
    address: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "IntakeRequest":
        return cls(
            identity_number=str(data["identity_number"]),
            name=data.get("name", ""),
            last_name=data.get("last_name", ""),
            installation_id=data.get("installation_id"),
            anchor_date=parse_date(data.get("anchor_date")),
            plan_price=parse_money(data.get("plan_price")),
            advance_payment=data.get("advance_payment", False),
            phone=data.get("phone"),
            address=data.get("address"),
        )


# =============================================================================
# OUTPUT / RESULT MODELS
# =============================================================================


@dataclass
class AmountComposition:
    """Breakdown of a payment's charged amount."""

    base_amount: Decimal
    reconnection_fee: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    clamped: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass
class DueDateResult:
    account_id: int
    anchor_date: date
    settled_cycles: int
    due_date: date


@dataclass
class IdentityLookup:
    """Outcome of the intake deduplication check."""

    identity_number: str
    found: bool
    account: Account | None = None
    resolutions: list[str] = field(default_factory=list)


@dataclass
class IntakePlan:
    """How the intake wizard continues after the operator adopts an existing account."""

    account: Account
    next_step: str
    prefill: dict
    creates_billing_config: bool = False


@dataclass
class ReconcileSummary:
    checked: int
    reconciled: int


@dataclass
class PaymentResult:
    """A persisted payment with the breakdown of its amount."""

    payment: Payment
    composition: AmountComposition | None = None

    @property
    def warnings(self) -> list[str]:
        return list(self.composition.warnings) if self.composition else []


@dataclass
class IntakeResult:
    """Outcome of registering a client (new or adopted)."""

    account: Account
    billing_config: BillingConfig | None
    adopted: bool = False
    follow_up: "AdvancePaymentFollowUp | None" = None
