"""
Billing Engine - Main Orchestrator

Coordinates schedule derivation, amount composition, status classification
and the postponement state machine around the remote billing service.
Callers (the admin UI, the HTTP entry points) call the engine and react to
its results and errors; no billing rule lives outside it.
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Dict

from .calculators import (
    AmountComposer,
    BillingScheduleCalculator,
    IdentityLookupSession,
    IntakeGate,
    PostponementStateMachine,
    classify_payment,
    strategy_for,
)
from .calculators.amount import quantize_money
from .calculators.intake import RESOLUTION_ADOPT
from .exceptions import IdentityAlreadyRegistered, ValidationFailed
from .gateway import BillingGateway
from .models import (
    Account,
    BillingConfig,
    CommitmentState,
    DueDateResult,
    IdentityLookup,
    IntakePlan,
    IntakeRequest,
    IntakeResult,
    Payment,
    PaymentDraft,
    PaymentMethod,
    PaymentResult,
    PaymentStatus,
    PaymentUpdate,
    ReconcileSummary,
    Regularization,
    StatusMode,
)
from .output import OutputBuilder
from .validators import InputValidator, normalize_identity

logger = logging.getLogger(__name__)


class AdvancePaymentFollowUp:
    """
    First-cycle payment offered right after an account asking for advance
    payment was created.

    Only built once the account and its billing configuration are persisted.
    Cancelling skips the payment; the account stays as created.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    def __init__(self, engine: "BillingEngine", account: Account, config: BillingConfig):
        self.engine = engine
        self.account = account
        self.config = config
        self.state = self.PENDING
        self.result: PaymentResult | None = None

    def confirm(
        self,
        method: PaymentMethod,
        reference: str,
        transfer_name: str | None = None,
        payment_date: date | None = None,
    ) -> PaymentResult:
        if self.state != self.PENDING:
            raise ValidationFailed(f"Advance payment follow-up is already {self.state}")

        self.result = self.engine.record_advance_payment(
            self.account.id,
            method=method,
            reference=reference,
            transfer_name=transfer_name,
            payment_date=payment_date,
        )
        self.state = self.CONFIRMED
        return self.result

    def cancel(self) -> None:
        if self.state != self.PENDING:
            raise ValidationFailed(f"Advance payment follow-up is already {self.state}")
        logger.info(f"Advance payment skipped by operator for account {self.account.id}")
        self.state = self.CANCELLED


class BillingEngine:
    """
    Main orchestrator for billing operations.

    Payment creation pipeline:
    1. Validate draft
    2. Reject if a commitment is open for the account
    3. Derive the due date of the next unsettled cycle
    4. Reject if that cycle already has an unsettled payment
    5. Reject an advance payment outside the first cycle of an account
       configured for it
    6. Compose the amount from the frozen plan price
    7. Resolve status (postponement, automatic or manual)
    8. Validate the complete payment
    9. Persist it in a single call
    """

    def __init__(self, gateway: BillingGateway, clock: Callable[[], date] = date.today):
        self.gateway = gateway
        self.clock = clock
        self.validator = InputValidator()
        self.schedule = BillingScheduleCalculator()
        self.composer = AmountComposer()
        self.commitments = PostponementStateMachine(self.validator)
        self.intake_gate = IntakeGate(self.validator)
        self.output_builder = OutputBuilder()

    # -------------------------------------------------------------------------
    # Schedule
    # -------------------------------------------------------------------------

    def next_due_date(self, account_id) -> DueDateResult:
        config = self.gateway.get_billing_config(account_id)
        settled = self.gateway.get_settled_cycle_count(account_id)
        due_date = self.schedule.next_due_date(config, settled)
        return DueDateResult(
            account_id=account_id,
            anchor_date=config.anchor_date,
            settled_cycles=settled,
            due_date=due_date,
        )

    def upcoming_due_dates(self, account_id, periods: int = 6) -> list[date]:
        config = self.gateway.get_billing_config(account_id)
        settled = self.gateway.get_settled_cycle_count(account_id)
        return self.schedule.upcoming_due_dates(config, settled, periods)

    def amend_anchor_date(self, account_id, anchor_date: date) -> BillingConfig:
        """Operator correction of the anchor date. Later due dates follow automatically."""
        if anchor_date is None:
            raise ValidationFailed("anchor_date is required", field="anchor_date")
        config = self.gateway.update_anchor_date(account_id, anchor_date)
        logger.info(f"Anchor date of account {account_id} amended to {anchor_date}")
        return config

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def draft_payment(self, draft: PaymentDraft) -> PaymentResult:
        """Build the payment that ``create_payment`` would persist, without persisting it."""
        self.validator.validate_draft(draft)
        self.validator.validate_payment_date(draft.payment_date, self.clock())
        self.commitments.guard(draft.account_id, self.gateway.get_open_commitment(draft.account_id))
        payment, composition = self._build_payment(draft)
        self.validator.validate_payment(payment)
        return PaymentResult(payment=payment, composition=composition)

    def create_payment(self, draft: PaymentDraft) -> PaymentResult:
        preview = self.draft_payment(draft)
        created = self.gateway.create_payment(preview.payment)

        kind = "Commitment" if created.is_postponement else "Payment"
        logger.info(
            f"{kind} {created.id} created for account {created.account_id}: "
            f"due {created.due_date}, amount {created.amount}, status {created.status.value}"
        )
        return PaymentResult(payment=created, composition=preview.composition)

    def update_payment(self, payment_id, changes: PaymentUpdate) -> PaymentResult:
        payment = self.gateway.get_payment(payment_id)

        if payment.status == PaymentStatus.VOIDED:
            raise ValidationFailed(f"Payment {payment_id} is voided and cannot be modified")
        if payment.is_open_commitment and (
            changes.payment_date is not None or changes.method is not None or changes.reference
        ):
            raise ValidationFailed(
                f"Payment {payment_id} is an open commitment; regularize it to record the payment"
            )
        self.validator.validate_payment_date(changes.payment_date, self.clock())

        updated, composition = self._apply_amount_changes(payment, changes)

        for name in ("payment_date", "method", "reference", "transfer_name"):
            value = getattr(changes, name)
            if value is not None:
                updated = replace(updated, **{name: value})

        if changes.status is not None:
            updated = replace(updated, status=changes.status, status_mode=StatusMode.MANUAL)
        elif changes.recalculate_status:
            updated = self._reclassify(updated)

        self.validator.validate_payment(updated)
        saved = self.gateway.update_payment(payment_id, updated)
        logger.info(f"Payment {payment_id} updated: amount {saved.amount}, status {saved.status.value}")
        return PaymentResult(payment=saved, composition=composition)

    def regularize_payment(self, payment_id, regularization: Regularization) -> Payment:
        payment = self.gateway.get_payment(payment_id)
        self.validator.validate_payment_date(regularization.payment_date, self.clock())
        regularized = self.commitments.regularize(payment, regularization)
        self.validator.validate_payment(regularized)

        saved = self.gateway.regularize_payment(payment_id, regularized)
        logger.info(f"Commitment {payment_id} regularized as {saved.status.value} on {saved.payment_date}")
        return saved

    def evaluate_commitment(self, payment_id) -> Payment:
        """Reclassify an open commitment whose promise date has passed."""
        payment = self.gateway.get_payment(payment_id)
        evaluated = self.commitments.evaluate(payment, self.clock())
        if evaluated is payment:
            return payment

        saved = self.gateway.update_payment(payment_id, evaluated)
        logger.info(f"Commitment {payment_id} lapsed on {payment.engagement_date}; now {saved.status.value}")
        return saved

    def commitment_state(self, payment_id) -> CommitmentState:
        return self.commitments.state_of(self.gateway.get_payment(payment_id), self.clock())

    def record_advance_payment(
        self,
        account_id,
        method: PaymentMethod,
        reference: str,
        transfer_name: str | None = None,
        payment_date: date | None = None,
    ) -> PaymentResult:
        """Collect the first cycle immediately for an account configured for advance payment."""
        draft = PaymentDraft(
            account_id=account_id,
            payment_date=payment_date or self.clock(),
            method=method,
            reference=reference,
            transfer_name=transfer_name,
            advance_payment=True,
        )
        return self.create_payment(draft)

    def reconcile_statuses(self) -> ReconcileSummary:
        summary = self.gateway.bulk_reconcile_statuses()
        logger.info(f"Status reconciliation: {summary.checked} checked, {summary.reconciled} reconciled")
        return summary

    def _build_payment(self, draft: PaymentDraft):
        config = self.gateway.get_billing_config(draft.account_id)
        settled = self.gateway.get_settled_cycle_count(draft.account_id)
        due_date = self.schedule.next_due_date(config, settled)
        self._guard_cycle(draft.account_id, due_date)
        if draft.advance_payment:
            self._guard_advance_payment(draft.account_id, config, settled)

        composition = self.composer.compose(config.plan_price, draft.reconnection, draft.discount)
        today = self.clock()

        if draft.engagement_date is not None:
            return self.commitments.open(draft, due_date, composition, today), composition

        status = strategy_for(draft.status_mode).resolve(due_date, draft.payment_date, today, draft.status)
        payment = Payment(
            id=None,
            account_id=draft.account_id,
            amount=composition.amount,
            base_amount=composition.base_amount,
            due_date=due_date,
            payment_date=draft.payment_date,
            status=status,
            method=draft.method,
            reference=draft.reference,
            transfer_name=draft.transfer_name,
            reconnection=draft.reconnection,
            discount=composition.discount,
            advance_payment=draft.advance_payment,
            status_mode=draft.status_mode,
        )
        return payment, composition

    def _guard_cycle(self, account_id, due_date: date) -> None:
        """A cycle gets exactly one payment: an unsettled one must be updated, not duplicated."""
        for existing in self.gateway.list_payments(account_id):
            if existing.due_date == due_date and existing.status != PaymentStatus.VOIDED and not existing.is_settled:
                raise ValidationFailed(
                    f"The cycle due {due_date} already has payment {existing.id} "
                    f"({existing.status.value}); update or regularize it instead of creating a new one",
                    field="due_date",
                )

    def _guard_advance_payment(self, account_id, config: BillingConfig, settled: int) -> None:
        """Only the first cycle of an account configured for it is collected in advance."""
        if not config.advance_payment:
            raise ValidationFailed(
                f"Account {account_id} was not configured for advance payment", field="advance_payment"
            )
        if settled > 0:
            raise ValidationFailed(
                f"Account {account_id} already settled {settled} cycle(s); only the first cycle "
                "can be an advance payment",
                field="advance_payment",
            )
        if any(p.advance_payment for p in self.gateway.list_payments(account_id)):
            raise ValidationFailed(
                f"Account {account_id} already has an advance payment", field="advance_payment"
            )

    def _apply_amount_changes(self, payment: Payment, changes: PaymentUpdate):
        composition = None
        updated = payment

        if payment.is_terminal_paid:
            if changes.reconnection is not None or changes.discount is not None:
                raise ValidationFailed(
                    f"Payment {payment.id} is already {payment.status.value}; its amount is frozen. "
                    "Correct it manually with 'amount'",
                    field="amount",
                )
            if changes.amount is not None:
                logger.info(f"Manual amount correction on payment {payment.id}: {payment.amount} -> {changes.amount}")
                updated = replace(updated, amount=quantize_money(changes.amount))
            return updated, composition

        if changes.amount is not None:
            raise ValidationFailed(
                "amount is derived from plan price, reconnection and discount until the payment is paid",
                field="amount",
            )

        composition = self.composer.recompose(payment, changes)
        if composition is not None:
            updated = replace(
                updated,
                amount=composition.amount,
                discount=composition.discount,
                reconnection=composition.reconnection_fee > 0,
            )
        return updated, composition

    def _reclassify(self, payment: Payment) -> Payment:
        if payment.is_open_commitment:
            return self.commitments.evaluate(payment, self.clock())
        if payment.due_date is None:
            raise ValidationFailed(f"Payment {payment.id} has no due date", field="due_date")
        status = classify_payment(payment.due_date, payment.payment_date, self.clock())
        return replace(payment, status=status, status_mode=StatusMode.AUTOMATIC)

    # -------------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------------

    def lookup_identity(self, identity_number: str) -> IdentityLookup:
        clean = self.validator.validate_identity(identity_number)
        return self.intake_gate.evaluate(clean, self.gateway.find_account_by_identity(clean))

    def lookup_session(self) -> IdentityLookupSession:
        """A session for keystroke-driven lookups that drops superseded results."""
        return IdentityLookupSession(self.intake_gate, self.gateway.find_account_by_identity)

    def adopt_account(self, identity_number: str) -> IntakePlan:
        return self.intake_gate.adopt(self.lookup_identity(identity_number))

    def register_client(self, request: IntakeRequest, resolution: str | None = None) -> IntakeResult:
        """
        Register a client with its first installation.

        An identity number that is already registered is not an error but a
        guided branch: IdentityAlreadyRegistered carries the existing account,
        and calling again with ``resolution="adopt"`` attaches the installation
        to it without creating a second billing configuration.
        """
        identity = normalize_identity(request.identity_number)
        lookup = self.lookup_identity(identity)

        if lookup.found:
            if resolution != RESOLUTION_ADOPT:
                raise IdentityAlreadyRegistered(identity, lookup.account)
            plan = self.intake_gate.adopt(lookup)
            account = self.gateway.attach_installation(plan.account.id, request.installation_id)
            logger.info(f"Installation {request.installation_id} attached to existing account {account.id}")
            return IntakeResult(account=account, billing_config=None, adopted=True)

        if resolution == RESOLUTION_ADOPT:
            self.intake_gate.adopt(lookup)

        self.validator.validate_intake(request)
        account, config = self.gateway.create_account(
            Account(
                id=None,
                identity_number=identity,
                name=request.name,
                last_name=request.last_name,
                phone=request.phone,
                address=request.address,
            ),
            BillingConfig(
                id=None,
                account_id=None,
                installation_id=request.installation_id,
                anchor_date=request.anchor_date,
                advance_payment=request.advance_payment,
                plan_price=request.plan_price,
            ),
        )
        logger.info(f"Account {account.id} created for identity {identity}, anchor {config.anchor_date}")

        follow_up = AdvancePaymentFollowUp(self, account, config) if config.advance_payment else None
        return IntakeResult(account=account, billing_config=config, follow_up=follow_up)

    # -------------------------------------------------------------------------
    # Dictionary API (used by the HTTP entry points)
    # -------------------------------------------------------------------------

    def next_due_date_from_dict(self, account_id) -> Dict[str, Any]:
        return self.output_builder.build_due_date(self.next_due_date(account_id))

    def schedule_from_dict(self, account_id, periods: int = 6) -> Dict[str, Any]:
        return self.output_builder.build_schedule(account_id, self.upcoming_due_dates(account_id, periods))

    def create_payment_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.output_builder.build_payment_result(self.create_payment(PaymentDraft.from_dict(data)))

    def update_payment_from_dict(self, payment_id, data: Dict[str, Any]) -> Dict[str, Any]:
        result = self.update_payment(payment_id, PaymentUpdate.from_dict(data))
        return self.output_builder.build_payment_result(result)

    def regularize_payment_from_dict(self, payment_id, data: Dict[str, Any]) -> Dict[str, Any]:
        payment = self.regularize_payment(payment_id, Regularization.from_dict(data))
        return self.output_builder.build_payment_result(PaymentResult(payment=payment))

    def evaluate_commitment_from_dict(self, payment_id) -> Dict[str, Any]:
        payment = self.evaluate_commitment(payment_id)
        return self.output_builder.build_payment_result(PaymentResult(payment=payment))

    def lookup_identity_from_dict(self, identity_number: str) -> Dict[str, Any]:
        return self.output_builder.build_lookup(self.lookup_identity(identity_number))

    def adopt_account_from_dict(self, identity_number: str) -> Dict[str, Any]:
        return self.output_builder.build_intake_plan(self.adopt_account(identity_number))

    def register_client_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        result = self.register_client(IntakeRequest.from_dict(data), resolution=data.get("resolution"))
        return self.output_builder.build_intake_result(result)

    def record_advance_payment_from_dict(self, account_id, data: Dict[str, Any]) -> Dict[str, Any]:
        settlement = Regularization.from_dict(data)
        result = self.record_advance_payment(
            account_id,
            method=settlement.method,
            reference=settlement.reference,
            transfer_name=settlement.transfer_name,
            payment_date=settlement.payment_date,
        )
        return self.output_builder.build_payment_result(result)

    def reconcile_from_dict(self) -> Dict[str, Any]:
        summary = self.reconcile_statuses()
        return {"checked": summary.checked, "reconciled": summary.reconciled}
