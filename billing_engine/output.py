"""
Output Builder

Constructs API responses from engine results.
"""

from datetime import date
from decimal import Decimal

from .models import (
    Account,
    AmountComposition,
    BillingConfig,
    DueDateResult,
    IdentityLookup,
    IntakePlan,
    IntakeResult,
    Payment,
    PaymentResult,
)


def to_money(value: Decimal) -> float:
    """Convert Decimal to float with 2 decimal places."""
    return round(float(value), 2)


def _fmt(value) -> str:
    """Format a number as currency string for descriptions."""
    return f"S/ {value:,.2f}"


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


class OutputBuilder:
    """Builds the final output responses."""

    def payment_to_dict(self, payment: Payment) -> dict:
        return {
            "id": payment.id,
            "code": payment.code,
            "account_id": payment.account_id,
            "amount": to_money(payment.amount),
            "base_amount": to_money(payment.base_amount),
            "due_date": _iso(payment.due_date),
            "payment_date": _iso(payment.payment_date),
            "engagement_date": _iso(payment.engagement_date),
            "status": payment.status.value,
            "status_mode": payment.status_mode.value,
            "method": payment.method.value if payment.method else None,
            "reference": payment.reference,
            "transfer_name": payment.transfer_name,
            "reconnection": payment.reconnection,
            "discount": to_money(payment.discount),
            "advance_payment": payment.advance_payment,
            "is_postponement": payment.is_postponement,
        }

    def account_to_dict(self, account: Account) -> dict:
        return {
            "id": account.id,
            "identity_number": account.identity_number,
            "name": account.name,
            "last_name": account.last_name,
            "full_name": account.full_name,
            "phone": account.phone,
            "address": account.address,
            "status": account.status.value,
            "installations": list(account.installations),
        }

    def config_to_dict(self, config: BillingConfig) -> dict:
        return {
            "id": config.id,
            "account_id": config.account_id,
            "installation_id": config.installation_id,
            "anchor_date": _iso(config.anchor_date),
            "advance_payment": config.advance_payment,
            "plan_price": to_money(config.plan_price),
            "payment_status": config.payment_status.value,
        }

    def build_payment_result(self, result: PaymentResult) -> dict:
        output = {"payment": self.payment_to_dict(result.payment)}
        if result.composition is not None:
            output["calculations"] = self._build_calculations(result.composition)
        output["warnings"] = result.warnings
        return output

    def _build_calculations(self, composition: AmountComposition) -> dict:
        """Amount breakdown with a value and a description for each field."""
        base = to_money(composition.base_amount)
        fee = to_money(composition.reconnection_fee)
        discount = to_money(composition.discount)
        amount = to_money(composition.amount)

        return {
            "base_amount": {
                "value": base,
                "description": "Plan price at the moment the payment was created"
            },
            "reconnection_fee": {
                "value": fee,
                "description": f"Reconnection surcharge of {_fmt(fee)}" if fee else "No reconnection for this payment"
            },
            "discount": {
                "value": discount,
                "description": f"Discount of {_fmt(discount)}" if discount else "No discount applied"
            },
            "amount": {
                "value": amount,
                "description": (
                    f"base ({_fmt(base)}) + reconnection ({_fmt(fee)}) - discount ({_fmt(discount)}) "
                    f"is negative; clamped to {_fmt(amount)}"
                    if composition.clamped
                    else f"base ({_fmt(base)}) + reconnection ({_fmt(fee)}) - discount ({_fmt(discount)}) = {_fmt(amount)}"
                )
            },
        }

    def build_due_date(self, result: DueDateResult) -> dict:
        return {
            "account_id": result.account_id,
            "anchor_date": _iso(result.anchor_date),
            "settled_cycles": result.settled_cycles,
            "due_date": _iso(result.due_date),
        }

    def build_schedule(self, account_id, due_dates: list[date]) -> dict:
        return {
            "account_id": account_id,
            "due_dates": [_iso(d) for d in due_dates],
        }

    def build_lookup(self, lookup: IdentityLookup) -> dict:
        return {
            "identity_number": lookup.identity_number,
            "found": lookup.found,
            "account": self.account_to_dict(lookup.account) if lookup.account else None,
            "resolutions": lookup.resolutions,
        }

    def build_intake_plan(self, plan: IntakePlan) -> dict:
        return {
            "account": self.account_to_dict(plan.account),
            "next_step": plan.next_step,
            "prefill": plan.prefill,
            "creates_billing_config": plan.creates_billing_config,
        }

    def build_intake_result(self, result: IntakeResult) -> dict:
        return {
            "account": self.account_to_dict(result.account),
            "billing_config": self.config_to_dict(result.billing_config) if result.billing_config else None,
            "adopted": result.adopted,
            "advance_payment_pending": result.follow_up is not None,
        }
