"""
Billing Schedule Calculator

Derives the due date of an account's next unsettled billing cycle.
"""

from datetime import date

from ..exceptions import MissingBillingAnchor, ValidationFailed
from ..models import BillingConfig
from .dates import add_months_clamped


class BillingScheduleCalculator:
    """Computes cycle due dates relative to the billing anchor."""

    def next_due_date(self, config: BillingConfig, settled_cycle_count: int) -> date:
        """
        Due date of the next cycle.

        With zero settled cycles the due date is the anchor itself. Every
        later cycle is computed from the anchor (never chained off the
        previous due date), so a month-end clamp cannot accumulate drift.
        """
        anchor = self._require_anchor(config)
        self._validate_count(settled_cycle_count)
        return add_months_clamped(anchor, settled_cycle_count)

    def upcoming_due_dates(self, config: BillingConfig, settled_cycle_count: int, periods: int) -> list[date]:
        """Due dates of the next ``periods`` cycles, starting with the next unsettled one."""
        anchor = self._require_anchor(config)
        self._validate_count(settled_cycle_count)
        if periods < 1:
            raise ValidationFailed(f"periods must be at least 1, got: {periods}", field="periods")

        return [add_months_clamped(anchor, settled_cycle_count + offset) for offset in range(periods)]

    def _require_anchor(self, config: BillingConfig) -> date:
        if config.anchor_date is None:
            raise MissingBillingAnchor(config.account_id)
        return config.anchor_date

    def _validate_count(self, settled_cycle_count: int) -> None:
        if settled_cycle_count < 0:
            raise ValidationFailed(
                f"settled_cycle_count cannot be negative, got: {settled_cycle_count}",
                field="settled_cycle_count",
            )
