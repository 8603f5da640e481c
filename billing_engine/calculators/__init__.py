"""
Calculators Package

Provides all calculation components for billing.
"""

from .amount import AmountComposer
from .commitment import PostponementStateMachine
from .intake import IdentityLookupSession, IntakeGate
from .schedule import BillingScheduleCalculator
from .status import AutomaticStatusStrategy, ManualStatusStrategy, classify_payment, strategy_for

__all__ = [
    "AmountComposer",
    "AutomaticStatusStrategy",
    "BillingScheduleCalculator",
    "IdentityLookupSession",
    "IntakeGate",
    "ManualStatusStrategy",
    "PostponementStateMachine",
    "classify_payment",
    "strategy_for",
]
