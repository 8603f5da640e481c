"""
ISP BILLING ENGINE
Recurring billing, payment status and postponement handling
"""

from .gateway import BillingGateway, InMemoryBillingGateway, RestBillingGateway, gateway_from_env
from .models import Payment, PaymentDraft, PaymentStatus
from .processor import AdvancePaymentFollowUp, BillingEngine

__all__ = [
    'AdvancePaymentFollowUp',
    'BillingEngine',
    'BillingGateway',
    'InMemoryBillingGateway',
    'Payment',
    'PaymentDraft',
    'PaymentStatus',
    'RestBillingGateway',
    'gateway_from_env',
]
