"""
Billing Service Gateway

The remote billing service persists accounts and payments and performs bulk
status reconciliation. The engine talks to it only through BillingGateway.

- RestBillingGateway: HTTP client for the real service.
- InMemoryBillingGateway: process-local store for development and tests.
"""

import itertools
import os
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace

import requests

from .exceptions import AccountNotFound, GatewayError, IdentityAlreadyRegistered, PaymentNotFound
from .models import (
    Account,
    AccountStatus,
    BillingConfig,
    ConfigPaymentStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ReconcileSummary,
    StatusMode,
    parse_date,
    parse_money,
)

logger = logging.getLogger(__name__)


class BillingGateway(ABC):
    """Contract of the remote billing service."""

    @abstractmethod
    def find_account_by_identity(self, identity_number: str) -> Account | None:
        ...

    @abstractmethod
    def get_account(self, account_id) -> Account:
        ...

    @abstractmethod
    def get_billing_config(self, account_id) -> BillingConfig:
        ...

    @abstractmethod
    def update_anchor_date(self, account_id, anchor_date) -> BillingConfig:
        ...

    @abstractmethod
    def list_payments(self, account_id) -> list[Payment]:
        ...

    @abstractmethod
    def get_payment(self, payment_id) -> Payment:
        ...

    @abstractmethod
    def create_payment(self, payment: Payment) -> Payment:
        ...

    @abstractmethod
    def update_payment(self, payment_id, payment: Payment) -> Payment:
        ...

    @abstractmethod
    def regularize_payment(self, payment_id, payment: Payment) -> Payment:
        ...

    @abstractmethod
    def create_account(self, account: Account, config: BillingConfig) -> tuple[Account, BillingConfig]:
        ...

    @abstractmethod
    def attach_installation(self, account_id, installation_id) -> Account:
        ...

    @abstractmethod
    def bulk_reconcile_statuses(self) -> ReconcileSummary:
        ...

    def get_settled_cycle_count(self, account_id) -> int:
        """Number of payments for the account in a terminal paid state with money received."""
        return sum(1 for payment in self.list_payments(account_id) if payment.is_settled)

    def get_open_commitment(self, account_id) -> Payment | None:
        for payment in self.list_payments(account_id):
            if payment.is_open_commitment:
                return payment
        return None


# =============================================================================
# REST CLIENT
# =============================================================================


def payment_to_api(payment: Payment) -> dict:
    """Serialize a payment into the billing service's wire format."""
    return {
        "client": payment.account_id,
        "amount": float(payment.amount),
        "baseAmount": float(payment.base_amount),
        "dueDate": payment.due_date.isoformat() if payment.due_date else None,
        "paymentDate": payment.payment_date.isoformat() if payment.payment_date else None,
        "engagementDate": payment.engagement_date.isoformat() if payment.engagement_date else None,
        "status": payment.status.value,
        "paymentType": payment.method.value if payment.method else None,
        "reference": payment.reference,
        "transfername": payment.transfer_name,
        "reconnection": payment.reconnection,
        "discount": float(payment.discount),
        "advancePayment": payment.advance_payment,
        "isPostponement": payment.is_postponement,
        "statusMode": payment.status_mode.value,
    }


def payment_from_api(data: dict) -> Payment:
    client = data.get("client")
    account_id = data.get("clientId")
    if account_id is None:
        account_id = client.get("id") if isinstance(client, dict) else client

    if data.get("isVoided"):
        status = PaymentStatus.VOIDED
    else:
        status = PaymentStatus(data.get("status") or PaymentStatus.PENDING.value)

    method = data.get("paymentType")
    return Payment(
        id=data.get("id"),
        account_id=account_id,
        amount=parse_money(data.get("amount")),
        base_amount=parse_money(data.get("baseAmount"), default=str(data.get("amount") or 0)),
        due_date=parse_date(data.get("dueDate")),
        payment_date=parse_date(data.get("paymentDate")),
        engagement_date=parse_date(data.get("engagementDate")),
        status=status,
        method=PaymentMethod(method) if method else None,
        reference=data.get("reference") or None,
        transfer_name=data.get("transfername") or None,
        reconnection=bool(data.get("reconnection", False)),
        discount=parse_money(data.get("discount")),
        advance_payment=bool(data.get("advancePayment", False)),
        status_mode=StatusMode(data.get("statusMode") or StatusMode.AUTOMATIC.value),
        code=data.get("code"),
    )


def account_from_api(data: dict) -> Account:
    installations = []
    for entry in data.get("installations") or []:
        installations.append(entry.get("id") if isinstance(entry, dict) else entry)

    return Account(
        id=data.get("id"),
        identity_number=str(data.get("dni", "")),
        name=data.get("name") or "",
        last_name=data.get("lastName") or "",
        phone=data.get("phone"),
        address=data.get("address"),
        status=AccountStatus(data.get("status") or AccountStatus.ACTIVE.value),
        installations=installations,
    )


def config_from_api(data: dict, account_id) -> BillingConfig:
    installation = data.get("installation") or data.get("Installation") or {}
    plan_price = data.get("planPrice")
    if plan_price is None:
        plan_price = (installation.get("plan") or {}).get("price")

    return BillingConfig(
        id=data.get("id"),
        account_id=account_id,
        installation_id=data.get("installationId") or installation.get("id"),
        anchor_date=parse_date(data.get("initialPaymentDate")),
        advance_payment=bool(data.get("advancePayment", False)),
        plan_price=parse_money(plan_price),
        payment_status=ConfigPaymentStatus(data.get("paymentStatus") or ConfigPaymentStatus.PAID.value),
    )


class RestBillingGateway(BillingGateway):
    """HTTP client for the remote billing service."""

    def __init__(self, base_url: str, token: str | None = None, *, timeout: float = 10.0, session=None):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

        if not self.base_url:
            raise GatewayError("Billing API base URL is required.")

        self.session.headers.update({"accept": "application/json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token.strip()}"})

    def _request(self, method: str, path: str, *, allow_404: bool = False, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error(f"Billing API {method} {path} failed: {exc}")
            raise GatewayError(f"Billing API is unreachable: {exc}") from exc

        if response.status_code == 404 and allow_404:
            return None

        if response.status_code >= 400:
            logger.error(f"Billing API {method} {path} responded with HTTP {response.status_code}")
            raise GatewayError(
                f"Billing API responded with HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError("Billing API returned an invalid JSON payload.") from exc

    def find_account_by_identity(self, identity_number: str) -> Account | None:
        data = self._request("GET", f"/client/search-by-dni/{identity_number}", allow_404=True)
        if not data:
            return None
        return account_from_api(data)

    def get_account(self, account_id) -> Account:
        data = self._request("GET", f"/client/{account_id}", allow_404=True)
        if not data:
            raise AccountNotFound(account_id)
        return account_from_api(data)

    def get_billing_config(self, account_id) -> BillingConfig:
        data = self._request("GET", f"/client-payment-config/client/{account_id}/active", allow_404=True)
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise AccountNotFound(account_id)
        return config_from_api(data, account_id)

    def update_anchor_date(self, account_id, anchor_date) -> BillingConfig:
        config = self.get_billing_config(account_id)
        payload = {"initialPaymentDate": anchor_date.isoformat() if anchor_date else None}
        data = self._request("PATCH", f"/client-payment-config/{config.id}", json=payload)
        return config_from_api(data, account_id) if data else replace(config, anchor_date=anchor_date)

    def list_payments(self, account_id) -> list[Payment]:
        data = self._request("GET", "/payments", params={"client": account_id})
        if isinstance(data, dict):
            data = data.get("data", [])
        return [payment_from_api(item) for item in data or []]

    def get_payment(self, payment_id) -> Payment:
        data = self._request("GET", f"/payments/{payment_id}", allow_404=True)
        if not data:
            raise PaymentNotFound(payment_id)
        return payment_from_api(data)

    def create_payment(self, payment: Payment) -> Payment:
        return payment_from_api(self._request("POST", "/payments", json=payment_to_api(payment)))

    def update_payment(self, payment_id, payment: Payment) -> Payment:
        return payment_from_api(self._request("PATCH", f"/payments/{payment_id}", json=payment_to_api(payment)))

    def regularize_payment(self, payment_id, payment: Payment) -> Payment:
        data = self._request("POST", f"/payments/{payment_id}/regularize", json=payment_to_api(payment))
        return payment_from_api(data)

    def create_account(self, account: Account, config: BillingConfig) -> tuple[Account, BillingConfig]:
        payload = {
            "dni": account.identity_number,
            "name": account.name,
            "lastName": account.last_name,
            "phone": account.phone,
            "address": account.address,
            "installationId": config.installation_id,
            "paymentDate": config.anchor_date.isoformat() if config.anchor_date else None,
            "advancePayment": config.advance_payment,
            "planPrice": float(config.plan_price),
        }
        try:
            data = self._request("POST", "/client", json=payload)
        except GatewayError as exc:
            if exc.status_code == 409:
                raise IdentityAlreadyRegistered(account.identity_number) from exc
            raise

        created = account_from_api(data)
        config_data = data.get("paymentConfig") or {}
        created_config = replace(config, account_id=created.id, id=config_data.get("id"))
        return created, created_config

    def attach_installation(self, account_id, installation_id) -> Account:
        self._request("POST", "/installations", json={"clientId": account_id, "installationId": installation_id})
        return self.get_account(account_id)

    def bulk_reconcile_statuses(self) -> ReconcileSummary:
        data = self._request("POST", "/client/sync-states") or {}
        return ReconcileSummary(
            checked=int(data.get("checked", data.get("total", 0))),
            reconciled=int(data.get("reconciled", data.get("updated", 0))),
        )


# =============================================================================
# IN-MEMORY STORE
# =============================================================================


class InMemoryBillingGateway(BillingGateway):
    """Process-local billing store. Enforces identity uniqueness like the real service."""

    def __init__(self):
        self.accounts: dict[int, Account] = {}
        self.configs: dict[int, BillingConfig] = {}
        self.payments: dict[int, Payment] = {}
        self._account_ids = itertools.count(1)
        self._config_ids = itertools.count(1)
        self._payment_ids = itertools.count(1)
        self._lock = threading.Lock()

    def find_account_by_identity(self, identity_number: str) -> Account | None:
        for account in self.accounts.values():
            if account.identity_number == identity_number:
                return account
        return None

    def get_account(self, account_id) -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def get_billing_config(self, account_id) -> BillingConfig:
        config = self.configs.get(account_id)
        if config is None:
            raise AccountNotFound(account_id)
        return config

    def list_payments(self, account_id) -> list[Payment]:
        payments = [p for p in self.payments.values() if p.account_id == account_id]
        return sorted(payments, key=lambda p: (p.due_date is None, p.due_date, p.id))

    def get_payment(self, payment_id) -> Payment:
        payment = self.payments.get(payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    def create_payment(self, payment: Payment) -> Payment:
        self.get_account(payment.account_id)
        with self._lock:
            payment_id = next(self._payment_ids)
            stored = replace(payment, id=payment_id, code=f"PAY-{payment_id:06d}")
            self.payments[payment_id] = stored
        return stored

    def update_payment(self, payment_id, payment: Payment) -> Payment:
        current = self.get_payment(payment_id)
        stored = replace(payment, id=payment_id, code=current.code)
        self.payments[payment_id] = stored
        return stored

    def regularize_payment(self, payment_id, payment: Payment) -> Payment:
        return self.update_payment(payment_id, payment)

    def create_account(self, account: Account, config: BillingConfig) -> tuple[Account, BillingConfig]:
        with self._lock:
            existing = self.find_account_by_identity(account.identity_number)
            if existing is not None:
                raise IdentityAlreadyRegistered(account.identity_number, existing)

            account_id = next(self._account_ids)
            installations = [config.installation_id] if config.installation_id is not None else []
            stored_account = replace(account, id=account_id, installations=installations)
            stored_config = replace(config, id=next(self._config_ids), account_id=account_id)
            self.accounts[account_id] = stored_account
            self.configs[account_id] = stored_config
        return stored_account, stored_config

    def attach_installation(self, account_id, installation_id) -> Account:
        account = self.get_account(account_id)
        if installation_id is not None and installation_id not in account.installations:
            account.installations.append(installation_id)
        return account

    def bulk_reconcile_statuses(self) -> ReconcileSummary:
        """
        Align each account's coarse status with its payment history.

        An account with an overdue, uncollected payment is suspended; an
        account without one is active again. Inactive accounts are skipped.
        """
        checked = 0
        reconciled = 0
        for account_id, account in self.accounts.items():
            if account.status == AccountStatus.INACTIVE:
                continue
            checked += 1

            overdue = any(
                p.status == PaymentStatus.LATE_PAYMENT and p.payment_date is None
                for p in self.list_payments(account_id)
            )
            target_status = AccountStatus.SUSPENDED if overdue else AccountStatus.ACTIVE
            target_config = ConfigPaymentStatus.SUSPENDED if overdue else ConfigPaymentStatus.PAID

            config = self.configs.get(account_id)
            if account.status != target_status or (config and config.payment_status != target_config):
                account.status = target_status
                if config is not None:
                    config.payment_status = target_config
                reconciled += 1

        return ReconcileSummary(checked=checked, reconciled=reconciled)

    def update_anchor_date(self, account_id, anchor_date) -> BillingConfig:
        config = self.get_billing_config(account_id)
        config.anchor_date = anchor_date
        return config


def gateway_from_env(environ=None) -> BillingGateway:
    """
    Build the gateway the entry points use.

    BILLING_API_URL selects the remote service (with BILLING_API_TOKEN and
    BILLING_API_TIMEOUT); without it an in-memory store is used.
    """
    environ = os.environ if environ is None else environ
    base_url = environ.get("BILLING_API_URL")
    if not base_url:
        logger.warning("BILLING_API_URL is not set; using the in-memory billing store")
        return InMemoryBillingGateway()

    timeout = float(environ.get("BILLING_API_TIMEOUT", 10))
    return RestBillingGateway(base_url, environ.get("BILLING_API_TOKEN"), timeout=timeout)
