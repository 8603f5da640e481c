"""
Intake Deduplication Gate

Checks a prospective client's identity number against existing accounts
before a new account is created. The check is advisory: the billing service
enforces uniqueness, this gate only steers the operator.
"""

import logging
import threading
from typing import Callable

from ..exceptions import ValidationFailed
from ..models import Account, IdentityLookup, IntakePlan
from ..validators import IDENTITY_LENGTH, InputValidator, normalize_identity

logger = logging.getLogger(__name__)

RESOLUTION_CANCEL = "cancel"
RESOLUTION_ADOPT = "adopt"
INSTALLATION_STEP = "installation"


class IntakeGate:
    """Decides how client intake continues for a given identity number."""

    RESOLUTIONS = [RESOLUTION_CANCEL, RESOLUTION_ADOPT]

    def __init__(self, validator: InputValidator | None = None):
        self.validator = validator or InputValidator()

    def is_complete(self, raw_identity) -> bool:
        """A lookup is only worth issuing once the identifier reaches full length."""
        return len(normalize_identity(raw_identity)) == IDENTITY_LENGTH

    def evaluate(self, identity_number: str, existing: Account | None) -> IdentityLookup:
        clean = self.validator.validate_identity(identity_number)
        if existing is None:
            return IdentityLookup(identity_number=clean, found=False)
        return IdentityLookup(
            identity_number=clean,
            found=True,
            account=existing,
            resolutions=list(self.RESOLUTIONS),
        )

    def adopt(self, lookup: IdentityLookup) -> IntakePlan:
        """
        Continue intake with the existing account.

        The wizard skips straight to the installation step with the identity
        fields pre-filled; no second billing configuration is created.
        """
        if not lookup.found or lookup.account is None:
            raise ValidationFailed(
                f"No existing account for identity number {lookup.identity_number} to adopt",
                field="identity_number",
            )

        account = lookup.account
        return IntakePlan(
            account=account,
            next_step=INSTALLATION_STEP,
            prefill={
                "account_id": account.id,
                "identity_number": account.identity_number,
                "name": account.name,
                "last_name": account.last_name,
                "phone": account.phone,
                "address": account.address,
            },
            creates_billing_config=False,
        )


class IdentityLookupSession:
    """
    Tracks identity lookups issued while the operator types.

    Every edit invalidates the lookups issued before it; a result that comes
    back for a superseded ticket is discarded instead of applied.
    """

    def __init__(self, gate: IntakeGate, finder: Callable[[str], Account | None]):
        self.gate = gate
        self.finder = finder
        self.current: IdentityLookup | None = None
        self._ticket = 0
        self._lock = threading.Lock()

    def edit(self, raw_identity) -> int | None:
        """Register an edit. Returns a ticket when a lookup should be issued."""
        with self._lock:
            self._ticket += 1
            self.current = None
            if not self.gate.is_complete(raw_identity):
                return None
            return self._ticket

    def resolve(self, ticket: int, identity_number: str, existing: Account | None) -> IdentityLookup | None:
        """Apply a lookup result, unless a newer edit superseded it."""
        with self._lock:
            if ticket != self._ticket:
                logger.debug(f"Discarding stale identity lookup for {identity_number} (ticket {ticket})")
                return None
            self.current = self.gate.evaluate(identity_number, existing)
            return self.current

    def lookup(self, raw_identity) -> IdentityLookup | None:
        ticket = self.edit(raw_identity)
        if ticket is None:
            return None
        identity_number = normalize_identity(raw_identity)
        existing = self.finder(identity_number)
        return self.resolve(ticket, identity_number, existing)
