"""Business error taxonomy raised by ledger components."""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for expected ledger failures.

    The engine facade converts these into failed ``OperationResult`` values;
    anything that is not a ``LedgerError`` is treated as an infrastructure
    failure and propagates.
    """

    code = "ledger_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = {key: value for key, value in details.items() if value is not None}


class NotFoundError(LedgerError):
    """Customer, shop, session, referral or promo code is absent."""

    code = "not_found"


class LedgerValidationError(LedgerError):
    """Input or entity state fails a business precondition."""

    code = "validation_error"


class LimitExceededError(LedgerError):
    """Earning caps, redemption caps or promo usage limits were hit."""

    code = "limit_exceeded"


class ConflictError(LedgerError):
    code = "conflict"


class ExpiredStateError(LedgerError):
    """Operation targets an expired or terminal session or referral."""

    code = "expired_state"


class UnauthorizedError(LedgerError):
    code = "unauthorized"


class SettlementError(LedgerError):
    """The token settlement gateway refused or failed a mint."""

    code = "settlement_failed"


__all__ = [
    "ConflictError",
    "ExpiredStateError",
    "LedgerError",
    "LedgerValidationError",
    "LimitExceededError",
    "NotFoundError",
    "SettlementError",
    "UnauthorizedError",
]
