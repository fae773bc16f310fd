from __future__ import annotations

from typing import Any, Optional


class LedgerError(Exception):
    """
    Base class for ledger and purchase workflow failures.

    Every subclass carries a stable `code` and the HTTP status the API layer
    answers with, so callers never have to string-match messages.
    """

    code: str = "LEDGER_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class InsufficientFunds(LedgerError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 402

    def __init__(
        self,
        account_id: str,
        required: int,
        available: Optional[int] = None,
    ) -> None:
        super().__init__(
            f"Insufficient Spark Points. Required: {required}, available: "
            f"{available if available is not None else 'unknown'}.",
            required=required,
            available=available,
        )
        self.account_id = account_id
        self.required = required
        self.available = available


class SideEffectFailed(LedgerError):
    """The purchased action failed; the debit was refunded."""

    code = "SIDE_EFFECT_FAILED"
    status_code = 502


class DebitFailed(LedgerError):
    code = "DEBIT_FAILED"
    status_code = 500


class NotFound(LedgerError):
    code = "NOT_FOUND"
    status_code = 404


class Unauthorized(LedgerError):
    code = "UNAUTHORIZED"
    status_code = 403


class InvalidTransition(LedgerError):
    code = "INVALID_TRANSITION"
    status_code = 409


class OfferUnavailable(LedgerError):
    code = "OFFER_UNAVAILABLE"
    status_code = 409
