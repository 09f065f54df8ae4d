# app/tandas/errors.py
from __future__ import annotations

from typing import Any, Optional


class TandaError(Exception):
    code = "TANDA_ERROR"

    def __init__(self, message: str = "", *, code: Optional[str] = None):
        self.code = code or self.code
        self.message = message or self.code
        super().__init__(f"{self.code}: {self.message}")


class ConfigError(TandaError):
    code = "INVALID_CONFIG"


class MembershipError(TandaError):
    code = "MEMBERSHIP_ERROR"


class PhaseError(TandaError):
    code = "WRONG_PHASE"


class ValidationError(TandaError):
    code = "VALIDATION_ERROR"


class NotFoundError(TandaError):
    code = "NOT_FOUND"


class ConcurrencyError(TandaError):
    code = "STALE_WRITE"


class GatewayError(TandaError):
    """
    External transfer failure. The payment (contribution) or the round (payout)
    is attached so callers can show what failed and decide whether to resubmit.
    """

    code = "GATEWAY_FAILED"

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        payment: Any = None,
        round_number: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message, code=code)
        self.payment = payment
        self.round_number = round_number
        self.retryable = retryable


class InvariantError(TandaError):
    code = "INVARIANT_VIOLATION"


# Membership
def not_open(status: str) -> MembershipError:
    return MembershipError(f"Tanda is not accepting participants (status={status})", code="NOT_OPEN")


def already_member(wallet: str) -> MembershipError:
    return MembershipError(f"Wallet already participates: {wallet}", code="ALREADY_MEMBER")


def full() -> MembershipError:
    return MembershipError("Tanda already has all its participants", code="FULL")


ERROR_HTTP_MAP: dict[str, tuple[int, str]] = {
    "INVALID_CONFIG": (400, "Invalid tanda configuration"),
    "NOT_OPEN": (409, "Tanda is not accepting participants"),
    "ALREADY_MEMBER": (409, "Already a participant"),
    "FULL": (409, "Tanda is full"),
    "WRONG_PHASE": (409, "Operation not allowed in current tanda status"),
    "ROUND_NOT_COMPLETE": (409, "Round is not complete"),
    "NOT_A_MEMBER": (403, "Not a participant of this tanda"),
    "INVALID_WALLET": (422, "Wallet identity is required"),
    "WRONG_AMOUNT": (422, "Wrong contribution amount"),
    "RECIPIENT_CANNOT_PAY": (422, "Round recipient does not contribute"),
    "ALREADY_PAID": (409, "Already paid this round"),
    "NOT_PENDING": (409, "Payment is not pending authorization"),
    "TANDA_NOT_FOUND": (404, "Tanda not found"),
    "PAYMENT_NOT_FOUND": (404, "Payment not found"),
    "INVITE_NOT_FOUND": (404, "Invite code not valid"),
    "STALE_WRITE": (409, "Concurrent update, retry"),
    "GATEWAY_FAILED": (502, "Payment gateway failure"),
    "NO_RECIPIENT": (500, "Internal server error"),
    "DUPLICATE_PAYMENT": (500, "Internal server error"),
    "INVARIANT_VIOLATION": (500, "Internal server error"),
    "TANDA_HALTED": (423, "Tanda is halted pending review"),
}


def http_status_for(exc: TandaError) -> tuple[int, str]:
    """
    For an outer HTTP layer. Unknown codes fail closed.
    """
    return ERROR_HTTP_MAP.get(exc.code, (500, "Internal server error"))
