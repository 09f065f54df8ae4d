# app/tandas/state_machine.py
from __future__ import annotations

from enum import Enum


class InvalidTransition(Exception):
    pass


class TandaStatus(str, Enum):
    OPEN = "OPEN"
    FULL = "FULL"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, Enum):
    PROCESSING = "PROCESSING"
    PENDING_AUTHORIZATION = "PENDING_AUTHORIZATION"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


ALLOWED = {
    PaymentStatus.PROCESSING: {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.PENDING_AUTHORIZATION,
    },
    PaymentStatus.PENDING_AUTHORIZATION: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: set(),
    PaymentStatus.FAILED: set(),
}

TERMINAL_PAYMENT_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.FAILED)

# Payments that hold a participant's slot in a round.
BLOCKING_PAYMENT_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.PENDING_AUTHORIZATION)

# Statuses in which contributions are accepted (pre-fund while OPEN/FULL).
CONTRIBUTING_STATUSES = (TandaStatus.OPEN, TandaStatus.FULL, TandaStatus.ACTIVE)

_TANDA_ORDER = {
    TandaStatus.OPEN: 0,
    TandaStatus.FULL: 1,
    TandaStatus.ACTIVE: 2,
    TandaStatus.COMPLETED: 3,
}


def assert_transition(old: PaymentStatus, new: PaymentStatus) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal payment transition: {old.value} -> {new.value}")


def assert_tanda_transition(old: TandaStatus, new: TandaStatus) -> None:
    """
    Invariant: tanda status only moves forward (OPEN -> FULL -> ACTIVE -> COMPLETED).
    """
    if _TANDA_ORDER[new] < _TANDA_ORDER[old]:
        raise InvalidTransition(f"Illegal tanda transition: {old.value} -> {new.value}")
