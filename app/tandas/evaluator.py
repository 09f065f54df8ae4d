# app/tandas/evaluator.py
"""
Round evaluator: pure functions over a tanda and its payments.

Nothing here mutates state. `tanda_status` is the only place tanda status is
computed; the settlement engine and the read views both go through it.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional

from app.tandas.state_machine import PaymentStatus, TandaStatus

if TYPE_CHECKING:
    from app.tandas.models import Participant, Payment, Tanda


def tanda_status(tanda: "Tanda") -> TandaStatus:
    n = tanda.participant_count
    if tanda.current_round > n:
        return TandaStatus.COMPLETED
    if len(tanda.participants) < n:
        return TandaStatus.OPEN
    if all(p.has_received for p in tanda.participants):
        # final payout keeps current_round at n
        return TandaStatus.COMPLETED
    if tanda.current_round == 0:
        return TandaStatus.FULL
    return TandaStatus.ACTIVE


def effective_round(tanda: "Tanda") -> int:
    """Round a contribution counts toward; pre-fund contributions go to round 1."""
    return tanda.current_round if tanda.current_round > 0 else 1


def next_recipient(tanda: "Tanda") -> Optional["Participant"]:
    r = effective_round(tanda)
    for p in sorted(tanda.participants, key=lambda x: x.position):
        if p.position == r and not p.has_received:
            return p
    return None


def round_payments(tanda: "Tanda", payments: Iterable["Payment"], round_number: int) -> list["Payment"]:
    return [p for p in payments if p.tanda_id == tanda.id and p.round == round_number]


def paid_participant_ids(tanda: "Tanda", payments: Iterable["Payment"]) -> set[str]:
    """
    Distinct participants with a COMPLETED payment for the effective round.

    A recipient can only have one here through a pre-fund payment made while
    `current_round == 0`; it counts like any other so it is paid back out.
    """
    r = effective_round(tanda)
    return {
        p.participant_id
        for p in round_payments(tanda, payments, r)
        if p.status == PaymentStatus.COMPLETED
    }


def payers_required(tanda: "Tanda") -> int:
    return tanda.participant_count - 1


def is_round_complete(tanda: "Tanda", payments: Iterable["Payment"]) -> bool:
    if tanda_status(tanda) == TandaStatus.COMPLETED:
        return False
    return len(paid_participant_ids(tanda, payments)) >= payers_required(tanda)
