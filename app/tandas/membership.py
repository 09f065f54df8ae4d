# app/tandas/membership.py
from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

from app.tandas import errors
from app.tandas.errors import ConfigError
from app.tandas.models import Participant, Tanda, new_id
from app.tandas.state_machine import TandaStatus, assert_tanda_transition
from settings import settings

logger = logging.getLogger("tandapay.membership")

_INVITE_ALPHABET = string.ascii_uppercase + string.digits


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_invite_code(length: Optional[int] = None) -> str:
    n = int(length or settings.INVITE_CODE_LENGTH)
    return "".join(secrets.choice(_INVITE_ALPHABET) for _ in range(n))


def invite_url(invite_code: str) -> str:
    base = (settings.FRONTEND_URL or "").rstrip("/")
    return f"{base}/join/{invite_code}"


def _resolve_contribution(
    contribution_amount: Optional[int],
    total_amount: Optional[int],
    participant_count: Optional[int],
) -> int:
    if (contribution_amount is None) == (total_amount is None):
        raise ConfigError("Exactly one of contribution_amount or total_amount is required")

    if total_amount is not None:
        if isinstance(total_amount, bool) or not isinstance(total_amount, int) or total_amount <= 0:
            raise ConfigError("total_amount must be a positive integer")
        if total_amount % participant_count != 0:
            raise ConfigError(
                f"total_amount {total_amount} is not divisible by participant_count {participant_count}"
            )
        return total_amount // participant_count

    if isinstance(contribution_amount, bool) or not isinstance(contribution_amount, int) or contribution_amount <= 0:
        raise ConfigError("contribution_amount must be a positive integer")
    return contribution_amount


def create_tanda(
    *,
    founder_wallet: str,
    founder_name: str,
    participant_count: Optional[int],
    contribution_amount: Optional[int] = None,
    total_amount: Optional[int] = None,
    name: str = "",
    description: str = "",
    frequency: str = "monthly",
    invite_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tanda:
    """Build a new OPEN tanda with the founder enrolled at position 1.

    Either `contribution_amount` (per person, per round) or `total_amount`
    (split evenly across `participant_count`) must be given, not both.

    Raises:
        ConfigError: fewer than 2 participants, non-positive amounts, an
            indivisible total, or a missing founder wallet.
    """
    if isinstance(participant_count, bool) or not isinstance(participant_count, int) or participant_count < 2:
        raise ConfigError("A tanda needs at least 2 participants")
    founder_wallet = (founder_wallet or "").strip()
    if not founder_wallet:
        raise ConfigError("founder_wallet is required")

    per_person = _resolve_contribution(contribution_amount, total_amount, participant_count)
    now = now or _now()

    founder = Participant(
        id=new_id(),
        display_name=(founder_name or "").strip() or founder_wallet,
        wallet_identity=founder_wallet,
        position=1,
        is_founder=True,
        joined_at=now,
    )
    tanda = Tanda(
        id=new_id(),
        name=(name or "").strip() or f"Tanda of {founder.display_name}",
        description=description or "",
        frequency=frequency or "monthly",
        contribution_amount=per_person,
        participant_count=participant_count,
        participants=[founder],
        current_round=0,
        invite_code=invite_code or generate_invite_code(),
        founder_id=founder.id,
        created_at=now,
    )

    logger.info(
        "tanda created tanda_id=%s participants=%s contribution=%s",
        tanda.id,
        tanda.participant_count,
        tanda.contribution_amount,
    )
    return tanda


def join_tanda(
    tanda: Tanda,
    *,
    wallet_identity: str,
    display_name: str,
    now: Optional[datetime] = None,
) -> Tanda:
    """
    Enroll a participant at the next sequential position. Mutates `tanda`;
    the caller persists it under the tanda's exclusive section.
    """
    wallet_identity = (wallet_identity or "").strip()
    if not wallet_identity:
        raise errors.ValidationError("wallet_identity is required", code="INVALID_WALLET")

    before = tanda.status
    if before != TandaStatus.OPEN:
        raise errors.not_open(before.value)
    if tanda.participant_by_wallet(wallet_identity) is not None:
        raise errors.already_member(wallet_identity)
    if len(tanda.participants) >= tanda.participant_count:
        raise errors.full()

    now = now or _now()
    participant = Participant(
        id=new_id(),
        display_name=(display_name or "").strip() or wallet_identity,
        wallet_identity=wallet_identity,
        position=len(tanda.participants) + 1,
        joined_at=now,
    )
    tanda.participants.append(participant)

    after = tanda.status
    assert_tanda_transition(before, after)
    if after == TandaStatus.FULL:
        tanda.filled_at = now

    logger.info(
        "participant joined tanda_id=%s participant_id=%s position=%s status=%s",
        tanda.id,
        participant.id,
        participant.position,
        after.value,
    )
    return tanda
