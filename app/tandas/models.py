# app/tandas/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional
from uuid import uuid4

from app.tandas import evaluator
from app.tandas.state_machine import TERMINAL_PAYMENT_STATUSES, PaymentStatus, TandaStatus, assert_transition

SettlementStatus = Literal["SETTLED", "FAILED"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


@dataclass
class Participant:
    id: str
    display_name: str
    wallet_identity: str
    position: int  # 1-based, fixed at join time
    is_founder: bool = False
    has_received: bool = False
    received_at: Optional[datetime] = None
    joined_at: datetime = field(default_factory=_now)


@dataclass
class Tanda:
    id: str
    name: str
    contribution_amount: int
    participant_count: int
    participants: list[Participant] = field(default_factory=list)
    current_round: int = 0  # 0 => rounds not formally started (pre-fund allowed)
    description: str = ""
    frequency: str = "monthly"
    invite_code: str = ""
    founder_id: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    filled_at: Optional[datetime] = None
    rounds_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    halted_reason: Optional[str] = None

    # bumped by the store on every successful write
    version: int = 0

    @property
    def status(self) -> TandaStatus:
        # derived from membership and round fields, never stored
        return evaluator.tanda_status(self)

    @property
    def total_amount(self) -> int:
        return self.contribution_amount * self.participant_count

    @property
    def payout_amount(self) -> int:
        return self.contribution_amount * (self.participant_count - 1)

    @property
    def is_halted(self) -> bool:
        return self.halted_reason is not None

    def participant_by_wallet(self, wallet_identity: str) -> Optional[Participant]:
        for p in self.participants:
            if p.wallet_identity == wallet_identity:
                return p
        return None

    def participant_by_id(self, participant_id: str) -> Optional[Participant]:
        for p in self.participants:
            if p.id == participant_id:
                return p
        return None


@dataclass
class Payment:
    id: str
    tanda_id: str
    participant_id: str
    participant_wallet: str
    round: int
    amount: int
    status: PaymentStatus = PaymentStatus.PROCESSING
    created_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    # gateway correlation, only meaningful while PENDING_AUTHORIZATION
    continuation_token: Optional[str] = None
    authorization_url: Optional[str] = None

    external_reference: Optional[str] = None
    error: Optional[str] = None

    def transition_to(self, new_status: PaymentStatus, now: Optional[datetime] = None) -> None:
        assert_transition(self.status, new_status)
        self.status = new_status
        if new_status in TERMINAL_PAYMENT_STATUSES:
            self.completed_at = now or _now()
            self.continuation_token = None


@dataclass
class RoundSettlement:
    id: str
    tanda_id: str
    round: int
    recipient_id: str
    recipient_wallet: str
    amount: int
    status: SettlementStatus
    reference: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
