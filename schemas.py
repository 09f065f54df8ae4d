# schemas.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional, List, Dict, Literal

from app.tandas.state_machine import PaymentStatus, TandaStatus


# -------- PARTICIPANTS --------
class ParticipantView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    display_name: str
    wallet_identity: str
    position: int
    is_founder: bool = False
    has_received: bool = False
    received_at: Optional[datetime] = None
    joined_at: datetime


# -------- TANDAS --------
class TandaView(BaseModel):
    id: str
    name: str
    description: str = ""
    frequency: str
    contribution_amount: int
    participant_count: int
    total_amount: int
    payout_amount: int
    current_round: int
    effective_round: int
    status: TandaStatus
    invite_code: str
    invite_url: str
    participants: List[ParticipantView]
    next_recipient: Optional[ParticipantView] = None
    created_at: datetime
    filled_at: Optional[datetime] = None
    rounds_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    halted_reason: Optional[str] = None


class ParticipantTandaItem(BaseModel):
    tanda_id: str
    name: str
    status: TandaStatus
    position: int
    has_received: bool
    contribution_amount: int
    current_round: int
    total_rounds: int
    next_recipient: Optional[ParticipantView] = None


class InviteView(BaseModel):
    tanda_id: str
    name: str
    description: str = ""
    frequency: str
    contribution_amount: int
    founder_name: Optional[str] = None
    participants_joined: int
    participant_count: int
    status: TandaStatus
    can_join: bool


# -------- PAYMENTS --------
class PaymentView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tanda_id: str
    participant_id: str
    participant_wallet: str
    round: int
    amount: int
    status: PaymentStatus
    created_at: datetime
    completed_at: Optional[datetime] = None
    authorization_url: Optional[str] = None
    external_reference: Optional[str] = None
    error: Optional[str] = None


class SettlementView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    round: int
    recipient_id: str
    recipient_wallet: str
    amount: int
    status: Literal["SETTLED", "FAILED"]
    reference: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime


class RoundResultView(BaseModel):
    round: int
    recipient: ParticipantView
    amount: int
    reference: str
    next_round: int
    tanda_status: TandaStatus


class ContributionResponse(BaseModel):
    status: Literal["COMPLETED", "REQUIRES_AUTH"]
    payment: PaymentView
    authorization_url: Optional[str] = None
    round_complete: bool = False
    settlement: Optional[RoundResultView] = None
    settlement_error: Optional[str] = None


# -------- DIAGNOSTICS --------
class RoundReport(BaseModel):
    tanda_id: str
    status: TandaStatus
    current_round: int
    effective_round: int
    round_complete: bool
    payers_required: int
    payers_paid: int
    next_recipient: Optional[ParticipantView] = None
    payments_by_round: Dict[int, List[PaymentView]]
    status_counts: Dict[str, int]
    settlements: List[SettlementView]
