# app/tandas/service.py
"""
Core-facing interface for tandas. An outer layer (HTTP, bot, CLI) calls
these methods and maps `TandaError.code` to its own responses.
"""
from __future__ import annotations

from collections import Counter
from typing import Optional

from app.providers.base import PaymentGateway
from app.providers.factory import get_gateway
from app.tandas import evaluator, membership
from app.tandas.errors import NotFoundError
from app.tandas.models import Participant, Payment, RoundSettlement, Tanda
from app.tandas.settlement import PaymentOutcome, RoundResult, SettlementEngine
from app.tandas.state_machine import PaymentStatus, TandaStatus
from app.tandas.store import InMemoryLedgerStore, LedgerStore
from schemas import (
    ContributionResponse,
    InviteView,
    ParticipantTandaItem,
    ParticipantView,
    PaymentView,
    RoundReport,
    RoundResultView,
    SettlementView,
    TandaView,
)
from services.observability import operation


def _participant_view(p: Optional[Participant]) -> Optional[ParticipantView]:
    return ParticipantView.model_validate(p) if p is not None else None


def tanda_view(tanda: Tanda) -> TandaView:
    return TandaView(
        id=tanda.id,
        name=tanda.name,
        description=tanda.description,
        frequency=tanda.frequency,
        contribution_amount=tanda.contribution_amount,
        participant_count=tanda.participant_count,
        total_amount=tanda.total_amount,
        payout_amount=tanda.payout_amount,
        current_round=tanda.current_round,
        effective_round=evaluator.effective_round(tanda),
        status=tanda.status,
        invite_code=tanda.invite_code,
        invite_url=membership.invite_url(tanda.invite_code),
        participants=[ParticipantView.model_validate(p) for p in sorted(tanda.participants, key=lambda x: x.position)],
        next_recipient=_participant_view(evaluator.next_recipient(tanda)),
        created_at=tanda.created_at,
        filled_at=tanda.filled_at,
        rounds_started_at=tanda.rounds_started_at,
        completed_at=tanda.completed_at,
        halted_reason=tanda.halted_reason,
    )


def round_result_view(result: RoundResult) -> RoundResultView:
    return RoundResultView(
        round=result.round,
        recipient=ParticipantView.model_validate(result.recipient),
        amount=result.amount,
        reference=result.reference,
        next_round=result.next_round,
        tanda_status=result.tanda_status,
    )


def contribution_response(outcome: PaymentOutcome) -> ContributionResponse:
    return ContributionResponse(
        status=outcome.status,
        payment=PaymentView.model_validate(outcome.payment),
        authorization_url=outcome.authorization_url if outcome.requires_auth else None,
        round_complete=outcome.settlement is not None or outcome.settlement_error is not None,
        settlement=round_result_view(outcome.settlement) if outcome.settlement else None,
        settlement_error=outcome.settlement_error.message if outcome.settlement_error else None,
    )


class TandaService:
    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        gateway: Optional[PaymentGateway] = None,
        *,
        pool_wallet: Optional[str] = None,
    ):
        self.store = store if store is not None else InMemoryLedgerStore()
        self.gateway = gateway if gateway is not None else get_gateway()
        self.engine = SettlementEngine(self.store, self.gateway, pool_wallet=pool_wallet)

    # -------- MEMBERSHIP --------
    def create_tanda(
        self,
        founder_wallet: str,
        display_name: str,
        contribution_amount: Optional[int] = None,
        participant_count: Optional[int] = None,
        *,
        total_amount: Optional[int] = None,
        name: str = "",
        description: str = "",
        frequency: str = "monthly",
    ) -> TandaView:
        with operation("create"):
            tanda = membership.create_tanda(
                founder_wallet=founder_wallet,
                founder_name=display_name,
                participant_count=participant_count,
                contribution_amount=contribution_amount,
                total_amount=total_amount,
                name=name,
                description=description,
                frequency=frequency,
            )
            while self.store.find_tanda_by_invite(tanda.invite_code) is not None:
                tanda.invite_code = membership.generate_invite_code()
            self.store.put_tanda(tanda)
            return tanda_view(tanda)

    def join_tanda(self, tanda_id: str, wallet_identity: str, display_name: str) -> TandaView:
        with operation("join"), self.store.lock(tanda_id):
            tanda = self.engine.load_for_mutation(tanda_id)
            expected = tanda.version
            membership.join_tanda(tanda, wallet_identity=wallet_identity, display_name=display_name)
            self.store.compare_and_swap_tanda(tanda, expected_version=expected)
            return tanda_view(tanda)

    def join_by_invite(self, invite_code: str, wallet_identity: str, display_name: str) -> TandaView:
        tanda = self.store.find_tanda_by_invite(invite_code)
        if tanda is None:
            raise NotFoundError(f"Invite code not valid: {invite_code}", code="INVITE_NOT_FOUND")
        return self.join_tanda(tanda.id, wallet_identity, display_name)

    def get_invite(self, invite_code: str) -> InviteView:
        tanda = self.store.find_tanda_by_invite(invite_code)
        if tanda is None:
            raise NotFoundError(f"Invite code not valid: {invite_code}", code="INVITE_NOT_FOUND")
        founder = tanda.participant_by_id(tanda.founder_id) if tanda.founder_id else None
        status = tanda.status
        return InviteView(
            tanda_id=tanda.id,
            name=tanda.name,
            description=tanda.description,
            frequency=tanda.frequency,
            contribution_amount=tanda.contribution_amount,
            founder_name=founder.display_name if founder else None,
            participants_joined=len(tanda.participants),
            participant_count=tanda.participant_count,
            status=status,
            can_join=status == TandaStatus.OPEN and not tanda.is_halted,
        )

    # -------- CONTRIBUTIONS --------
    def submit_contribution(self, tanda_id: str, wallet_identity: str, amount: int) -> ContributionResponse:
        return contribution_response(self.engine.submit_contribution(tanda_id, wallet_identity, amount))

    def complete_pending_payment(self, payment_id: str, continuation_proof: str) -> ContributionResponse:
        return contribution_response(self.engine.complete_pending_payment(payment_id, continuation_proof))

    # -------- ROUNDS --------
    def settle_round(self, tanda_id: str) -> RoundResultView:
        return round_result_view(self.engine.settle_round(tanda_id))

    def start_rounds(self, tanda_id: str) -> TandaView:
        return tanda_view(self.engine.start_rounds(tanda_id))

    # -------- READS --------
    def get_tanda(self, tanda_id: str) -> TandaView:
        return tanda_view(self.store.get_tanda(tanda_id))

    def get_payment(self, payment_id: str) -> PaymentView:
        return PaymentView.model_validate(self.store.get_payment(payment_id))

    def get_participant_tandas(self, wallet_identity: str) -> list[ParticipantTandaItem]:
        wallet_identity = (wallet_identity or "").strip()
        items: list[ParticipantTandaItem] = []
        for tanda in sorted(self.store.list_tandas(), key=lambda t: t.created_at):
            me = tanda.participant_by_wallet(wallet_identity)
            if me is None:
                continue
            items.append(
                ParticipantTandaItem(
                    tanda_id=tanda.id,
                    name=tanda.name,
                    status=tanda.status,
                    position=me.position,
                    has_received=me.has_received,
                    contribution_amount=tanda.contribution_amount,
                    current_round=tanda.current_round,
                    total_rounds=tanda.participant_count,
                    next_recipient=_participant_view(evaluator.next_recipient(tanda)),
                )
            )
        return items

    def get_round_report(self, tanda_id: str) -> RoundReport:
        tanda = self.store.get_tanda(tanda_id)
        payments = self.store.list_payments(tanda.id)
        settlements = self.store.list_settlements(tanda.id)
        return build_round_report(tanda, payments, settlements)


def build_round_report(tanda: Tanda, payments: list[Payment], settlements: list[RoundSettlement]) -> RoundReport:
    by_round: dict[int, list[PaymentView]] = {}
    for p in payments:
        by_round.setdefault(p.round, []).append(PaymentView.model_validate(p))

    counts = Counter(p.status.value for p in payments)
    return RoundReport(
        tanda_id=tanda.id,
        status=tanda.status,
        current_round=tanda.current_round,
        effective_round=evaluator.effective_round(tanda),
        round_complete=evaluator.is_round_complete(tanda, payments),
        payers_required=evaluator.payers_required(tanda),
        payers_paid=len(evaluator.paid_participant_ids(tanda, payments)),
        next_recipient=_participant_view(evaluator.next_recipient(tanda)),
        payments_by_round=by_round,
        status_counts={s.value: counts.get(s.value, 0) for s in PaymentStatus},
        settlements=[SettlementView.model_validate(s) for s in settlements],
    )
