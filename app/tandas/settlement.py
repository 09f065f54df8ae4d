# app/tandas/settlement.py
"""
Settlement engine: accepts contributions, closes rounds, pays recipients.

Every mutating entry point runs inside the tanda's exclusive section
(`store.lock(tanda_id)`) and keeps it across the gateway call, so two
contributions racing to close the same round cannot both trigger a payout.

Payment state machine:
    PROCESSING -> COMPLETED | FAILED | PENDING_AUTHORIZATION
    PENDING_AUTHORIZATION -> COMPLETED | FAILED

Tanda status is never assigned here; it is re-derived by the evaluator after
each change to membership, round counter or recipient flags.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

from app.providers.base import Failed, PaymentGateway, Pending, Settled, TransferResult
from app.tandas import evaluator
from app.tandas.errors import GatewayError, InvariantError, PhaseError, ValidationError
from app.tandas.models import Participant, Payment, RoundSettlement, Tanda, new_id
from app.tandas.state_machine import (
    BLOCKING_PAYMENT_STATUSES,
    CONTRIBUTING_STATUSES,
    PaymentStatus,
    TandaStatus,
    assert_tanda_transition,
)
from app.tandas.store import LedgerStore
from services.observability import operation
from services.redaction import redact_text
from settings import settings

logger = logging.getLogger("tandapay.settlement")
invariant_logger = logging.getLogger("tandapay.invariants")

OutcomeStatus = Literal["COMPLETED", "REQUIRES_AUTH"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RoundResult:
    round: int
    recipient: Participant
    amount: int
    reference: str
    next_round: int
    tanda_status: TandaStatus
    settlement: RoundSettlement


@dataclass
class PaymentOutcome:
    status: OutcomeStatus
    payment: Payment
    tanda: Tanda
    settlement: Optional[RoundResult] = None
    # payout attempted after this payment closed the round, but the gateway failed
    settlement_error: Optional[GatewayError] = None

    @property
    def requires_auth(self) -> bool:
        return self.status == "REQUIRES_AUTH"

    @property
    def authorization_url(self) -> Optional[str]:
        return self.payment.authorization_url


class SettlementEngine:
    def __init__(
        self,
        store: LedgerStore,
        gateway: PaymentGateway,
        *,
        pool_wallet: Optional[str] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.pool_wallet = (pool_wallet or settings.TANDA_POOL_WALLET or "").strip()

    # ==========================================================
    # Contributions
    # ==========================================================

    def submit_contribution(self, tanda_id: str, wallet_identity: str, amount: int) -> PaymentOutcome:
        with operation("contribute"), self.store.lock(tanda_id):
            tanda = self.load_for_mutation(tanda_id)

            status = tanda.status
            if status not in CONTRIBUTING_STATUSES:
                raise PhaseError(f"Tanda does not accept contributions (status={status.value})")

            participant = tanda.participant_by_wallet((wallet_identity or "").strip())
            if participant is None:
                raise ValidationError("Not a participant of this tanda", code="NOT_A_MEMBER")

            recipient = evaluator.next_recipient(tanda)
            if tanda.current_round > 0 and recipient is not None and recipient.id == participant.id:
                raise ValidationError(
                    f"Participant at position {participant.position} receives round {tanda.current_round}",
                    code="RECIPIENT_CANNOT_PAY",
                )

            if isinstance(amount, bool) or not isinstance(amount, int) or amount != tanda.contribution_amount:
                raise ValidationError(
                    f"Contribution must be exactly {tanda.contribution_amount}", code="WRONG_AMOUNT"
                )

            round_number = evaluator.effective_round(tanda)
            for existing in self.store.list_payments(tanda.id, round_number=round_number):
                if existing.participant_id == participant.id and existing.status in BLOCKING_PAYMENT_STATUSES:
                    raise ValidationError(
                        f"Already paid round {round_number} (payment_id={existing.id})", code="ALREADY_PAID"
                    )

            payment = Payment(
                id=new_id(),
                tanda_id=tanda.id,
                participant_id=participant.id,
                participant_wallet=participant.wallet_identity,
                round=round_number,
                amount=amount,
            )
            self._save_payment(tanda, payment)

            logger.info(
                "contribution started tanda_id=%s payment_id=%s participant_id=%s round=%s amount=%s",
                tanda.id,
                payment.id,
                participant.id,
                round_number,
                amount,
            )

            result = self._transfer(
                participant.wallet_identity,
                self.pool_wallet,
                amount,
                memo=f"{tanda.name} round {round_number} contribution",
            )

            if isinstance(result, Pending):
                payment.transition_to(PaymentStatus.PENDING_AUTHORIZATION)
                payment.continuation_token = result.continuation_token
                payment.authorization_url = result.authorization_url
                self._save_payment(tanda, payment)
                logger.info(
                    "contribution requires authorization tanda_id=%s payment_id=%s auth_url=%s",
                    tanda.id,
                    payment.id,
                    redact_text(result.authorization_url or ""),
                )
                return PaymentOutcome(status="REQUIRES_AUTH", payment=payment, tanda=tanda)

            if isinstance(result, Failed):
                payment.transition_to(PaymentStatus.FAILED)
                payment.error = result.reason
                self._save_payment(tanda, payment)
                logger.warning(
                    "contribution failed tanda_id=%s payment_id=%s reason=%s retryable=%s",
                    tanda.id,
                    payment.id,
                    result.reason,
                    result.retryable,
                )
                raise GatewayError(result.reason, payment=payment, retryable=result.retryable)

            payment.transition_to(PaymentStatus.COMPLETED)
            payment.external_reference = result.reference
            self._save_payment(tanda, payment)
            logger.info("contribution completed tanda_id=%s payment_id=%s", tanda.id, payment.id)

            settled, settle_error = self._settle_if_complete(tanda)
            return PaymentOutcome(
                status="COMPLETED",
                payment=payment,
                tanda=tanda,
                settlement=settled,
                settlement_error=settle_error,
            )

    def complete_pending_payment(self, payment_id: str, continuation_proof: str) -> PaymentOutcome:
        tanda_id = self.store.get_payment(payment_id).tanda_id

        with operation("complete-payment"), self.store.lock(tanda_id):
            # re-read inside the section; another caller may have finished it
            payment = self.store.get_payment(payment_id)
            tanda = self.load_for_mutation(tanda_id)

            if payment.status != PaymentStatus.PENDING_AUTHORIZATION:
                raise ValidationError(
                    f"Payment is not pending authorization (status={payment.status.value})", code="NOT_PENDING"
                )

            result = self._continue(payment.continuation_token or "", continuation_proof)

            if not isinstance(result, Settled):
                reason = getattr(result, "reason", "Authorization not finalized")
                retryable = bool(getattr(result, "retryable", True))
                payment.error = reason
                if not retryable:
                    payment.transition_to(PaymentStatus.FAILED)
                self._save_payment(tanda, payment)
                logger.warning(
                    "pending payment not finalized tanda_id=%s payment_id=%s reason=%s status=%s",
                    tanda.id,
                    payment.id,
                    reason,
                    payment.status.value,
                )
                raise GatewayError(reason, payment=payment, retryable=retryable)

            payment.transition_to(PaymentStatus.COMPLETED)
            payment.external_reference = result.reference
            payment.error = None
            self._save_payment(tanda, payment)
            logger.info("pending payment completed tanda_id=%s payment_id=%s", tanda.id, payment.id)

            settled, settle_error = self._settle_if_complete(tanda)
            return PaymentOutcome(
                status="COMPLETED",
                payment=payment,
                tanda=tanda,
                settlement=settled,
                settlement_error=settle_error,
            )

    # ==========================================================
    # Rounds
    # ==========================================================

    def settle_round(self, tanda_id: str) -> RoundResult:
        """
        Pay out the current round. Used directly to retry a round whose payout
        failed; contributions reach the same code path automatically.

        Raises:
            PhaseError: the tanda is completed or the round is not complete yet.
            GatewayError: the payout transfer failed; nothing was marked paid.
            InvariantError: no recipient could be resolved (the tanda is halted).
        """
        with operation("settle"), self.store.lock(tanda_id):
            tanda = self.load_for_mutation(tanda_id)
            if tanda.status not in CONTRIBUTING_STATUSES:
                raise PhaseError(f"Tanda has no round to settle (status={tanda.status.value})")
            payments = self.store.list_payments(tanda.id)
            return self._settle_locked(tanda, payments)

    def start_rounds(self, tanda_id: str) -> Tanda:
        """FULL -> ACTIVE without moving funds; round 1 begins."""
        with operation("start-rounds"), self.store.lock(tanda_id):
            tanda = self.load_for_mutation(tanda_id)
            before = tanda.status
            if before != TandaStatus.FULL:
                raise PhaseError(f"Tanda must be full to start rounds (status={before.value})")

            expected = tanda.version
            tanda.current_round = 1
            tanda.rounds_started_at = _now()
            assert_tanda_transition(before, tanda.status)
            self.store.compare_and_swap_tanda(tanda, expected_version=expected)

            logger.info("rounds started tanda_id=%s", tanda.id)
            return tanda

    def _settle_if_complete(self, tanda: Tanda) -> tuple[Optional[RoundResult], Optional[GatewayError]]:
        if tanda.status not in CONTRIBUTING_STATUSES:
            return None, None
        payments = self.store.list_payments(tanda.id)
        if not evaluator.is_round_complete(tanda, payments):
            return None, None

        logger.info("round complete tanda_id=%s round=%s", tanda.id, evaluator.effective_round(tanda))
        try:
            return self._settle_locked(tanda, payments), None
        except GatewayError as exc:
            return None, exc

    def _settle_locked(self, tanda: Tanda, payments: list[Payment]) -> RoundResult:
        if not evaluator.is_round_complete(tanda, payments):
            paid = len(evaluator.paid_participant_ids(tanda, payments))
            raise PhaseError(
                f"Round {evaluator.effective_round(tanda)} has {paid}/{evaluator.payers_required(tanda)} contributions",
                code="ROUND_NOT_COMPLETE",
            )

        expected = tanda.version
        before = tanda.status
        now = _now()

        if tanda.current_round == 0:
            # first close formally starts the rounds
            tanda.current_round = 1
            tanda.rounds_started_at = now

        recipient = evaluator.next_recipient(tanda)
        if recipient is None:
            self._halt(
                tanda,
                InvariantError(
                    f"No recipient for round {tanda.current_round} in tanda {tanda.id}", code="NO_RECIPIENT"
                ),
                expected_version=expected,
            )

        round_number = tanda.current_round
        amount = tanda.payout_amount

        logger.info(
            "payout started tanda_id=%s round=%s recipient_id=%s amount=%s",
            tanda.id,
            round_number,
            recipient.id,
            amount,
        )
        result = self._transfer(
            self.pool_wallet,
            recipient.wallet_identity,
            amount,
            memo=f"{tanda.name} round {round_number} payout",
        )

        if not isinstance(result, Settled):
            if isinstance(result, Pending):
                reason, retryable = "Payout requires interactive authorization", False
            else:
                reason, retryable = result.reason, result.retryable

            if tanda.status != before:
                # keep the formal round start; the round stays complete-but-unsettled
                assert_tanda_transition(before, tanda.status)
                self.store.compare_and_swap_tanda(tanda, expected_version=expected)

            settlement = RoundSettlement(
                id=new_id(),
                tanda_id=tanda.id,
                round=round_number,
                recipient_id=recipient.id,
                recipient_wallet=recipient.wallet_identity,
                amount=amount,
                status="FAILED",
                error=reason,
                created_at=now,
            )
            self.store.put_settlement(settlement)
            logger.warning(
                "payout failed tanda_id=%s round=%s recipient_id=%s reason=%s retryable=%s",
                tanda.id,
                round_number,
                recipient.id,
                reason,
                retryable,
            )
            raise GatewayError(reason, round_number=round_number, retryable=retryable)

        recipient.has_received = True
        recipient.received_at = now
        if tanda.current_round < tanda.participant_count:
            tanda.current_round += 1

        after = tanda.status
        assert_tanda_transition(before, after)
        if after == TandaStatus.COMPLETED:
            tanda.completed_at = now
        self.store.compare_and_swap_tanda(tanda, expected_version=expected)

        settlement = RoundSettlement(
            id=new_id(),
            tanda_id=tanda.id,
            round=round_number,
            recipient_id=recipient.id,
            recipient_wallet=recipient.wallet_identity,
            amount=amount,
            status="SETTLED",
            reference=result.reference,
            created_at=now,
        )
        self.store.put_settlement(settlement)

        logger.info(
            "round settled tanda_id=%s round=%s recipient_id=%s next_round=%s status=%s",
            tanda.id,
            round_number,
            recipient.id,
            tanda.current_round,
            after.value,
        )
        return RoundResult(
            round=round_number,
            recipient=recipient,
            amount=amount,
            reference=result.reference,
            next_round=tanda.current_round,
            tanda_status=after,
            settlement=settlement,
        )

    # ==========================================================
    # Helpers
    # ==========================================================

    def load_for_mutation(self, tanda_id: str) -> Tanda:
        tanda = self.store.get_tanda(tanda_id)
        if tanda.is_halted:
            raise InvariantError(f"Tanda {tanda_id} is halted: {tanda.halted_reason}", code="TANDA_HALTED")
        return tanda

    def _halt(self, tanda: Tanda, exc: InvariantError, *, expected_version: int) -> None:
        tanda.halted_reason = f"{exc.code}: {exc.message}"
        invariant_logger.error("tanda halted tanda_id=%s reason=%s", tanda.id, tanda.halted_reason)
        self.store.compare_and_swap_tanda(tanda, expected_version=expected_version)
        raise exc

    def _save_payment(self, tanda: Tanda, payment: Payment) -> None:
        try:
            self.store.put_payment(payment)
        except InvariantError as exc:
            self._halt(tanda, exc, expected_version=tanda.version)

    def _transfer(self, source: str, dest: str, amount: int, *, memo: str) -> TransferResult:
        try:
            return self.gateway.transfer(source, dest, amount, memo)
        except Exception as e:
            logger.exception("gateway transfer raised source=%s dest=%s", source, dest)
            return Failed(reason=f"Gateway error: {e}", retryable=True)

    def _continue(self, token: str, proof: str):
        try:
            return self.gateway.continue_transfer(token, proof)
        except Exception as e:
            logger.exception("gateway continue raised")
            return Failed(reason=f"Gateway error: {e}", retryable=True)
