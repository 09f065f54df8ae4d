from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from app.tandas import evaluator
from app.tandas.models import Payment, RoundSettlement, Tanda
from app.tandas.state_machine import BLOCKING_PAYMENT_STATUSES, TandaStatus
from app.tandas.store import LedgerStore

logger = logging.getLogger("tandapay.invariants")


def check_tanda_invariants(
    tanda: Tanda,
    payments: list[Payment],
    settlements: list[RoundSettlement],
) -> list[str]:
    violations: list[str] = []
    n = tanda.participant_count

    if len(tanda.participants) > n:
        violations.append(f"participants={len(tanda.participants)} exceeds participant_count={n}")

    positions = [p.position for p in tanda.participants]
    dup_positions = sorted(pos for pos, c in Counter(positions).items() if c > 1)
    if dup_positions:
        violations.append(f"duplicate positions {dup_positions}")
    out_of_range = sorted(pos for pos in positions if pos < 1 or pos > n)
    if out_of_range:
        violations.append(f"positions out of range {out_of_range}")

    wallets = Counter(p.wallet_identity for p in tanda.participants)
    dup_wallets = sorted(w for w, c in wallets.items() if c > 1)
    if dup_wallets:
        violations.append(f"duplicate wallets {dup_wallets}")

    if tanda.current_round < 0 or tanda.current_round > n:
        violations.append(f"current_round={tanda.current_round} outside [0, {n}]")

    # live payments per (round, participant)
    live = Counter(
        (p.round, p.participant_id) for p in payments if p.status in BLOCKING_PAYMENT_STATUSES
    )
    for (round_number, participant_id), c in sorted(live.items()):
        if c > 1:
            violations.append(f"{c} live payments round={round_number} participant={participant_id}")

    for p in payments:
        if p.amount != tanda.contribution_amount:
            violations.append(f"payment {p.id} amount={p.amount} != contribution={tanda.contribution_amount}")

    settled = [s for s in settlements if s.status == "SETTLED"]
    per_round = Counter(s.round for s in settled)
    for round_number, c in sorted(per_round.items()):
        if c > 1:
            violations.append(f"round {round_number} settled {c} times")

    by_id = {p.id: p for p in tanda.participants}
    paid_out = Counter(s.recipient_id for s in settled)
    for participant_id, c in sorted(paid_out.items()):
        if c > 1:
            violations.append(f"participant {participant_id} received {c} payouts")
    for s in settled:
        recipient = by_id.get(s.recipient_id)
        if recipient is None:
            violations.append(f"settlement {s.id} recipient {s.recipient_id} is not a participant")
            continue
        if recipient.position != s.round:
            violations.append(f"round {s.round} paid position {recipient.position}")
        if not recipient.has_received:
            violations.append(f"participant {recipient.id} paid in round {s.round} but has_received=False")
        if s.amount != tanda.payout_amount:
            violations.append(f"settlement {s.id} amount={s.amount} != payout={tanda.payout_amount}")

    received = {p.id for p in tanda.participants if p.has_received}
    if received != set(paid_out):
        violations.append(
            f"has_received set {sorted(received)} does not match settled recipients {sorted(paid_out)}"
        )

    if tanda.status == TandaStatus.COMPLETED and len(settled) != n:
        violations.append(f"status COMPLETED with {len(settled)}/{n} rounds settled")

    if tanda.status == TandaStatus.COMPLETED and evaluator.next_recipient(tanda) is not None:
        violations.append("status COMPLETED but a recipient is still pending")

    return violations


def audit_store(store: LedgerStore) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for tanda in store.list_tandas():
        violations = check_tanda_invariants(
            tanda,
            store.list_payments(tanda.id),
            store.list_settlements(tanda.id),
        )
        if violations:
            logger.error("invariant audit failed tanda_id=%s violations=%s", tanda.id, violations)
        items.append(
            {
                "tanda_id": tanda.id,
                "status": tanda.status.value,
                "violations": violations,
                "ok": not violations,
            }
        )
    return items
