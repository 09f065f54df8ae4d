from __future__ import annotations

from app.tandas import evaluator
from app.tandas.models import Participant, Payment, Tanda
from app.tandas.state_machine import PaymentStatus, TandaStatus


def _tanda(size: int = 3, joined: int = 3, current_round: int = 0) -> Tanda:
    participants = [
        Participant(id=f"p{i}", display_name=f"m{i}", wallet_identity=f"w{i}", position=i)
        for i in range(1, joined + 1)
    ]
    return Tanda(
        id="t1",
        name="t",
        contribution_amount=100,
        participant_count=size,
        participants=participants,
        current_round=current_round,
    )


def _payment(participant_id: str, round_number: int, status: PaymentStatus = PaymentStatus.COMPLETED) -> Payment:
    return Payment(
        id=f"pay-{participant_id}-{round_number}-{status.value}",
        tanda_id="t1",
        participant_id=participant_id,
        participant_wallet="w",
        round=round_number,
        amount=100,
        status=status,
    )


def test_status_open_full_active_completed():
    assert evaluator.tanda_status(_tanda(joined=2)) == TandaStatus.OPEN
    assert evaluator.tanda_status(_tanda(joined=3)) == TandaStatus.FULL
    assert evaluator.tanda_status(_tanda(current_round=1)) == TandaStatus.ACTIVE
    assert evaluator.tanda_status(_tanda(current_round=3)) == TandaStatus.ACTIVE
    assert evaluator.tanda_status(_tanda(current_round=4)) == TandaStatus.COMPLETED


def test_status_completed_when_everyone_received_on_last_round():
    t = _tanda(current_round=3)
    for p in t.participants:
        p.has_received = True
    assert evaluator.tanda_status(t) == TandaStatus.COMPLETED
    assert t.status == TandaStatus.COMPLETED


def test_effective_round_defaults_to_one():
    assert evaluator.effective_round(_tanda(current_round=0)) == 1
    assert evaluator.effective_round(_tanda(current_round=2)) == 2


def test_next_recipient_matches_effective_round():
    t = _tanda()
    assert evaluator.next_recipient(t).id == "p1"

    t.current_round = 2
    assert evaluator.next_recipient(t).id == "p2"

    t.participants[1].has_received = True
    assert evaluator.next_recipient(t) is None


def test_next_recipient_ignores_join_order():
    t = _tanda()
    t.participants.reverse()
    t.current_round = 3
    assert evaluator.next_recipient(t).position == 3


def test_round_complete_needs_every_non_recipient():
    t = _tanda()
    payments = [_payment("p2", 1)]
    assert not evaluator.is_round_complete(t, payments)

    payments.append(_payment("p3", 1))
    assert evaluator.is_round_complete(t, payments)


def test_round_complete_ignores_other_rounds_and_statuses():
    t = _tanda(current_round=2)
    payments = [
        _payment("p1", 1),
        _payment("p3", 1),
        _payment("p1", 2, PaymentStatus.PENDING_AUTHORIZATION),
        _payment("p3", 2, PaymentStatus.FAILED),
        _payment("p3", 2, PaymentStatus.PROCESSING),
    ]
    assert not evaluator.is_round_complete(t, payments)

    payments.append(_payment("p1", 2))
    payments.append(_payment("p3", 2))
    assert evaluator.is_round_complete(t, payments)


def test_recipient_prefund_counts_toward_round():
    # position 1 pre-funds round 1, then position 2 pays
    t = _tanda()
    payments = [_payment("p1", 1), _payment("p2", 1)]
    assert evaluator.paid_participant_ids(t, payments) == {"p1", "p2"}
    assert evaluator.is_round_complete(t, payments)


def test_repeat_payments_from_one_participant_count_once():
    t = _tanda()
    payments = [_payment("p2", 1), _payment("p2", 1)]
    assert evaluator.paid_participant_ids(t, payments) == {"p2"}
    assert not evaluator.is_round_complete(t, payments)


def test_round_never_complete_while_open():
    t = _tanda(joined=2)
    payments = [_payment("p2", 1)]
    assert not evaluator.is_round_complete(t, payments)


def test_round_never_complete_once_completed():
    t = _tanda(current_round=3)
    for p in t.participants:
        p.has_received = True
    payments = [_payment("p1", 3), _payment("p2", 3)]
    assert not evaluator.is_round_complete(t, payments)
