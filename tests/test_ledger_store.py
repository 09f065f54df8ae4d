import threading
import time

import pytest

from app.tandas import membership
from app.tandas.errors import ConcurrencyError, InvariantError, NotFoundError
from app.tandas.models import Payment, new_id
from app.tandas.state_machine import PaymentStatus
from app.tandas.store import InMemoryLedgerStore, TandaLocks
from tests.conftest import build_group, pay_round


def _tanda():
    return membership.create_tanda(
        founder_wallet="https://wallet.test/a", founder_name="A", participant_count=3, contribution_amount=10
    )


def _payment(tanda_id, participant_id="p2", round_number=1, status=PaymentStatus.COMPLETED):
    return Payment(
        id=new_id(),
        tanda_id=tanda_id,
        participant_id=participant_id,
        participant_wallet="w",
        round=round_number,
        amount=10,
        status=status,
    )


def test_put_and_get_are_copies():
    store = InMemoryLedgerStore()
    tanda = _tanda()
    store.put_tanda(tanda)
    assert tanda.version == 1

    loaded = store.get_tanda(tanda.id)
    loaded.current_round = 2
    assert store.get_tanda(tanda.id).current_round == 0

    tanda.name = "changed after put"
    assert store.get_tanda(tanda.id).name != "changed after put"


def test_compare_and_swap_detects_stale_write():
    store = InMemoryLedgerStore()
    store.put_tanda(_tanda())
    tanda_id = store.list_tandas()[0].id

    first = store.get_tanda(tanda_id)
    second = store.get_tanda(tanda_id)

    first.description = "first"
    store.compare_and_swap_tanda(first, expected_version=first.version)
    assert first.version == 2

    second.description = "second"
    with pytest.raises(ConcurrencyError) as exc:
        store.compare_and_swap_tanda(second, expected_version=second.version)
    assert exc.value.code == "STALE_WRITE"
    assert store.get_tanda(tanda_id).description == "first"


def test_compare_and_swap_unknown_tanda():
    store = InMemoryLedgerStore()
    with pytest.raises(NotFoundError):
        store.compare_and_swap_tanda(_tanda(), expected_version=0)


def test_second_live_payment_is_rejected():
    store = InMemoryLedgerStore()
    store.put_payment(_payment("t1"))

    with pytest.raises(InvariantError):
        store.put_payment(_payment("t1", status=PaymentStatus.PENDING_AUTHORIZATION))

    # failed and processing attempts never block, other rounds are independent
    store.put_payment(_payment("t1", status=PaymentStatus.FAILED))
    store.put_payment(_payment("t1", status=PaymentStatus.PROCESSING))
    store.put_payment(_payment("t1", round_number=2))
    assert len(store.list_payments("t1")) == 4
    assert len(store.list_payments("t1", round_number=1)) == 3


def test_updating_same_payment_is_not_a_duplicate():
    store = InMemoryLedgerStore()
    p = _payment("t1", status=PaymentStatus.PROCESSING)
    store.put_payment(p)
    p.transition_to(PaymentStatus.PENDING_AUTHORIZATION)
    store.put_payment(p)
    p.transition_to(PaymentStatus.COMPLETED)
    store.put_payment(p)
    assert store.get_payment(p.id).status == PaymentStatus.COMPLETED


def test_invite_lookup_is_case_insensitive():
    store = InMemoryLedgerStore()
    tanda = _tanda()
    store.put_tanda(tanda)
    assert store.find_tanda_by_invite(tanda.invite_code.lower()).id == tanda.id
    assert store.find_tanda_by_invite("") is None


def test_missing_records_raise_not_found():
    store = InMemoryLedgerStore()
    with pytest.raises(NotFoundError) as exc:
        store.get_tanda("nope")
    assert exc.value.code == "TANDA_NOT_FOUND"
    with pytest.raises(NotFoundError) as exc:
        store.get_payment("nope")
    assert exc.value.code == "PAYMENT_NOT_FOUND"
    assert store.list_settlements("nope") == []


def test_second_live_payment_carries_duplicate_code():
    store = InMemoryLedgerStore()
    store.put_payment(_payment("t1"))
    with pytest.raises(InvariantError) as exc:
        store.put_payment(_payment("t1"))
    assert exc.value.code == "DUPLICATE_PAYMENT"


def test_lock_entries_released_after_use():
    locks = TandaLocks()
    with locks.hold("t1"):
        with locks.hold("t2"):
            assert len(locks) == 2
        assert len(locks) == 1
    assert len(locks) == 0


def test_lock_entry_kept_while_a_caller_waits():
    locks = TandaLocks()
    entered = threading.Event()
    order = []

    def waiter():
        entered.set()
        with locks.hold("t1"):
            order.append("waiter")

    with locks.hold("t1"):
        t = threading.Thread(target=waiter)
        t.start()
        entered.wait(timeout=5)
        time.sleep(0.05)
        order.append("holder")
    t.join(timeout=5)

    assert order == ["holder", "waiter"]
    assert len(locks) == 0


def test_store_drops_lock_after_tanda_operations(svc, store):
    group = build_group(svc, size=2)
    pay_round(svc, group, 1)
    pay_round(svc, group, 2)
    assert len(store._locks) == 0
