# app/tandas/store.py
from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol

from app.tandas.errors import ConcurrencyError, InvariantError, NotFoundError
from app.tandas.models import Payment, RoundSettlement, Tanda
from app.tandas.state_machine import BLOCKING_PAYMENT_STATUSES


class LedgerStore(Protocol):
    def get_tanda(self, tanda_id: str) -> Tanda: ...
    def put_tanda(self, tanda: Tanda) -> Tanda: ...
    def compare_and_swap_tanda(self, tanda: Tanda, *, expected_version: int) -> Tanda: ...
    def list_tandas(self) -> list[Tanda]: ...
    def find_tanda_by_invite(self, invite_code: str) -> Optional[Tanda]: ...

    def get_payment(self, payment_id: str) -> Payment: ...
    def put_payment(self, payment: Payment) -> Payment: ...
    def list_payments(self, tanda_id: str, *, round_number: Optional[int] = None) -> list[Payment]: ...

    def put_settlement(self, settlement: RoundSettlement) -> RoundSettlement: ...
    def list_settlements(self, tanda_id: str) -> list[RoundSettlement]: ...

    def lock(self, tanda_id: str): ...


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0  # holders plus waiters


class TandaLocks:
    """
    One mutual-exclusion section per tanda id. Different tandas never contend.

    An entry lives only while some caller holds or waits on it, so the
    registry stays bounded by the number of tandas in flight.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, tanda_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(tanda_id)
            if entry is None:
                entry = self._locks[tanda_id] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[tanda_id]


class InMemoryLedgerStore:
    """
    Dict-backed store. Records are copied in and out so callers never share
    mutable state with the store; a write only lands through put/CAS.
    """

    def __init__(self) -> None:
        self._mu = threading.Lock()
        self._tandas: dict[str, Tanda] = {}
        self._invites: dict[str, str] = {}
        self._payments: dict[str, Payment] = {}
        self._settlements: dict[str, list[RoundSettlement]] = {}
        self._locks = TandaLocks()

    # -----------------------
    # Tandas
    # -----------------------
    def get_tanda(self, tanda_id: str) -> Tanda:
        with self._mu:
            t = self._tandas.get(tanda_id)
            if t is None:
                raise NotFoundError(f"Tanda not found: {tanda_id}", code="TANDA_NOT_FOUND")
            return copy.deepcopy(t)

    def put_tanda(self, tanda: Tanda) -> Tanda:
        with self._mu:
            stored = copy.deepcopy(tanda)
            stored.version = tanda.version + 1
            self._tandas[tanda.id] = stored
            if tanda.invite_code:
                self._invites[tanda.invite_code] = tanda.id
            tanda.version = stored.version
            return tanda

    def compare_and_swap_tanda(self, tanda: Tanda, *, expected_version: int) -> Tanda:
        with self._mu:
            current = self._tandas.get(tanda.id)
            if current is None:
                raise NotFoundError(f"Tanda not found: {tanda.id}", code="TANDA_NOT_FOUND")
            if current.version != expected_version:
                raise ConcurrencyError(
                    f"Tanda {tanda.id} changed underneath: expected v{expected_version}, found v{current.version}"
                )
            stored = copy.deepcopy(tanda)
            stored.version = expected_version + 1
            self._tandas[tanda.id] = stored
            tanda.version = stored.version
            return tanda

    def list_tandas(self) -> list[Tanda]:
        with self._mu:
            return [copy.deepcopy(t) for t in self._tandas.values()]

    def find_tanda_by_invite(self, invite_code: str) -> Optional[Tanda]:
        code = (invite_code or "").strip().upper()
        with self._mu:
            tanda_id = self._invites.get(code)
            if tanda_id is None:
                return None
            t = self._tandas.get(tanda_id)
            return copy.deepcopy(t) if t is not None else None

    # -----------------------
    # Payments
    # -----------------------
    def get_payment(self, payment_id: str) -> Payment:
        with self._mu:
            p = self._payments.get(payment_id)
            if p is None:
                raise NotFoundError(f"Payment not found: {payment_id}", code="PAYMENT_NOT_FOUND")
            return copy.deepcopy(p)

    def put_payment(self, payment: Payment) -> Payment:
        with self._mu:
            if payment.status in BLOCKING_PAYMENT_STATUSES:
                for other in self._payments.values():
                    if (
                        other.id != payment.id
                        and other.tanda_id == payment.tanda_id
                        and other.round == payment.round
                        and other.participant_id == payment.participant_id
                        and other.status in BLOCKING_PAYMENT_STATUSES
                    ):
                        raise InvariantError(
                            f"Second live payment for tanda={payment.tanda_id} round={payment.round} "
                            f"participant={payment.participant_id}",
                            code="DUPLICATE_PAYMENT",
                        )
            self._payments[payment.id] = copy.deepcopy(payment)
            return payment

    def list_payments(self, tanda_id: str, *, round_number: Optional[int] = None) -> list[Payment]:
        with self._mu:
            items = [
                copy.deepcopy(p)
                for p in self._payments.values()
                if p.tanda_id == tanda_id and (round_number is None or p.round == round_number)
            ]
        items.sort(key=lambda p: p.created_at)
        return items

    # -----------------------
    # Settlements
    # -----------------------
    def put_settlement(self, settlement: RoundSettlement) -> RoundSettlement:
        with self._mu:
            self._settlements.setdefault(settlement.tanda_id, []).append(copy.deepcopy(settlement))
            return settlement

    def list_settlements(self, tanda_id: str) -> list[RoundSettlement]:
        with self._mu:
            return [copy.deepcopy(s) for s in self._settlements.get(tanda_id, [])]

    def lock(self, tanda_id: str):
        return self._locks.hold(tanda_id)
