# tests/conftest.py

from dataclasses import dataclass
from typing import List

import pytest

from app.providers.mock import MockGateway
from app.tandas.service import TandaService
from app.tandas.store import InMemoryLedgerStore


POOL_WALLET = "https://wallet.test/pool"


@dataclass
class Member:
    wallet: str
    name: str
    position: int


@dataclass
class Group:
    tanda_id: str
    members: List[Member]

    def at(self, position: int) -> Member:
        return self.members[position - 1]


def wallet(n: int) -> str:
    return f"https://wallet.test/member{n}"


# ---------------------------
# Core fixtures
# ---------------------------

@pytest.fixture
def gateway() -> MockGateway:
    return MockGateway()


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def svc(store: InMemoryLedgerStore, gateway: MockGateway) -> TandaService:
    return TandaService(store=store, gateway=gateway, pool_wallet=POOL_WALLET)


def build_group(svc: TandaService, *, size: int = 3, amount: int = 100, fill: bool = True) -> Group:
    founder = Member(wallet=wallet(1), name="member1", position=1)
    tanda = svc.create_tanda(founder.wallet, founder.name, amount, size, name="pytest tanda")
    members = [founder]
    if fill:
        for i in range(2, size + 1):
            m = Member(wallet=wallet(i), name=f"member{i}", position=i)
            svc.join_tanda(tanda.id, m.wallet, m.name)
            members.append(m)
    return Group(tanda_id=tanda.id, members=members)


@pytest.fixture
def group3(svc: TandaService) -> Group:
    """Scenario setup: contribution 100, three participants, full."""
    return build_group(svc, size=3, amount=100)


def pay_round(svc: TandaService, group: Group, round_number: int, amount: int = 100):
    """Every member except the round's recipient contributes; returns the last response."""
    last = None
    for m in group.members:
        if m.position == round_number:
            continue
        last = svc.submit_contribution(group.tanda_id, m.wallet, amount)
    return last
