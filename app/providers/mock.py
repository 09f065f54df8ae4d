# app/providers/mock.py
from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional, Union

from app.providers.base import ContinueResult, Failed, Pending, Settled, TransferResult


@dataclass(frozen=True)
class TransferCall:
    source_wallet: str
    dest_wallet: str
    amount: int
    memo: Optional[str]


TransferScript = Union[TransferResult, Callable[[TransferCall], TransferResult]]


class MockGateway:
    """
    Test/dev gateway.

    - Every call is recorded in `transfers` / `continuations`.
    - Queue outcomes with `queue_transfer(...)`; each queued item is used once.
      Items may be a result or a callable taking the TransferCall.
    - With nothing queued, transfers settle with a generated reference.
    - `continue_transfer` settles unless the proof is in `rejected_proofs`.
    """

    def __init__(self, *, succeed: bool = True):
        self.succeed = succeed
        self.transfers: list[TransferCall] = []
        self.continuations: list[tuple[str, str]] = []
        self.rejected_proofs: dict[str, Failed] = {}
        self._queue: deque[TransferScript] = deque()
        self._continue_queue: deque[ContinueResult] = deque()
        self._mu = threading.Lock()

    def queue_transfer(self, *outcomes: TransferScript) -> "MockGateway":
        with self._mu:
            self._queue.extend(outcomes)
        return self

    def queue_continue(self, *outcomes: ContinueResult) -> "MockGateway":
        with self._mu:
            self._continue_queue.extend(outcomes)
        return self

    def reject_proof(self, proof: str, *, reason: str = "grant rejected", retryable: bool = False) -> None:
        self.rejected_proofs[proof] = Failed(reason=reason, retryable=retryable)

    def transfer(
        self,
        source_wallet: str,
        dest_wallet: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> TransferResult:
        call = TransferCall(source_wallet=source_wallet, dest_wallet=dest_wallet, amount=amount, memo=memo)
        with self._mu:
            self.transfers.append(call)
            scripted = self._queue.popleft() if self._queue else None

        if scripted is not None:
            return scripted(call) if callable(scripted) else scripted

        if self.succeed:
            return Settled(reference=f"mock-{uuid.uuid4()}", response={"mock": True})
        return Failed(reason="Gateway timeout", retryable=True, response={"http_status": 504, "mock": True})

    def continue_transfer(self, continuation_token: str, proof: str) -> ContinueResult:
        with self._mu:
            self.continuations.append((continuation_token, proof))
            scripted = self._continue_queue.popleft() if self._continue_queue else None

        if scripted is not None:
            return scripted
        if proof in self.rejected_proofs:
            return self.rejected_proofs[proof]
        return Settled(reference=f"mock-{continuation_token}", response={"mock": True})

    @staticmethod
    def pending(token: Optional[str] = None, url: Optional[str] = None) -> Pending:
        token = token or f"cont-{uuid.uuid4().hex[:12]}"
        return Pending(continuation_token=token, authorization_url=url or f"https://auth.mock/interact/{token}")
