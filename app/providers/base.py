# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union


@dataclass(frozen=True)
class Settled:
    reference: str
    response: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class Pending:
    continuation_token: str
    authorization_url: Optional[str] = None
    response: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class Failed:
    reason: str
    # True => the payer may be asked again later; the adapter never retries itself
    retryable: bool = False
    response: Optional[dict[str, Any]] = None


TransferResult = Union[Settled, Pending, Failed]
ContinueResult = Union[Settled, Failed]


class PaymentGateway(Protocol):
    def transfer(
        self,
        source_wallet: str,
        dest_wallet: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> TransferResult: ...

    def continue_transfer(self, continuation_token: str, proof: str) -> ContinueResult: ...
