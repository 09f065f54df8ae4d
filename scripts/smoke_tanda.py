from __future__ import annotations

import argparse
import sys

from app.providers.mock import MockGateway
from app.tandas.errors import TandaError
from app.tandas.service import TandaService
from services.observability import configure_logging
from services.tanda_invariants import audit_store


def die(message, code=1):
    print(message)
    sys.exit(code)


def step(message):
    print("\n==> " + message)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a full tanda lifecycle against the mock gateway.")
    parser.add_argument("--participants", type=int, default=3)
    parser.add_argument("--amount", type=int, default=100)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    configure_logging(args.log_level)
    svc = TandaService(gateway=MockGateway())
    wallets = [f"https://wallet.example/member{i}" for i in range(1, args.participants + 1)]

    try:
        step("create")
        tanda = svc.create_tanda(wallets[0], "member1", args.amount, args.participants, name="smoke")
        print("tanda_id:", tanda.id, "invite:", tanda.invite_code)

        step("join")
        for i, wallet in enumerate(wallets[1:], start=2):
            tanda = svc.join_by_invite(tanda.invite_code, wallet, f"member{i}")
        print("status:", tanda.status.value)

        for r in range(1, args.participants + 1):
            step(f"round {r}")
            for pos, wallet in enumerate(wallets, start=1):
                if pos == r:
                    continue
                resp = svc.submit_contribution(tanda.id, wallet, args.amount)
                if resp.settlement:
                    s = resp.settlement
                    print(f"settled round={s.round} recipient={s.recipient.display_name} amount={s.amount}")
                elif resp.settlement_error:
                    die(f"settlement failed: {resp.settlement_error}")
    except TandaError as exc:
        die(f"failed: {exc}")

    final = svc.get_tanda(tanda.id)
    print("\nfinal status:", final.status.value, "current_round:", final.current_round)

    report = audit_store(svc.store)
    bad = [r for r in report if not r["ok"]]
    if bad:
        die(f"invariant violations: {bad}")
    print("invariants: ok")


if __name__ == "__main__":
    main()
