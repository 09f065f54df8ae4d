import logging

from services.tanda_invariants import audit_store, check_tanda_invariants
from tests.conftest import build_group, pay_round


def _snapshot(store, tanda_id):
    return (
        store.get_tanda(tanda_id),
        store.list_payments(tanda_id),
        store.list_settlements(tanda_id),
    )


def test_healthy_lifecycle_has_no_violations(svc, store):
    group = build_group(svc, size=4)
    assert check_tanda_invariants(*_snapshot(store, group.tanda_id)) == []

    for r in (1, 2):
        pay_round(svc, group, r)
        assert check_tanda_invariants(*_snapshot(store, group.tanda_id)) == []

    for r in (3, 4):
        pay_round(svc, group, r)
    assert check_tanda_invariants(*_snapshot(store, group.tanda_id)) == []


def test_detects_received_flag_without_settlement(svc, store, group3):
    tanda, payments, settlements = _snapshot(store, group3.tanda_id)
    tanda.participants[1].has_received = True

    violations = check_tanda_invariants(tanda, payments, settlements)
    assert any("has_received" in v for v in violations)


def test_detects_duplicate_positions_and_round_range(svc, store, group3):
    tanda, payments, settlements = _snapshot(store, group3.tanda_id)
    tanda.participants[2].position = 2
    tanda.current_round = 7

    violations = check_tanda_invariants(tanda, payments, settlements)
    assert any("duplicate positions [2]" in v for v in violations)
    assert any("current_round=7" in v for v in violations)


def test_detects_double_payout(svc, store, group3):
    pay_round(svc, group3, 1)
    tanda, payments, settlements = _snapshot(store, group3.tanda_id)
    settlements.append(settlements[0])

    violations = check_tanda_invariants(tanda, payments, settlements)
    assert any("round 1 settled 2 times" in v for v in violations)
    assert any("received 2 payouts" in v for v in violations)


def test_audit_store_reports_and_logs(svc, store, caplog):
    good = build_group(svc, size=2)
    bad = build_group(svc, size=2)
    record = store.get_tanda(bad.tanda_id)
    record.participants[0].has_received = True
    store.put_tanda(record)

    with caplog.at_level(logging.ERROR, logger="tandapay.invariants"):
        report = {item["tanda_id"]: item for item in audit_store(store)}

    assert report[good.tanda_id]["ok"] is True
    assert report[bad.tanda_id]["ok"] is False
    assert report[bad.tanda_id]["violations"]
    assert bad.tanda_id in caplog.text
