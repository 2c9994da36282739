from concurrent.futures import ThreadPoolExecutor

import pytest

from reputationflow.core import models
from reputationflow.core.errors import LedgerNotFoundError
from reputationflow.services import credit_ledger


def test_create_sets_full_allotment(db):
    ledger = credit_ledger.create_or_replace(db, "acme", "growth_3m", 3, 600, session_id="cs_1")
    assert ledger.sms_credits == 600
    assert ledger.remaining_credits == 600
    assert ledger.status == "active"
    assert (ledger.end_date - ledger.start_date).days == 90
    assert db.get(models.Tenant, "acme") is not None


def test_replacement_discards_unused_credits(db):
    credit_ledger.create_or_replace(db, "acme", "starter_1m", 1, 250)
    for _ in range(5):
        assert credit_ledger.decrement_one(db, "acme").ok
    assert credit_ledger.get_remaining(db, "acme") == 245

    ledger = credit_ledger.create_or_replace(db, "acme", "growth_3m", 3, 600)
    assert ledger.sms_credits == 600
    assert ledger.remaining_credits == 600


def test_decrement_until_exhausted(db):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 2)
    first = credit_ledger.decrement_one(db, "acme")
    second = credit_ledger.decrement_one(db, "acme")
    third = credit_ledger.decrement_one(db, "acme")
    assert (first.status, first.new_remaining) == ("ok", 1)
    assert (second.status, second.new_remaining) == ("ok", 0)
    assert (third.status, third.new_remaining) == ("no_credits", 0)
    assert credit_ledger.get_remaining(db, "acme") == 0


def test_decrement_without_ledger(db):
    assert credit_ledger.decrement_one(db, "ghost").status == "not_found"
    with pytest.raises(LedgerNotFoundError):
        credit_ledger.get_remaining(db, "ghost")


def test_concurrent_decrements_never_overdraw(session_factory):
    with session_factory() as session:
        credit_ledger.create_or_replace(session, "acme", "custom", 1, 3)

    def worker(_):
        session = session_factory()
        try:
            return credit_ledger.decrement_one(session, "acme").status
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        statuses = list(pool.map(worker, range(8)))

    assert statuses.count("ok") == 3
    assert statuses.count("no_credits") == 5
    with session_factory() as session:
        assert credit_ledger.get_remaining(session, "acme") == 0


def test_refund_is_capped_at_allotment(db):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 2)
    assert credit_ledger.refund_one(db, "acme") is False
    credit_ledger.decrement_one(db, "acme")
    assert credit_ledger.refund_one(db, "acme") is True
    assert credit_ledger.get_remaining(db, "acme") == 2


def test_repair_fills_missing_fields_once(db):
    credit_ledger.ensure_tenant(db, "acme")
    db.add(models.CreditLedger(tenant_id="acme", plan_id="pro_6m", status="active"))
    db.commit()

    repaired = credit_ledger.repair_missing_fields(db, "acme")
    assert (repaired.sms_credits, repaired.remaining_credits) == (900, 900)

    credit_ledger.decrement_one(db, "acme")
    again = credit_ledger.repair_missing_fields(db, "acme")
    assert (again.sms_credits, again.remaining_credits) == (900, 899)


def test_repair_keeps_exhausted_ledger_at_zero(db):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 1)
    credit_ledger.decrement_one(db, "acme")
    ledger = credit_ledger.repair_missing_fields(db, "acme")
    assert ledger.remaining_credits == 0
    assert ledger.sms_credits == 1


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"plan_id": "growth_3m"}, 600),
        ({"price": "75"}, 600),
        ({"plan_name": "Professional"}, 900),
    ],
)
def test_repair_refills_zeroed_allotment(db, fields, expected):
    credit_ledger.ensure_tenant(db, "acme")
    db.add(models.CreditLedger(tenant_id="acme", sms_credits=0, remaining_credits=0, status="active", **fields))
    db.commit()

    ledger = credit_ledger.repair_missing_fields(db, "acme")
    assert (ledger.sms_credits, ledger.remaining_credits) == (expected, expected)
    assert credit_ledger.decrement_one(db, "acme").ok


def test_repair_clamps_negative_and_oversized_balances(db):
    credit_ledger.ensure_tenant(db, "acme")
    db.add(models.CreditLedger(tenant_id="acme", plan_id="starter_1m", sms_credits=250, remaining_credits=-3))
    db.commit()
    assert credit_ledger.repair_missing_fields(db, "acme").remaining_credits == 250

    credit_ledger.ensure_tenant(db, "globex")
    db.add(models.CreditLedger(tenant_id="globex", plan_id="starter_1m", sms_credits=250, remaining_credits=400))
    db.commit()
    assert credit_ledger.repair_missing_fields(db, "globex").remaining_credits == 250
