import pytest

from reputationflow.core.errors import UnknownPlanError
from reputationflow.core.plans import DEFAULT_PLAN, PRICE_TO_PLAN, find_plan, known_plan_ids, lookup_plan


def test_catalog_entries():
    assert known_plan_ids() == ["starter_1m", "growth_3m", "pro_6m"]
    growth = lookup_plan("growth_3m")
    assert (growth.duration_months, growth.credit_allotment) == (3, 600)
    pro = lookup_plan("pro_6m")
    assert (pro.duration_months, pro.credit_allotment) == (6, 900)


def test_unknown_plan_falls_back_to_default_allotment():
    details = lookup_plan("enterprise_12m")
    assert details is DEFAULT_PLAN
    assert details.credit_allotment == 250
    assert details.duration_months == 1


def test_strict_lookup_rejects_unknown_plan():
    with pytest.raises(UnknownPlanError) as excinfo:
        lookup_plan("enterprise_12m", strict=True)
    assert excinfo.value.to_payload()["code"] == "UNKNOWN_PLAN"


def test_aliases_and_price_table():
    assert find_plan("quarterly").plan_id == "growth_3m"
    assert find_plan(None) is None
    assert PRICE_TO_PLAN == {30: "starter_1m", 75: "growth_3m", 100: "pro_6m"}
