import pytest

from reputationflow.core.errors import MissingPlanError
from reputationflow.core.extractors import RequestCarriers
from reputationflow.services.plan_resolver import (
    plan_from_name,
    plan_from_price,
    resolve_credits,
    resolve_plan,
    try_resolve_plan,
)


def test_price_maps_to_plan():
    assert resolve_plan({"price": 75}) == "growth_3m"
    assert resolve_plan({"amount": "100"}) == "pro_6m"


def test_plan_name_keywords():
    assert resolve_plan({"planName": "Professional Plan"}) == "pro_6m"
    assert plan_from_name("Quarterly growth bundle") == "growth_3m"
    assert plan_from_name("STARTER") == "starter_1m"
    assert plan_from_name("") is None


def test_explicit_plan_id_wins_over_price():
    assert resolve_plan({"planId": "starter_1m", "price": 100}) == "starter_1m"
    assert resolve_plan({"selectedPlanId": "pro_6m", "planName": "growth"}) == "pro_6m"


def test_header_and_query_carriers():
    carriers = RequestCarriers.build(headers={"X-Plan-Id": "growth_3m"}, query={"plan": "pro_6m"})
    assert resolve_plan(carriers) == "growth_3m"
    carriers = RequestCarriers.build(query={"price": "30"})
    assert resolve_plan(carriers) == "starter_1m"


def test_missing_plan_raises():
    with pytest.raises(MissingPlanError) as excinfo:
        resolve_plan({})
    assert excinfo.value.code == "MISSING_PLAN"
    assert excinfo.value.status_code == 400


@pytest.mark.parametrize("price", ["abc", "", "75.5", None, True, "NaN"])
def test_malformed_price_falls_through(price):
    assert plan_from_price(price) is None
    assert try_resolve_plan({"price": price}) is None


def test_resolve_credits_defaults():
    assert resolve_credits({"planId": "growth_3m"}) == 600
    assert resolve_credits({"price": "100"}) == 900
    assert resolve_credits({"planId": "legacy-plan"}) == 250
    assert resolve_credits({}) == 250
