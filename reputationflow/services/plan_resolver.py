"""Derive a plan identifier from the many shapes clients send it in.

Checkout pages, older dashboards and the payment provider each describe the
purchased plan differently: an explicit id, an alias field, a header, a
free-text display name or just the amount paid. Resolution is an ordered
chain of extractors; the first one that yields a plan id wins.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Sequence

from reputationflow.core.errors import MissingPlanError
from reputationflow.core.extractors import (
    RequestCarriers,
    first_present,
    from_body,
    from_header,
    from_query,
)
from reputationflow.core.plans import DEFAULT_PLAN, NAME_KEYWORDS, PRICE_TO_PLAN, lookup_plan


def plan_from_name(name: Any) -> str | None:
    """Match a free-text plan name against the keyword table, case-insensitively."""
    if not isinstance(name, str) or not name.strip():
        return None
    lowered = name.lower()
    for keywords, plan_id in NAME_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return plan_id
    return None


def plan_from_price(price: Any) -> str | None:
    """Map a numeric price (number or numeric string) to a plan id.

    Malformed values return ``None`` so the caller can keep falling through.
    """
    if price is None or isinstance(price, bool):
        return None
    try:
        amount = Decimal(str(price).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount != amount.to_integral_value():
        return None
    return PRICE_TO_PLAN.get(int(amount))


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _by_name(*extractors: Callable[[RequestCarriers], Any]) -> Callable[[RequestCarriers], str | None]:
    def extract(carriers: RequestCarriers) -> str | None:
        return plan_from_name(first_present(extractors, carriers))

    return extract


def _by_price(*extractors: Callable[[RequestCarriers], Any]) -> Callable[[RequestCarriers], str | None]:
    def extract(carriers: RequestCarriers) -> str | None:
        for extractor in extractors:
            plan_id = plan_from_price(extractor(carriers))
            if plan_id:
                return plan_id
        return None

    return extract


def _as_plan_id(extractor: Callable[[RequestCarriers], Any]) -> Callable[[RequestCarriers], str | None]:
    def extract(carriers: RequestCarriers) -> str | None:
        return _text(extractor(carriers))

    return extract


PLAN_CHAIN: Sequence[Callable[[RequestCarriers], str | None]] = (
    _as_plan_id(from_body("planId")),
    _as_plan_id(from_body("plan", "selectedPlanId")),
    _as_plan_id(from_header("x-plan-id", "x-plan")),
    _as_plan_id(from_query("plan", "planId")),
    _by_name(from_body("planName"), from_query("planName")),
    _by_price(from_body("price", "amount"), from_header("x-price"), from_query("price")),
)


def _as_carriers(source: RequestCarriers | Mapping[str, Any] | None) -> RequestCarriers:
    if isinstance(source, RequestCarriers):
        return source
    return RequestCarriers(body=dict(source or {}))


def try_resolve_plan(source: RequestCarriers | Mapping[str, Any] | None) -> str | None:
    return first_present(PLAN_CHAIN, _as_carriers(source))


def resolve_plan(source: RequestCarriers | Mapping[str, Any] | None) -> str:
    """Return the plan id carried by ``source`` or raise :class:`MissingPlanError`."""
    plan_id = try_resolve_plan(source)
    if not plan_id:
        raise MissingPlanError()
    return plan_id


def resolve_credits(record: Mapping[str, Any] | None) -> int:
    """Derive a credit allotment for a stored record missing its credit fields.

    Applies the resolution chain to the record and falls back to the default
    allotment when nothing identifies a plan.
    """
    plan_id = try_resolve_plan(record)
    if not plan_id:
        return DEFAULT_PLAN.credit_allotment
    return lookup_plan(plan_id).credit_allotment


__all__ = [
    "PLAN_CHAIN",
    "plan_from_name",
    "plan_from_price",
    "resolve_credits",
    "resolve_plan",
    "try_resolve_plan",
]
