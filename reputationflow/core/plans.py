"""SMS plan catalog and helpers."""
from __future__ import annotations

from dataclasses import dataclass

from .errors import UnknownPlanError


@dataclass(frozen=True, slots=True)
class PlanDetails:
    plan_id: str
    display_name: str
    duration_months: int
    credit_allotment: int
    price: int | None = None


DEFAULT_PLAN = PlanDetails(
    plan_id="custom", display_name="Custom", duration_months=1, credit_allotment=250
)

_PLAN_REGISTRY: dict[str, PlanDetails] = {
    "starter_1m": PlanDetails("starter_1m", "Starter", 1, 250, price=30),
    "growth_3m": PlanDetails("growth_3m", "Growth", 3, 600, price=75),
    "pro_6m": PlanDetails("pro_6m", "Professional", 6, 900, price=100),
}

# Checkout aliases used by older frontends.
PLAN_ALIASES: dict[str, str] = {
    "monthly": "starter_1m",
    "quarterly": "growth_3m",
    "halfyearly": "pro_6m",
}

PRICE_TO_PLAN: dict[int, str] = {
    details.price: plan_id for plan_id, details in _PLAN_REGISTRY.items() if details.price is not None
}

# Checked in order; the first keyword found in a free-text plan name wins.
NAME_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("growth", "quarter"), "growth_3m"),
    (("pro", "professional", "half"), "pro_6m"),
    (("starter", "monthly"), "starter_1m"),
)


def find_plan(plan_id: str | None) -> PlanDetails | None:
    """Return the catalog entry for ``plan_id`` or ``None`` when unknown."""
    if not plan_id:
        return None
    key = str(plan_id).strip()
    key = PLAN_ALIASES.get(key, key)
    return _PLAN_REGISTRY.get(key)


def lookup_plan(plan_id: str | None, strict: bool = False) -> PlanDetails:
    """Return plan details, falling back to the default allotment for unknown ids.

    With ``strict`` an unrecognised id raises :class:`UnknownPlanError` instead.
    """
    details = find_plan(plan_id)
    if details is not None:
        return details
    if strict:
        raise UnknownPlanError(f"Unknown plan identifier: {plan_id}", plan_id=plan_id)
    return DEFAULT_PLAN


def known_plan_ids() -> list[str]:
    return list(_PLAN_REGISTRY)


__all__ = [
    "DEFAULT_PLAN",
    "NAME_KEYWORDS",
    "PLAN_ALIASES",
    "PRICE_TO_PLAN",
    "PlanDetails",
    "find_plan",
    "known_plan_ids",
    "lookup_plan",
]
