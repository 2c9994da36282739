"""Per-tenant SMS credit ledger.

The ledger row is the authoritative record of a tenant's allotment and
remaining credits. Every operation keeps ``0 <= remaining_credits <=
sms_credits``; decrements and refunds are single conditional UPDATE
statements so concurrent senders cannot drive the balance negative.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from sqlalchemy import update
from sqlalchemy.orm import Session

from reputationflow.core import models
from reputationflow.core.errors import LedgerNotFoundError
from reputationflow.core.logging import get_logger
from reputationflow.services.plan_resolver import resolve_credits

logger = get_logger(__name__)

DAYS_PER_MONTH = 30


@dataclass(slots=True)
class DecrementOutcome:
    status: Literal["ok", "no_credits", "not_found"]
    new_remaining: int | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def ensure_tenant(db: Session, tenant_id: str) -> models.Tenant:
    tenant = db.get(models.Tenant, tenant_id)
    if tenant is None:
        tenant = models.Tenant(id=tenant_id)
        db.add(tenant)
        db.flush()
    return tenant


def get_ledger(db: Session, tenant_id: str) -> models.CreditLedger | None:
    return db.get(models.CreditLedger, tenant_id, populate_existing=True)


def create_or_replace(
    db: Session,
    tenant_id: str,
    plan_id: str | None,
    duration_months: int,
    credit_allotment: int,
    session_id: str | None = None,
    status: str = "active",
    plan_name: str | None = None,
    price: str | int | None = None,
) -> models.CreditLedger:
    """Write a fresh allotment for ``tenant_id``, replacing any previous one.

    Unused credits from an earlier plan are discarded: both ``sms_credits``
    and ``remaining_credits`` are set to ``credit_allotment``.
    """
    now = datetime.utcnow()
    ensure_tenant(db, tenant_id)
    ledger = db.get(models.CreditLedger, tenant_id)
    if ledger is None:
        ledger = models.CreditLedger(tenant_id=tenant_id)

    ledger.plan_id = plan_id
    ledger.plan_name = plan_name
    ledger.price = str(price) if price is not None else None
    ledger.sms_credits = credit_allotment
    ledger.remaining_credits = credit_allotment
    ledger.status = status
    ledger.start_date = now
    ledger.end_date = now + timedelta(days=DAYS_PER_MONTH * max(int(duration_months or 1), 1))
    ledger.payment_session_id = session_id
    db.add(ledger)
    db.commit()
    db.refresh(ledger)

    logger.info(
        "ledger_replaced",
        tenant_id=tenant_id,
        plan_id=plan_id,
        credits=credit_allotment,
        session_id=session_id,
    )
    return ledger


def get_remaining(db: Session, tenant_id: str) -> int:
    ledger = db.get(models.CreditLedger, tenant_id, populate_existing=True)
    if ledger is None:
        raise LedgerNotFoundError(tenant_id=tenant_id)
    return ledger.remaining_credits or 0


def _read_remaining(db: Session, tenant_id: str) -> int | None:
    ledger = db.get(models.CreditLedger, tenant_id, populate_existing=True)
    return None if ledger is None else ledger.remaining_credits


def decrement_one(db: Session, tenant_id: str) -> DecrementOutcome:
    """Consume one credit if, and only if, at least one remains."""
    statement = (
        update(models.CreditLedger)
        .where(models.CreditLedger.tenant_id == tenant_id)
        .where(models.CreditLedger.remaining_credits > 0)
        .values(remaining_credits=models.CreditLedger.remaining_credits - 1)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(statement)
    db.commit()

    if result.rowcount == 1:
        remaining = _read_remaining(db, tenant_id)
        logger.info("credits_decremented", tenant_id=tenant_id, remaining=remaining)
        return DecrementOutcome(status="ok", new_remaining=remaining)

    remaining = _read_remaining(db, tenant_id)
    if remaining is None and db.get(models.CreditLedger, tenant_id) is None:
        logger.info("credits_ledger_missing", tenant_id=tenant_id)
        return DecrementOutcome(status="not_found")
    logger.info("credits_exhausted", tenant_id=tenant_id)
    return DecrementOutcome(status="no_credits", new_remaining=remaining or 0)


def refund_one(db: Session, tenant_id: str) -> bool:
    """Return one credit reserved for a send that did not go out."""
    statement = (
        update(models.CreditLedger)
        .where(models.CreditLedger.tenant_id == tenant_id)
        .where(models.CreditLedger.remaining_credits < models.CreditLedger.sms_credits)
        .values(remaining_credits=models.CreditLedger.remaining_credits + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(statement)
    db.commit()
    refunded = result.rowcount == 1
    logger.info("credits_refunded", tenant_id=tenant_id, refunded=refunded)
    return refunded


def _needs_repair(value: int | None) -> bool:
    return value is None or value <= 0


def _consistent(ledger: models.CreditLedger) -> bool:
    if _needs_repair(ledger.sms_credits) or ledger.remaining_credits is None:
        return False
    return 0 <= ledger.remaining_credits <= ledger.sms_credits


def repair_missing_fields(db: Session, tenant_id: str) -> models.CreditLedger:
    """Fill in missing or non-positive credit fields from the ledger's plan data.

    When the allotment itself is missing or non-positive, both fields are
    derived again and a zero balance is refilled with it. A zero balance next
    to a positive allotment is an exhausted ledger and is kept at zero.
    Repairing a consistent ledger changes nothing.
    """
    ledger = db.get(models.CreditLedger, tenant_id, populate_existing=True)
    if ledger is None:
        raise LedgerNotFoundError(tenant_id=tenant_id)

    if _consistent(ledger):
        return ledger

    allotment_missing = _needs_repair(ledger.sms_credits)
    credits = ledger.sms_credits
    if allotment_missing:
        credits = resolve_credits(
            {"planId": ledger.plan_id, "planName": ledger.plan_name, "price": ledger.price}
        )
        ledger.sms_credits = credits

    remaining = ledger.remaining_credits
    if remaining is None or remaining < 0 or (allotment_missing and remaining == 0):
        ledger.remaining_credits = credits
    elif remaining > credits:
        ledger.remaining_credits = credits
    db.add(ledger)
    db.commit()
    logger.info(
        "ledger_repaired",
        tenant_id=tenant_id,
        sms_credits=ledger.sms_credits,
        remaining=ledger.remaining_credits,
    )
    return ledger


__all__ = [
    "DAYS_PER_MONTH",
    "DecrementOutcome",
    "create_or_replace",
    "decrement_one",
    "ensure_tenant",
    "get_ledger",
    "get_remaining",
    "refund_one",
    "repair_missing_fields",
]
