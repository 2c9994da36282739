"""Subscription reconciliation between the credit ledger and the profile projection.

The ledger is the source of truth for metering. The projection is a
denormalised mirror read by the dashboard; older tenants may only have the
legacy projection shape. Reads fall back across all three, normalise missing
credit fields, and optionally persist the repair.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reputationflow.core import models
from reputationflow.core.bookkeeping import run_best_effort
from reputationflow.core.errors import ClaimNotFoundError, MissingPlanError, MissingTenantError
from reputationflow.core.extractors import RequestCarriers, first_present, from_body, from_header, from_query
from reputationflow.core.logging import get_logger
from reputationflow.core.plans import lookup_plan
from reputationflow.core.security import VerifiedCaller
from reputationflow.core.settings import get_settings
from reputationflow.services import credit_ledger
from reputationflow.services.plan_resolver import resolve_credits, resolve_plan, try_resolve_plan

logger = get_logger(__name__)


@dataclass(slots=True)
class SubscriptionView:
    tenant_id: str
    plan_id: str | None = None
    plan_name: str | None = None
    price: str | None = None
    sms_credits: int | None = None
    remaining_credits: int | None = None
    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    payment_session_id: str | None = None
    source: str = "ledger"

    @classmethod
    def from_ledger(cls, ledger: models.CreditLedger) -> "SubscriptionView":
        return cls(
            tenant_id=ledger.tenant_id,
            plan_id=ledger.plan_id,
            plan_name=ledger.plan_name,
            price=ledger.price,
            sms_credits=ledger.sms_credits,
            remaining_credits=ledger.remaining_credits,
            status=ledger.status,
            start_date=ledger.start_date,
            end_date=ledger.end_date,
            payment_session_id=ledger.payment_session_id,
            source="ledger",
        )

    @classmethod
    def from_projection(cls, projection: models.ProfileProjection) -> "SubscriptionView":
        return cls(
            tenant_id=projection.tenant_id,
            plan_id=projection.plan_id,
            plan_name=projection.plan_name,
            price=projection.price,
            sms_credits=projection.sms_credits,
            remaining_credits=projection.remaining_credits,
            status=projection.status,
            start_date=projection.activated_at,
            end_date=projection.expiry_at,
            payment_session_id=projection.payment_session_id,
            source=projection.shape,
        )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the validity window has passed. Not enforced by the send gate."""
        if self.end_date is None:
            return False
        return self.end_date <= (now or datetime.utcnow())

    def normalized(self) -> "SubscriptionView":
        """Fill missing credit fields from the plan data without touching storage."""
        allotment_missing = self.sms_credits is None or self.sms_credits <= 0
        if allotment_missing:
            self.sms_credits = resolve_credits(
                {"planId": self.plan_id, "planName": self.plan_name, "price": self.price}
            )
        remaining = self.remaining_credits
        if remaining is None or remaining < 0 or (allotment_missing and remaining == 0):
            self.remaining_credits = self.sms_credits
        return self


@dataclass(slots=True)
class SubscriptionRead:
    subscription: SubscriptionView | None = None
    empty: bool = False
    owner_mismatch: bool = False
    auto_repaired: bool = False


@dataclass(slots=True)
class ClaimResult:
    tenant_id: str
    subscription: SubscriptionView
    claimed_by: str
    extra: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Ownership


def caller_tenant_id(db: Session, caller: VerifiedCaller) -> str | None:
    """Map a verified subject to its own tenant: user record first, then legacy owner uid."""
    user = db.get(models.User, caller.subject)
    if user is not None and user.tenant_id:
        return str(user.tenant_id)
    tenant_id = db.execute(
        select(models.Tenant.id).where(models.Tenant.auth_uid == caller.subject).limit(1)
    ).scalar_one_or_none()
    return str(tenant_id) if tenant_id else None


def owner_mismatch(db: Session, tenant_id: str, caller: VerifiedCaller | None) -> bool:
    if caller is None or caller.is_admin:
        return False
    own_tenant = caller_tenant_id(db, caller)
    return own_tenant is not None and own_tenant != str(tenant_id)


# ---------------------------------------------------------------------------
# Projection


def get_projection(db: Session, tenant_id: str, shape: str = models.PROJECTION_MAIN) -> models.ProfileProjection | None:
    return db.get(models.ProfileProjection, (tenant_id, shape))


def mirror_projection(
    db: Session, ledger: models.CreditLedger, activated: bool = False
) -> models.ProfileProjection:
    """Copy the ledger into the ``main`` projection."""
    projection = get_projection(db, ledger.tenant_id)
    if projection is None:
        projection = models.ProfileProjection(tenant_id=ledger.tenant_id, shape=models.PROJECTION_MAIN)
    projection.plan_id = ledger.plan_id
    projection.plan_name = ledger.plan_name
    projection.price = ledger.price
    projection.sms_credits = ledger.sms_credits
    projection.remaining_credits = ledger.remaining_credits
    projection.status = ledger.status
    if activated or projection.activated_at is None:
        projection.activated_at = ledger.start_date
    projection.expiry_at = ledger.end_date
    projection.payment_session_id = ledger.payment_session_id
    db.add(projection)
    db.commit()
    return projection


def _mirror_best_effort(db: Session, ledger: models.CreditLedger, activated: bool = False) -> None:
    result = run_best_effort("mirror_projection", mirror_projection, db, ledger, activated=activated)
    if not result.ok:
        db.rollback()


def _ledger_from_view(db: Session, view: SubscriptionView) -> models.CreditLedger:
    """Persist a repaired projection view as the tenant's ledger row."""
    credit_ledger.ensure_tenant(db, view.tenant_id)
    ledger = models.CreditLedger(
        tenant_id=view.tenant_id,
        plan_id=view.plan_id,
        plan_name=view.plan_name,
        price=view.price,
        sms_credits=view.sms_credits,
        remaining_credits=min(view.remaining_credits or 0, view.sms_credits or 0),
        status=view.status or "active",
        start_date=view.start_date,
        end_date=view.end_date,
        payment_session_id=view.payment_session_id,
    )
    db.add(ledger)
    db.commit()
    return ledger


# ---------------------------------------------------------------------------
# Reads


def read_subscription(
    db: Session,
    tenant_id: str,
    repair: bool = False,
    caller: VerifiedCaller | None = None,
) -> SubscriptionRead:
    """Read a tenant's subscription, never raising for missing or damaged data."""
    try:
        if owner_mismatch(db, tenant_id, caller):
            logger.info("subscription_owner_mismatch", tenant_id=tenant_id, caller=caller.subject)
            return SubscriptionRead(owner_mismatch=True)

        ledger = credit_ledger.get_ledger(db, tenant_id)
        if ledger is not None:
            repaired = False
            if repair:
                outcome = run_best_effort(
                    "repair_ledger", credit_ledger.repair_missing_fields, db, tenant_id
                )
                if outcome.ok:
                    ledger = outcome.value
                    repaired = True
                    _mirror_best_effort(db, ledger)
                else:
                    db.rollback()
            view = SubscriptionView.from_ledger(ledger).normalized()
            return SubscriptionRead(subscription=view, auto_repaired=repaired)

        for shape in (models.PROJECTION_MAIN, models.PROJECTION_LEGACY):
            projection = get_projection(db, tenant_id, shape)
            if projection is None:
                continue
            view = SubscriptionView.from_projection(projection).normalized()
            repaired = False
            if repair:
                outcome = run_best_effort("repair_from_projection", _ledger_from_view, db, view)
                if outcome.ok:
                    repaired = True
                    _mirror_best_effort(db, outcome.value)
                else:
                    db.rollback()
            return SubscriptionRead(subscription=view, auto_repaired=repaired)
    except SQLAlchemyError as exc:
        logger.error("subscription_read_failed", tenant_id=tenant_id, error=str(exc))
        db.rollback()

    return SubscriptionRead(empty=True)


# ---------------------------------------------------------------------------
# Writes

_CREDITS = (from_body("smsCredits", "sms_credits"), from_header("x-sms-credits"))
_DURATION = (from_body("durationMonths", "duration_months"), from_query("durationMonths"))
_PLAN_NAME = (from_body("planName"), from_query("planName"))
_PRICE = (from_body("price", "amount"), from_header("x-price"), from_query("price"))
_STATUS = (from_body("status"),)


def _positive_int(value: Any) -> int | None:
    try:
        number = int(float(str(value)))
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def activate_plan(
    db: Session,
    tenant_id: str,
    plan_id: str,
    session_id: str | None = None,
    credits: int | None = None,
    duration_months: int | None = None,
    plan_name: str | None = None,
    price: Any = None,
    status: str = "active",
) -> SubscriptionView:
    """Replace the tenant's ledger with ``plan_id`` and mirror it into the projection."""
    details = lookup_plan(plan_id, strict=get_settings().strict_plans)
    ledger = credit_ledger.create_or_replace(
        db,
        tenant_id,
        plan_id=plan_id,
        duration_months=duration_months or details.duration_months,
        credit_allotment=credits or details.credit_allotment,
        session_id=session_id,
        status=status,
        plan_name=plan_name or details.display_name,
        price=price if price is not None else details.price,
    )
    _mirror_best_effort(db, ledger, activated=True)
    return SubscriptionView.from_ledger(ledger)


def create_subscription(db: Session, tenant_id: str | None, carriers: RequestCarriers) -> SubscriptionView:
    """Create or replace a subscription from an admin or checkout-return request."""
    if not tenant_id:
        raise MissingTenantError()
    plan_id = resolve_plan(carriers)
    view = activate_plan(
        db,
        tenant_id,
        plan_id,
        session_id=first_present((from_body("sessionId", "paymentSessionId"),), carriers),
        credits=_positive_int(first_present(_CREDITS, carriers)),
        duration_months=_positive_int(first_present(_DURATION, carriers)),
        plan_name=first_present(_PLAN_NAME, carriers),
        price=first_present(_PRICE, carriers),
        status=str(first_present(_STATUS, carriers) or "active"),
    )
    logger.info("subscription_saved", tenant_id=tenant_id, plan_id=plan_id, credits=view.sms_credits)
    return view


def tenant_by_email(db: Session, email: str) -> str | None:
    lowered = email.strip().lower()
    tenant_id = db.execute(
        select(models.Tenant.id).where(func.lower(models.Tenant.email) == lowered).limit(1)
    ).scalar_one_or_none()
    if tenant_id:
        return str(tenant_id)
    user_tenant = db.execute(
        select(models.User.tenant_id)
        .where(func.lower(models.User.email) == lowered)
        .where(models.User.tenant_id.is_not(None))
        .limit(1)
    ).scalar_one_or_none()
    return str(user_tenant) if user_tenant else None


# ---------------------------------------------------------------------------
# Claims


def _record_for_session(db: Session, session_id: str) -> SubscriptionView | None:
    projection = db.execute(
        select(models.ProfileProjection)
        .where(models.ProfileProjection.payment_session_id == session_id)
        .limit(1)
    ).scalar_one_or_none()
    if projection is not None:
        return SubscriptionView.from_projection(projection)
    ledger = db.execute(
        select(models.CreditLedger).where(models.CreditLedger.payment_session_id == session_id).limit(1)
    ).scalar_one_or_none()
    return SubscriptionView.from_ledger(ledger) if ledger is not None else None


def _ensure_claimable(tenant_id: str, owner: str | None) -> None:
    if owner is not None and owner != tenant_id:
        logger.info("claim_owner_mismatch", tenant_id=tenant_id, owner=owner)
        raise ClaimNotFoundError()


def claim_by_session(db: Session, session_id: str, owner: str | None = None) -> ClaimResult:
    """Recover a purchase from its checkout session id.

    The ledger and projection of the tenant that owns the session are
    rewritten with a fresh allotment for the plan found on the record. A
    ledger that already carries the session is returned unchanged so that
    a repeated claim cannot refill credits. With ``owner`` set, a session
    belonging to any other tenant is reported as not found and left alone.
    """
    record = _record_for_session(db, session_id)
    if record is None:
        raise ClaimNotFoundError()
    _ensure_claimable(record.tenant_id, owner)

    ledger = credit_ledger.get_ledger(db, record.tenant_id)
    if ledger is not None and ledger.payment_session_id == session_id:
        logger.info("claim_already_applied", tenant_id=record.tenant_id, session_id=session_id)
        _mirror_best_effort(db, ledger)
        return ClaimResult(record.tenant_id, SubscriptionView.from_ledger(ledger).normalized(), "session")

    plan_id = try_resolve_plan(
        {"planId": record.plan_id, "planName": record.plan_name, "price": record.price}
    )
    if not plan_id:
        raise MissingPlanError("Could not derive planId from session/profile data")

    view = activate_plan(
        db,
        record.tenant_id,
        plan_id,
        session_id=session_id,
        plan_name=record.plan_name,
        price=record.price,
    )
    logger.info("claim_by_session", tenant_id=record.tenant_id, session_id=session_id, plan_id=plan_id)
    return ClaimResult(record.tenant_id, view, "session")


def claim_by_email(db: Session, email: str, owner: str | None = None) -> ClaimResult:
    """Return the projection of the tenant registered under ``email`` without changing it."""
    tenant_id = tenant_by_email(db, email)
    if tenant_id is None:
        raise ClaimNotFoundError()
    _ensure_claimable(tenant_id, owner)
    projection = get_projection(db, tenant_id)
    if projection is None:
        raise ClaimNotFoundError(
            "No session found for this email; please re-submit with companyId & planId",
            companyId=tenant_id,
        )
    return ClaimResult(tenant_id, SubscriptionView.from_projection(projection).normalized(), "email")


def claim(
    db: Session,
    session_id: str | None = None,
    email: str | None = None,
    tenant_id: str | None = None,
    caller: VerifiedCaller | None = None,
) -> ClaimResult:
    """Resolve a claim by session, then by email, then by the caller's own tenant.

    A verified non-admin caller only ever gets its own tenant's subscription.
    """
    if not (session_id or email or tenant_id or caller):
        raise ClaimNotFoundError(
            "sessionId or userEmail required (or provide x-company-id / Authorization token)",
            status_code=400,
        )

    owner = None
    if caller is not None and not caller.is_admin:
        owner = caller_tenant_id(db, caller)

    if session_id:
        try:
            return claim_by_session(db, str(session_id), owner=owner)
        except ClaimNotFoundError:
            if not email and not tenant_id and caller is None:
                raise
    if email:
        try:
            return claim_by_email(db, str(email), owner=owner)
        except ClaimNotFoundError:
            if not tenant_id and caller is None:
                raise

    if not tenant_id and caller is not None:
        tenant_id = owner if not caller.is_admin else caller_tenant_id(db, caller)
    if tenant_id:
        read = read_subscription(db, str(tenant_id), caller=caller)
        if read.subscription is not None:
            return ClaimResult(str(tenant_id), read.subscription, "tenant")
    raise ClaimNotFoundError()


__all__ = [
    "ClaimResult",
    "SubscriptionRead",
    "SubscriptionView",
    "activate_plan",
    "caller_tenant_id",
    "claim",
    "claim_by_email",
    "claim_by_session",
    "create_subscription",
    "get_projection",
    "mirror_projection",
    "owner_mismatch",
    "read_subscription",
    "tenant_by_email",
]
