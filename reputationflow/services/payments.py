"""Stripe checkout and webhook-driven plan activation."""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reputationflow.core import models
from reputationflow.core.errors import MeteringError, PaymentProviderError, UnknownPlanError
from reputationflow.core.logging import get_logger
from reputationflow.core.plans import find_plan
from reputationflow.core.settings import Settings, get_settings
from reputationflow.services import credit_ledger
from reputationflow.services.subscriptions import SubscriptionView, activate_plan

logger = get_logger(__name__)

ACTIVATION_EVENTS = frozenset(
    {"checkout.session.completed", "payment.succeeded", "subscription.created"}
)


class InvalidWebhookError(MeteringError):
    code = "INVALID_SIGNATURE"
    default_message = "Invalid signature"


@dataclass(slots=True)
class CheckoutSession:
    session_id: str
    checkout_url: str
    plan_id: str
    tenant_id: str | None
    simulated: bool = False


@dataclass(slots=True)
class WebhookOutcome:
    handled: bool
    reason: str
    event_id: str | None = None
    tenant_id: str | None = None
    subscription: SubscriptionView | None = None


def _success_url(settings: Settings, tenant_id: str | None, plan_id: str) -> str:
    query = urlencode({"company_id": tenant_id or "unknown", "plan_id": plan_id})
    return f"{settings.frontend_url.rstrip('/')}/payment-success?session_id={{CHECKOUT_SESSION_ID}}&{query}"


def create_checkout_session(
    db: Session,
    plan_id: str,
    tenant_id: str | None,
    email: str | None = None,
    settings: Settings | None = None,
) -> CheckoutSession:
    """Start a hosted checkout for ``plan_id``.

    Without a Stripe key or a price for the plan the purchase is simulated
    and the plan is activated immediately.
    """
    settings = settings or get_settings()
    details = find_plan(plan_id)
    if details is None:
        raise UnknownPlanError(f"Invalid plan selected: {plan_id}", plan_id=plan_id)

    price_id = settings.stripe_price_for(details.plan_id)
    if not settings.stripe_api_key or not price_id:
        session_id = f"simulated-{uuid.uuid4().hex}"
        if tenant_id:
            activate_plan(db, tenant_id, details.plan_id, session_id=session_id)
        url = _success_url(settings, tenant_id, details.plan_id).replace("{CHECKOUT_SESSION_ID}", session_id)
        logger.info("checkout_simulated", tenant_id=tenant_id, plan_id=details.plan_id, session_id=session_id)
        return CheckoutSession(session_id, url, details.plan_id, tenant_id, simulated=True)

    try:
        stripe.api_key = settings.stripe_api_key
        session = stripe.checkout.Session.create(
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            customer_email=email,
            success_url=_success_url(settings, tenant_id, details.plan_id),
            cancel_url=f"{settings.frontend_url.rstrip('/')}/payment-cancel",
            metadata={
                "companyId": tenant_id or "unknown",
                "plan": details.plan_id,
                "durationMonths": str(details.duration_months),
            },
        )
    except stripe.StripeError as exc:
        logger.error("checkout_failed", tenant_id=tenant_id, plan_id=details.plan_id, error=str(exc))
        raise PaymentProviderError("Failed to create payment session") from exc

    logger.info("checkout_created", tenant_id=tenant_id, plan_id=details.plan_id, session_id=session.id)
    return CheckoutSession(session.id, session.url, details.plan_id, tenant_id)


def parse_event(payload: bytes, signature: str | None, settings: Settings | None = None) -> dict[str, Any]:
    settings = settings or get_settings()
    if settings.stripe_webhook_secret:
        if not signature:
            raise InvalidWebhookError(status_code=400)
        try:
            stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise InvalidWebhookError(status_code=400) from exc
    try:
        event = json.loads(payload.decode() or "{}")
    except ValueError as exc:
        raise InvalidWebhookError("Malformed webhook payload", status_code=400) from exc
    if not isinstance(event, dict):
        raise InvalidWebhookError("Malformed webhook payload", status_code=400)
    return event


def _event_object(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data")
    if isinstance(data, dict):
        candidate = data.get("object", data)
        if isinstance(candidate, dict):
            return candidate
    return event


def _record_event(
    db: Session,
    event: dict[str, Any],
    event_id: str | None,
    event_type: str,
    session_id: str | None,
    tenant_id: str | None,
) -> bool:
    """Store the processed event id. Returns ``False`` when another delivery stored it first."""
    if not event_id:
        return True
    db.add(
        models.PaymentEvent(
            id=event_id,
            event_type=event_type,
            session_id=session_id,
            tenant_id=tenant_id,
            payload=event,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("webhook_duplicate", event_id=event_id)
        return False
    return True


def handle_event(db: Session, event: dict[str, Any]) -> WebhookOutcome:
    """Activate the plan carried by a payment event.

    Repeated deliveries of an event id, and events for a session already
    applied to the tenant's ledger, leave the ledger untouched. The event id
    is stored only once the event has been fully handled, so a delivery whose
    activation fails is processed again when the provider retries it.
    """
    event_id = event.get("id")
    event_type = event.get("type") or event.get("event_type")
    if event_type not in ACTIVATION_EVENTS:
        logger.info("webhook_ignored", event_id=event_id, event_type=event_type)
        return WebhookOutcome(False, "ignored_event_type", event_id)

    if event_id and db.get(models.PaymentEvent, event_id) is not None:
        logger.info("webhook_duplicate", event_id=event_id)
        return WebhookOutcome(False, "duplicate_event", event_id)

    session = _event_object(event)
    metadata = session.get("metadata") or {}
    tenant_id = metadata.get("companyId") or metadata.get("company_id")
    session_id = session.get("id") or session.get("subscription_id")
    plan_id = metadata.get("plan") or metadata.get("planId")

    if not tenant_id or tenant_id == "unknown" or not plan_id:
        logger.warning("webhook_missing_metadata", event_id=event_id, tenant_id=tenant_id, plan_id=plan_id)
        _record_event(db, event, event_id, event_type, session_id, tenant_id)
        return WebhookOutcome(False, "missing_metadata", event_id, tenant_id)

    ledger = credit_ledger.get_ledger(db, tenant_id)
    if ledger is not None and session_id and ledger.payment_session_id == session_id:
        logger.info("webhook_session_already_applied", tenant_id=tenant_id, session_id=session_id)
        _record_event(db, event, event_id, event_type, session_id, tenant_id)
        return WebhookOutcome(False, "session_already_applied", event_id, tenant_id, SubscriptionView.from_ledger(ledger))

    try:
        duration = int(metadata.get("durationMonths") or 0) or None
    except (TypeError, ValueError):
        duration = None
    try:
        view = activate_plan(
            db,
            str(tenant_id),
            str(plan_id),
            session_id=session_id,
            duration_months=duration,
            plan_name=metadata.get("planName"),
        )
    except Exception as exc:
        db.rollback()
        logger.error("webhook_activation_failed", event_id=event_id, tenant_id=tenant_id, error=str(exc))
        raise
    _record_event(db, event, event_id, event_type, session_id, tenant_id)
    logger.info("webhook_plan_activated", tenant_id=tenant_id, plan_id=plan_id, session_id=session_id)
    return WebhookOutcome(True, "activated", event_id, tenant_id, view)


__all__ = [
    "ACTIVATION_EVENTS",
    "CheckoutSession",
    "InvalidWebhookError",
    "WebhookOutcome",
    "create_checkout_session",
    "handle_event",
    "parse_event",
]
