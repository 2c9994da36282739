"""Hosted checkout and payment webhook endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from reputationflow.api import schemas
from reputationflow.api.dependencies.auth import get_optional_caller
from reputationflow.api.dependencies.carriers import collect_carriers
from reputationflow.api.dependencies.database import get_db
from reputationflow.core.errors import MissingPlanError, OwnershipError
from reputationflow.core.extractors import COMPANY_ID, USER_EMAIL, RequestCarriers, first_present
from reputationflow.core.security import VerifiedCaller
from reputationflow.services import payments, subscriptions
from reputationflow.services.plan_resolver import try_resolve_plan

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/create-session", response_model=schemas.CheckoutResponse, response_model_by_alias=True)
def create_session(
    carriers: RequestCarriers = Depends(collect_carriers),
    db: Session = Depends(get_db),
    caller: VerifiedCaller | None = Depends(get_optional_caller),
) -> schemas.CheckoutResponse:
    plan_id = try_resolve_plan(carriers)
    if not plan_id:
        raise MissingPlanError("Missing required field: plan")

    tenant_value = first_present(COMPANY_ID, carriers)
    tenant_id = str(tenant_value) if tenant_value else None
    if caller is not None and not caller.is_admin:
        own_tenant = subscriptions.caller_tenant_id(db, caller)
        if tenant_id and own_tenant and own_tenant != tenant_id:
            raise OwnershipError()
        tenant_id = tenant_id or own_tenant

    email = first_present(USER_EMAIL, carriers) or (caller.email if caller else None)
    session = payments.create_checkout_session(db, plan_id, tenant_id, email=email)
    return schemas.CheckoutResponse(
        checkout_url=session.checkout_url,
        session_id=session.session_id,
        plan_id=session.plan_id,
        company_id=session.tenant_id,
        simulated=session.simulated,
    )


@router.post("/webhook", status_code=status.HTTP_200_OK, response_model=schemas.WebhookResponse)
async def payment_webhook(request: Request, db: Session = Depends(get_db)) -> schemas.WebhookResponse:
    payload = await request.body()
    event = payments.parse_event(payload, request.headers.get("Stripe-Signature"))
    outcome = payments.handle_event(db, event)
    return schemas.WebhookResponse(handled=outcome.handled, reason=outcome.reason)


__all__ = ["router"]
