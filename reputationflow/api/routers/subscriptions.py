"""Subscription read, write and claim endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from reputationflow.api import schemas
from reputationflow.api.dependencies.auth import get_optional_caller
from reputationflow.api.dependencies.carriers import collect_carriers
from reputationflow.api.dependencies.database import get_db
from reputationflow.core.extractors import (
    COMPANY_ID,
    SESSION_ID,
    USER_EMAIL,
    RequestCarriers,
    first_present,
    from_query,
)
from reputationflow.core.security import VerifiedCaller
from reputationflow.services import subscriptions

router = APIRouter(prefix="/api/subscription", tags=["subscriptions"])

REPAIR_VALUES = {"1", "true"}


def _tenant_for_write(db: Session, carriers: RequestCarriers, caller: VerifiedCaller | None) -> str | None:
    if caller is not None and not caller.is_admin:
        return subscriptions.caller_tenant_id(db, caller) or caller.subject
    tenant_id = first_present(COMPANY_ID, carriers)
    if tenant_id:
        return str(tenant_id)
    email = first_present(USER_EMAIL, carriers)
    if email:
        return subscriptions.tenant_by_email(db, str(email))
    return None


@router.get("")
def get_subscription(
    carriers: RequestCarriers = Depends(collect_carriers),
    db: Session = Depends(get_db),
    caller: VerifiedCaller | None = Depends(get_optional_caller),
) -> dict:
    tenant_id = first_present((from_query("companyId", "company_id"),), carriers)
    if not tenant_id and caller is not None:
        tenant_id = subscriptions.caller_tenant_id(db, caller)
    if not tenant_id:
        return schemas.SubscriptionResponse(success=False, reason="missing-companyId").payload()

    repair = str(first_present((from_query("repair"),), carriers) or "").lower() in REPAIR_VALUES
    read = subscriptions.read_subscription(db, str(tenant_id), repair=repair, caller=caller)
    if read.owner_mismatch:
        return schemas.SubscriptionResponse(owner_mismatch=True).payload()
    if read.subscription is None:
        return schemas.SubscriptionResponse(empty=True).payload()
    return schemas.SubscriptionResponse(
        subscription=schemas.SubscriptionPayload.from_view(
            read.subscription, auto_repaired=read.auto_repaired if repair else None
        )
    ).payload()


@router.post("")
def save_subscription(
    carriers: RequestCarriers = Depends(collect_carriers),
    db: Session = Depends(get_db),
    caller: VerifiedCaller | None = Depends(get_optional_caller),
) -> dict:
    tenant_id = _tenant_for_write(db, carriers, caller)
    view = subscriptions.create_subscription(db, tenant_id, carriers)
    return schemas.SubscriptionResponse(subscription=schemas.SubscriptionPayload.from_view(view)).payload()


@router.post("/claim", response_model=schemas.ClaimResponse, response_model_by_alias=True)
def claim_subscription(
    carriers: RequestCarriers = Depends(collect_carriers),
    db: Session = Depends(get_db),
    caller: VerifiedCaller | None = Depends(get_optional_caller),
) -> schemas.ClaimResponse:
    result = subscriptions.claim(
        db,
        session_id=first_present(SESSION_ID, carriers),
        email=first_present(USER_EMAIL, carriers),
        tenant_id=first_present(COMPANY_ID[1:], carriers),
        caller=caller,
    )
    return schemas.ClaimResponse(
        company_id=result.tenant_id,
        subscription=schemas.SubscriptionPayload.from_view(result.subscription),
        claimed_by=result.claimed_by,
    )


__all__ = ["router"]
