"""Account management endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from reputationflow.api.dependencies.auth import get_optional_caller
from reputationflow.api.dependencies.carriers import collect_carriers
from reputationflow.api.dependencies.database import get_db
from reputationflow.core.errors import OwnershipError
from reputationflow.core.extractors import (
    COMPANY_ID,
    USER_EMAIL,
    RequestCarriers,
    first_present,
    from_body,
    from_header,
)
from reputationflow.core.security import VerifiedCaller
from reputationflow.services import subscriptions
from reputationflow.services.accounts import delete_tenant

router = APIRouter(prefix="/api/account", tags=["account"])


@router.delete("/delete")
def delete_account(
    carriers: RequestCarriers = Depends(collect_carriers),
    db: Session = Depends(get_db),
    caller: VerifiedCaller | None = Depends(get_optional_caller),
):
    subject = caller.subject if caller else first_present(
        (from_body("auth_uid"), from_header("x-auth-uid")), carriers
    )
    tenant_value = first_present(COMPANY_ID, carriers)
    if not tenant_value and caller is not None:
        tenant_value = subscriptions.caller_tenant_id(db, caller)
    tenant_value = tenant_value or subject
    tenant_id = str(tenant_value) if tenant_value else None
    if not tenant_id:
        email = first_present(USER_EMAIL, carriers)
        if email:
            tenant_id = subscriptions.tenant_by_email(db, str(email))

    if tenant_id and subscriptions.owner_mismatch(db, tenant_id, caller):
        raise OwnershipError()

    if delete_tenant(db, tenant_id, subject=str(subject) if subject else None):
        return {"success": True}
    return JSONResponse(
        status_code=404,
        content={"success": False, "error": "No client/user found to delete"},
    )


__all__ = ["router"]
