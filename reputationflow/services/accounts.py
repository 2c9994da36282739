"""Tenant account removal."""
from __future__ import annotations

from sqlalchemy import delete, or_
from sqlalchemy.orm import Session

from reputationflow.core import models
from reputationflow.core.logging import get_logger

logger = get_logger(__name__)


def delete_tenant(db: Session, tenant_id: str | None, subject: str | None = None) -> bool:
    """Remove a tenant with its ledger, projections, message log and users.

    This is the only path that removes a credit ledger. Returns ``False``
    when neither the tenant nor a user for ``subject`` exists.
    """
    deleted = False
    if tenant_id:
        db.execute(delete(models.MessageLog).where(models.MessageLog.tenant_id == tenant_id))
        db.execute(delete(models.CreditLedger).where(models.CreditLedger.tenant_id == tenant_id))
        db.execute(delete(models.ProfileProjection).where(models.ProfileProjection.tenant_id == tenant_id))
        result = db.execute(delete(models.Tenant).where(models.Tenant.id == tenant_id))
        deleted = result.rowcount > 0

    user_filters = []
    if subject:
        user_filters.append(models.User.id == subject)
    if tenant_id:
        user_filters.append(models.User.tenant_id == tenant_id)
    if user_filters:
        result = db.execute(delete(models.User).where(or_(*user_filters)))
        deleted = deleted or result.rowcount > 0

    db.commit()
    logger.info("tenant_deleted", tenant_id=tenant_id, subject=subject, deleted=deleted)
    return deleted


__all__ = ["delete_tenant"]
