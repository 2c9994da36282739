"""Bearer credential dependencies for FastAPI."""
from __future__ import annotations

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from reputationflow.core.logging import get_logger
from reputationflow.core.security import VerifiedCaller, caller_from_token

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_optional_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> VerifiedCaller | None:
    """Return the verified caller, ignoring absent or unverifiable tokens."""
    if credentials is None or not credentials.credentials:
        return None
    try:
        return caller_from_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        logger.info("bearer_rejected", error=str(exc))
        return None


__all__ = ["bearer_scheme", "get_optional_caller"]
