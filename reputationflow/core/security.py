"""Bearer credential helpers for ReputationFlow."""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from .settings import get_settings


@dataclass(frozen=True, slots=True)
class VerifiedCaller:
    """Subject of a verified bearer credential."""

    subject: str
    is_admin: bool = False
    email: str | None = None


def create_token(data: Dict[str, Any], expires_delta: timedelta = timedelta(hours=1)) -> str:
    settings = get_settings()
    payload = data.copy()
    payload.update(
        {
            "exp": datetime.now(timezone.utc) + expires_delta,
            "iat": datetime.now(timezone.utc),
            "jti": uuid.uuid4().hex,
        }
    )
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def caller_from_token(token: str) -> VerifiedCaller | None:
    """Decode ``token`` into a caller, or ``None`` when it carries no subject."""
    payload = decode_token(token)
    subject = payload.get("sub") or payload.get("uid")
    if not subject:
        return None
    admin = payload.get("admin")
    return VerifiedCaller(
        subject=str(subject),
        is_admin=admin is True or admin == "true",
        email=payload.get("email"),
    )


__all__ = ["VerifiedCaller", "caller_from_token", "create_token", "decode_token"]
