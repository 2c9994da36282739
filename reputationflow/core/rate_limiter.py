"""Per-tenant request rate limiting using SlowAPI."""
from __future__ import annotations

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reputationflow.core.extractors import COMPANY_ID, RequestCarriers, first_present
from reputationflow.core.settings import get_settings

_limiter: Limiter | None = None

# Only header and query carriers are available before the body is read.
_TENANT_KEYS = COMPANY_ID[1:]


def rate_limit_key(request: Request) -> str:
    """Bucket requests by tenant when one is named, else by client address."""
    carriers = RequestCarriers.build(headers=request.headers, query=request.query_params)
    tenant_id = first_present(_TENANT_KEYS, carriers)
    if tenant_id:
        return f"tenant:{tenant_id}"
    return f"ip:{get_remote_address(request)}"


def get_limiter() -> Limiter:
    global _limiter
    if _limiter is None:
        settings = get_settings()
        _limiter = Limiter(
            key_func=rate_limit_key,
            default_limits=[
                f"{settings.rate_limit_requests}/{settings.rate_limit_window_seconds} seconds"
            ],
            storage_uri=settings.resolved_rate_limit_storage,
        )
    return _limiter


def setup_rate_limiting(app: FastAPI) -> None:
    limiter = get_limiter()
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "Too many requests",
            "code": "RATE_LIMITED",
            "limit": exc.detail,
        },
    )


__all__ = ["get_limiter", "rate_limit_key", "setup_rate_limiting"]
