"""FastAPI application factory."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reputationflow.api.routers import account, messaging, payments, subscriptions
from reputationflow.core.database import init_database
from reputationflow.core.errors import MeteringError
from reputationflow.core.logging import get_logger, setup_logging
from reputationflow.core.observability import configure_observability
from reputationflow.core.rate_limiter import setup_rate_limiting
from reputationflow.core.settings import get_settings
from reputationflow.services.messaging import TwilioTransport

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "transport", None) is None:
        app.state.transport = TwilioTransport().init()
    try:
        yield
    finally:
        app.state.transport.teardown()
        app.state.transport = None


async def metering_error_handler(request: Request, exc: MeteringError) -> JSONResponse:
    logger.info(
        "request_rejected",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging()
    init_database()

    app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)
    app.state.transport = None
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(MeteringError, metering_error_handler)

    setup_rate_limiting(app)
    configure_observability(app)

    app.include_router(messaging.router)
    app.include_router(subscriptions.router)
    app.include_router(payments.router)
    app.include_router(account.router)

    @app.get("/healthz", tags=["monitoring"])
    def healthcheck() -> dict[str, str]:  # pragma: no cover - simple endpoint
        return {"status": "ok"}

    return app


__all__ = ["create_app", "lifespan"]
