"""Prometheus instrumentation for the HTTP surface."""
from __future__ import annotations

from fastapi import FastAPI

from prometheus_fastapi_instrumentator import Instrumentator

from reputationflow.core.logging import get_logger
from reputationflow.core.settings import get_settings

logger = get_logger(__name__)


def configure_observability(app: FastAPI) -> None:
    settings = get_settings()

    if not settings.enable_prometheus:
        logger.info("metrics_disabled")
        return

    Instrumentator(excluded_handlers=["/metrics", "/healthz"]).instrument(
        app, metric_namespace=settings.metrics_namespace
    ).expose(app, include_in_schema=False)


__all__ = ["configure_observability"]
