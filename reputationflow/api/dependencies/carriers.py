"""Collect every carrier of an inbound request before any field is read."""
from __future__ import annotations

from fastapi import Request

from reputationflow.core.extractors import RequestCarriers

FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def collect_carriers(request: Request) -> RequestCarriers:
    raw = await request.body()
    body = None
    content_type = request.headers.get("content-type", "")
    if raw and any(kind in content_type for kind in FORM_TYPES):
        form = await request.form()
        body = {key: value for key, value in form.items() if isinstance(value, str)}
    return RequestCarriers.build(
        raw_body=raw,
        headers=request.headers,
        query=request.query_params,
        body=body,
    )


__all__ = ["collect_carriers"]
