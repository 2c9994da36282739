"""Messaging transport dependencies."""
from __future__ import annotations

from fastapi import Depends, Request

from reputationflow.services.messaging import TwilioTransport
from reputationflow.services.send_meter import SendAndMeter


def get_transport(request: Request) -> TwilioTransport:
    transport = getattr(request.app.state, "transport", None)
    if transport is None:
        transport = TwilioTransport().init()
        request.app.state.transport = transport
    return transport


def get_send_meter(transport: TwilioTransport = Depends(get_transport)) -> SendAndMeter:
    return SendAndMeter(transport)


__all__ = ["get_send_meter", "get_transport"]
