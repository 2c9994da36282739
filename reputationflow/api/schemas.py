"""Pydantic schemas for API responses."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SubscriptionPayload(CamelModel):
    company_id: str
    plan_id: str | None = None
    plan_name: str | None = None
    price: str | None = None
    sms_credits: int | None = None
    remaining_credits: int | None = None
    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    payment_session_id: str | None = None
    source: str = "ledger"
    auto_repaired: bool | None = None

    @classmethod
    def from_view(cls, view: Any, auto_repaired: bool | None = None) -> "SubscriptionPayload":
        return cls(
            company_id=view.tenant_id,
            plan_id=view.plan_id,
            plan_name=view.plan_name,
            price=view.price,
            sms_credits=view.sms_credits,
            remaining_credits=view.remaining_credits,
            status=view.status,
            start_date=view.start_date,
            end_date=view.end_date,
            payment_session_id=view.payment_session_id,
            source=view.source,
            auto_repaired=auto_repaired,
        )


class SubscriptionResponse(CamelModel):
    success: bool = True
    subscription: SubscriptionPayload | None = None
    empty: bool | None = None
    owner_mismatch: bool | None = None
    reason: str | None = None

    def payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True) | {
            "subscription": self.subscription.payload() if self.subscription else None
        }


class ClaimResponse(CamelModel):
    success: bool = True
    company_id: str
    subscription: SubscriptionPayload
    claimed_by: str


class SendResponse(CamelModel):
    success: bool = True
    sid: str | None = None
    status: str | None = None


class CheckoutResponse(CamelModel):
    success: bool = True
    checkout_url: str
    session_id: str
    plan_id: str
    company_id: str | None = None
    simulated: bool = False


class WebhookResponse(CamelModel):
    received: bool = True
    handled: bool
    reason: str


__all__ = [
    "CheckoutResponse",
    "ClaimResponse",
    "SendResponse",
    "SubscriptionPayload",
    "SubscriptionResponse",
    "WebhookResponse",
]
