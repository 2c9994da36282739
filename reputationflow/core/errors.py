"""Domain errors raised by the metering and subscription services."""
from __future__ import annotations

from typing import Any


class MeteringError(Exception):
    """Base class for caller-visible service errors."""

    code = "ERROR"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, status_code: int | None = None, **extra: Any) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        payload.update({key: value for key, value in self.extra.items() if value is not None})
        return payload


class MissingFieldsError(MeteringError):
    code = "MISSING_FIELDS"
    default_message = "Missing required fields (to, body)"


class MissingPlanError(MeteringError):
    code = "MISSING_PLAN"
    default_message = "planId required (or planName / price)"


class UnknownPlanError(MeteringError):
    code = "UNKNOWN_PLAN"
    default_message = "Unknown plan identifier"


class MissingTenantError(MeteringError):
    code = "MISSING_TENANT"
    default_message = "companyId required"


class NoCreditsError(MeteringError):
    code = "NO_CREDITS"
    status_code = 403
    default_message = "SMS limit reached. Please upgrade your plan or wait for renewal."


class SubscriptionInactiveError(MeteringError):
    code = "SUBSCRIPTION_INACTIVE"
    status_code = 403
    default_message = "Subscription is not active. Please activate your plan."


class TransportNotConfiguredError(MeteringError):
    code = "TRANSPORT_NOT_CONFIGURED"
    default_message = "Missing sender. Provide 'from' or 'messagingServiceSid', or save them in company credentials."


class TransportError(MeteringError):
    """Remote rejection or exhausted fallback when sending a message."""

    code = "TRANSPORT_ERROR"
    status_code = 502
    default_message = "Message transport failed"

    def __init__(
        self,
        message: str | None = None,
        provider_code: int | str | None = None,
        hint: str | None = None,
        integration_failure: bool = False,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider_code = provider_code
        self.hint = hint
        self.integration_failure = integration_failure

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.provider_code is not None:
            payload["code"] = self.provider_code
        return payload


class ClaimNotFoundError(MeteringError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "No matching session or company found"


class OwnershipError(MeteringError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Forbidden: cannot act on another company"


class PaymentProviderError(MeteringError):
    code = "PAYMENT_PROVIDER_ERROR"
    status_code = 502
    default_message = "Payment provider error"


class LedgerNotFoundError(MeteringError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "No credit ledger for tenant"


__all__ = [
    "MeteringError",
    "MissingFieldsError",
    "MissingPlanError",
    "UnknownPlanError",
    "MissingTenantError",
    "NoCreditsError",
    "SubscriptionInactiveError",
    "TransportNotConfiguredError",
    "TransportError",
    "ClaimNotFoundError",
    "LedgerNotFoundError",
    "OwnershipError",
    "PaymentProviderError",
]
