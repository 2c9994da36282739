"""Twilio messaging transport.

The transport is constructed explicitly at application startup
(:meth:`TwilioTransport.init`) and released at shutdown
(:meth:`TwilioTransport.teardown`). Sends go through the Twilio SDK; when the
SDK itself breaks (anything other than a REST rejection from Twilio) the same
request is retried once against the REST API with ``requests``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import requests
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client as TwilioClient

from reputationflow.core.errors import TransportError
from reputationflow.core.logging import get_logger
from reputationflow.core.settings import Settings, get_settings

logger = get_logger(__name__)

PROVIDER_HINTS: dict[int, str] = {
    21608: (
        "Trial account cannot send SMS to unverified numbers. "
        "Verify the number in Twilio or upgrade the account."
    ),
    21211: "The 'To' number is not a valid phone number. Use E.164 format like +14155550123.",
}

_E164_DIGITS = re.compile(r"^[0-9]{6,15}$")
_LOCAL_DIGITS = re.compile(r"^[0-9]{4,15}$")


def hint_for(code: Any) -> str | None:
    try:
        return PROVIDER_HINTS.get(int(code))
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class PhoneNumber:
    ok: bool
    value: str | None = None
    reason: str | None = None


def normalize_phone(raw: Any, default_country_code: str | None = None) -> PhoneNumber:
    """Normalise ``raw`` to E.164, prefixing ``default_country_code`` to local numbers."""
    if not raw:
        return PhoneNumber(ok=False, reason="Empty phone")
    cleaned = re.sub(r"[^0-9+]", "", str(raw)).strip()
    if cleaned.startswith("+"):
        if _E164_DIGITS.match(cleaned[1:]):
            return PhoneNumber(ok=True, value=cleaned)
        return PhoneNumber(ok=False, reason="Invalid E.164 format (expect +<country><number>)")

    digits = cleaned.lstrip("0")
    prefix = None
    if default_country_code:
        prefix = "+" + re.sub(r"[^0-9]", "", default_country_code)
    if prefix and prefix != "+" and _LOCAL_DIGITS.match(digits):
        return PhoneNumber(ok=True, value=prefix + digits)
    return PhoneNumber(
        ok=False,
        reason=(
            "Provide full international number starting with + (e.g. +14155550123). "
            "Set a default country code to allow local numbers."
        ),
    )


@dataclass(slots=True)
class TransportCredentials:
    account_sid: str | None = None
    auth_token: str | None = None
    from_number: str | None = None
    messaging_service_sid: str | None = None

    @property
    def has_sender(self) -> bool:
        return bool(self.from_number or self.messaging_service_sid)

    @property
    def has_account(self) -> bool:
        return bool(self.account_sid and self.auth_token)


@dataclass(slots=True)
class TransportReceipt:
    sid: str | None
    status: str
    via: str = "sdk"


class TwilioTransport:
    """Holder for Twilio clients keyed by account."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._clients: dict[tuple[str, str], TwilioClient] = {}
        self._http: requests.Session | None = None
        self.ready = False

    def init(self) -> "TwilioTransport":
        self._http = requests.Session()
        if self.settings.twilio_account_sid and self.settings.twilio_auth_token:
            self._client(self.settings.twilio_account_sid, self.settings.twilio_auth_token)
        self.ready = True
        logger.info(
            "transport_initialised",
            process_credentials=bool(self._clients),
            force_http=self.settings.twilio_force_http,
        )
        return self

    def teardown(self) -> None:
        self._clients.clear()
        if self._http is not None:
            self._http.close()
            self._http = None
        self.ready = False
        logger.info("transport_closed")

    def _client(self, account_sid: str, auth_token: str) -> TwilioClient:
        key = (account_sid, auth_token)
        client = self._clients.get(key)
        if client is None:
            client = TwilioClient(account_sid, auth_token)
            self._clients[key] = client
        return client

    def send(
        self,
        credentials: TransportCredentials,
        to: str,
        body: str,
        status_callback: str | None = None,
    ) -> TransportReceipt:
        if self.settings.twilio_force_http:
            return self.send_http(credentials, to, body, status_callback)
        try:
            return self.send_sdk(credentials, to, body, status_callback)
        except TwilioRestException as exc:
            logger.warning("transport_rejected", code=exc.code, status=exc.status, to=to)
            raise TransportError(
                exc.msg or str(exc),
                provider_code=exc.code,
                hint=hint_for(exc.code),
            ) from exc
        except TransportError:
            raise
        except Exception as exc:
            logger.warning("transport_sdk_failed", error=str(exc), error_type=type(exc).__name__)
            return self.send_http(credentials, to, body, status_callback)

    def send_sdk(
        self,
        credentials: TransportCredentials,
        to: str,
        body: str,
        status_callback: str | None = None,
    ) -> TransportReceipt:
        client = self._client(credentials.account_sid or "", credentials.auth_token or "")
        arguments: dict[str, Any] = {"to": to, "body": body}
        if status_callback:
            arguments["status_callback"] = status_callback
        if credentials.messaging_service_sid:
            arguments["messaging_service_sid"] = credentials.messaging_service_sid
        else:
            arguments["from_"] = credentials.from_number
        message = client.messages.create(**arguments)
        logger.info("transport_sent", sid=message.sid, status=message.status, via="sdk")
        return TransportReceipt(sid=message.sid, status=message.status or "queued", via="sdk")

    def send_http(
        self,
        credentials: TransportCredentials,
        to: str,
        body: str,
        status_callback: str | None = None,
    ) -> TransportReceipt:
        """Send through the Twilio REST API directly."""
        if not credentials.has_account:
            raise TransportError(
                "Twilio credentials missing for HTTP send (accountSid/authToken).",
                integration_failure=True,
            )
        url = (
            f"{self.settings.twilio_api_base.rstrip('/')}/2010-04-01/Accounts/"
            f"{credentials.account_sid}/Messages.json"
        )
        form: dict[str, str] = {"To": to, "Body": body}
        if credentials.messaging_service_sid:
            form["MessagingServiceSid"] = credentials.messaging_service_sid
        else:
            form["From"] = credentials.from_number or ""
        if status_callback:
            form["StatusCallback"] = status_callback

        http = self._http or requests
        try:
            response = http.post(
                url,
                data=form,
                auth=(credentials.account_sid, credentials.auth_token),
                timeout=self.settings.transport_timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.error("transport_http_failed", error=str(exc))
            raise TransportError(str(exc), integration_failure=True) from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.ok:
            code = data.get("code")
            logger.warning("transport_http_rejected", code=code, status=response.status_code)
            raise TransportError(
                data.get("message") or f"Twilio HTTP error {response.status_code}",
                provider_code=code,
                hint=hint_for(code),
            )
        status = data.get("status") or data.get("message_status") or "queued"
        logger.info("transport_sent", sid=data.get("sid"), status=status, via="http")
        return TransportReceipt(sid=data.get("sid"), status=status, via="http")


__all__ = [
    "PROVIDER_HINTS",
    "PhoneNumber",
    "TransportCredentials",
    "TransportReceipt",
    "TwilioTransport",
    "hint_for",
    "normalize_phone",
]
