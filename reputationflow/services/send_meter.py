"""Send an SMS and meter it against the tenant's credit ledger."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from reputationflow.core import models
from reputationflow.core.bookkeeping import BestEffortResult, run_best_effort
from reputationflow.core.errors import (
    MissingFieldsError,
    NoCreditsError,
    SubscriptionInactiveError,
    TransportNotConfiguredError,
)
from reputationflow.core.extractors import (
    COMPANY_ID,
    MESSAGE_BODY,
    RECIPIENT,
    RequestCarriers,
    first_present,
    from_body,
)
from reputationflow.core.logging import get_logger
from reputationflow.core.settings import Settings, get_settings
from reputationflow.services import credit_ledger
from reputationflow.services.messaging import (
    TransportCredentials,
    TransportReceipt,
    TwilioTransport,
    normalize_phone,
)

logger = get_logger(__name__)

MISSING_FIELDS_HINT = (
    "Ensure fetch includes JSON body: { to: '+15551234567', body: 'Message' } "
    "with Content-Type: application/json"
)


class UnmeteredPolicy(str, enum.Enum):
    """What the credit gate does for a tenant that has no ledger at all."""

    ALLOW_WHEN_ABSENT = "allow_when_absent"
    DENY_WHEN_ABSENT = "deny_when_absent"


class MeteringMode(str, enum.Enum):
    POST_SEND = "post_send"
    RESERVE = "reserve"


@dataclass(slots=True)
class SendResult:
    sid: str | None
    status: str
    billable: bool
    tenant_id: str | None = None
    via: str = "sdk"
    accounting: list[BestEffortResult[Any]] | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"success": True, "sid": self.sid, "status": self.status}


def is_billable(body: str, fragments: list[str] | tuple[str, ...]) -> bool:
    """A body carrying a feedback-request link is platform traffic, not billable."""
    text = body or ""
    return not any(fragment and fragment in text for fragment in fragments)


class SendAndMeter:
    """Normalize, gate, send and account for one outbound SMS."""

    def __init__(
        self,
        transport: TwilioTransport,
        settings: Settings | None = None,
        policy: UnmeteredPolicy | None = None,
        mode: MeteringMode | None = None,
    ) -> None:
        self.transport = transport
        self.settings = settings or get_settings()
        self.policy = policy or UnmeteredPolicy(self.settings.unmetered_policy)
        self.mode = mode or MeteringMode(self.settings.metering_mode)

    # -- credentials ---------------------------------------------------------

    def resolve_credentials(self, db: Session, carriers: RequestCarriers, tenant_id: str | None) -> TransportCredentials:
        """Per field: request, then process settings, then tenant, then platform."""
        tenant = db.get(models.Tenant, tenant_id) if tenant_id else None
        platform = db.get(models.PlatformSettings, "global")

        def pick(request_keys: tuple[str, ...], process_value: str | None, column: str) -> str | None:
            candidates = [
                first_present((from_body(*request_keys),), carriers),
                process_value,
                getattr(tenant, column, None) if tenant is not None else None,
                getattr(platform, column, None) if platform is not None else None,
            ]
            for candidate in candidates:
                if candidate:
                    return str(candidate)
            return None

        return TransportCredentials(
            account_sid=pick(("accountSid",), self.settings.twilio_account_sid, "twilio_account_sid"),
            auth_token=pick(("authToken",), self.settings.twilio_auth_token, "twilio_auth_token"),
            from_number=pick(("from", "fromNumber"), None, "twilio_phone_number"),
            messaging_service_sid=pick(
                ("messagingServiceSid",),
                self.settings.twilio_messaging_service_sid,
                "twilio_messaging_service_sid",
            ),
        )

    # -- gate ----------------------------------------------------------------

    def _absent(self, tenant_id: str) -> None:
        if self.policy is UnmeteredPolicy.DENY_WHEN_ABSENT:
            logger.info("credit_gate_denied_absent", tenant_id=tenant_id)
            raise SubscriptionInactiveError("No subscription found for this company.", remainingCredits=0)
        logger.info("credit_gate_unmetered", tenant_id=tenant_id)

    def check_credits(self, db: Session, tenant_id: str) -> int | None:
        ledger = credit_ledger.get_ledger(db, tenant_id)
        if ledger is None:
            self._absent(tenant_id)
            return None
        remaining = ledger.remaining_credits
        if remaining is None:
            remaining = ledger.sms_credits or 0
        logger.info("credit_gate", tenant_id=tenant_id, remaining=remaining, status=ledger.status)
        if ledger.status != "active":
            raise SubscriptionInactiveError(remainingCredits=0)
        if remaining <= 0:
            raise NoCreditsError(remainingCredits=0)
        return remaining

    def reserve_credit(self, db: Session, tenant_id: str) -> bool:
        """Take the credit before sending. Returns whether a credit was reserved."""
        ledger = credit_ledger.get_ledger(db, tenant_id)
        if ledger is None:
            self._absent(tenant_id)
            return False
        if ledger.status != "active":
            raise SubscriptionInactiveError(remainingCredits=0)
        outcome = credit_ledger.decrement_one(db, tenant_id)
        if outcome.status == "no_credits":
            raise NoCreditsError(remainingCredits=0)
        if outcome.status == "not_found":
            self._absent(tenant_id)
            return False
        return True

    # -- accounting ----------------------------------------------------------

    def _record_message(
        self, db: Session, tenant_id: str, receipt: TransportReceipt, to: str, body: str, billable: bool
    ) -> models.MessageLog:
        entry = models.MessageLog(
            tenant_id=tenant_id,
            sid=receipt.sid,
            recipient=to,
            body=body,
            status=receipt.status or "sent",
            channel="sms",
            billable=billable,
        )
        db.add(entry)
        db.commit()
        return entry

    def _account(
        self, db: Session, tenant_id: str, receipt: TransportReceipt, to: str, body: str, billable: bool
    ) -> list[BestEffortResult[Any]]:
        results = [
            run_best_effort("record_message", self._record_message, db, tenant_id, receipt, to, body, billable)
        ]
        if not results[-1].ok:
            db.rollback()
        if billable and self.mode is MeteringMode.POST_SEND:
            results.append(run_best_effort("decrement_credit", credit_ledger.decrement_one, db, tenant_id))
            if not results[-1].ok:
                db.rollback()
        return results

    # -- entry point ---------------------------------------------------------

    def send(self, db: Session, carriers: RequestCarriers) -> SendResult:
        to = first_present(RECIPIENT, carriers)
        body = first_present(MESSAGE_BODY, carriers)
        if not to or not body:
            raise MissingFieldsError(
                receivedKeys=sorted(carriers.mapping) if carriers.mapping else type(carriers.body).__name__,
                hint=MISSING_FIELDS_HINT,
            )
        body = str(body)
        phone = normalize_phone(to, self.settings.default_country_code)
        recipient = phone.value if phone.ok else str(to).strip()

        tenant_value = first_present(COMPANY_ID, carriers)
        tenant_id = str(tenant_value) if tenant_value else None
        billable = is_billable(body, self.settings.feedback_link_fragments)

        reserved = False
        if tenant_id:
            if self.mode is MeteringMode.RESERVE and billable:
                reserved = self.reserve_credit(db, tenant_id)
            else:
                self.check_credits(db, tenant_id)

        try:
            credentials = self.resolve_credentials(db, carriers, tenant_id)
            if not credentials.has_account:
                raise TransportNotConfiguredError(
                    "Twilio not configured. Provide accountSid/authToken or a valid companyId with saved credentials.",
                    status_code=500,
                )
            if not credentials.has_sender:
                raise TransportNotConfiguredError()
            status_callback = first_present((from_body("statusCallback"),), carriers)
            receipt = self.transport.send(credentials, recipient, body, status_callback=status_callback)
        except Exception:
            db.rollback()
            if reserved:
                run_best_effort("refund_credit", credit_ledger.refund_one, db, tenant_id)
            raise

        logger.info(
            "sms_sent",
            tenant_id=tenant_id,
            sid=receipt.sid,
            status=receipt.status,
            billable=billable,
            via=receipt.via,
        )
        accounting = None
        if tenant_id:
            accounting = self._account(db, tenant_id, receipt, recipient, body, billable)
        return SendResult(
            sid=receipt.sid,
            status=receipt.status,
            billable=billable,
            tenant_id=tenant_id,
            via=receipt.via,
            accounting=accounting,
        )


def update_message_status(db: Session, sid: str, status: str) -> int:
    """Apply a transport status callback to the logged message(s) with ``sid``."""
    updated = 0
    for entry in db.query(models.MessageLog).filter(models.MessageLog.sid == sid).all():
        entry.status = status
        db.add(entry)
        updated += 1
    db.commit()
    logger.info("message_status_updated", sid=sid, status=status, updated=updated)
    return updated


__all__ = [
    "MeteringMode",
    "SendAndMeter",
    "SendResult",
    "UnmeteredPolicy",
    "is_billable",
    "update_message_status",
]
