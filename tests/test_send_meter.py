import pytest

from reputationflow.core import models
from reputationflow.core.errors import (
    MissingFieldsError,
    NoCreditsError,
    SubscriptionInactiveError,
    TransportError,
    TransportNotConfiguredError,
)
from reputationflow.core.extractors import RequestCarriers
from reputationflow.core.settings import Settings
from reputationflow.services import credit_ledger
from reputationflow.services.send_meter import (
    MeteringMode,
    SendAndMeter,
    UnmeteredPolicy,
    is_billable,
    update_message_status,
)


def _carriers(**body):
    return RequestCarriers(body=body)


def _meter(transport, **overrides):
    return SendAndMeter(transport, settings=Settings(**overrides))


def _logs(db, tenant_id="acme"):
    return db.query(models.MessageLog).filter(models.MessageLog.tenant_id == tenant_id).all()


def test_billable_classification():
    fragments = ["localhost:5173/feedback", "/feedback?"]
    assert is_billable("Your appointment is tomorrow", fragments)
    assert not is_billable("Rate us: https://app.test/feedback?c=1", fragments)
    assert not is_billable("Open http://localhost:5173/feedback/acme", fragments)
    assert is_billable("", fragments)


def test_single_credit_is_consumed_then_gate_closes(db, transport, platform_credentials):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 1)
    meter = _meter(transport)

    result = meter.send(db, _carriers(to="+14155550123", body="Hello", companyId="acme"))
    assert result.sid
    assert result.billable
    assert credit_ledger.get_remaining(db, "acme") == 0
    assert [entry.billable for entry in _logs(db)] == [True]

    with pytest.raises(NoCreditsError) as excinfo:
        meter.send(db, _carriers(to="+14155550123", body="Hello again", companyId="acme"))
    assert excinfo.value.status_code == 403
    assert excinfo.value.to_payload()["remainingCredits"] == 0
    assert len(transport.calls) == 1


def test_feedback_requests_are_logged_but_not_metered(db, transport, platform_credentials):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 5)
    result = _meter(transport).send(
        db, _carriers(to="+14155550123", body="How did we do? https://x.test/feedback?id=1", companyId="acme")
    )
    assert not result.billable
    assert credit_ledger.get_remaining(db, "acme") == 5
    assert [entry.billable for entry in _logs(db)] == [False]


def test_feedback_request_still_blocked_when_exhausted(db, transport, platform_credentials):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 1)
    credit_ledger.decrement_one(db, "acme")
    with pytest.raises(NoCreditsError):
        _meter(transport).send(
            db, _carriers(to="+14155550123", body="https://x.test/feedback?id=1", companyId="acme")
        )
    assert transport.calls == []


def test_inactive_subscription_is_rejected(db, transport, platform_credentials):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 10, status="cancelled")
    with pytest.raises(SubscriptionInactiveError):
        _meter(transport).send(db, _carriers(to="+14155550123", body="Hi", companyId="acme"))
    assert transport.calls == []


def test_absent_ledger_policy(db, transport, platform_credentials):
    allowed = _meter(transport).send(db, _carriers(to="+14155550123", body="Hi", companyId="new-co"))
    assert allowed.sid
    assert credit_ledger.get_ledger(db, "new-co") is None

    deny = SendAndMeter(transport, settings=Settings(), policy=UnmeteredPolicy.DENY_WHEN_ABSENT)
    with pytest.raises(SubscriptionInactiveError):
        deny.send(db, _carriers(to="+14155550123", body="Hi", companyId="other-co"))
    assert len(transport.calls) == 1


def test_send_without_tenant_is_not_metered(db, transport, platform_credentials):
    result = _meter(transport).send(db, _carriers(to="+14155550123", body="Hi"))
    assert result.tenant_id is None
    assert result.accounting is None
    assert db.query(models.MessageLog).count() == 0


def test_missing_fields(db, transport):
    with pytest.raises(MissingFieldsError) as excinfo:
        _meter(transport).send(db, _carriers(to="+14155550123"))
    payload = excinfo.value.to_payload()
    assert payload["code"] == "MISSING_FIELDS"
    assert payload["receivedKeys"] == ["to"]
    assert "hint" in payload


def test_string_encoded_body_is_accepted(db, transport, platform_credentials):
    carriers = RequestCarriers.build(raw_body='"{\\"to\\": \\"+14155550123\\", \\"body\\": \\"Hi\\"}"')
    result = _meter(transport).send(db, carriers)
    assert result.sid
    assert transport.calls[0]["to"] == "+14155550123"


def test_local_numbers_use_default_country_code(db, transport, platform_credentials):
    meter = _meter(transport, default_country_code="1")
    meter.send(db, _carriers(to="(415) 555-0123", body="Hi"))
    assert transport.calls[0]["to"] == "+14155550123"


def test_credential_precedence(db, transport, platform_credentials):
    db.add(
        models.Tenant(
            id="acme",
            twilio_account_sid="ACtenant",
            twilio_auth_token="tenant-token",
            twilio_phone_number="+15551111111",
        )
    )
    db.commit()
    carriers = _carriers(to="+14155550123", body="Hi", companyId="acme", authToken="request-token")

    credentials = _meter(transport).resolve_credentials(db, carriers, "acme")
    assert credentials.account_sid == "ACtenant"
    assert credentials.auth_token == "request-token"
    assert credentials.from_number == "+15551111111"

    process = _meter(transport, twilio_account_sid="ACprocess", twilio_auth_token="process-token")
    credentials = process.resolve_credentials(db, carriers, "acme")
    assert credentials.account_sid == "ACprocess"
    assert credentials.auth_token == "request-token"

    credentials = _meter(transport).resolve_credentials(db, _carriers(), None)
    assert credentials.account_sid == "ACplatform"
    assert credentials.from_number == "+15550000000"


def test_transport_not_configured(db, transport):
    with pytest.raises(TransportNotConfiguredError) as excinfo:
        _meter(transport).send(db, _carriers(to="+14155550123", body="Hi"))
    assert excinfo.value.status_code == 500

    with pytest.raises(TransportNotConfiguredError) as excinfo:
        _meter(transport).send(
            db, _carriers(to="+14155550123", body="Hi", accountSid="AC1", authToken="tok")
        )
    assert excinfo.value.status_code == 400
    assert transport.calls == []


def test_failed_send_is_not_metered(db, transport, platform_credentials):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 2)
    transport.fail_with("The 'To' number is not valid", code=21211)
    with pytest.raises(TransportError):
        _meter(transport).send(db, _carriers(to="+14155550123", body="Hi", companyId="acme"))
    assert credit_ledger.get_remaining(db, "acme") == 2
    assert _logs(db) == []


def test_reserve_mode_refunds_failed_sends(db, transport, platform_credentials):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 2)
    meter = _meter(transport, metering_mode="reserve")
    assert meter.mode is MeteringMode.RESERVE

    meter.send(db, _carriers(to="+14155550123", body="Hi", companyId="acme"))
    assert credit_ledger.get_remaining(db, "acme") == 1

    transport.fail_with()
    with pytest.raises(TransportError):
        meter.send(db, _carriers(to="+14155550123", body="Hi", companyId="acme"))
    assert credit_ledger.get_remaining(db, "acme") == 1


def test_reserve_mode_gate(db, transport, platform_credentials):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 1)
    meter = _meter(transport, metering_mode="reserve")
    meter.send(db, _carriers(to="+14155550123", body="Hi", companyId="acme"))
    with pytest.raises(NoCreditsError):
        meter.send(db, _carriers(to="+14155550123", body="Hi", companyId="acme"))
    assert len(transport.calls) == 1


def test_accounting_failure_does_not_fail_send(db, transport, platform_credentials, monkeypatch):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 3)

    def broken(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(credit_ledger, "decrement_one", broken)
    result = _meter(transport).send(db, _carriers(to="+14155550123", body="Hi", companyId="acme"))
    assert result.sid
    steps = {outcome.step: outcome.ok for outcome in result.accounting}
    assert steps == {"record_message": True, "decrement_credit": False}


def test_status_callback_updates_log(db, transport, platform_credentials):
    credit_ledger.create_or_replace(db, "acme", "custom", 1, 3)
    result = _meter(transport).send(db, _carriers(to="+14155550123", body="Hi", companyId="acme"))
    assert update_message_status(db, result.sid, "delivered") == 1
    assert _logs(db)[0].status == "delivered"
    assert update_message_status(db, "SMunknown", "failed") == 0
