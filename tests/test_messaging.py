from types import SimpleNamespace

import pytest
import requests
from twilio.base.exceptions import TwilioRestException

from reputationflow.core.errors import TransportError
from reputationflow.core.settings import Settings
from reputationflow.services.messaging import (
    PROVIDER_HINTS,
    TransportCredentials,
    TransportReceipt,
    TwilioTransport,
    normalize_phone,
)

CREDENTIALS = TransportCredentials(account_sid="AC123", auth_token="secret", from_number="+15550000000")


class FakeResponse:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._data


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def post(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        pass


def _transport(**overrides):
    return TwilioTransport(Settings(**overrides)).init()


def test_normalize_phone():
    assert normalize_phone("+1 (415) 555-0123").value == "+14155550123"
    assert normalize_phone("0612345678", "+33").value == "+33612345678"
    assert not normalize_phone("0612345678").ok
    assert not normalize_phone("+12").ok
    assert normalize_phone("").reason == "Empty phone"


def test_rest_rejection_is_not_retried_over_http():
    transport = _transport()
    http_calls = []

    def reject(*args, **kwargs):
        raise TwilioRestException(400, "/Messages.json", msg="Invalid 'To' number", code=21211)

    transport.send_sdk = reject
    transport.send_http = lambda *args, **kwargs: http_calls.append(args)

    with pytest.raises(TransportError) as excinfo:
        transport.send(CREDENTIALS, "+1", "Hi")
    payload = excinfo.value.to_payload()
    assert excinfo.value.status_code == 502
    assert payload["code"] == 21211
    assert payload["hint"] == PROVIDER_HINTS[21211]
    assert http_calls == []


def test_sdk_failure_falls_back_to_http():
    transport = _transport()

    def broken(*args, **kwargs):
        raise ConnectionError("sdk exploded")

    transport.send_sdk = broken
    transport.send_http = lambda credentials, to, body, callback=None: TransportReceipt("SMhttp", "queued", via="http")

    receipt = transport.send(CREDENTIALS, "+14155550123", "Hi")
    assert receipt.via == "http"
    assert receipt.sid == "SMhttp"


def test_sdk_send_prefers_messaging_service():
    transport = _transport()
    created = []

    def create(**kwargs):
        created.append(kwargs)
        return SimpleNamespace(sid="SMsdk", status="accepted")

    transport._clients[("AC123", "secret")] = SimpleNamespace(messages=SimpleNamespace(create=create))
    credentials = TransportCredentials("AC123", "secret", "+15550000000", "MG999")
    receipt = transport.send(credentials, "+14155550123", "Hi", status_callback="https://cb.test/status")

    assert receipt == TransportReceipt("SMsdk", "accepted", via="sdk")
    assert created == [
        {
            "to": "+14155550123",
            "body": "Hi",
            "status_callback": "https://cb.test/status",
            "messaging_service_sid": "MG999",
        }
    ]


def test_http_send_posts_form():
    transport = _transport(twilio_force_http=True, transport_timeout_seconds=7)
    http = FakeHttp(FakeResponse(201, {"sid": "SMrest", "status": "queued"}))
    transport._http = http

    receipt = transport.send(CREDENTIALS, "+14155550123", "Hi")
    assert receipt == TransportReceipt("SMrest", "queued", via="http")
    url, kwargs = http.requests[0]
    assert url == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
    assert kwargs["data"] == {"To": "+14155550123", "Body": "Hi", "From": "+15550000000"}
    assert kwargs["auth"] == ("AC123", "secret")
    assert kwargs["timeout"] == 7


def test_http_rejection_carries_provider_hint():
    transport = _transport(twilio_force_http=True)
    transport._http = FakeHttp(FakeResponse(400, {"code": 21608, "message": "Unverified number"}))
    with pytest.raises(TransportError) as excinfo:
        transport.send(CREDENTIALS, "+14155550123", "Hi")
    assert excinfo.value.provider_code == 21608
    assert excinfo.value.hint == PROVIDER_HINTS[21608]


def test_http_network_failure_is_integration_failure():
    transport = _transport(twilio_force_http=True)
    transport._http = FakeHttp(error=requests.ConnectionError("boom"))
    with pytest.raises(TransportError) as excinfo:
        transport.send(CREDENTIALS, "+14155550123", "Hi")
    assert excinfo.value.integration_failure
    assert excinfo.value.status_code == 502


def test_teardown_releases_clients():
    transport = _transport(twilio_account_sid="AC1", twilio_auth_token="tok")
    assert transport.ready
    assert ("AC1", "tok") in transport._clients
    transport.teardown()
    assert not transport.ready
    assert transport._clients == {}
