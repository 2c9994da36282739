"""Shared fixtures: an isolated SQLite database and a recording transport."""
from __future__ import annotations

import os
import tempfile

_DATA_DIR = tempfile.mkdtemp(prefix="reputationflow-tests-")
os.environ.setdefault("REPUTATIONFLOW_DATABASE_URL", f"sqlite:///{_DATA_DIR}/app.db")
os.environ["REPUTATIONFLOW_ENABLE_PROMETHEUS"] = "false"
os.environ["REPUTATIONFLOW_RATE_LIMIT_REQUESTS"] = "100000"
os.environ["REPUTATIONFLOW_SECRET_KEY"] = "test-secret-key"
os.environ.pop("REPUTATIONFLOW_TWILIO_ACCOUNT_SID", None)
os.environ.pop("REPUTATIONFLOW_TWILIO_AUTH_TOKEN", None)

from typing import Any, Callable, Dict, List  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from reputationflow.core import models  # noqa: E402
from reputationflow.core.database import create_database_engine, init_database, make_session_factory  # noqa: E402
from reputationflow.core.errors import TransportError  # noqa: E402
from reputationflow.services.messaging import TransportCredentials, TransportReceipt  # noqa: E402


class RecordingTransport:
    """Stands in for the Twilio transport and remembers every send."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.failure: Exception | None = None
        self.status = "queued"

    def send(
        self,
        credentials: TransportCredentials,
        to: str,
        body: str,
        status_callback: str | None = None,
    ) -> TransportReceipt:
        self.calls.append(
            {"credentials": credentials, "to": to, "body": body, "status_callback": status_callback}
        )
        if self.failure is not None:
            raise self.failure
        return TransportReceipt(sid=f"SM{len(self.calls):032d}", status=self.status)

    def fail_with(self, message: str = "rejected", code: int | None = 21211) -> None:
        self.failure = TransportError(message, provider_code=code)


@pytest.fixture()
def session_factory(tmp_path) -> Callable:
    engine = create_database_engine(f"sqlite:///{tmp_path / 'metering.db'}")
    init_database(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture()
def platform_credentials(db) -> models.PlatformSettings:
    row = models.PlatformSettings(
        id="global",
        twilio_account_sid="ACplatform",
        twilio_auth_token="platform-token",
        twilio_phone_number="+15550000000",
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture()
def app_context(session_factory, transport):
    from reputationflow.api.dependencies.database import get_db
    from reputationflow.api.dependencies.transport import get_transport
    from reputationflow.api.main import create_app

    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_transport] = lambda: transport
    yield {"app": app, "SessionLocal": session_factory, "transport": transport}
    app.dependency_overrides.clear()


@pytest.fixture()
def client(app_context) -> TestClient:
    return TestClient(app_context["app"])
