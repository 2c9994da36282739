"""Ordered field extractors over the carriers of an inbound request.

Clients and proxies do not deliver payloads consistently: the same logical
field may arrive in a parsed JSON body, a string-encoded body, a header or
the query string, under several aliases. Each logical field is described as
an ordered list of extractor functions; the first one returning a non-empty
value wins.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

Extractor = Callable[["RequestCarriers"], Any]


@dataclass(slots=True)
class RequestCarriers:
    """Everything a request carried, before any field is trusted."""

    body: Any = None
    raw_body: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        raw_body: bytes | str | None = None,
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> "RequestCarriers":
        if isinstance(raw_body, bytes):
            raw_body = raw_body.decode("utf-8", errors="replace")
        if body is None and raw_body:
            body = decode_json(raw_body)
        return cls(
            body=body,
            raw_body=raw_body or None,
            headers={str(k).lower(): v for k, v in (headers or {}).items()},
            query=dict(query or {}),
        )

    @property
    def mapping(self) -> dict[str, Any]:
        """The structured body when it decoded to an object, else an empty dict."""
        return self.body if isinstance(self.body, dict) else {}

    @property
    def string_encoded(self) -> dict[str, Any]:
        """Object hidden inside a string-encoded (double-encoded) body."""
        if isinstance(self.body, str):
            decoded = decode_json(self.body)
            if isinstance(decoded, dict):
                return decoded
        return {}


def decode_json(raw: str) -> Any:
    """Decode JSON, returning ``None`` for anything unparsable."""
    text = raw.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def from_body(*keys: str) -> Extractor:
    def extract(carriers: RequestCarriers) -> Any:
        data = carriers.mapping
        for key in keys:
            if _present(data.get(key)):
                return data[key]
        return None

    return extract


def from_string_body(*keys: str) -> Extractor:
    def extract(carriers: RequestCarriers) -> Any:
        data = carriers.string_encoded
        for key in keys:
            if _present(data.get(key)):
                return data[key]
        return None

    return extract


def from_header(*names: str) -> Extractor:
    def extract(carriers: RequestCarriers) -> Any:
        for name in names:
            value = carriers.headers.get(name.lower())
            if _present(value):
                return value
        return None

    return extract


def from_query(*keys: str) -> Extractor:
    def extract(carriers: RequestCarriers) -> Any:
        for key in keys:
            if _present(carriers.query.get(key)):
                return carriers.query[key]
        return None

    return extract


def first_present(extractors: Iterable[Extractor], carriers: RequestCarriers) -> Any:
    """Run ``extractors`` in order and return the first non-empty value."""
    for extractor in extractors:
        value = extractor(carriers)
        if _present(value):
            return value
    return None


# ---------------------------------------------------------------------------
# Field chains shared by the routers.

RECIPIENT: Sequence[Extractor] = (from_body("to"), from_query("to"), from_string_body("to"))
MESSAGE_BODY: Sequence[Extractor] = (from_body("body"), from_query("body"), from_string_body("body"))

COMPANY_ID: Sequence[Extractor] = (
    from_body("companyId", "company_id"),
    from_header("x-company-id", "x-client-id"),
    from_query("companyId", "company_id"),
)
SESSION_ID: Sequence[Extractor] = (
    from_body("sessionId", "session_id"),
    from_header("x-session-id"),
    from_query("sessionId", "session_id"),
    from_string_body("sessionId", "session_id"),
)
USER_EMAIL: Sequence[Extractor] = (
    from_body("userEmail", "user_email"),
    from_header("x-user-email"),
    from_query("userEmail", "user_email"),
    from_string_body("userEmail", "user_email"),
)


__all__ = [
    "COMPANY_ID",
    "Extractor",
    "MESSAGE_BODY",
    "RECIPIENT",
    "RequestCarriers",
    "SESSION_ID",
    "USER_EMAIL",
    "decode_json",
    "first_present",
    "from_body",
    "from_header",
    "from_query",
    "from_string_body",
]
