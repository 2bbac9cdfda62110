from __future__ import annotations

import asyncio

import pytest
from fastapi import Request

from app.errors import BadRequest, Unauthorized
from app.guard import require_principal, require_title_id, session_token
from app.models import Principal
from app.services.sessions import SessionStore


class DummySessionStore(SessionStore):
    """Resolves a single known token without touching a database."""

    def __init__(self, token: str, principal: Principal) -> None:
        self._token = token
        self._principal = principal
        self.seen: list[str | None] = []

    async def resolve(self, token: str | None) -> Principal | None:  # type: ignore[override]
        self.seen.append(token)
        return self._principal if token == self._token else None


def _request(headers: dict[str, str] | None = None) -> Request:
    raw = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in (headers or {}).items()
    ]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


def test_bearer_header_takes_precedence_over_cookie() -> None:
    request = _request(
        {"Authorization": "Bearer header-token", "Cookie": "sid=cookie-token"}
    )

    assert session_token(request, "sid") == "header-token"


def test_cookie_is_used_without_bearer_header() -> None:
    assert session_token(_request({"Cookie": "sid=cookie-token"}), "sid") == "cookie-token"
    assert session_token(_request({"Authorization": "Basic abc"}), "sid") is None
    assert session_token(_request(), "sid") is None


def test_require_principal_resolves_known_session() -> None:
    principal = Principal(id="1", email="one@example.com")
    store = DummySessionStore("good", principal)

    resolved = asyncio.run(
        require_principal(_request({"Cookie": "sid=good"}), store, "sid")
    )

    assert resolved == principal


def test_require_principal_rejects_missing_or_unknown_session() -> None:
    store = DummySessionStore("good", Principal(id="1", email="one@example.com"))

    with pytest.raises(Unauthorized) as missing:
        asyncio.run(require_principal(_request(), store, "sid"))
    with pytest.raises(Unauthorized):
        asyncio.run(require_principal(_request({"Cookie": "sid=bad"}), store, "sid"))

    assert missing.value.message == "Unauthorized - Not logged in"
    assert missing.value.status_code == 401
    assert store.seen == [None, "bad"]


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"titleId": "abc"}, "abc"),
        ({"titleId": " abc "}, "abc"),
        ({"title_id": "legacy"}, "legacy"),
        ({"titleId": 17}, "17"),
    ],
)
def test_require_title_id_accepts_supported_shapes(payload, expected) -> None:
    assert require_title_id(payload) == expected


@pytest.mark.parametrize(
    "payload",
    [{}, {"titleId": ""}, {"titleId": "   "}, {"titleId": None}, {"titleId": True}, [], "abc"],
)
def test_require_title_id_rejects_missing_key(payload) -> None:
    with pytest.raises(BadRequest) as excinfo:
        require_title_id(payload)

    assert excinfo.value.status_code == 400
