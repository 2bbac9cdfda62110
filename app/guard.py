"""Authorization guard run before any principal-scoped persistence access."""

from __future__ import annotations

from typing import Any

from fastapi import Request

from .errors import BadRequest, Unauthorized
from .models import Principal
from .services.sessions import SessionStore


def session_token(request: Request, cookie_name: str) -> str | None:
    """Return the session token from the bearer header or the session cookie."""

    authorization = request.headers.get("authorization") or ""
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    cookie = request.cookies.get(cookie_name)
    if cookie and cookie.strip():
        return cookie.strip()
    return None


async def resolve_principal(
    request: Request, store: SessionStore, cookie_name: str
) -> Principal | None:
    return await store.resolve(session_token(request, cookie_name))


async def require_principal(
    request: Request, store: SessionStore, cookie_name: str
) -> Principal:
    """Resolve the caller or raise :class:`Unauthorized`."""

    principal = await resolve_principal(request, store, cookie_name)
    if principal is None:
        raise Unauthorized("Unauthorized - Not logged in")
    return principal


def require_title_id(payload: Any) -> str:
    """Extract ``titleId`` from a mutation body or raise :class:`BadRequest`."""

    if not isinstance(payload, dict):
        raise BadRequest("Invalid payload")
    value = payload.get("titleId", payload.get("title_id"))
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise BadRequest("Missing titleId")
    return value.strip()
