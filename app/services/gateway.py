"""HTTP client for the Cinema Guru JSON API."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from ..config import Settings
from ..errors import (
    BadRequest,
    CinemaGuruError,
    DataSourceError,
    NotFound,
    Unauthorized,
)
from ..models import FilterSpec, Page, Principal, RelationEntry, RelationKind, TitleItem

logger = logging.getLogger(__name__)

_RELATION_PATHS: dict[str, str] = {
    "favorite": "/api/favorites",
    "watch_later": "/api/watch-later",
}

_STATUS_ERRORS: dict[int, type[CinemaGuruError]] = {
    400: BadRequest,
    401: Unauthorized,
    404: NotFound,
}


class CinemaGuruClient:
    """Calls the catalog and relation endpoints on behalf of a signed-in user.

    The wrapped ``httpx.AsyncClient`` must already carry the session cookie or
    bearer token; the ``principal`` arguments identify the caller in logs.
    """

    def __init__(self, http_client: httpx.AsyncClient):
        self._client = http_client

    @classmethod
    def connect(
        cls,
        settings: Settings,
        session_token: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "CinemaGuruClient":
        """Build a client for ``API_BASE_URL`` authenticated by ``session_token``."""

        headers = {"Accept": "application/json"}
        if session_token:
            headers["Authorization"] = f"Bearer {session_token}"
        http_client = httpx.AsyncClient(
            base_url=str(settings.api_base_url).rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(10.0, connect=5.0),
            transport=transport,
        )
        return cls(http_client)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Request %s %s failed: %s", method, url, exc)
            raise DataSourceError(f"Unable to reach the server ({exc.__class__.__name__})") from exc

        if response.status_code >= 400:
            message = _error_message(response)
            error_cls = _STATUS_ERRORS.get(response.status_code, DataSourceError)
            raise error_cls(message)

        try:
            return response.json()
        except ValueError as exc:
            raise DataSourceError("Unexpected non-JSON response") from exc

    async def query_titles(self, spec: FilterSpec) -> Page[TitleItem]:
        data = await self._request("GET", "/api/titles", params=spec.to_query_params())
        return Page[TitleItem].model_validate(_envelope(data, page=spec.page))

    async def list_genres(self) -> list[str]:
        data = await self._request("GET", "/api/genres")
        items = data.get("items") if isinstance(data, dict) else data
        return [str(item) for item in items or []]

    async def load_relation(self, principal: Principal, kind: RelationKind) -> set[str]:
        data = await self._request("GET", _RELATION_PATHS[kind])
        page = Page[RelationEntry].model_validate(_envelope(data, kind=kind))
        logger.debug("Loaded %s %s entries for %s", len(page.items), kind, principal.email)
        return {entry.title_id for entry in page.items}

    async def add_relation(
        self, principal: Principal, kind: RelationKind, title_id: str
    ) -> None:
        await self._request("POST", _RELATION_PATHS[kind], json={"titleId": title_id})

    async def remove_relation(
        self, principal: Principal, kind: RelationKind, title_id: str
    ) -> None:
        await self._request(
            "DELETE", f"{_RELATION_PATHS[kind]}/{quote(title_id, safe='')}"
        )


def _envelope(
    data: Any, *, page: int = 1, kind: RelationKind | None = None
) -> dict[str, Any]:
    """Coerce bare arrays and legacy keyed lists into the page envelope."""

    if isinstance(data, dict) and "items" in data:
        payload = dict(data)
    elif isinstance(data, dict):
        legacy = data.get("favorites") or data.get("watchLater") or data.get("titles") or []
        payload = {"items": legacy, "page": page}
    elif isinstance(data, list):
        payload = {"items": data, "page": page}
    else:
        raise DataSourceError("Unexpected response structure")

    if kind is not None:
        payload["items"] = [
            {**item, "kind": item.get("kind", kind)}
            for item in payload.get("items") or []
            if isinstance(item, dict)
        ]
    return payload


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("error") or data.get("message")
        if detail:
            return str(detail)
    return f"HTTP {response.status_code}"
