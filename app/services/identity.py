"""Adapter exchanging a GitHub OAuth login for a principal."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from ..config import Settings
from ..models import Principal

logger = logging.getLogger(__name__)


class IdentityProviderError(Exception):
    """Raised when the identity provider rejects or fails a sign in."""

    def __init__(self, error: str, description: str, *, status_code: int = 400):
        super().__init__(description)
        self.error = error
        self.description = description
        self.status_code = status_code


class GitHubIdentityClient:
    """Thin wrapper around the GitHub OAuth and user endpoints."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": f"{self._settings.app_name} (cinemaguru)",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def authorize_url(self, state: str, redirect_uri: str) -> str:
        query = urlencode(
            {
                "client_id": self._settings.github_client_id or "",
                "redirect_uri": redirect_uri,
                "scope": "read:user user:email",
                "state": state,
            }
        )
        return f"{self._settings.github_authorize_url}?{query}"

    async def exchange_code(self, code: str, redirect_uri: str) -> str:
        """Trade an authorisation code for an access token."""

        body = {
            "client_id": self._settings.github_client_id,
            "client_secret": self._settings.github_client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        try:
            response = await self._client.post(
                str(self._settings.github_token_url),
                data=body,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.warning("GitHub token exchange failed: %s", exc)
            raise IdentityProviderError(
                "network_error",
                "Unable to reach GitHub. Please try again shortly.",
                status_code=502,
            ) from exc

        data = _response_json(response)
        if response.status_code >= 400 or "error" in data:
            raise IdentityProviderError(
                str(data.get("error") or "github_error"),
                str(
                    data.get("error_description")
                    or "GitHub rejected the authorisation request."
                ),
                status_code=response.status_code if response.status_code >= 400 else 400,
            )
        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            raise IdentityProviderError(
                "missing_token", "GitHub did not return an access token."
            )
        return token

    async def fetch_principal(self, access_token: str) -> Principal:
        """Return the principal for the signed-in GitHub account."""

        user = await self._get_json("/user", access_token)
        if not isinstance(user, dict) or user.get("id") is None:
            raise IdentityProviderError(
                "invalid_profile", "GitHub returned an unexpected profile payload."
            )
        email = user.get("email")
        if not email:
            email = await self._primary_email(access_token)
        if not email:
            raise IdentityProviderError(
                "missing_email", "No verified email address is available on GitHub."
            )
        name = user.get("name") or user.get("login") or ""
        return Principal(id=str(user["id"]), email=str(email), name=str(name))

    async def _primary_email(self, access_token: str) -> str | None:
        emails = await self._get_json("/user/emails", access_token)
        if not isinstance(emails, list):
            return None
        verified = [
            entry
            for entry in emails
            if isinstance(entry, dict) and entry.get("verified") and entry.get("email")
        ]
        for entry in verified:
            if entry.get("primary"):
                return str(entry["email"])
        if verified:
            return str(verified[0]["email"])
        return None

    async def _get_json(self, path: str, access_token: str) -> Any:
        url = f"{str(self._settings.github_api_url).rstrip('/')}{path}"
        try:
            response = await self._client.get(url, headers=self._headers(access_token))
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("GitHub request to %s failed: %s", path, exc)
            raise IdentityProviderError(
                "github_error",
                "GitHub rejected the profile request.",
                status_code=502,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("GitHub request to %s failed: %s", path, exc)
            raise IdentityProviderError(
                "network_error",
                "Unable to reach GitHub. Please try again shortly.",
                status_code=502,
            ) from exc
        try:
            return response.json()
        except ValueError as exc:
            raise IdentityProviderError(
                "github_error", "GitHub returned a non-JSON response.", status_code=502
            ) from exc


def _response_json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    if isinstance(data, dict):
        return data
    return {}
