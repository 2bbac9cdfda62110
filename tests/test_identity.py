"""Tests for the GitHub identity client."""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.config import Settings
from app.services.identity import GitHubIdentityClient, IdentityProviderError


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with GitHub credentials configured."""

    base = {"AUTH_GITHUB_ID": "client-id", "AUTH_GITHUB_SECRET": "client-secret"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def test_authorize_url_carries_state_and_redirect() -> None:
    client = GitHubIdentityClient(build_settings(), httpx.AsyncClient())

    url = client.authorize_url("state-1", "https://app.example/api/auth/callback")

    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    assert parsed.netloc == "github.com"
    assert params["client_id"] == ["client-id"]
    assert params["state"] == ["state-1"]
    assert params["redirect_uri"] == ["https://app.example/api/auth/callback"]


@pytest.mark.anyio("asyncio")
async def test_exchange_code_and_fetch_principal_with_email_fallback() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/login/oauth/access_token":
            return httpx.Response(200, json={"access_token": "gho_token"})
        if request.url.path == "/user":
            return httpx.Response(200, json={"id": 99, "login": "octo", "name": None, "email": None})
        if request.url.path == "/user/emails":
            return httpx.Response(
                200,
                json=[
                    {"email": "unverified@example.com", "primary": False, "verified": False},
                    {"email": "octo@example.com", "primary": True, "verified": True},
                ],
            )
        return httpx.Response(404)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = GitHubIdentityClient(build_settings(), http_client)
        token = await client.exchange_code("code-1", "https://app.example/cb")
        principal = await client.fetch_principal(token)

    assert token == "gho_token"
    token_body = parse_qs(requests[0].content.decode())
    assert token_body["code"] == ["code-1"]
    assert token_body["client_secret"] == ["client-secret"]
    assert requests[1].headers["authorization"] == "Bearer gho_token"
    assert principal.id == "99"
    assert principal.email == "octo@example.com"
    assert principal.name == "octo"


@pytest.mark.anyio("asyncio")
async def test_exchange_code_reports_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"error": "bad_verification_code", "error_description": "The code is invalid."},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = GitHubIdentityClient(build_settings(), http_client)
        with pytest.raises(IdentityProviderError) as excinfo:
            await client.exchange_code("stale", "https://app.example/cb")

    assert excinfo.value.error == "bad_verification_code"
    assert excinfo.value.status_code == 400


@pytest.mark.anyio("asyncio")
async def test_network_failure_maps_to_bad_gateway() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = GitHubIdentityClient(build_settings(), http_client)
        with pytest.raises(IdentityProviderError) as excinfo:
            await client.exchange_code("code", "https://app.example/cb")

    assert excinfo.value.error == "network_error"
    assert excinfo.value.status_code == 502


@pytest.mark.anyio("asyncio")
async def test_profile_without_verified_email_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/user":
            return httpx.Response(200, json={"id": 5, "login": "ghost"})
        return httpx.Response(200, json=[])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = GitHubIdentityClient(build_settings(), http_client)
        with pytest.raises(IdentityProviderError) as excinfo:
            await client.fetch_principal("token")

    assert excinfo.value.error == "missing_email"
