"""Pytest configuration and fixtures."""

from __future__ import annotations

import base64
import json
from collections.abc import Generator
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from oidcrp.core.config import OidcClientSettings
from oidcrp.core.logging import ProtocolLogger, reset_protocol_logger
from oidcrp.core.oidc import OidcClient
from oidcrp.storage import InMemoryStateStore

ISSUER = "https://op.example.com"
CLIENT_ID = "my-client"
REDIRECT_URI = "https://rp.example.com/callback"
POST_LOGOUT_REDIRECT_URI = "https://rp.example.com/signed-out"


def create_test_jwt(payload: dict[str, Any], header: dict[str, Any] | None = None) -> str:
    """Create a test JWT token (without valid signature)."""
    if header is None:
        header = {"alg": "RS256", "typ": "JWT"}

    def b64_encode(data: dict[str, Any]) -> str:
        json_bytes = json.dumps(data).encode()
        return base64.urlsafe_b64encode(json_bytes).decode().rstrip("=")

    # Fake signature
    return f"{b64_encode(header)}.{b64_encode(payload)}.c2lnbmF0dXJl"


def form_of(request: httpx.Request) -> dict[str, list[str]]:
    """Decode a form-encoded request body."""
    return parse_qs(request.content.decode(), keep_blank_values=True)


class FakeProvider:
    """In-process OpenID Provider served through httpx.MockTransport.

    Tests tweak the public attributes to shape responses and inspect
    ``requests`` afterwards.
    """

    def __init__(self) -> None:
        self.metadata: dict[str, Any] = {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/token",
            "userinfo_endpoint": f"{ISSUER}/userinfo",
            "end_session_endpoint": f"{ISSUER}/logout",
            "revocation_endpoint": f"{ISSUER}/revoke",
            "jwks_uri": f"{ISSUER}/jwks",
        }
        self.id_token_claims: dict[str, Any] = {
            "iss": ISSUER,
            "sub": "user123",
            "aud": CLIENT_ID,
            "exp": 4102444800,
            "iat": 1700000000,
            "nonce": "n-0S6_WzA2Mj",
            "auth_time": 1700000000,
            "azp": CLIENT_ID,
        }
        self.token_response: dict[str, Any] = {
            "access_token": "access-token-1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "refresh-token-1",
        }
        self.token_status = 200
        self.userinfo: dict[str, Any] = {"sub": "user123", "email": "user@example.com"}
        self.keys: dict[str, Any] = {"keys": [{"kty": "RSA", "kid": "k1", "n": "abc", "e": "AQAB"}]}
        self.requests: list[httpx.Request] = []

    @property
    def id_token(self) -> str:
        return create_test_jwt(self.id_token_claims)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/.well-known/openid-configuration":
            return httpx.Response(200, json=self.metadata)
        if path == "/jwks":
            return httpx.Response(200, json=self.keys)
        if path == "/token":
            body = dict(self.token_response)
            if self.token_status == 200 and "id_token" not in body:
                body["id_token"] = self.id_token
            return httpx.Response(self.token_status, json=body)
        if path == "/userinfo":
            return httpx.Response(200, json=self.userinfo)
        if path == "/revoke":
            return httpx.Response(200)
        return httpx.Response(404, json={"error": "not_found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(autouse=True)
def _reset_protocol_logger() -> Generator[None, None, None]:
    """Keep the process-wide protocol logger isolated per test."""
    yield
    reset_protocol_logger()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def settings() -> OidcClientSettings:
    return OidcClientSettings(
        authority=ISSUER,
        client_id=CLIENT_ID,
        redirect_uri=REDIRECT_URI,
        post_logout_redirect_uri=POST_LOGOUT_REDIRECT_URI,
        scope="openid profile",
    )


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def http_client(provider: FakeProvider) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=provider.transport)


@pytest.fixture
def oidc_client(
    settings: OidcClientSettings,
    store: InMemoryStateStore,
    http_client: httpx.AsyncClient,
) -> OidcClient:
    return OidcClient(settings, state_store=store, http_client=http_client, protocol_logger=ProtocolLogger())
