"""Token and revocation endpoint client.

Implements the authorization code grant (RFC 6749 section 4.1.3), the
resource owner password credentials grant (section 4.3.2), the refresh token
grant (section 6) and token revocation (RFC 7009 section 2.1).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from oidcrp.core.config import OidcClientSettings
from oidcrp.core.crypto import generate_basic_auth
from oidcrp.core.errors import ConfigurationError
from oidcrp.core.oidc.json_service import JsonService
from oidcrp.core.oidc.metadata import MetadataService

logger = logging.getLogger(__name__)

# Sentinel for "use the settings value"
_DEFAULT: Any = object()


def _require(name: str, value: Any) -> None:
    if not value:
        logger.error(f"A {name} is required")
        raise ConfigurationError(name, f"A {name} is required")


class _Form:
    """Ordered form fields; set() replaces, append() adds a repeat."""

    def __init__(self) -> None:
        self.fields: list[tuple[str, str]] = []

    def set(self, name: str, value: Any) -> None:
        self.fields = [(k, v) for k, v in self.fields if k != name]
        self.fields.append((name, str(value)))

    def append(self, name: str, value: Any) -> None:
        self.fields.append((name, str(value)))


class TokenClient:
    """Stateless client for the token and revocation endpoints.

    Arguments left at their default take the value from settings.
    """

    def __init__(
        self,
        settings: OidcClientSettings,
        metadata_service: MetadataService,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._metadata = metadata_service
        self._json = JsonService(
            http_client,
            additional_content_types=settings.revoke_token_additional_content_types,
            extra_headers=settings.extra_headers,
        )

    async def exchange_code(
        self,
        code: str | None,
        client_id: str | None = _DEFAULT,
        client_secret: str | None = _DEFAULT,
        redirect_uri: str | None = _DEFAULT,
        code_verifier: str | None = None,
        grant_type: str = "authorization_code",
        **extra: Any,
    ) -> dict[str, Any]:
        """Redeem an authorization code for tokens."""
        client_id = self._settings.client_id if client_id is _DEFAULT else client_id
        client_secret = self._settings.client_secret if client_secret is _DEFAULT else client_secret
        redirect_uri = self._settings.redirect_uri if redirect_uri is _DEFAULT else redirect_uri

        _require("client_id", client_id)
        _require("redirect_uri", redirect_uri)
        _require("code", code)

        form = _Form()
        form.set("grant_type", grant_type)
        form.set("redirect_uri", redirect_uri)
        for name, value in {"code": code, "code_verifier": code_verifier, **extra}.items():
            if value is not None:
                form.set(name, value)

        basic_auth = self._apply_client_authentication(form, client_id, client_secret)
        return await self._post_token_request(form, basic_auth)

    async def exchange_credentials(
        self,
        username: str,
        password: str,
        client_id: str | None = _DEFAULT,
        client_secret: str | None = _DEFAULT,
        scope: str | None = _DEFAULT,
        grant_type: str = "password",
        **extra: Any,
    ) -> dict[str, Any]:
        """Exchange resource owner credentials for tokens."""
        client_id = self._settings.client_id if client_id is _DEFAULT else client_id
        client_secret = self._settings.client_secret if client_secret is _DEFAULT else client_secret
        scope = self._settings.scope if scope is _DEFAULT else scope

        _require("client_id", client_id)

        form = _Form()
        form.set("grant_type", grant_type)
        if scope and not self._settings.omit_scope_when_requesting:
            form.set("scope", scope)
        for name, value in {"username": username, "password": password, **extra}.items():
            if value is not None:
                form.set(name, value)

        basic_auth = self._apply_client_authentication(form, client_id, client_secret)
        return await self._post_token_request(form, basic_auth)

    async def exchange_refresh_token(
        self,
        refresh_token: str | None,
        client_id: str | None = _DEFAULT,
        client_secret: str | None = _DEFAULT,
        scope: str | None = None,
        resource: str | list[str] | None = None,
        timeout_in_seconds: float | None = None,
        grant_type: str = "refresh_token",
        **extra: Any,
    ) -> dict[str, Any]:
        """Exchange a refresh token for fresh tokens.

        List values (e.g. several ``resource`` indicators) are sent as
        repeated form fields.
        """
        client_id = self._settings.client_id if client_id is _DEFAULT else client_id
        client_secret = self._settings.client_secret if client_secret is _DEFAULT else client_secret

        _require("client_id", client_id)
        _require("refresh_token", refresh_token)

        form = _Form()
        form.set("grant_type", grant_type)
        fields = {"refresh_token": refresh_token, "scope": scope, "resource": resource, **extra}
        for name, value in fields.items():
            if isinstance(value, list):
                for item in value:
                    form.append(name, item)
            elif value is not None:
                form.set(name, value)

        basic_auth = self._apply_client_authentication(form, client_id, client_secret)
        return await self._post_token_request(form, basic_auth, timeout_in_seconds)

    async def revoke(self, token: str | None, token_type_hint: str | None = None, **extra: Any) -> None:
        """Revoke an access or refresh token.

        The client credentials from settings are always sent as form fields.
        """
        _require("token", token)

        url = await self._metadata.get_revocation_endpoint(False)
        logger.debug(f"Got revocation endpoint, revoking {token_type_hint or 'default token type'}")

        form = _Form()
        for name, value in {"token": token, "token_type_hint": token_type_hint, **extra}.items():
            if value is not None:
                form.set(name, value)
        form.set("client_id", self._settings.client_id)
        if self._settings.client_secret:
            form.set("client_secret", self._settings.client_secret)

        await self._json.post_form(
            url, body=form.fields, timeout_in_seconds=self._settings.request_timeout_in_seconds
        )
        logger.debug("Token revoked")

    def _apply_client_authentication(
        self,
        form: _Form,
        client_id: str,
        client_secret: str | None,
    ) -> str | None:
        """Add client credentials to the form or return a Basic auth value."""
        method = self._settings.client_authentication
        if method == "client_secret_basic":
            _require("client_secret", client_secret)
            return generate_basic_auth(client_id, client_secret)  # type: ignore[arg-type]

        form.append("client_id", client_id)
        if client_secret:
            form.append("client_secret", client_secret)
        return None

    async def _post_token_request(
        self,
        form: _Form,
        basic_auth: str | None,
        timeout_in_seconds: float | None = None,
    ) -> dict[str, Any]:
        url = await self._metadata.get_token_endpoint(False)
        logger.debug(f"Got token endpoint {url}")

        response = await self._json.post_form(
            url,
            body=form.fields,
            basic_auth=basic_auth,
            timeout_in_seconds=timeout_in_seconds or self._settings.request_timeout_in_seconds,
        )
        logger.debug("Got token response")
        return response
