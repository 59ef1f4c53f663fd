"""OIDC client orchestrator.

OidcClient builds authorization and end-session requests, persists their
state, and turns callbacks and token responses into validated
SigninResponse objects. Browser navigation is left to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from oidcrp.core.config import OidcClientSettings
from oidcrp.core.errors import (
    ConfigurationError,
    ErrorResponse,
    MetadataError,
    UnsupportedResponseTypeError,
    ValidationError,
)
from oidcrp.core.logging import ProtocolLog, ProtocolLogger, create_http_client, get_protocol_logger
from oidcrp.core.oidc.claims import ClaimsService
from oidcrp.core.oidc.metadata import MetadataService
from oidcrp.core.oidc.requests import SUPPORTED_RESPONSE_TYPE, SigninRequest, SignoutRequest
from oidcrp.core.oidc.responses import SigninResponse, SignoutResponse
from oidcrp.core.oidc.state import RefreshState, SigninState, State
from oidcrp.core.oidc.token_client import TokenClient
from oidcrp.core.oidc.userinfo import UserInfoService
from oidcrp.core.oidc.utils import read_params, split_scope
from oidcrp.core.oidc.validation import ResponseValidator
from oidcrp.storage.state_store import InMemoryStateStore, StateStore

logger = logging.getLogger(__name__)

# Sentinel for "use the settings value"
_DEFAULT: Any = object()


class OidcClient:
    """Low-level OIDC/OAuth2 client for the Authorization Code flow with PKCE.

    Example:
        async with OidcClient(settings) as client:
            request = await client.create_signin_request(state={"return_to": "/"})
            # redirect the user agent to request.url, then on callback:
            response = await client.process_signin_response(callback_url)

    Args:
        settings: Client settings.
        state_store: Store for pending request state. Defaults to an
            in-memory store.
        http_client: Client for provider requests. When omitted, the client
            creates (and closes) one that logs through the protocol logger.
        protocol_logger: Protocol logger. Defaults to the global logger.
        metadata_service: Pre-built metadata service, e.g. to share a cache.
    """

    def __init__(
        self,
        settings: OidcClientSettings,
        state_store: StateStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        protocol_logger: ProtocolLogger | None = None,
        metadata_service: MetadataService | None = None,
    ) -> None:
        self.settings = settings
        self.state_store: StateStore = state_store if state_store is not None else InMemoryStateStore()
        self._protocol_logger = protocol_logger or get_protocol_logger()

        self._owns_http_client = http_client is None
        if http_client is None:
            timeout = settings.request_timeout_in_seconds
            http_client = create_http_client(
                self._protocol_logger, **({"timeout": timeout} if timeout else {})
            )
        self._http = http_client

        self.metadata_service = metadata_service or MetadataService(settings, self._http)
        self.claims_service = ClaimsService(settings)
        self.token_client = TokenClient(settings, self.metadata_service, self._http)
        self._validator = ResponseValidator(
            settings,
            self.metadata_service,
            self.claims_service,
            self.token_client,
            UserInfoService(settings, self.metadata_service, self._http),
        )

    async def __aenter__(self) -> OidcClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this OidcClient created it."""
        if self._owns_http_client:
            await self._http.aclose()

    @contextmanager
    def _flow(self, flow_id: str, flow_type: str) -> Iterator[ProtocolLog]:
        log = self._protocol_logger.start_flow(flow_id, flow_type)
        try:
            yield log
        finally:
            self._protocol_logger.end_flow()

    async def create_signin_request(
        self,
        state: Any = None,
        request: str | None = None,
        request_uri: str | None = None,
        request_type: str | None = None,
        id_token_hint: str | None = None,
        login_hint: str | None = None,
        skip_user_info: bool | None = None,
        nonce: str | None = None,
        url_state: str | None = None,
        response_type: str = _DEFAULT,
        scope: str = _DEFAULT,
        redirect_uri: str | None = _DEFAULT,
        prompt: str | None = _DEFAULT,
        display: str | None = _DEFAULT,
        max_age: int | None = _DEFAULT,
        ui_locales: str | None = _DEFAULT,
        acr_values: str | None = _DEFAULT,
        resource: str | list[str] | None = _DEFAULT,
        response_mode: str | None = _DEFAULT,
        extra_query_params: dict[str, Any] | None = _DEFAULT,
        extra_token_params: dict[str, Any] | None = _DEFAULT,
    ) -> SigninRequest:
        """Build an authorization request and persist its SigninState.

        Args:
            state: Caller data stored with the request and returned as
                ``user_state`` on the response.
            url_state: Caller data carried in the wire ``state`` parameter.

        Raises:
            UnsupportedResponseTypeError: response_type is not "code".
            ConfigurationError: A required request field is missing.
        """
        s = self.settings

        def pick(value: Any, default: Any) -> Any:
            return default if value is _DEFAULT else value

        response_type = pick(response_type, s.response_type)
        if response_type != SUPPORTED_RESPONSE_TYPE:
            raise UnsupportedResponseTypeError(response_type)

        redirect_uri = pick(redirect_uri, s.redirect_uri)
        scope = pick(scope, s.scope)
        # Fail on missing fields before discovery is fetched
        for name, value in (
            ("client_id", s.client_id),
            ("redirect_uri", redirect_uri),
            ("scope", scope),
            ("authority", s.authority),
        ):
            if not value:
                raise ConfigurationError(name)

        url = await self.metadata_service.get_authorization_endpoint()
        logger.debug(f"Received authorization endpoint {url}")

        signin_request = SigninRequest(
            url=url,
            authority=s.authority,
            client_id=s.client_id,
            redirect_uri=redirect_uri,
            response_type=response_type,
            scope=scope,
            state_data=state,
            prompt=pick(prompt, s.prompt),
            display=pick(display, s.display),
            max_age=pick(max_age, s.max_age),
            ui_locales=pick(ui_locales, s.ui_locales),
            id_token_hint=id_token_hint,
            login_hint=login_hint,
            acr_values=pick(acr_values, s.acr_values),
            resource=pick(resource, s.resource),
            request=request,
            request_uri=request_uri,
            extra_query_params=pick(extra_query_params, s.extra_query_params),
            extra_token_params=pick(extra_token_params, s.extra_token_params),
            request_type=request_type,
            response_mode=pick(response_mode, s.response_mode),
            client_secret=s.client_secret,
            skip_user_info=skip_user_info,
            nonce=nonce,
            url_state=url_state,
            disable_pkce=s.disable_pkce,
        )

        await self.clear_stale_state()

        signin_state = signin_request.state
        await self.state_store.set(signin_state.id, signin_state.to_storage_string())
        logger.info(f"Created signin request {signin_state.id}")
        return signin_request

    async def read_signin_response_state(
        self, url: str, remove_state: bool = False
    ) -> tuple[SigninState, SigninResponse]:
        """Parse an authorization callback and load its stored state.

        Raises:
            ValidationError: No state in the response, or the stored state is
                missing or unreadable.
        """
        response = SigninResponse(read_params(url, self.settings.response_mode))
        if not response.state:
            raise ValidationError("No state in response")

        stored = await (self.state_store.remove if remove_state else self.state_store.get)(response.state)
        if not stored:
            raise ValidationError("No matching state found in storage")

        try:
            return SigninState.from_storage_string(stored), response
        except (ValueError, TypeError) as e:
            logger.error(f"Error parsing stored state {response.state}: {e}")
            raise ValidationError("Invalid state in storage") from e

    async def process_signin_response(self, url: str) -> SigninResponse:
        """Consume the stored state for a callback and validate the response."""
        state, response = await self.read_signin_response_state(url, remove_state=True)
        logger.debug("Received state from storage; validating response")
        with self._flow(state.id, "signin") as log:
            await self._validator.validate_signin_response(response, state)
        response.protocol_log = log
        logger.info(f"Signin response {state.id} validated")
        return response

    async def process_resource_owner_password_credentials(
        self,
        username: str,
        password: str,
        skip_user_info: bool = False,
        extra_token_params: dict[str, Any] | None = None,
    ) -> SigninResponse:
        """Sign in with the resource owner password credentials grant."""
        with self._flow(username, "password") as log:
            token_response = await self.token_client.exchange_credentials(
                username=username, password=password, **(extra_token_params or {})
            )
            response = SigninResponse()
            response.update_from_token_response(token_response)
            await self._validator.validate_credentials_response(response, skip_user_info)
        response.protocol_log = log
        return response

    async def use_refresh_token(
        self,
        state: RefreshState,
        timeout_in_seconds: float | None = None,
        extra_token_params: dict[str, Any] | None = None,
    ) -> SigninResponse:
        """Renew a session with its refresh token.

        When ``refresh_token_allowed_scope`` is set, only the granted scopes
        it lists are requested.
        """
        allowed = self.settings.refresh_token_allowed_scope
        if allowed is None:
            scope = state.scope
        else:
            allowed_scopes = split_scope(allowed)
            scope = " ".join(s for s in split_scope(state.scope) if s in allowed_scopes)

        with self._flow(state.session_state or "refresh", "refresh") as log:
            result = await self.token_client.exchange_refresh_token(
                refresh_token=state.refresh_token,
                resource=state.resource,
                scope=scope,
                timeout_in_seconds=timeout_in_seconds,
                **(extra_token_params or {}),
            )
            response = SigninResponse()
            response.update_from_token_response(result)

            # The requested scope stands in for the granted scope when the response omits it
            validation_state = RefreshState(
                refresh_token=state.refresh_token,
                id_token=state.id_token,
                session_state=state.session_state,
                scope=scope,
                profile=state.profile,
                resource=state.resource,
                data=state.data,
            )
            await self._validator.validate_refresh_response(response, validation_state)
        response.protocol_log = log
        return response

    async def create_signout_request(
        self,
        state: Any = None,
        id_token_hint: str | None = None,
        client_id: str | None = None,
        request_type: str | None = None,
        url_state: str | None = None,
        post_logout_redirect_uri: str | None = _DEFAULT,
        extra_query_params: dict[str, Any] | None = _DEFAULT,
    ) -> SignoutRequest:
        """Build an end-session request and persist its State, if any.

        Raises:
            MetadataError: The provider has no end_session_endpoint.
        """
        if post_logout_redirect_uri is _DEFAULT:
            post_logout_redirect_uri = self.settings.post_logout_redirect_uri
        if extra_query_params is _DEFAULT:
            extra_query_params = self.settings.extra_query_params

        url = await self.metadata_service.get_end_session_endpoint()
        if not url:
            raise MetadataError("No end session endpoint")
        logger.debug(f"Received end session endpoint {url}")

        if not client_id and post_logout_redirect_uri and not id_token_hint:
            client_id = self.settings.client_id

        signout_request = SignoutRequest(
            url=url,
            id_token_hint=id_token_hint,
            client_id=client_id,
            post_logout_redirect_uri=post_logout_redirect_uri,
            state_data=state,
            extra_query_params=extra_query_params,
            request_type=request_type,
            url_state=url_state,
        )

        await self.clear_stale_state()

        signout_state = signout_request.state
        if signout_state:
            logger.debug("Signout request has state to persist")
            await self.state_store.set(signout_state.id, signout_state.to_storage_string())
        return signout_request

    async def read_signout_response_state(
        self, url: str, remove_state: bool = False
    ) -> tuple[State | None, SignoutResponse]:
        """Parse an end-session callback and load its stored state.

        Raises:
            ErrorResponse: The callback has no state but carries an error.
            ValidationError: The callback's state is missing from storage or
                unreadable.
        """
        response = SignoutResponse(read_params(url, self.settings.response_mode))
        if not response.state:
            logger.debug("No state in response")
            if response.error:
                logger.warning(f"Response was error: {response.error}")
                raise ErrorResponse.from_response(response)
            return None, response

        stored = await (self.state_store.remove if remove_state else self.state_store.get)(response.state)
        if not stored:
            raise ValidationError("No matching state found in storage")

        try:
            return State.from_storage_string(stored), response
        except (ValueError, TypeError) as e:
            logger.error(f"Error parsing stored state {response.state}: {e}")
            raise ValidationError("Invalid state in storage") from e

    async def process_signout_response(self, url: str) -> SignoutResponse:
        """Consume the stored state for an end-session callback and validate it."""
        state, response = await self.read_signout_response_state(url, remove_state=True)
        if state:
            logger.debug("Received state from storage; validating response")
            self._validator.validate_signout_response(response, state)
        else:
            logger.debug("No state from storage; skipping response validation")
        return response

    async def clear_stale_state(self) -> None:
        await State.clear_stale_state(self.state_store, self.settings.stale_state_age_in_seconds)

    async def revoke_token(self, token: str, type: str | None = None) -> None:
        """Revoke an access_token or refresh_token at the revocation endpoint."""
        with self._flow(type or "token", "revoke"):
            await self.token_client.revoke(token=token, token_type_hint=type)
