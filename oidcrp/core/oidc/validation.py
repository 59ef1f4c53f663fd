"""Response validation pipeline.

Correlates callbacks with their stored state, redeems authorization codes,
checks ID Token structural claims and merges UserInfo claims into the
profile. ID Token signatures are not verified here.
"""

from __future__ import annotations

import logging
from typing import Any

from oidcrp.core.config import OidcClientSettings
from oidcrp.core.errors import ErrorResponse, StateMismatchError, ValidationError
from oidcrp.core.oidc.claims import ClaimsService
from oidcrp.core.oidc.metadata import MetadataService
from oidcrp.core.oidc.responses import SigninResponse, SignoutResponse
from oidcrp.core.oidc.state import RefreshState, SigninState, State
from oidcrp.core.oidc.token_client import TokenClient
from oidcrp.core.oidc.userinfo import UserInfoService
from oidcrp.core.oidc.utils import decode_jwt

logger = logging.getLogger(__name__)


class ResponseValidator:
    """Validates signin, credentials, refresh and signout responses."""

    def __init__(
        self,
        settings: OidcClientSettings,
        metadata_service: MetadataService,
        claims_service: ClaimsService,
        token_client: TokenClient,
        user_info_service: UserInfoService,
    ) -> None:
        self._settings = settings
        self._metadata = metadata_service
        self._claims = claims_service
        self._token_client = token_client
        self._user_info = user_info_service

    async def validate_signin_response(self, response: SigninResponse, state: SigninState) -> None:
        """Validate an authorization callback against its stored state.

        On success the response carries the tokens and the processed profile.

        Raises:
            StateMismatchError: The response belongs to another request.
            ValidationError: The state does not match the current client, or
                a PKCE request came back without a code.
            ErrorResponse: The provider returned an error.
        """
        self._process_signin_state(response, state)
        logger.debug("State processed")

        await self._process_code(response, state)
        logger.debug("Code processed")

        if response.is_open_id:
            self._validate_id_token_attributes(response)
        logger.debug("Tokens validated")

        await self._process_claims(response, bool(state.skip_user_info), response.is_open_id)
        logger.debug("Claims processed")

    async def validate_credentials_response(self, response: SigninResponse, skip_user_info: bool) -> None:
        """Validate a resource owner password credentials token response."""
        if response.is_open_id:
            self._validate_id_token_attributes(response)
        logger.debug("Tokens validated")

        await self._process_claims(response, skip_user_info, response.is_open_id)
        logger.debug("Claims processed")

    async def validate_refresh_response(self, response: SigninResponse, state: RefreshState) -> None:
        """Validate a refresh token response against the session it renews.

        Missing ``session_state``, ``scope``, ``id_token`` and profile are
        carried over from the previous session. A new ID Token must belong
        to the same subject as the previous one.
        """
        response.user_state = state.data
        if response.session_state is None:
            response.session_state = state.session_state
        if response.scope is None:
            response.scope = state.scope

        if response.is_open_id and response.id_token:
            self._validate_id_token_attributes(response, state.id_token)
            logger.debug("ID Token validated")

        if not response.id_token:
            response.id_token = state.id_token
            response.profile = dict(state.profile)

        has_id_token = response.is_open_id and bool(response.id_token)
        await self._process_claims(response, False, has_id_token)
        logger.debug("Claims processed")

    def validate_signout_response(self, response: SignoutResponse, state: State) -> None:
        """Validate an end-session callback against its stored state.

        Raises:
            StateMismatchError: The response belongs to another request.
            ErrorResponse: The provider returned an error.
        """
        if state.id != response.state:
            raise StateMismatchError()
        logger.debug("State validated")

        response.user_state = state.data
        if response.error:
            logger.warning(f"Response was error: {response.error}")
            raise ErrorResponse.from_response(response)

    def _process_signin_state(self, response: SigninResponse, state: SigninState) -> None:
        if state.id != response.state:
            raise StateMismatchError()
        if not state.client_id:
            raise ValidationError("No client_id on state")
        if not state.authority:
            raise ValidationError("No authority on state")
        if self._settings.authority != state.authority:
            raise ValidationError("authority mismatch on settings vs. signin state")
        if self._settings.client_id and self._settings.client_id != state.client_id:
            raise ValidationError("client_id mismatch on settings vs. signin state")
        logger.debug("State validated")

        response.user_state = state.data
        if response.scope is None:
            response.scope = state.scope

        if response.error:
            logger.warning(f"Response was error: {response.error}")
            raise ErrorResponse.from_response(response)

        if state.code_verifier and not response.code:
            raise ValidationError("Expected code in response")

    async def _process_code(self, response: SigninResponse, state: SigninState) -> None:
        if not response.code:
            logger.debug("No code to process")
            return

        logger.debug("Redeeming authorization code")
        token_response = await self._token_client.exchange_code(
            code=response.code,
            client_id=state.client_id,
            client_secret=state.client_secret,
            redirect_uri=state.redirect_uri,
            code_verifier=state.code_verifier,  # type: ignore[arg-type]
            **(state.extra_token_params or {}),
        )
        response.update_from_token_response(token_response)

    async def _process_claims(
        self,
        response: SigninResponse,
        skip_user_info: bool = False,
        validate_sub: bool = True,
    ) -> None:
        response.profile = self._claims.filter_protocol_claims(response.profile)

        if skip_user_info or not self._settings.load_user_info or not response.access_token:
            logger.debug("Not loading user info")
            return

        logger.debug("Loading user info")
        claims = await self._user_info.get_claims(response.access_token)

        if validate_sub and claims.get("sub") != response.profile.get("sub"):
            raise ValidationError("subject from UserInfo response does not match subject in ID Token")

        response.profile = self._claims.merge_claims(
            response.profile, self._claims.filter_protocol_claims(claims)
        )
        logger.debug("User info claims merged into profile")

    def _validate_id_token_attributes(self, response: SigninResponse, existing_token: str | None = None) -> None:
        incoming = decode_jwt(response.id_token or "")
        if not incoming.get("sub"):
            raise ValidationError("ID Token is missing a subject claim")

        if existing_token:
            existing: dict[str, Any] = decode_jwt(existing_token)
            if incoming["sub"] != existing.get("sub"):
                raise ValidationError("sub in id_token does not match current sub")
            if incoming.get("auth_time") and incoming["auth_time"] != existing.get("auth_time"):
                raise ValidationError("auth_time in id_token does not match original auth_time")
            if incoming.get("azp") and incoming["azp"] != existing.get("azp"):
                raise ValidationError("azp in id_token does not match original azp")
            if not incoming.get("azp") and existing.get("azp"):
                raise ValidationError("azp not in id_token, but present in original id_token")

        response.profile = incoming
