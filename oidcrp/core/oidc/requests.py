"""Authorization and end-session request builders.

Both builders are pure: they produce the redirect URL and the State to
persist, without any network or storage access.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

from oidcrp.core.errors import ConfigurationError, UnsupportedResponseTypeError
from oidcrp.core.oidc.state import SigninState, State

logger = logging.getLogger(__name__)

SUPPORTED_RESPONSE_TYPE = "code"

# Optional authorization parameters, in the order they are emitted
OPTIONAL_SIGNIN_PARAMS = (
    "response_mode",
    "prompt",
    "display",
    "max_age",
    "ui_locales",
    "id_token_hint",
    "login_hint",
    "acr_values",
    "request",
    "request_uri",
)


def _append_query(url: str, params: list[tuple[str, str]]) -> str:
    """Append params to url, keeping any query it already has."""
    if not params:
        return url
    parts = urlsplit(url)
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _is_set(value: Any) -> bool:
    return value is not None and value != "" and value is not False


class SigninRequest:
    """An authorization request for the Authorization Code flow with PKCE.

    Attributes:
        url: Fully built authorization URL to redirect the user agent to.
        state: SigninState to persist under ``state.id``.
    """

    def __init__(
        self,
        url: str | None,
        authority: str | None,
        client_id: str | None,
        redirect_uri: str | None,
        response_type: str | None,
        scope: str | None,
        *,
        state_data: Any = None,
        response_mode: str | None = None,
        request_type: str | None = None,
        client_secret: str | None = None,
        nonce: str | None = None,
        url_state: str | None = None,
        resource: str | list[str] | None = None,
        skip_user_info: bool | None = None,
        extra_query_params: dict[str, Any] | None = None,
        extra_token_params: dict[str, Any] | None = None,
        disable_pkce: bool = False,
        **optional_params: Any,
    ) -> None:
        for name, value in (
            ("url", url),
            ("client_id", client_id),
            ("redirect_uri", redirect_uri),
            ("response_type", response_type),
            ("scope", scope),
            ("authority", authority),
        ):
            if not value:
                logger.error(f"SigninRequest: no {name} passed")
                raise ConfigurationError(name)

        if response_type != SUPPORTED_RESPONSE_TYPE:
            raise UnsupportedResponseTypeError(response_type)

        unknown = set(optional_params) - set(OPTIONAL_SIGNIN_PARAMS)
        if unknown:
            raise TypeError(f"Unexpected signin parameters: {', '.join(sorted(unknown))}")

        self.state = SigninState(
            data=state_data,
            request_type=request_type,
            url_state=url_state,
            code_verifier=not disable_pkce,
            client_id=client_id,
            authority=authority,
            redirect_uri=redirect_uri,
            response_mode=response_mode,
            client_secret=client_secret,
            scope=scope,
            extra_token_params=extra_token_params,
            skip_user_info=skip_user_info,
        )

        params: list[tuple[str, str]] = [
            ("client_id", client_id),
            ("redirect_uri", redirect_uri),
            ("response_type", response_type),
            ("scope", scope),
        ]
        if nonce:
            params.append(("nonce", nonce))
        params.append(("state", self.state.wire_state))
        if self.state.code_challenge:
            params.append(("code_challenge", self.state.code_challenge))
            params.append(("code_challenge_method", "S256"))

        if resource:
            resources = resource if isinstance(resource, list) else [resource]
            params.extend(("resource", r) for r in resources)

        extras: dict[str, Any] = {"response_mode": response_mode}
        for name in OPTIONAL_SIGNIN_PARAMS[1:]:
            extras[name] = optional_params.get(name)
        extras.update(extra_query_params or {})

        for name, value in extras.items():
            if _is_set(value):
                params.append((name, str(value)))

        self.url = _append_query(url, params)  # type: ignore[arg-type]


class SignoutRequest:
    """An RP-initiated logout request.

    A State is created only when a post-logout redirect is requested and
    there is caller data or url_state to carry across it.

    Attributes:
        url: Fully built end-session URL.
        state: State to persist, or None.
    """

    def __init__(
        self,
        url: str | None,
        *,
        state_data: Any = None,
        id_token_hint: str | None = None,
        client_id: str | None = None,
        post_logout_redirect_uri: str | None = None,
        extra_query_params: dict[str, Any] | None = None,
        request_type: str | None = None,
        url_state: str | None = None,
    ) -> None:
        if not url:
            logger.error("SignoutRequest: no url passed")
            raise ConfigurationError("url")

        self.state: State | None = None
        params: list[tuple[str, str]] = []

        if id_token_hint:
            params.append(("id_token_hint", id_token_hint))
        if client_id:
            params.append(("client_id", client_id))
        if post_logout_redirect_uri:
            params.append(("post_logout_redirect_uri", post_logout_redirect_uri))
            if state_data or url_state:
                self.state = State(data=state_data, request_type=request_type, url_state=url_state)
                params.append(("state", self.state.wire_state))

        for name, value in (extra_query_params or {}).items():
            if _is_set(value):
                params.append((name, str(value)))

        self.url = _append_query(url, params)
