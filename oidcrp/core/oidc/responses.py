"""Parsed authorization/end-session responses and the authenticated User."""

from __future__ import annotations

import json
import logging
from typing import Any

from oidcrp.core.logging import ProtocolLog
from oidcrp.core.oidc.state import URL_STATE_DELIMITER
from oidcrp.core.oidc.utils import get_epoch_time, split_scope

logger = logging.getLogger(__name__)

OIDC_SCOPE = "openid"

# Token endpoint response fields copied onto a SigninResponse
TOKEN_RESPONSE_FIELDS = (
    "access_token",
    "refresh_token",
    "id_token",
    "token_type",
    "scope",
    "session_state",
)


def _split_state(value: str | None) -> tuple[str | None, str | None]:
    if not value:
        return None, None
    state, sep, url_state = value.partition(URL_STATE_DELIMITER)
    return state, url_state if sep else None


class _ExpiresMixin:
    expires_at: int | None

    @property
    def expires_in(self) -> int | None:
        """Seconds until the access token expires, or None when unknown."""
        if self.expires_at is None:
            return None
        return self.expires_at - get_epoch_time()

    @expires_in.setter
    def expires_in(self, value: int | str | None) -> None:
        if isinstance(value, str):
            try:
                value = float(value)  # type: ignore[assignment]
            except ValueError:
                return
        if value is not None and value >= 0:  # type: ignore[operator]
            self.expires_at = int(value) + get_epoch_time()  # type: ignore[arg-type]

    @property
    def scopes(self) -> list[str]:
        return split_scope(getattr(self, "scope", None))


class SigninResponse(_ExpiresMixin):
    """An authorization callback, populated with tokens once validated."""

    def __init__(self, params: dict[str, str] | None = None) -> None:
        params = params or {}
        self.state, self.url_state = _split_state(params.get("state"))
        self.session_state: str | None = params.get("session_state")
        self.error: str | None = params.get("error")
        self.error_description: str | None = params.get("error_description")
        self.error_uri: str | None = params.get("error_uri")
        self.code: str | None = params.get("code")

        self.access_token = ""
        self.token_type = ""
        self.refresh_token: str | None = None
        self.id_token: str | None = None
        self.scope: str | None = None
        self.expires_at: int | None = None
        self.profile: dict[str, Any] = {}
        self.user_state: Any = None
        # Token response members without a dedicated attribute
        self.extra: dict[str, Any] = {}
        # HTTP exchanges of the flow that produced this response
        self.protocol_log: ProtocolLog | None = None

    @property
    def is_open_id(self) -> bool:
        return OIDC_SCOPE in self.scopes or bool(self.id_token)

    def update_from_token_response(self, token_response: dict[str, Any]) -> None:
        """Merge a token endpoint response into this response."""
        for name, value in token_response.items():
            if name == "expires_in":
                self.expires_in = value
            elif name in TOKEN_RESPONSE_FIELDS:
                setattr(self, name, value)
            else:
                self.extra[name] = value

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "url_state": self.url_state,
            "code": self.code,
            "session_state": self.session_state,
            "error": self.error,
            "error_description": self.error_description,
            "error_uri": self.error_uri,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "token_type": self.token_type,
            "scope": self.scope,
            "expires_at": self.expires_at,
            "profile": self.profile,
            "user_state": self.user_state,
        }


class SignoutResponse:
    """An end-session callback."""

    def __init__(self, params: dict[str, str] | None = None) -> None:
        params = params or {}
        self.state, self.url_state = _split_state(params.get("state"))
        self.error: str | None = params.get("error")
        self.error_description: str | None = params.get("error_description")
        self.error_uri: str | None = params.get("error_uri")
        self.user_state: Any = None


class User(_ExpiresMixin):
    """An authenticated session."""

    def __init__(
        self,
        id_token: str | None = None,
        session_state: str | None = None,
        access_token: str = "",
        refresh_token: str | None = None,
        token_type: str = "",
        scope: str | None = None,
        profile: dict[str, Any] | None = None,
        expires_at: int | None = None,
        state: Any = None,
    ) -> None:
        self.id_token = id_token
        self.session_state = session_state
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.token_type = token_type
        self.scope = scope
        self.profile = profile or {}
        self.expires_at = expires_at
        self.state = state

    @property
    def expired(self) -> bool | None:
        """Whether the access token has expired, or None when expiry is unknown."""
        expires_in = self.expires_in
        if expires_in is None:
            return None
        return expires_in <= 0

    @classmethod
    def from_signin_response(cls, response: SigninResponse) -> User:
        return cls(
            id_token=response.id_token,
            session_state=response.session_state,
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            token_type=response.token_type,
            scope=response.scope,
            profile=dict(response.profile),
            expires_at=response.expires_at,
            state=response.user_state,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id_token": self.id_token,
            "session_state": self.session_state,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "scope": self.scope,
            "profile": self.profile,
            "expires_at": self.expires_at,
        }

    def to_storage_string(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_storage_string(cls, storage_string: str) -> User:
        data = json.loads(storage_string)
        return cls(**{k: v for k, v in data.items() if k in cls._STORED_FIELDS})

    _STORED_FIELDS = (
        "id_token",
        "session_state",
        "access_token",
        "refresh_token",
        "token_type",
        "scope",
        "profile",
        "expires_at",
    )
