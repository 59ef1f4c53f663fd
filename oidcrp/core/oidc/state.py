"""Pending request state.

A State correlates an authorization or end-session response with the request
that produced it. SigninState additionally carries the PKCE verifier and the
client parameters needed to redeem the authorization code.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import TYPE_CHECKING, Any

from oidcrp.core.crypto import generate_code_challenge, generate_code_verifier, generate_state_id
from oidcrp.core.oidc.utils import get_epoch_time

if TYPE_CHECKING:
    from oidcrp.core.oidc.responses import User
    from oidcrp.storage.state_store import StateStore

logger = logging.getLogger(__name__)

URL_STATE_DELIMITER = ";"


@dataclass
class State:
    """A pending signin or signout attempt.

    Attributes:
        id: Opaque random token sent as the ``state`` parameter.
        data: Caller payload round-tripped unchanged.
        created: Issuance time in epoch seconds.
        request_type: Which flow initiated the request (e.g. "si:r", "so:p").
        url_state: Caller-supplied suffix appended to the wire state.
    """

    id: str = ""
    data: Any = None
    created: int = 0
    request_type: str | None = None
    url_state: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            self.id = generate_state_id()
        if not self.created or self.created <= 0:
            self.created = get_epoch_time()

    @property
    def wire_state(self) -> str:
        """Value of the ``state`` parameter: the id, plus url_state when given."""
        if self.url_state:
            return f"{self.id}{URL_STATE_DELIMITER}{self.url_state}"
        return self.id

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_storage_string(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_storage_string(cls, storage_string: str) -> State:
        """Rebuild a state from its storage string.

        Raises:
            ValueError: If the string is not a JSON object.
        """
        data = json.loads(storage_string)
        if not isinstance(data, dict):
            raise ValueError("State storage string is not a JSON object")
        init_fields = {f.name for f in fields(cls) if f.init}
        return cls(**{k: v for k, v in data.items() if k in init_fields})

    @classmethod
    async def clear_stale_state(cls, store: StateStore, age: int) -> None:
        """Remove entries that are empty, unparseable or older than ``age`` seconds.

        Args:
            store: State store to sweep.
            age: Maximum age in seconds. Entries created at or before
                ``now - age`` are removed.
        """
        cutoff = get_epoch_time() - age
        keys = await store.get_all_keys()
        logger.debug(f"Sweeping {len(keys)} state entries (cutoff {cutoff})")

        for key in keys:
            item = await store.get(key)
            remove = False
            if item:
                try:
                    state = State.from_storage_string(item)
                except (ValueError, TypeError) as e:
                    logger.error(f"Error parsing state for key {key}: {e}")
                    remove = True
                else:
                    if state.created <= cutoff:
                        remove = True
            else:
                logger.debug(f"No item in storage for key {key}")
                remove = True

            if remove:
                logger.debug(f"Removing stale state {key}")
                await store.remove(key)


@dataclass
class SigninState(State):
    """State of a pending authorization request.

    Pass ``code_verifier=True`` to generate a fresh PKCE verifier, a string to
    use it as given, or leave it unset to disable PKCE. ``code_challenge`` is
    always derived from the verifier and never stored.
    """

    code_verifier: str | bool | None = None
    authority: str | None = None
    client_id: str | None = None
    redirect_uri: str | None = None
    scope: str | None = None
    client_secret: str | None = None
    extra_token_params: dict[str, Any] | None = None
    response_mode: str | None = None
    skip_user_info: bool | None = None
    code_challenge: str | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.code_verifier is True:
            self.code_verifier = generate_code_verifier()
        elif not self.code_verifier:
            self.code_verifier = None

        if self.code_verifier:
            self.code_challenge = generate_code_challenge(self.code_verifier)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        del data["code_challenge"]
        return data

    @classmethod
    def from_storage_string(cls, storage_string: str) -> SigninState:
        return super().from_storage_string(storage_string)  # type: ignore[return-value]


@dataclass
class RefreshState:
    """Projection of a User used to drive a refresh token grant. Never persisted."""

    refresh_token: str | None = None
    id_token: str | None = None
    session_state: str | None = None
    scope: str | None = None
    profile: dict[str, Any] = field(default_factory=dict)
    resource: str | list[str] | None = None
    data: Any = None

    @classmethod
    def from_user(cls, user: User, resource: str | list[str] | None = None) -> RefreshState:
        return cls(
            refresh_token=user.refresh_token,
            id_token=user.id_token,
            session_state=user.session_state,
            scope=user.scope,
            profile=dict(user.profile),
            resource=resource,
            data=user.state,
        )
