"""OIDC Authorization Code + PKCE client engine."""

from oidcrp.core.oidc.claims import ClaimsService
from oidcrp.core.oidc.client import OidcClient
from oidcrp.core.oidc.json_service import JsonService
from oidcrp.core.oidc.metadata import MetadataService
from oidcrp.core.oidc.requests import SigninRequest, SignoutRequest
from oidcrp.core.oidc.responses import SigninResponse, SignoutResponse, User
from oidcrp.core.oidc.state import RefreshState, SigninState, State
from oidcrp.core.oidc.token_client import TokenClient
from oidcrp.core.oidc.userinfo import UserInfoService
from oidcrp.core.oidc.utils import decode_jwt, get_epoch_time, read_params
from oidcrp.core.oidc.validation import ResponseValidator

__all__ = [
    # Orchestration
    "OidcClient",
    "ResponseValidator",
    # Services
    "ClaimsService",
    "JsonService",
    "MetadataService",
    "TokenClient",
    "UserInfoService",
    # Requests, responses and state
    "RefreshState",
    "SigninRequest",
    "SigninResponse",
    "SigninState",
    "SignoutRequest",
    "SignoutResponse",
    "State",
    "User",
    # Utilities
    "decode_jwt",
    "get_epoch_time",
    "read_params",
]
