"""Profile claim filtering and merging."""

from __future__ import annotations

import copy
from typing import Any

from oidcrp.core.config import OidcClientSettings

# https://openid.net/specs/openid-connect-core-1_0.html#CodeIDToken
DEFAULT_PROTOCOL_CLAIMS = (
    "nbf",
    "jti",
    "auth_time",
    "nonce",
    "acr",
    "amr",
    "azp",
    "at_hash",
)

# Never filtered, whatever the settings say
REQUIRED_PROTOCOL_CLAIMS = ("sub", "iss", "aud", "exp", "iat")


class ClaimsService:
    """Filters protocol-only claims out of a profile and merges claim sets."""

    def __init__(self, settings: OidcClientSettings) -> None:
        self._settings = settings

    def filter_protocol_claims(self, claims: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of claims without protocol-only claims.

        ``settings.filter_protocol_claims`` selects the claims to drop: True
        for the default set, a list for exactly those names, False for none.
        """
        result = dict(claims)
        setting = self._settings.filter_protocol_claims
        if not setting:
            return result

        protocol_claims = setting if isinstance(setting, list) else DEFAULT_PROTOCOL_CLAIMS
        for claim in protocol_claims:
            if claim not in REQUIRED_PROTOCOL_CLAIMS:
                result.pop(claim, None)
        return result

    def merge_claims(self, claims1: dict[str, Any], claims2: dict[str, Any]) -> dict[str, Any]:
        """Merge claims2 into a copy of claims1.

        New claims are added. A claim present on both sides with different
        values becomes a list of both; an existing list gains values it does
        not already hold. With ``settings.merge_claims`` two objects are
        merged recursively instead.
        """
        result = copy.deepcopy(claims1)
        for claim, values in claims2.items():
            for value in values if isinstance(values, list) else [values]:
                previous = result.get(claim)
                if claim not in result or previous is None:
                    result[claim] = copy.deepcopy(value)
                elif isinstance(previous, list):
                    if value not in previous:
                        previous.append(copy.deepcopy(value))
                elif previous != value:
                    if isinstance(previous, dict) and isinstance(value, dict) and self._settings.merge_claims:
                        result[claim] = self.merge_claims(previous, value)
                    else:
                        result[claim] = [previous, copy.deepcopy(value)]
        return result
