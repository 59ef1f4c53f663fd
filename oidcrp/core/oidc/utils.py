"""OIDC utility functions.

Epoch clock, callback URL parameter parsing and unverified JWT decoding.
"""

from __future__ import annotations

import time
from typing import Any
from urllib.parse import parse_qsl, urlsplit

import jwt

from oidcrp.core.errors import ValidationError


def get_epoch_time() -> int:
    """Current time in whole epoch seconds."""
    return int(time.time())


def read_params(url: str, response_mode: str = "query") -> dict[str, str]:
    """Read the OAuth callback parameters from a URL.

    Args:
        url: Callback URL. Relative URLs are accepted.
        response_mode: "query" reads the query string, "fragment" the fragment.

    Returns:
        Parameter mapping. For repeated names the first value wins.

    Raises:
        ValueError: If url is empty.
    """
    if not url:
        raise ValueError("Invalid URL")

    parts = urlsplit(url)
    raw = parts.fragment if response_mode == "fragment" else parts.query

    params: dict[str, str] = {}
    for name, value in parse_qsl(raw, keep_blank_values=True):
        params.setdefault(name, value)
    return params


def decode_jwt(token: str) -> dict[str, Any]:
    """Decode a JWT payload without verification.

    The signature, expiry and audience are NOT checked.

    Args:
        token: JWT token string.

    Returns:
        The token's claims.

    Raises:
        ValidationError: If the token is not a well-formed JWT.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.exceptions.DecodeError as e:
        raise ValidationError(f"Invalid JWT: {e}") from e

    if not isinstance(claims, dict):
        raise ValidationError("Invalid JWT: payload is not a JSON object")
    return claims


def split_scope(scope: str | None) -> list[str]:
    """Split a space-delimited scope string into its values."""
    return scope.split(" ") if scope else []
