"""PKCE (RFC 7636) and correlation id generation.

All randomness comes from the ``secrets`` module; digests from ``hashlib``.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import uuid


def generate_state_id() -> str:
    """Generate an unguessable opaque id for a State record.

    Returns:
        A random UUIDv4 rendered as 32 hex characters without dashes.
    """
    return uuid.UUID(bytes=secrets.token_bytes(16), version=4).hex


def generate_code_verifier(length: int = 64) -> str:
    """Generate a PKCE code verifier.

    The code verifier is a high-entropy cryptographic random string
    between 43 and 128 characters, using unreserved URI characters.

    Args:
        length: Length of the verifier (43-128, default 64).

    Returns:
        URL-safe base64-encoded random string.
    """
    # RFC 7636 section 4.1 bounds
    length = max(43, min(128, length))
    num_bytes = (length * 3) // 4 + 1
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).decode("ascii")
    return verifier.rstrip("=")[:length]


def generate_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a code verifier.

    Args:
        code_verifier: The code verifier string.

    Returns:
        base64url(SHA-256(verifier)) without padding.
    """
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_basic_auth(client_id: str, client_secret: str) -> str:
    """Build the credentials part of an HTTP Basic Authorization header."""
    credentials = f"{client_id}:{client_secret}".encode()
    return base64.b64encode(credentials).decode("ascii")
