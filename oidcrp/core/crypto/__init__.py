"""Cryptographic helpers for PKCE and request correlation."""

from oidcrp.core.crypto.pkce import (
    generate_basic_auth,
    generate_code_challenge,
    generate_code_verifier,
    generate_state_id,
)

__all__ = [
    "generate_basic_auth",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_state_id",
]
