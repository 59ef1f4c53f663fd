"""Error taxonomy for OIDC protocol operations.

Configuration errors fail before any I/O, protocol errors carry the OP's
error response, validation errors mark trust-boundary failures and timeouts
are kept distinct from transport failures so callers can retry selectively.
"""

from __future__ import annotations

from typing import Any


class OidcError(Exception):
    """Base exception for all oidcrp errors."""


class ConfigurationError(OidcError, ValueError):
    """Raised when a required request or settings field is missing."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or field)


class UnsupportedResponseTypeError(ConfigurationError):
    """Raised for any response_type other than the Authorization Code flow."""

    def __init__(self, response_type: str | None = None) -> None:
        self.response_type = response_type
        super().__init__(
            "response_type",
            "Only the Authorization Code flow (with PKCE) is supported",
        )


class ValidationError(OidcError):
    """Raised when a response fails a correlation or integrity check."""


class StateMismatchError(ValidationError):
    """Raised when a response's state does not match the stored state."""

    def __init__(self, message: str = "State does not match") -> None:
        super().__init__(message)


class MetadataError(OidcError):
    """Raised when provider metadata or a key set is missing or malformed."""


class ErrorTimeout(OidcError):
    """Raised when a network call exceeds its timeout."""

    def __init__(self, message: str = "Network timed out") -> None:
        super().__init__(message)


class ErrorResponse(OidcError):
    """Authentication error returned by the OpenID Provider.

    See https://openid.net/specs/openid-connect-core-1_0.html#AuthError

    Attributes:
        error: Error code classifying the failure.
        error_description: Optional human-readable description.
        error_uri: Optional URI with more information about the error.
        state: Custom caller data stored with the originating request.
        session_state: OP session state, if any.
        url_state: Caller-supplied suffix of the wire state parameter.
        form: Form fields of the token endpoint request that failed.
    """

    def __init__(
        self,
        error: str | None,
        error_description: str | None = None,
        error_uri: str | None = None,
        state: Any = None,
        session_state: str | None = None,
        url_state: str | None = None,
        form: list[tuple[str, str]] | None = None,
    ) -> None:
        if not error:
            raise ValueError("No error passed")

        super().__init__(error_description or error)
        self.error = error
        self.error_description = error_description
        self.error_uri = error_uri
        self.state = state
        self.session_state = session_state
        self.url_state = url_state
        self.form = form

    @classmethod
    def from_dict(cls, data: dict[str, Any], form: list[tuple[str, str]] | None = None) -> ErrorResponse:
        """Create an ErrorResponse from a JSON error body."""
        return cls(
            error=data.get("error"),
            error_description=data.get("error_description"),
            error_uri=data.get("error_uri"),
            session_state=data.get("session_state"),
            form=form,
        )

    @classmethod
    def from_response(cls, response: Any) -> ErrorResponse:
        """Create an ErrorResponse from a parsed signin or signout response."""
        return cls(
            error=response.error,
            error_description=response.error_description,
            error_uri=response.error_uri,
            state=response.user_state,
            session_state=getattr(response, "session_state", None),
            url_state=response.url_state,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "error": self.error,
            "error_description": self.error_description,
            "error_uri": self.error_uri,
            "state": self.state,
            "session_state": self.session_state,
            "url_state": self.url_state,
        }
