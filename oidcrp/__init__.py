"""oidcrp - OAuth2 Authorization Code + PKCE and OpenID Connect relying party engine."""

__version__ = "0.1.0"
