"""Client configuration management.

Loads OidcClientSettings from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from oidcrp.core.errors import ConfigurationError

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".oidcrp"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Environment variable prefix
ENV_PREFIX = "OIDCRP_"

DEFAULT_RESPONSE_TYPE = "code"
DEFAULT_SCOPE = "openid"
DEFAULT_CLIENT_AUTHENTICATION = "client_secret_post"
DEFAULT_RESPONSE_MODE = "query"
DEFAULT_STALE_STATE_AGE_IN_SECONDS = 60 * 15
DEFAULT_CLOCK_SKEW_IN_SECONDS = 60 * 5

CLIENT_AUTHENTICATION_METHODS = ("client_secret_basic", "client_secret_post")
RESPONSE_MODES = ("query", "fragment")


@dataclass
class OidcClientSettings:
    """Settings for an OidcClient.

    ``authority`` and ``client_id`` are required. Everything else has a
    default; ``None`` means "not set" and the parameter is left off the
    wire.
    """

    authority: str
    client_id: str
    client_secret: str | None = None
    client_authentication: str = DEFAULT_CLIENT_AUTHENTICATION
    redirect_uri: str | None = None
    post_logout_redirect_uri: str | None = None

    # Provider metadata
    metadata_url: str | None = None
    metadata: dict[str, Any] | None = None
    metadata_seed: dict[str, Any] = field(default_factory=dict)
    signing_keys: list[dict[str, Any]] | None = None

    # Optional protocol parameters
    response_type: str = DEFAULT_RESPONSE_TYPE
    scope: str = DEFAULT_SCOPE
    response_mode: str = DEFAULT_RESPONSE_MODE
    prompt: str | None = None
    display: str | None = None
    max_age: int | None = None
    ui_locales: str | None = None
    acr_values: str | None = None
    resource: str | list[str] | None = None

    # Behavior flags
    filter_protocol_claims: bool | list[str] = True
    load_user_info: bool = False
    merge_claims: bool = False
    disable_pkce: bool = False
    omit_scope_when_requesting: bool = False
    stale_state_age_in_seconds: int = DEFAULT_STALE_STATE_AGE_IN_SECONDS
    clock_skew_in_seconds: int = DEFAULT_CLOCK_SKEW_IN_SECONDS
    request_timeout_in_seconds: float | None = None
    refresh_token_allowed_scope: str | None = None
    revoke_token_additional_content_types: list[str] = field(default_factory=list)

    # Extra parameters
    extra_query_params: dict[str, Any] = field(default_factory=dict)
    extra_token_params: dict[str, Any] = field(default_factory=dict)
    extra_headers: dict[str, str] = field(default_factory=dict)

    config_path: Path | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.authority:
            raise ConfigurationError("authority", "authority is required")
        if not self.client_id:
            raise ConfigurationError("client_id", "client_id is required")
        if self.client_authentication not in CLIENT_AUTHENTICATION_METHODS:
            raise ConfigurationError(
                message=f"Unsupported client_authentication: {self.client_authentication} "
                f"(expected one of {', '.join(CLIENT_AUTHENTICATION_METHODS)})",
                field="client_authentication",
            )
        if self.response_mode not in RESPONSE_MODES:
            raise ConfigurationError(
                message=f"Unsupported response_mode: {self.response_mode} "
                f"(expected one of {', '.join(RESPONSE_MODES)})",
                field="response_mode",
            )
        if not isinstance(self.filter_protocol_claims, (bool, list)):
            raise ConfigurationError(
                message="filter_protocol_claims must be a boolean or a list of claim names",
                field="filter_protocol_claims",
            )

    @property
    def resolved_metadata_url(self) -> str:
        """Discovery document URL: the explicit metadata_url or one derived from authority."""
        if self.metadata_url:
            return self.metadata_url
        url = self.authority
        if not url.endswith("/"):
            url += "/"
        return url + ".well-known/openid-configuration"

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> OidcClientSettings:
        """Create OidcClientSettings from a dictionary.

        Unknown keys are ignored. Missing required keys surface as
        ConfigurationError from validation.
        """
        known = {f.name for f in fields(cls)} - {"config_path"}
        values = {k: v for k, v in data.items() if k in known and v is not None}
        values.setdefault("authority", "")
        values.setdefault("client_id", "")
        return cls(**values, config_path=config_path)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {}
        for f in fields(self):
            if f.name == "config_path":
                continue
            value = getattr(self, f.name)
            if isinstance(value, dict):
                value = dict(value)
            elif isinstance(value, list):
                value = list(value)
            result[f.name] = value
        return result

    def save(self, path: Path | None = None) -> None:
        """Save settings to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        data = {k: v for k, v in self.to_dict().items() if v is not None}
        with open(save_path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Settings that may be overridden by OIDCRP_<NAME> environment variables
_ENV_STRINGS = (
    "authority",
    "client_id",
    "client_secret",
    "client_authentication",
    "redirect_uri",
    "post_logout_redirect_uri",
    "metadata_url",
    "scope",
    "response_mode",
    "prompt",
    "refresh_token_allowed_scope",
)
_ENV_BOOLS = ("load_user_info", "merge_claims", "disable_pkce", "omit_scope_when_requesting")
_ENV_INTS = (
    ("stale_state_age_in_seconds", DEFAULT_STALE_STATE_AGE_IN_SECONDS),
    ("clock_skew_in_seconds", DEFAULT_CLOCK_SKEW_IN_SECONDS),
)


def load_settings(config_path: Path | None = None) -> OidcClientSettings:
    """Load client settings.

    Settings are loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        Validated OidcClientSettings.

    Raises:
        ConfigurationError: If the file cannot be parsed or required settings
            are missing after all sources are applied.
    """
    data: dict[str, Any] = {}

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError("config_path", f"Invalid config file {file_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("config_path", f"Invalid config file {file_path}: expected a mapping")

    for name in _ENV_STRINGS:
        value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            data[name] = value

    for name in _ENV_BOOLS:
        data[name] = _get_env_bool(f"{ENV_PREFIX}{name.upper()}", data.get(name, False))

    for name, default in _ENV_INTS:
        if os.environ.get(f"{ENV_PREFIX}{name.upper()}"):
            data[name] = _get_env_int(f"{ENV_PREFIX}{name.upper()}", data.get(name, default))

    timeout = os.environ.get(f"{ENV_PREFIX}REQUEST_TIMEOUT_IN_SECONDS")
    if timeout:
        try:
            data["request_timeout_in_seconds"] = float(timeout)
        except ValueError:
            pass

    return OidcClientSettings.from_dict(data, config_path=file_path if file_path.exists() else None)


def get_default_config_yaml() -> str:
    """Return a documented config.yaml template."""
    return """\
# oidcrp client configuration
#
# Environment variables override these values, e.g. OIDCRP_CLIENT_SECRET.

# Issuer URL of the OpenID Provider
authority: https://op.example.com
client_id: my-client
# client_secret: change-me

# client_secret_post (form fields) or client_secret_basic (Authorization header)
client_authentication: client_secret_post

redirect_uri: http://localhost:8080/callback
# post_logout_redirect_uri: http://localhost:8080/

scope: openid profile email
# query or fragment
response_mode: query

# Fetch the UserInfo endpoint after token exchange
load_user_info: false

# true, false, or a list of claim names to drop from the profile
filter_protocol_claims: true

# Pending signin/signout state older than this is swept
stale_state_age_in_seconds: 900

# request_timeout_in_seconds: 10
# extra_query_params:
#   audience: api://default
"""
