"""Core client engine: logging, configuration, errors and OIDC flows."""

from oidcrp.core.logging import (
    AsyncLoggingTransport,
    HTTPExchange,
    LogLevel,
    ProtocolLog,
    ProtocolLogger,
    configure_logging,
    create_http_client,
    get_protocol_logger,
    redact_sensitive,
    reset_protocol_logger,
    set_protocol_logger,
)

__all__ = [
    "AsyncLoggingTransport",
    "HTTPExchange",
    "LogLevel",
    "ProtocolLog",
    "ProtocolLogger",
    "configure_logging",
    "create_http_client",
    "get_protocol_logger",
    "redact_sensitive",
    "reset_protocol_logger",
    "set_protocol_logger",
]
