"""Protocol logging for OIDC flows.

Records every HTTP exchange with the OpenID Provider (discovery, token,
userinfo and revocation calls), with configurable log levels and sensitive
data protection.

Log levels:
- ERROR: Only log errors
- INFO: Log flow milestones (requests initiated, responses received)
- DEBUG: Log HTTP details (headers, status codes, timing)
- TRACE: Log full request/response bodies including sensitive data (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("oidcrp.protocol")


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR  # 40
    INFO = logging.INFO  # 20
    DEBUG = logging.DEBUG  # 10
    TRACE = TRACE  # 5


_SECRET_PARAMS = (
    "client_secret",
    "code",
    "code_verifier",
    "access_token",
    "refresh_token",
    "id_token",
    "id_token_hint",
    "password",
    "token",
)

SENSITIVE_PATTERNS = [
    # Form and query parameters
    *[
        (re.compile(rf"(?<![A-Za-z_])({name}=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]")
        for name in _SECRET_PARAMS
    ],
    # HTTP headers (with or without "Authorization:" prefix for header dict values)
    (re.compile(r"(Authorization:\s*Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Authorization:\s*Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Set-Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    # JSON fields
    *[
        (re.compile(rf'"({name})"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"')
        for name in _SECRET_PARAMS
    ],
]


def redact_sensitive(text: str) -> str:
    """Redact secrets, codes and tokens from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


@dataclass
class HTTPExchange:
    """A single HTTP request/response exchange with the provider."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Args:
            include_sensitive: If True, include raw sensitive data.
                               If False, redact sensitive information.
        """
        def process(value: str | None) -> str | None:
            if value is None:
                return None
            return value if include_sensitive else redact_sensitive(value)

        def process_headers(headers: dict[str, str]) -> dict[str, str]:
            if include_sensitive:
                return dict(headers)
            return {k: redact_sensitive(v) for k, v in headers.items()}

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": process(self.url),
            "request_headers": process_headers(self.request_headers),
            "request_body": process(self.request_body),
            "response_status": self.response_status,
            "response_headers": process_headers(self.response_headers),
            "response_body": process(self.response_body),
            "duration_ms": self.duration_ms,
            "error": self.error,
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for logging.

        Args:
            level: Log level determines how much detail to include.
            include_sensitive: If True, include raw sensitive data.
        """
        def show(value: str) -> str:
            return value if include_sensitive else redact_sensitive(value)

        lines = []

        if level >= LogLevel.INFO:
            status = self.response_status or "ERROR"
            lines.append(f"HTTP {self.method} {show(self.url)} -> {status}")
            if self.duration_ms is not None:
                lines.append(f"  Duration: {self.duration_ms:.1f}ms")
            if self.error:
                lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append(f"HTTP {self.method} {show(self.url)} -> {self.response_status or 'ERROR'}")
            lines.append("  Request Headers:")
            for name, value in self.request_headers.items():
                lines.append(f"    {name}: {show(value)}")
            if self.response_headers:
                lines.append("  Response Headers:")
                for name, value in self.response_headers.items():
                    lines.append(f"    {name}: {show(value)}")

        if level <= LogLevel.TRACE:
            for label, body in (("Request Body", self.request_body), ("Response Body", self.response_body)):
                if body:
                    body = show(body)
                    lines.append(f"  {label}:")
                    lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Collects the exchanges of one signin, signout, refresh or revoke operation."""

    flow_id: str
    flow_type: str
    exchanges: list[HTTPExchange] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def add_exchange(self, exchange: HTTPExchange) -> None:
        self.exchanges.append(exchange)

    def complete(self) -> None:
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "flow_id": self.flow_id,
            "flow_type": self.flow_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "exchanges": [e.to_dict(include_sensitive) for e in self.exchanges],
            "exchange_count": len(self.exchanges),
        }


class ProtocolLogger:
    """Configurable diagnostics sink for OIDC protocol traffic.

    Components receive a ProtocolLogger explicitly and fall back to the
    process-wide instance from :func:`get_protocol_logger`.
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        trace_enabled: bool = False,
        on_flow_complete: Callable[[ProtocolLog], None] | None = None,
    ) -> None:
        """Initialize the protocol logger.

        Args:
            level: Minimum log level.
            trace_enabled: Whether TRACE level is enabled (for sensitive data).
            on_flow_complete: Called with each finished flow log.
        """
        self._level = level
        self._trace_enabled = trace_enabled
        self.on_flow_complete = on_flow_complete
        # One active flow per asyncio task
        self._current_log: ContextVar[ProtocolLog | None] = ContextVar(
            f"oidcrp_protocol_log_{id(self)}", default=None
        )

    @property
    def level(self) -> LogLevel:
        return self._level

    @level.setter
    def level(self, value: LogLevel) -> None:
        self._level = value

    @property
    def trace_enabled(self) -> bool:
        return self._trace_enabled

    @trace_enabled.setter
    def trace_enabled(self, value: bool) -> None:
        self._trace_enabled = value

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self._level == LogLevel.TRACE and not self._trace_enabled:
            return LogLevel.DEBUG
        return self._level

    @property
    def current_log(self) -> ProtocolLog | None:
        return self._current_log.get()

    def start_flow(self, flow_id: str, flow_type: str) -> ProtocolLog:
        """Start collecting exchanges for a new flow.

        Args:
            flow_id: Unique identifier for the flow (usually the State id).
            flow_type: Type of flow (e.g., "signin", "refresh", "revoke").
        """
        log = ProtocolLog(flow_id=flow_id, flow_type=flow_type)
        self._current_log.set(log)
        logger.info(f"Started protocol logging for {flow_type} flow: {flow_id}")
        return log

    def end_flow(self) -> ProtocolLog | None:
        """End the current task's flow and return its log, if one was active."""
        log = self._current_log.get()
        if log is None:
            return None
        log.complete()
        self._current_log.set(None)
        logger.info(
            f"Completed protocol logging for {log.flow_type} flow: {log.flow_id} "
            f"({len(log.exchanges)} exchanges)"
        )
        if self.on_flow_complete is not None:
            self.on_flow_complete(log)
        return log

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Record an HTTP exchange and emit it to the Python logger."""
        log = self._current_log.get()
        if log is not None:
            log.add_exchange(exchange)

        effective = self.effective_level
        include_sensitive = self._trace_enabled and self._level <= LogLevel.TRACE

        if effective <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(effective, include_sensitive))
        elif effective <= LogLevel.INFO:
            logger.info(exchange.format_log(effective, include_sensitive))

        if exchange.error:
            logger.error(
                f"HTTP error: {exchange.method} {redact_sensitive(exchange.url)}: {exchange.error}"
            )

    def create_transport(self, transport: httpx.AsyncBaseTransport | None = None) -> AsyncLoggingTransport:
        """Create an httpx transport that logs requests/responses through this logger."""
        return AsyncLoggingTransport(self, transport)


def _decode_body(content: bytes) -> str | None:
    if not content:
        return None
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return "<binary content>"


class AsyncLoggingTransport(httpx.AsyncBaseTransport):
    """HTTPX async transport that logs all HTTP exchanges."""

    def __init__(
        self,
        protocol_logger: ProtocolLogger,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the logging transport.

        Args:
            protocol_logger: ProtocolLogger to use for logging.
            transport: Transport that actually sends requests. Defaults to
                httpx.AsyncHTTPTransport.
        """
        self._logger = protocol_logger
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._exchange_counter = 0

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self._exchange_counter += 1
        start_time = time.perf_counter()

        exchange = HTTPExchange(
            id=f"http_{self._exchange_counter:04d}",
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=_decode_body(request.content),
        )

        try:
            response = await self._transport.handle_async_request(request)
        except Exception as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = str(e) or type(e).__name__
            self._logger.log_exchange(exchange)
            raise

        # Buffer the body so it can be logged and still read by the caller
        body = await response.aread()
        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        exchange.response_body = _decode_body(body)
        exchange.duration_ms = (time.perf_counter() - start_time) * 1000

        self._logger.log_exchange(exchange)
        return response

    async def aclose(self) -> None:
        await self._transport.aclose()


def create_http_client(
    protocol_logger: ProtocolLogger | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient whose traffic goes through the protocol logger.

    Args:
        protocol_logger: ProtocolLogger to use. Uses the global logger if not provided.
        transport: Inner transport (e.g. httpx.MockTransport in tests).
        **kwargs: Additional arguments passed to httpx.AsyncClient.
    """
    protocol_logger = protocol_logger or get_protocol_logger()
    kwargs.setdefault("follow_redirects", False)
    return httpx.AsyncClient(transport=protocol_logger.create_transport(transport), **kwargs)


_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the process-wide protocol logger, creating it on first use."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Replace the process-wide protocol logger."""
    global _global_logger
    _global_logger = logger_instance


def reset_protocol_logger() -> None:
    """Drop the process-wide protocol logger and detach our log handlers."""
    global _global_logger
    _global_logger = None
    for log in (logging.getLogger("oidcrp"), logger):
        for handler in list(log.handlers):
            log.removeHandler(handler)
            handler.close()
        log.setLevel(logging.NOTSET)


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure protocol logging.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (includes sensitive data).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger, also installed as the global logger.
    """
    if isinstance(level, str):
        level_map = {
            "ERROR": LogLevel.ERROR,
            "INFO": LogLevel.INFO,
            "DEBUG": LogLevel.DEBUG,
            "TRACE": LogLevel.TRACE,
        }
        level = level_map.get(level.upper(), LogLevel.INFO)

    # Component loggers (oidcrp.oidc.*) share the package root
    root = logging.getLogger("oidcrp")
    root.setLevel(level)
    logger.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        logger.warning(
            "TRACE logging enabled - sensitive data (tokens, secrets) will be logged!"
        )

    return protocol_logger
