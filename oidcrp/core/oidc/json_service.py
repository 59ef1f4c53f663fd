"""JSON over HTTP for provider endpoints.

GET for discovery, key sets and UserInfo; form POST for the token and
revocation endpoints. Non-2xx responses with an OAuth ``error`` member raise
ErrorResponse, timeouts raise ErrorTimeout and transport failures propagate
as httpx exceptions.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any
from urllib.parse import urlencode

import httpx

from oidcrp.core.errors import ErrorResponse, ErrorTimeout, OidcError

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
JWT_CONTENT_TYPE = "application/jwt"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

PROTECTED_HEADERS = ("authorization", "accept", "content-type")

HeaderValue = str | Callable[[], str | None]


class JsonService:
    """Fetches JSON documents from the OpenID Provider.

    Args:
        http_client: Client used for every request.
        additional_content_types: Extra acceptable response media types.
        jwt_handler: Converts an ``application/jwt`` body into claims. When
            given, ``application/jwt`` responses are accepted.
        extra_headers: Headers added to every request. Values may be callables
            evaluated per request. Authorization, Accept and Content-Type
            cannot be overridden.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        additional_content_types: Iterable[str] = (),
        jwt_handler: Callable[[str], dict[str, Any]] | None = None,
        extra_headers: Mapping[str, HeaderValue] | None = None,
    ) -> None:
        self._http = http_client
        self._jwt_handler = jwt_handler
        self._extra_headers = dict(extra_headers or {})
        self._content_types = [*additional_content_types, JSON_CONTENT_TYPE]
        if jwt_handler:
            self._content_types.append(JWT_CONTENT_TYPE)

    @property
    def content_types(self) -> list[str]:
        return list(self._content_types)

    async def get_json(
        self,
        url: str,
        token: str | None = None,
        timeout_in_seconds: float | None = None,
    ) -> Any:
        """GET a JSON (or JWT) document.

        Args:
            url: Endpoint URL.
            token: Bearer token for the Authorization header.
            timeout_in_seconds: Per-request timeout.

        Raises:
            ErrorResponse: Non-2xx response with an ``error`` member.
            ErrorTimeout: The request timed out.
            OidcError: Unexpected Content-Type, unparseable body or other non-2xx.
        """
        headers = {"Accept": ", ".join(self._content_types)}
        if token:
            logger.debug("Token passed, setting Authorization header")
            headers["Authorization"] = f"Bearer {token}"
        self._append_extra_headers(headers)

        logger.debug(f"GET {url}")
        response = await self._send("GET", url, headers=headers, timeout_in_seconds=timeout_in_seconds)
        content_type = self._check_content_type(response, url)

        if response.is_success and self._jwt_handler and content_type.startswith(JWT_CONTENT_TYPE):
            return self._jwt_handler(response.text)

        data = self._parse_body(response, url, empty_ok=False)
        if not response.is_success:
            self._raise_for_error(response, data)
        return data

    async def post_form(
        self,
        url: str,
        body: list[tuple[str, str]],
        basic_auth: str | None = None,
        timeout_in_seconds: float | None = None,
    ) -> Any:
        """POST a form and return the JSON response.

        An empty response body is returned as ``{}``.

        Args:
            url: Endpoint URL.
            body: Form fields in order; names may repeat.
            basic_auth: Base64 credentials for an ``Authorization: Basic`` header.
            timeout_in_seconds: Per-request timeout.

        Raises:
            ErrorResponse: Non-2xx response with an ``error`` member. The
                submitted form is attached as ``form``.
            ErrorTimeout: The request timed out.
            OidcError: Unexpected Content-Type, unparseable body or other non-2xx.
        """
        headers = {
            "Accept": ", ".join(self._content_types),
            "Content-Type": FORM_CONTENT_TYPE,
        }
        if basic_auth is not None:
            headers["Authorization"] = f"Basic {basic_auth}"
        self._append_extra_headers(headers)

        logger.debug(f"POST {url}")
        response = await self._send(
            "POST", url, headers=headers, data=body, timeout_in_seconds=timeout_in_seconds
        )
        self._check_content_type(response, url)

        data = self._parse_body(response, url, empty_ok=True)
        if not response.is_success:
            self._raise_for_error(response, data, form=body)
        return data

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        data: list[tuple[str, str]] | None = None,
        timeout_in_seconds: float | None = None,
    ) -> httpx.Response:
        timeout: Any = timeout_in_seconds if timeout_in_seconds else httpx.USE_CLIENT_DEFAULT
        content = None
        if data is not None:
            content = urlencode(data).encode("utf-8")
        try:
            response = await self._http.request(
                method, url, headers=headers, content=content, timeout=timeout
            )
        except httpx.TimeoutException as e:
            logger.error(f"Network timed out: {method} {url}")
            raise ErrorTimeout() from e
        except httpx.TransportError as e:
            logger.error(f"Network error: {method} {url}: {e}")
            raise

        logger.debug(f"HTTP response received, status {response.status_code}")
        return response

    def _check_content_type(self, response: httpx.Response, url: str) -> str:
        content_type = response.headers.get("Content-Type", "")
        if content_type and not any(content_type.startswith(t) for t in self._content_types):
            raise OidcError(f"Invalid response Content-Type: {content_type}, from URL: {url}")
        return content_type

    def _parse_body(self, response: httpx.Response, url: str, empty_ok: bool) -> Any:
        if empty_ok and not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Error parsing JSON response from {url}: {e}")
            if response.is_success:
                raise OidcError(f"Error parsing JSON response from {url}: {e}") from e
            raise OidcError(f"{response.reason_phrase} ({response.status_code})") from e

    def _raise_for_error(
        self,
        response: httpx.Response,
        data: Any,
        form: list[tuple[str, str]] | None = None,
    ) -> None:
        logger.error(f"Error from server: {response.status_code}")
        if isinstance(data, dict) and data.get("error"):
            raise ErrorResponse.from_dict(data, form=form)
        raise OidcError(f"{response.reason_phrase} ({response.status_code}): {json.dumps(data)}")

    def _append_extra_headers(self, headers: dict[str, str]) -> None:
        for name, value in self._extra_headers.items():
            if name.lower() in PROTECTED_HEADERS:
                logger.warning(f"Protected header could not be overridden: {name}")
                continue
            content = value() if callable(value) else value
            if content:
                headers[name] = content
