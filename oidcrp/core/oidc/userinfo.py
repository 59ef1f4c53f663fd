"""UserInfo endpoint client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from oidcrp.core.config import OidcClientSettings
from oidcrp.core.oidc.json_service import JsonService
from oidcrp.core.oidc.metadata import MetadataService
from oidcrp.core.oidc.utils import decode_jwt

logger = logging.getLogger(__name__)


class UserInfoService:
    """Fetches claims from the UserInfo endpoint.

    Both plain JSON and signed (``application/jwt``) responses are accepted;
    JWT responses are decoded without signature verification.
    """

    def __init__(
        self,
        settings: OidcClientSettings,
        metadata_service: MetadataService,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._metadata = metadata_service
        self._json = JsonService(
            http_client,
            jwt_handler=decode_jwt,
            extra_headers=settings.extra_headers,
        )

    async def get_claims(self, token: str) -> dict[str, Any]:
        """Return the UserInfo claims for an access token.

        Raises:
            ValueError: If no token is passed.
        """
        if not token:
            raise ValueError("No token passed")

        url = await self._metadata.get_user_info_endpoint()
        logger.debug(f"Got userinfo url {url}")

        claims = await self._json.get_json(
            url, token=token, timeout_in_seconds=self._settings.request_timeout_in_seconds
        )
        logger.debug("Got userinfo claims")
        return claims
