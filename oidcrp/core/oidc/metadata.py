"""OpenID Provider discovery metadata and signing keys."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from oidcrp.core.config import OidcClientSettings
from oidcrp.core.errors import ConfigurationError, MetadataError
from oidcrp.core.oidc.json_service import JsonService

logger = logging.getLogger(__name__)

JWK_SET_CONTENT_TYPE = "application/jwk-set+json"


class MetadataService:
    """Resolves and caches the provider's discovery document.

    Static ``metadata`` and ``signing_keys`` from settings are used as the
    initial cache; fetched metadata is merged over ``metadata_seed``.
    The caches are check-then-fetch without locking, so concurrent first
    calls may each fetch once.
    """

    def __init__(self, settings: OidcClientSettings, http_client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._json = JsonService(
            http_client,
            additional_content_types=[JWK_SET_CONTENT_TYPE],
            extra_headers=settings.extra_headers,
        )
        self._metadata: dict[str, Any] | None = None
        self._signing_keys: list[dict[str, Any]] | None = None
        self._metadata_url = settings.resolved_metadata_url

        if settings.signing_keys:
            logger.debug("Using signing_keys from settings")
            self._signing_keys = list(settings.signing_keys)
        if settings.metadata:
            logger.debug("Using metadata from settings")
            self._metadata = dict(settings.metadata)

    @property
    def metadata_url(self) -> str:
        return self._metadata_url

    def reset_signing_keys(self) -> None:
        self._signing_keys = None

    async def get_metadata(self) -> dict[str, Any]:
        """Return the discovery document, fetching it on first use.

        Raises:
            ConfigurationError: No metadata URL is configured.
        """
        if self._metadata:
            logger.debug("Using cached metadata")
            return self._metadata

        if not self._metadata_url:
            raise ConfigurationError("metadata_url", "No authority or metadata_url configured on settings")

        logger.debug(f"Getting metadata from {self._metadata_url}")
        fetched = await self._json.get_json(self._metadata_url)
        if not isinstance(fetched, dict):
            raise MetadataError(f"Metadata from {self._metadata_url} is not a JSON object")

        self._metadata = {**self._settings.metadata_seed, **fetched}
        return self._metadata

    async def get_issuer(self) -> str:
        return await self._get_metadata_property("issuer")

    async def get_authorization_endpoint(self) -> str:
        return await self._get_metadata_property("authorization_endpoint")

    async def get_user_info_endpoint(self) -> str:
        return await self._get_metadata_property("userinfo_endpoint")

    async def get_token_endpoint(self, optional: bool = True) -> str | None:
        return await self._get_metadata_property("token_endpoint", optional)

    async def get_check_session_iframe(self) -> str | None:
        return await self._get_metadata_property("check_session_iframe", True)

    async def get_end_session_endpoint(self) -> str | None:
        return await self._get_metadata_property("end_session_endpoint", True)

    async def get_revocation_endpoint(self, optional: bool = True) -> str | None:
        return await self._get_metadata_property("revocation_endpoint", optional)

    async def get_keys_endpoint(self, optional: bool = True) -> str | None:
        return await self._get_metadata_property("jwks_uri", optional)

    async def _get_metadata_property(self, name: str, optional: bool = False) -> Any:
        metadata = await self.get_metadata()
        if name not in metadata:
            if optional:
                logger.warning(f"Metadata does not contain optional property {name}")
                return None
            raise MetadataError(f"Metadata does not contain property {name}")
        return metadata[name]

    async def get_signing_keys(self) -> list[dict[str, Any]]:
        """Return the provider's JWKs, fetching ``jwks_uri`` on first use.

        Raises:
            MetadataError: No ``jwks_uri`` or the key set has no ``keys`` list.
        """
        if self._signing_keys:
            logger.debug("Returning signing keys from cache")
            return self._signing_keys

        jwks_uri = await self.get_keys_endpoint(False)
        logger.debug(f"Getting key set from {jwks_uri}")

        key_set = await self._json.get_json(jwks_uri)
        if not isinstance(key_set, dict) or not isinstance(key_set.get("keys"), list):
            raise MetadataError("Missing keys on keyset")

        self._signing_keys = key_set["keys"]
        return self._signing_keys
