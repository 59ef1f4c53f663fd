"""Tests for provider discovery metadata."""

import dataclasses

import httpx
import pytest
from conftest import ISSUER, FakeProvider

from oidcrp.core.config import OidcClientSettings
from oidcrp.core.errors import MetadataError
from oidcrp.core.oidc import MetadataService


class TestMetadataService:
    """Tests for MetadataService."""

    def test_metadata_url_derivation(self, settings: OidcClientSettings, http_client: httpx.AsyncClient) -> None:
        service = MetadataService(settings, http_client)
        assert service.metadata_url == f"{ISSUER}/.well-known/openid-configuration"

        trailing = dataclasses.replace(settings, authority=f"{ISSUER}/")
        assert MetadataService(trailing, http_client).metadata_url == f"{ISSUER}/.well-known/openid-configuration"

        explicit = dataclasses.replace(settings, metadata_url="https://meta.example.com/conf")
        assert MetadataService(explicit, http_client).metadata_url == "https://meta.example.com/conf"

    @pytest.mark.asyncio
    async def test_fetches_once_and_caches(
        self, settings: OidcClientSettings, provider: FakeProvider, http_client: httpx.AsyncClient
    ) -> None:
        service = MetadataService(settings, http_client)

        assert await service.get_issuer() == ISSUER
        assert await service.get_authorization_endpoint() == f"{ISSUER}/authorize"
        assert await service.get_token_endpoint() == f"{ISSUER}/token"

        assert len(provider.requests_to("/.well-known/openid-configuration")) == 1

    @pytest.mark.asyncio
    async def test_seed_is_overridden_by_fetched(
        self, settings: OidcClientSettings, http_client: httpx.AsyncClient
    ) -> None:
        seeded = dataclasses.replace(
            settings,
            metadata_seed={"issuer": "https://seed", "custom_endpoint": "https://seed/custom"},
        )
        metadata = await MetadataService(seeded, http_client).get_metadata()
        assert metadata["issuer"] == ISSUER
        assert metadata["custom_endpoint"] == "https://seed/custom"

    @pytest.mark.asyncio
    async def test_static_metadata_skips_network(
        self, settings: OidcClientSettings, provider: FakeProvider, http_client: httpx.AsyncClient
    ) -> None:
        static = dataclasses.replace(settings, metadata={"issuer": "https://static"})
        assert await MetadataService(static, http_client).get_issuer() == "https://static"
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_missing_properties(
        self, settings: OidcClientSettings, provider: FakeProvider, http_client: httpx.AsyncClient
    ) -> None:
        del provider.metadata["userinfo_endpoint"]
        del provider.metadata["revocation_endpoint"]
        service = MetadataService(settings, http_client)

        with pytest.raises(MetadataError, match="Metadata does not contain property userinfo_endpoint"):
            await service.get_user_info_endpoint()
        assert await service.get_revocation_endpoint() is None
        assert await service.get_check_session_iframe() is None
        with pytest.raises(MetadataError, match="revocation_endpoint"):
            await service.get_revocation_endpoint(False)

    @pytest.mark.asyncio
    async def test_non_object_metadata(self, settings: OidcClientSettings) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[1])))
        with pytest.raises(MetadataError):
            await MetadataService(settings, client).get_metadata()

    @pytest.mark.asyncio
    async def test_signing_keys(
        self, settings: OidcClientSettings, provider: FakeProvider, http_client: httpx.AsyncClient
    ) -> None:
        service = MetadataService(settings, http_client)

        keys = await service.get_signing_keys()
        assert keys == provider.keys["keys"]
        await service.get_signing_keys()
        assert len(provider.requests_to("/jwks")) == 1

        service.reset_signing_keys()
        await service.get_signing_keys()
        assert len(provider.requests_to("/jwks")) == 2

    @pytest.mark.asyncio
    async def test_keyset_without_keys(
        self, settings: OidcClientSettings, provider: FakeProvider, http_client: httpx.AsyncClient
    ) -> None:
        provider.keys = {"not_keys": []}
        with pytest.raises(MetadataError, match="Missing keys on keyset"):
            await MetadataService(settings, http_client).get_signing_keys()

    @pytest.mark.asyncio
    async def test_static_signing_keys(
        self, settings: OidcClientSettings, provider: FakeProvider, http_client: httpx.AsyncClient
    ) -> None:
        static = dataclasses.replace(settings, signing_keys=[{"kid": "static"}])
        assert await MetadataService(static, http_client).get_signing_keys() == [{"kid": "static"}]
        assert provider.requests == []
