"""Tests for the OidcClient orchestrator."""

import asyncio
import dataclasses
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from conftest import CLIENT_ID, ISSUER, POST_LOGOUT_REDIRECT_URI, REDIRECT_URI, FakeProvider, form_of

from oidcrp.core.config import OidcClientSettings
from oidcrp.core.errors import (
    ConfigurationError,
    ErrorResponse,
    MetadataError,
    StateMismatchError,
    UnsupportedResponseTypeError,
    ValidationError,
)
from oidcrp.core.logging import ProtocolLog, ProtocolLogger, create_http_client
from oidcrp.core.oidc import OidcClient, RefreshState, State, User, get_epoch_time
from oidcrp.storage import InMemoryStateStore


def _params(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def _client(settings: OidcClientSettings, store: InMemoryStateStore, http_client: httpx.AsyncClient) -> OidcClient:
    return OidcClient(settings, state_store=store, http_client=http_client, protocol_logger=ProtocolLogger())


class TestCreateSigninRequest:
    """Tests for OidcClient.create_signin_request."""

    @pytest.mark.asyncio
    async def test_builds_url_and_persists_state(
        self, oidc_client: OidcClient, store: InMemoryStateStore
    ) -> None:
        request = await oidc_client.create_signin_request(state={"return_to": "/"}, login_hint="alice")

        assert request.url.startswith(f"{ISSUER}/authorize?")
        params = _params(request.url)
        assert params["client_id"] == CLIENT_ID
        assert params["redirect_uri"] == REDIRECT_URI
        assert params["response_type"] == "code"
        assert params["scope"] == "openid profile"
        assert params["code_challenge_method"] == "S256"
        assert params["response_mode"] == "query"
        assert params["login_hint"] == "alice"

        assert await store.get_all_keys() == [request.state.id]

    @pytest.mark.asyncio
    async def test_unsupported_response_type_before_any_fetch(
        self, oidc_client: OidcClient, provider: FakeProvider, store: InMemoryStateStore
    ) -> None:
        with pytest.raises(UnsupportedResponseTypeError):
            await oidc_client.create_signin_request(response_type="id_token")
        assert provider.requests == []
        assert await store.get_all_keys() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["redirect_uri", "scope"])
    async def test_missing_field_before_any_fetch(
        self,
        settings: OidcClientSettings,
        store: InMemoryStateStore,
        provider: FakeProvider,
        http_client: httpx.AsyncClient,
        field: str,
    ) -> None:
        client = _client(dataclasses.replace(settings, **{field: None}), store, http_client)

        with pytest.raises(ConfigurationError) as exc_info:
            await client.create_signin_request()

        assert exc_info.value.field == field
        assert provider.requests == []
        assert await store.get_all_keys() == []

    @pytest.mark.asyncio
    async def test_missing_redirect_uri_override(
        self, oidc_client: OidcClient, provider: FakeProvider
    ) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            await oidc_client.create_signin_request(redirect_uri=None)
        assert exc_info.value.field == "redirect_uri"
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_overrides_take_precedence(self, oidc_client: OidcClient) -> None:
        request = await oidc_client.create_signin_request(scope="openid email", prompt="login")
        params = _params(request.url)
        assert params["scope"] == "openid email"
        assert params["prompt"] == "login"

    @pytest.mark.asyncio
    async def test_sweeps_stale_state(self, oidc_client: OidcClient, store: InMemoryStateStore) -> None:
        stale = State(created=get_epoch_time() - 3600)
        await store.set(stale.id, stale.to_storage_string())

        request = await oidc_client.create_signin_request()

        assert await store.get_all_keys() == [request.state.id]


class TestProcessSigninResponse:
    """Tests for the authorization callback."""

    @pytest.mark.asyncio
    async def test_end_to_end(
        self, oidc_client: OidcClient, provider: FakeProvider, store: InMemoryStateStore
    ) -> None:
        request = await oidc_client.create_signin_request(state={"return_to": "/app"}, url_state="tab=2")
        wire_state = _params(request.url)["state"]

        response = await oidc_client.process_signin_response(
            f"{REDIRECT_URI}?code=code-1&state={wire_state}&session_state=ss1"
        )

        assert response.access_token == "access-token-1"
        assert response.refresh_token == "refresh-token-1"
        assert response.user_state == {"return_to": "/app"}
        assert response.url_state == "tab=2"
        assert response.session_state == "ss1"
        assert response.profile["sub"] == "user123"
        assert response.expires_in is not None

        # The state is consumed
        assert await store.get_all_keys() == []

        form = form_of(provider.requests_to("/token")[0])
        assert form["code"] == ["code-1"]
        assert form["code_verifier"] == [request.state.code_verifier]

        user = User.from_signin_response(response)
        assert user.state == {"return_to": "/app"}
        assert user.expired is False

    @pytest.mark.asyncio
    async def test_fragment_response_mode(
        self, settings: OidcClientSettings, store: InMemoryStateStore, http_client: httpx.AsyncClient
    ) -> None:
        client = _client(dataclasses.replace(settings, response_mode="fragment"), store, http_client)
        request = await client.create_signin_request()

        response = await client.process_signin_response(f"{REDIRECT_URI}#code=c&state={request.state.id}")

        assert response.access_token == "access-token-1"

    @pytest.mark.asyncio
    async def test_no_state_in_response(self, oidc_client: OidcClient) -> None:
        with pytest.raises(ValidationError, match="No state in response"):
            await oidc_client.process_signin_response(f"{REDIRECT_URI}?code=c")

    @pytest.mark.asyncio
    async def test_no_matching_state(self, oidc_client: OidcClient) -> None:
        with pytest.raises(ValidationError, match="No matching state found in storage"):
            await oidc_client.process_signin_response(f"{REDIRECT_URI}?code=c&state=unknown")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stored", ["{not json", "[1, 2]"])
    async def test_unreadable_stored_state(
        self, oidc_client: OidcClient, store: InMemoryStateStore, stored: str
    ) -> None:
        await store.set("key-1", stored)

        with pytest.raises(ValidationError, match="Invalid state in storage"):
            await oidc_client.process_signin_response(f"{REDIRECT_URI}?code=c&state=key-1")

    @pytest.mark.asyncio
    async def test_replay_is_rejected(self, oidc_client: OidcClient) -> None:
        request = await oidc_client.create_signin_request()
        url = f"{REDIRECT_URI}?code=c&state={request.state.id}"
        await oidc_client.process_signin_response(url)

        with pytest.raises(ValidationError, match="No matching state"):
            await oidc_client.process_signin_response(url)

    @pytest.mark.asyncio
    async def test_error_callback(self, oidc_client: OidcClient, store: InMemoryStateStore) -> None:
        request = await oidc_client.create_signin_request(state="data")

        with pytest.raises(ErrorResponse) as exc_info:
            await oidc_client.process_signin_response(
                f"{REDIRECT_URI}?error=access_denied&state={request.state.id}"
            )
        assert exc_info.value.state == "data"
        assert await store.get_all_keys() == []

    @pytest.mark.asyncio
    async def test_read_state_without_removing(self, oidc_client: OidcClient, store: InMemoryStateStore) -> None:
        request = await oidc_client.create_signin_request()

        state, response = await oidc_client.read_signin_response_state(
            f"{REDIRECT_URI}?code=c&state={request.state.id}"
        )

        assert state == request.state
        assert response.code == "c"
        assert await store.get_all_keys() == [request.state.id]


class TestPasswordCredentials:
    """Tests for the resource owner password credentials grant."""

    @pytest.mark.asyncio
    async def test_signin(self, oidc_client: OidcClient, provider: FakeProvider) -> None:
        response = await oidc_client.process_resource_owner_password_credentials("alice", "pw")

        assert response.access_token == "access-token-1"
        assert response.profile["sub"] == "user123"
        assert form_of(provider.requests_to("/token")[0])["grant_type"] == ["password"]


class TestUseRefreshToken:
    """Tests for OidcClient.use_refresh_token."""

    def _state(self, provider: FakeProvider) -> RefreshState:
        return RefreshState(
            refresh_token="rt-old",
            id_token=provider.id_token,
            session_state="ss",
            scope="openid profile offline_access",
            profile={"sub": "user123"},
            resource=["https://api"],
            data={"k": "v"},
        )

    @pytest.mark.asyncio
    async def test_refresh(self, oidc_client: OidcClient, provider: FakeProvider) -> None:
        response = await oidc_client.use_refresh_token(self._state(provider))

        form = form_of(provider.requests_to("/token")[0])
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["rt-old"]
        assert form["scope"] == ["openid profile offline_access"]
        assert form["resource"] == ["https://api"]
        assert response.access_token == "access-token-1"
        assert response.session_state == "ss"
        assert response.user_state == {"k": "v"}

    @pytest.mark.asyncio
    async def test_allowed_scope_filter(
        self,
        settings: OidcClientSettings,
        store: InMemoryStateStore,
        provider: FakeProvider,
        http_client: httpx.AsyncClient,
    ) -> None:
        settings = dataclasses.replace(settings, refresh_token_allowed_scope="openid offline_access")
        response = await _client(settings, store, http_client).use_refresh_token(self._state(provider))

        form = form_of(provider.requests_to("/token")[0])
        assert form["scope"] == ["openid offline_access"]
        assert response.scope == "openid offline_access"

    @pytest.mark.asyncio
    async def test_subject_change_is_rejected(self, oidc_client: OidcClient, provider: FakeProvider) -> None:
        state = self._state(provider)
        provider.id_token_claims["sub"] = "someone-else"

        with pytest.raises(ValidationError, match="sub in id_token does not match current sub"):
            await oidc_client.use_refresh_token(state)


class TestSignout:
    """Tests for end-session requests and callbacks."""

    @pytest.mark.asyncio
    async def test_signout_round_trip(self, oidc_client: OidcClient, store: InMemoryStateStore) -> None:
        request = await oidc_client.create_signout_request(state={"bye": 1}, id_token_hint="id-token")

        params = _params(request.url)
        assert request.url.startswith(f"{ISSUER}/logout?")
        assert params["id_token_hint"] == "id-token"
        assert params["post_logout_redirect_uri"] == POST_LOGOUT_REDIRECT_URI
        assert "client_id" not in params
        assert await store.get_all_keys() == [request.state.id]

        response = await oidc_client.process_signout_response(
            f"{POST_LOGOUT_REDIRECT_URI}?state={params['state']}"
        )
        assert response.user_state == {"bye": 1}
        assert await store.get_all_keys() == []

    @pytest.mark.asyncio
    async def test_client_id_fallback_without_hint(self, oidc_client: OidcClient) -> None:
        request = await oidc_client.create_signout_request()
        assert _params(request.url)["client_id"] == CLIENT_ID
        assert request.state is None

    @pytest.mark.asyncio
    async def test_no_end_session_endpoint(self, oidc_client: OidcClient, provider: FakeProvider) -> None:
        del provider.metadata["end_session_endpoint"]
        with pytest.raises(MetadataError, match="No end session endpoint"):
            await oidc_client.create_signout_request()

    @pytest.mark.asyncio
    async def test_callback_without_state(self, oidc_client: OidcClient) -> None:
        response = await oidc_client.process_signout_response(POST_LOGOUT_REDIRECT_URI)
        assert response.state is None

    @pytest.mark.asyncio
    async def test_callback_error_without_state(self, oidc_client: OidcClient) -> None:
        with pytest.raises(ErrorResponse):
            await oidc_client.process_signout_response(f"{POST_LOGOUT_REDIRECT_URI}?error=server_error")

    @pytest.mark.asyncio
    async def test_callback_state_mismatch(self, oidc_client: OidcClient, store: InMemoryStateStore) -> None:
        # A stored state whose id differs from the key it was stored under
        await store.set("key-1", State().to_storage_string())
        with pytest.raises(StateMismatchError):
            await oidc_client.process_signout_response(f"{POST_LOGOUT_REDIRECT_URI}?state=key-1")

    @pytest.mark.asyncio
    async def test_callback_unreadable_state(self, oidc_client: OidcClient, store: InMemoryStateStore) -> None:
        await store.set("key-1", "{not json")
        with pytest.raises(ValidationError, match="Invalid state in storage"):
            await oidc_client.process_signout_response(f"{POST_LOGOUT_REDIRECT_URI}?state=key-1")


class TestRevokeToken:
    """Tests for OidcClient.revoke_token."""

    @pytest.mark.asyncio
    async def test_revoke(self, oidc_client: OidcClient, provider: FakeProvider) -> None:
        await oidc_client.revoke_token("rt", "refresh_token")

        form = form_of(provider.requests_to("/revoke")[0])
        assert form["token"] == ["rt"]
        assert form["token_type_hint"] == ["refresh_token"]
        assert form["client_id"] == [CLIENT_ID]


class TestClientLifecycle:
    """Tests for HTTP client ownership."""

    @pytest.mark.asyncio
    async def test_borrowed_client_is_not_closed(
        self, settings: OidcClientSettings, http_client: httpx.AsyncClient
    ) -> None:
        async with OidcClient(settings, http_client=http_client, protocol_logger=ProtocolLogger()):
            pass
        assert not http_client.is_closed

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self, settings: OidcClientSettings) -> None:
        client = OidcClient(settings, protocol_logger=ProtocolLogger())
        await client.aclose()
        assert client._http.is_closed


class TestProtocolLogs:
    """Tests for per-flow protocol logs."""

    def _logging_client(
        self, settings: OidcClientSettings, provider: FakeProvider, protocol_logger: ProtocolLogger
    ) -> OidcClient:
        async def handler(request: httpx.Request) -> httpx.Response:
            # Yield so concurrent flows interleave
            await asyncio.sleep(0)
            return provider.handler(request)

        http_client = create_http_client(protocol_logger, transport=httpx.MockTransport(handler))
        return OidcClient(settings, http_client=http_client, protocol_logger=protocol_logger)

    @pytest.mark.asyncio
    async def test_signin_response_carries_its_log(
        self, settings: OidcClientSettings, provider: FakeProvider
    ) -> None:
        completed: list[ProtocolLog] = []
        client = self._logging_client(settings, provider, ProtocolLogger(on_flow_complete=completed.append))

        request = await client.create_signin_request()
        response = await client.process_signin_response(f"{REDIRECT_URI}?code=c&state={request.state.id}")

        log = response.protocol_log
        assert log is not None
        assert log.flow_id == request.state.id
        assert log.flow_type == "signin"
        assert log.completed_at is not None
        assert [e.url for e in log.exchanges] == [f"{ISSUER}/token"]
        assert completed == [log]

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_keep_separate_logs(
        self, settings: OidcClientSettings, provider: FakeProvider
    ) -> None:
        completed: list[ProtocolLog] = []
        protocol_logger = ProtocolLogger(on_flow_complete=completed.append)
        client = self._logging_client(settings, provider, protocol_logger)

        def refresh_state(session_state: str) -> RefreshState:
            return RefreshState(
                refresh_token=f"rt-{session_state}",
                id_token=provider.id_token,
                session_state=session_state,
                scope="openid",
                profile={"sub": "user123"},
            )

        first, second = await asyncio.gather(
            client.use_refresh_token(refresh_state("flow-a")),
            client.use_refresh_token(refresh_state("flow-b")),
        )

        assert first.protocol_log.flow_id == "flow-a"
        assert second.protocol_log.flow_id == "flow-b"
        for response, token in ((first, "rt-flow-a"), (second, "rt-flow-b")):
            token_exchanges = [e for e in response.protocol_log.exchanges if e.url == f"{ISSUER}/token"]
            assert len(token_exchanges) == 1
            assert token in token_exchanges[0].request_body
        assert sorted(log.flow_id for log in completed) == ["flow-a", "flow-b"]
        assert protocol_logger.current_log is None
