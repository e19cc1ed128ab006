"""Tests for the OAuth client, state registry and TokenManager refresh logic."""

import asyncio
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from src.errors.domain import NotAuthenticated, TokenRefreshFailed, UpstreamError
from src.services.quickbooks_auth import OAuthStateRegistry, QuickBooksOAuthClient, TokenManager
from src.services.token_store import InMemoryCredentialStore
from tests.helpers import (
    FIXED_NOW,
    REALM_ID,
    FakeTokenEndpoint,
    fixed_clock,
    make_credential,
    make_settings,
    make_token_manager,
)


# ============================================================================
# OAuth client
# ============================================================================


class TestAuthorizationUrl:

    def test_contains_client_scope_and_state(self):
        client = QuickBooksOAuthClient(make_settings())
        url = client.authorization_url("abc123")

        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert url.startswith("https://appcenter.intuit.com/connect/oauth2?")
        assert params["client_id"] == "test-client-id"
        assert params["scope"] == "com.intuit.quickbooks.accounting"
        assert params["redirect_uri"] == "http://localhost:3001/auth/callback"
        assert params["response_type"] == "code"
        assert params["state"] == "abc123"


class TestExchangeCode:

    @pytest.mark.asyncio
    async def test_builds_credential_from_token_response(self):
        endpoint = FakeTokenEndpoint()
        client = QuickBooksOAuthClient(
            make_settings(),
            http_client=httpx.AsyncClient(transport=endpoint.transport()),
            now_fn=fixed_clock,
        )

        credential = await client.exchange_code("auth-code", REALM_ID)

        assert endpoint.calls[0]["grant_type"] == "authorization_code"
        assert endpoint.calls[0]["code"] == "auth-code"
        assert credential.realm_id == REALM_ID
        assert credential.access_token == "access-token-refreshed-0001"
        assert credential.expires_at == FIXED_NOW + timedelta(seconds=3600)
        assert credential.refresh_expires_at == FIXED_NOW + timedelta(seconds=8726400)

    @pytest.mark.asyncio
    async def test_rejected_code_raises_upstream_error(self):
        endpoint = FakeTokenEndpoint(status=400)
        client = QuickBooksOAuthClient(
            make_settings(),
            http_client=httpx.AsyncClient(transport=endpoint.transport()),
        )

        with pytest.raises(UpstreamError) as exc_info:
            await client.exchange_code("bad-code", REALM_ID)
        assert exc_info.value.upstream_status == 400
        assert exc_info.value.details["error"] == "invalid_grant"

    @pytest.mark.asyncio
    async def test_sends_basic_auth_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers["Authorization"]
            return httpx.Response(200, json={"access_token": "x" * 20, "expires_in": 60})

        client = QuickBooksOAuthClient(
            make_settings(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await client.exchange_code("code", REALM_ID)
        assert seen["authorization"].startswith("Basic ")


class TestOAuthStateRegistry:

    def test_state_is_single_use(self):
        states = OAuthStateRegistry()
        state = states.issue()
        assert states.has_pending is True
        assert states.consume(state) is True
        assert states.consume(state) is False
        assert states.has_pending is False

    def test_remembers_issuing_after_all_consumed(self):
        states = OAuthStateRegistry()
        assert states.issued_any is False
        states.consume(states.issue())
        assert states.has_pending is False
        assert states.issued_any is True

    def test_unknown_or_missing_state_rejected(self):
        states = OAuthStateRegistry()
        states.issue()
        assert states.consume("forged") is False
        assert states.consume(None) is False

    def test_oldest_states_forgotten_beyond_bound(self):
        states = OAuthStateRegistry(max_pending=2)
        first = states.issue()
        states.issue()
        states.issue()
        assert states.consume(first) is False


# ============================================================================
# TokenManager
# ============================================================================


class TestGetValidCredential:
    """Exactly one refresh inside the margin, zero otherwise."""

    @pytest.mark.asyncio
    async def test_not_connected_raises(self):
        manager = make_token_manager(None)
        with pytest.raises(NotAuthenticated):
            await manager.get_valid_access_token()

    @pytest.mark.asyncio
    async def test_valid_token_makes_no_refresh_call(self):
        endpoint = FakeTokenEndpoint()
        manager = make_token_manager(make_credential(timedelta(hours=1)), endpoint)

        token = await manager.get_valid_access_token()

        assert token == "access-token-initial-0001"
        assert endpoint.refresh_calls == 0

    @pytest.mark.asyncio
    async def test_token_inside_margin_refreshes_once(self):
        endpoint = FakeTokenEndpoint()
        manager = make_token_manager(make_credential(timedelta(minutes=4)), endpoint)

        token = await manager.get_valid_access_token()
        again = await manager.get_valid_access_token()

        assert token == "access-token-refreshed-0001"
        assert again == token
        assert endpoint.refresh_calls == 1
        assert endpoint.calls[0]["refresh_token"] == "refresh-token-initial-0001"

    @pytest.mark.asyncio
    async def test_refresh_persists_rotated_credential(self):
        endpoint = FakeTokenEndpoint()
        manager = make_token_manager(make_credential(timedelta(minutes=-1)), endpoint)

        await manager.get_valid_credential()

        stored = manager.current_credential()
        assert stored.access_token == "access-token-refreshed-0001"
        assert stored.refresh_token == "refresh-token-refreshed-0001"
        assert stored.realm_id == REALM_ID
        assert stored.expires_at == FIXED_NOW + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self):
        endpoint = FakeTokenEndpoint(delay=0.02)
        manager = make_token_manager(make_credential(timedelta(minutes=1)), endpoint)

        tokens = await asyncio.gather(
            *(manager.get_valid_access_token() for _ in range(8))
        )

        assert endpoint.refresh_calls == 1
        assert set(tokens) == {"access-token-refreshed-0001"}

    @pytest.mark.asyncio
    async def test_rejected_refresh_raises_and_is_not_retried(self):
        endpoint = FakeTokenEndpoint(status=400)
        original = make_credential(timedelta(minutes=1))
        manager = make_token_manager(original, endpoint)

        with pytest.raises(TokenRefreshFailed):
            await manager.get_valid_access_token()

        assert endpoint.refresh_calls == 1
        assert manager.current_credential() is original

    @pytest.mark.asyncio
    async def test_network_failure_raises_refresh_failed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        oauth = QuickBooksOAuthClient(
            make_settings(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            now_fn=fixed_clock,
        )
        manager = TokenManager(
            InMemoryCredentialStore(make_credential(timedelta(minutes=1))),
            oauth,
            now_fn=fixed_clock,
        )

        with pytest.raises(TokenRefreshFailed):
            await manager.get_valid_access_token()


class TestAuthorizationLifecycle:

    @pytest.mark.asyncio
    async def test_complete_authorization_stores_credential(self):
        manager = make_token_manager(None)
        assert manager.is_connected() is False

        credential = await manager.complete_authorization("code", "realm-42")

        assert manager.is_connected() is True
        assert manager.current_credential() is credential
        assert credential.realm_id == "realm-42"

    def test_disconnect_clears_credential(self):
        manager = make_token_manager(make_credential())
        manager.disconnect()
        assert manager.is_connected() is False
