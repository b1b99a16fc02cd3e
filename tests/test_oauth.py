"""
Tests for the OAuth authorization-code flow.
"""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from connectors.errors import NotAuthenticated, RemoteApiFailure
from connectors.oauth import OAuthFlowManager, OAuthProvider, OAuthStateStore
from utils.schemas import ConnectorKind, Credential, OAuthState, utcnow

PROVIDER = OAuthProvider(
    name="gitlab",
    authorize_url="https://gitlab.test/oauth/authorize",
    token_url="https://gitlab.test/oauth/token",
    client_id="client-id",
    client_secret="client-secret",
    redirect_uri="http://testserver/api/connector/login/callback",
    scopes=["api", "read_user"],
)


class TokenEndpoint:
    def __init__(self, status=200, body=None):
        self.status = status
        self.body = body if body is not None else {
            "access_token": "at-1",
            "refresh_token": "rt-1",
            "token_type": "Bearer",
            "expires_in": 7200,
        }
        self.forms = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.forms.append(parse_qs(request.content.decode()))
        return httpx.Response(self.status, json=self.body)


def _flow(credentials, endpoint, ttl=600):
    states = OAuthStateStore(ttl_seconds=ttl)
    flow = OAuthFlowManager(
        PROVIDER,
        ConnectorKind.GITLAB,
        credentials,
        states,
        transport=httpx.MockTransport(endpoint),
    )
    return flow, states


def _state_of(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


class TestAuthorizationUrl:
    def test_url_carries_client_scope_and_state(self, credentials):
        flow, states = _flow(credentials, TokenEndpoint())
        url = flow.start("s1", "gitlab-storage", {"type": "storage"})

        query = parse_qs(urlparse(url).query)
        assert url.startswith(PROVIDER.authorize_url)
        assert query["client_id"] == ["client-id"]
        assert query["response_type"] == ["code"]
        assert query["scope"] == ["api read_user"]
        assert query["redirect_uri"] == [PROVIDER.redirect_uri]
        assert len(states) == 1

    def test_states_are_unique(self, credentials):
        flow, _ = _flow(credentials, TokenEndpoint())
        assert _state_of(flow.start("s1", "c")) != _state_of(flow.start("s1", "c"))


class TestCallback:
    @pytest.mark.asyncio
    async def test_valid_state_completes_and_stores_credential(self, credentials):
        endpoint = TokenEndpoint()
        flow, _ = _flow(credentials, endpoint)
        state = _state_of(flow.start("s1", "gitlab-storage", {"redirect": "/editor"}))

        context = await flow.complete("s1", "the-code", state)

        assert context == {"redirect": "/editor"}
        stored = await credentials.get("s1", ConnectorKind.GITLAB)
        assert stored.access_token == "at-1"
        assert stored.refresh_token == "rt-1"
        assert stored.expires_at > utcnow()
        assert endpoint.forms[0]["grant_type"] == ["authorization_code"]
        assert endpoint.forms[0]["code"] == ["the-code"]

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, credentials):
        flow, _ = _flow(credentials, TokenEndpoint())
        state = _state_of(flow.start("s1", "gitlab-storage"))
        await flow.complete("s1", "code", state)

        with pytest.raises(NotAuthenticated):
            await flow.complete("s1", "code", state)

    @pytest.mark.asyncio
    async def test_unknown_state_rejected(self, credentials):
        flow, _ = _flow(credentials, TokenEndpoint())
        with pytest.raises(NotAuthenticated):
            await flow.complete("s1", "code", "made-up")

    @pytest.mark.asyncio
    async def test_expired_state_rejected(self, credentials):
        endpoint = TokenEndpoint()
        flow, states = _flow(credentials, endpoint, ttl=600)
        states.put(
            OAuthState(
                token="old-state",
                session_id="s1",
                connector_id="gitlab-storage",
                created_at=utcnow() - timedelta(seconds=601),
            )
        )

        with pytest.raises(NotAuthenticated):
            await flow.complete("s1", "code", "old-state")
        assert endpoint.forms == []

    @pytest.mark.asyncio
    async def test_state_bound_to_other_session_rejected(self, credentials):
        flow, _ = _flow(credentials, TokenEndpoint())
        state = _state_of(flow.start("s1", "gitlab-storage"))

        with pytest.raises(NotAuthenticated):
            await flow.complete("s2", "code", state)
        assert await credentials.get("s2", ConnectorKind.GITLAB) is None

    @pytest.mark.asyncio
    async def test_rejected_code_is_remote_failure(self, credentials):
        flow, _ = _flow(credentials, TokenEndpoint(400, {"error": "invalid_grant"}))
        state = _state_of(flow.start("s1", "gitlab-storage"))

        with pytest.raises(RemoteApiFailure) as excinfo:
            await flow.complete("s1", "bad-code", state)
        assert excinfo.value.code == 400
        assert await credentials.get("s1", ConnectorKind.GITLAB) is None


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_returns_new_credential(self, credentials):
        endpoint = TokenEndpoint(body={"access_token": "at-2", "expires_in": 60})
        flow, _ = _flow(credentials, endpoint)

        fresh = await flow.refresh(Credential(access_token="at-1", refresh_token="rt-1"))

        assert fresh.access_token == "at-2"
        assert endpoint.forms[0]["grant_type"] == ["refresh_token"]
        assert endpoint.forms[0]["refresh_token"] == ["rt-1"]

    @pytest.mark.asyncio
    async def test_rejected_refresh_is_not_authenticated(self, credentials):
        flow, _ = _flow(credentials, TokenEndpoint(400, {"error": "invalid_grant"}))
        with pytest.raises(NotAuthenticated):
            await flow.refresh(Credential(access_token="at-1", refresh_token="rt-1"))

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, credentials):
        flow, _ = _flow(credentials, TokenEndpoint())
        with pytest.raises(NotAuthenticated):
            await flow.refresh(Credential(access_token="at-1"))


class TestStateStore:
    def test_put_purges_expired_states(self):
        store = OAuthStateStore(ttl_seconds=10)
        store.put(OAuthState(token="a", session_id="s", connector_id="c",
                             created_at=utcnow() - timedelta(seconds=60)))
        store.put(OAuthState(token="b", session_id="s", connector_id="c"))

        assert len(store) == 1
        assert store.peek("b") is not None
        assert store.consume("b") is not None
        assert store.consume("b") is None
