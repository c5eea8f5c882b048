try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from token_bridge.core.errors import ProviderError, ProviderErrorKind
from token_bridge.main import app
from token_bridge.middleware.rate_limit import FixedWindowRateLimiter, get_rate_limiter
from token_bridge.models.oauth import ProviderTokenGrant
from token_bridge.services.credential_store import CredentialStore
from token_bridge.services.ephemeral import EphemeralRegistry
from token_bridge.services.token_cipher import TokenCipherService

CONNECTOR_REDIRECT = "https://script.google.com/macros/d/abc123/usercallback"


class DummyOAuthClient:
    def __init__(self) -> None:
        self.states: list[str] = []
        self.codes: list[str] = []

    def build_authorization_url(self, state: str) -> str:
        self.states.append(state)
        return f"https://provider.example.com/auth?state={state}"

    async def exchange_authorization_code(self, code: str) -> ProviderTokenGrant:
        self.codes.append(code)
        if code == "rejected-code":
            raise ProviderError(ProviderErrorKind.REJECTED, provider_code="invalid_grant")
        now = datetime.now(timezone.utc)
        return ProviderTokenGrant(
            access_token="provider-access",
            refresh_token="provider-refresh",
            expires_at=now + timedelta(hours=24),
            refresh_expires_at=now + timedelta(days=365),
            scopes="user.info.basic,video.list",
            open_id=None if code == "anonymous-code" else "open-123",
        )

    async def refresh_token(self, refresh_token: str) -> ProviderTokenGrant:  # pragma: no cover
        raise AssertionError("refresh should not be needed in these tests")


class DummyAPIClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict]] = []

    async def get_user(self, access_token: str, fields=None):
        self.calls.append(("user", access_token, {"fields": fields}))
        return 200, {"data": {"user": {"open_id": "open-123"}}, "error": {"code": "ok"}}

    async def list_items(self, access_token: str, fields=None, max_count=20, cursor=None):
        self.calls.append(("items", access_token, {"fields": fields, "max_count": max_count, "cursor": cursor}))
        return 200, {"data": {"videos": [], "has_more": False}, "error": {"code": "ok"}}


@pytest.fixture()
def bridge_overrides(tmp_path):
    from token_bridge import dependencies
    from token_bridge.core.config import get_settings

    oauth_client = DummyOAuthClient()
    api_client = DummyAPIClient()
    store = CredentialStore(
        file_path=tmp_path / "tokens.json",
        token_cipher=TokenCipherService(key="7e" * 32),
    )
    state = {"settings": get_settings().model_copy(deep=True)}
    state_registry = EphemeralRegistry(name="test-state", ttl_seconds=600)
    code_registry = EphemeralRegistry(name="test-code", ttl_seconds=600)
    limiter = FixedWindowRateLimiter()

    overrides = {
        dependencies.get_provider_oauth_client: lambda: oauth_client,
        dependencies.get_provider_api_client: lambda: api_client,
        dependencies.get_credential_store: lambda: store,
        dependencies.get_state_registry: lambda: state_registry,
        dependencies.get_auth_code_registry: lambda: code_registry,
        dependencies.get_app_settings: lambda: state["settings"],
        get_rate_limiter: lambda: limiter,
    }

    app.dependency_overrides.update(overrides)

    yield oauth_client, api_client, store, state

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


async def _authorize(client: httpx.AsyncClient, oauth_client: DummyOAuthClient) -> str:
    """Run Hop B authorize and Hop A callback; return the unredeemed bridge code."""
    authorize = await client.get(
        "/oauth/authorize",
        params={
            "client_id": "test-connector",
            "redirect_uri": CONNECTOR_REDIRECT,
            "state": "connector-state",
            "response_type": "code",
        },
    )
    assert authorize.status_code == 302
    assert authorize.headers["location"].startswith("https://provider.example.com/auth")

    callback = await client.get(
        "/auth/provider/callback",
        params={"code": "provider-code", "state": oauth_client.states[-1]},
    )
    assert callback.status_code == 302
    location = urlparse(callback.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == CONNECTOR_REDIRECT
    query = parse_qs(location.query)
    assert query["state"] == ["connector-state"]
    return query["code"][0]


async def _connect(client: httpx.AsyncClient, oauth_client: DummyOAuthClient) -> tuple[dict, str]:
    """Run the whole connect flow including the code exchange."""
    code = await _authorize(client, oauth_client)
    token = await client.post(
        "/oauth/token",
        data={"grant_type": "authorization_code", "code": code},
    )
    assert token.status_code == 200
    return token.json(), code


@pytest.mark.anyio
async def test_health() -> None:
    async with _client() as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_bridge_flow_issues_backend_tokens_and_relays_resources(bridge_overrides):
    oauth_client, api_client, store, _ = bridge_overrides

    async with _client() as client:
        tokens, _ = await _connect(client, oauth_client)

        assert tokens["token_type"] == "Bearer"
        assert tokens["expires_in"] == 3600
        assert tokens["scope"] == "user.info.basic,video.list"
        assert "provider-access" not in tokens.values()

        user = await client.get(
            "/api/provider/user",
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )
        items = await client.get(
            "/api/provider/items",
            params={"fields": "id,title", "max_count": 5, "cursor": 10},
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )

    assert oauth_client.codes == ["provider-code"]
    record = await store.get("open-123")
    assert record is not None and record.access_token == "provider-access"

    assert user.status_code == 200
    assert user.json()["data"]["user"]["open_id"] == "open-123"
    assert items.status_code == 200
    assert api_client.calls == [
        ("user", "provider-access", {"fields": None}),
        ("items", "provider-access", {"fields": ["id", "title"], "max_count": 5, "cursor": 10}),
    ]


@pytest.mark.anyio
async def test_authorization_code_is_single_use(bridge_overrides):
    oauth_client, *_ = bridge_overrides

    async with _client() as client:
        _, code = await _connect(client, oauth_client)
        replay = await client.post(
            "/oauth/token",
            data={"grant_type": "authorization_code", "code": code},
        )

    assert replay.status_code == 400
    assert replay.json()["error"] == "invalid_grant"


@pytest.mark.anyio
async def test_refresh_grant_reuses_refresh_token_by_default(bridge_overrides):
    oauth_client, *_ = bridge_overrides

    async with _client() as client:
        tokens, _ = await _connect(client, oauth_client)
        refreshed = await client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"]},
        )
        wrong_type = await client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": tokens["access_token"]},
        )

    assert refreshed.status_code == 200
    assert refreshed.json()["refresh_token"] == tokens["refresh_token"]
    assert wrong_type.status_code == 400
    assert wrong_type.json()["error"] == "invalid_grant"


@pytest.mark.anyio
async def test_refresh_token_cannot_call_resource_endpoints(bridge_overrides):
    oauth_client, *_ = bridge_overrides

    async with _client() as client:
        tokens, _ = await _connect(client, oauth_client)
        response = await client.get(
            "/api/provider/user",
            headers={"Authorization": f"Bearer {tokens['refresh_token']}"},
        )
        missing = await client.get("/api/provider/user")

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_access_token"
    assert missing.status_code == 401
    assert missing.json()["error"] == "missing_access_token"


@pytest.mark.anyio
async def test_unknown_grant_type(bridge_overrides):
    async with _client() as client:
        response = await client.post("/oauth/token", data={"grant_type": "password"})

    assert response.status_code == 400
    assert response.json()["error"] == "unsupported_grant_type"


@pytest.mark.anyio
async def test_client_secret_enforced_when_configured(bridge_overrides):
    oauth_client, _, _, state = bridge_overrides
    settings = state["settings"]
    state["settings"] = settings.model_copy(
        update={"bridge": settings.bridge.model_copy(update={"client_secret": "connector-secret"})}
    )

    async with _client() as client:
        response = await client.post(
            "/oauth/token",
            data={"grant_type": "authorization_code", "code": "anything", "client_secret": "wrong"},
        )

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_client"


@pytest.mark.parametrize(
    ("params", "error"),
    [
        ({"response_type": "token"}, "unsupported_response_type"),
        ({"client_id": "someone-else"}, "unauthorized_client"),
        ({"state": None}, "invalid_request"),
        ({"redirect_uri": "https://evil.example.com/callback"}, "invalid_redirect_uri"),
        ({"redirect_uri": "javascript://script.google.com/%0aalert(1)"}, "invalid_redirect_uri"),
    ],
)
@pytest.mark.anyio
async def test_authorize_rejects_bad_requests(bridge_overrides, params, error):
    oauth_client, *_ = bridge_overrides
    query = {
        "client_id": "test-connector",
        "redirect_uri": CONNECTOR_REDIRECT,
        "state": "connector-state",
        "response_type": "code",
    }
    query.update(params)
    query = {key: value for key, value in query.items() if value is not None}

    async with _client() as client:
        response = await client.get("/oauth/authorize", params=query)

    assert response.status_code == 400
    assert response.json()["error"] == error
    assert oauth_client.states == []


@pytest.mark.anyio
async def test_backend_host_is_an_allowed_redirect(bridge_overrides):
    async with _client() as client:
        response = await client.get(
            "/oauth/authorize",
            params={
                "client_id": "test-connector",
                "redirect_uri": "https://bridge.example.com/connector/done",
                "state": "s",
                "response_type": "code",
            },
        )

    assert response.status_code == 302


@pytest.mark.anyio
async def test_direct_flow_renders_success_page(bridge_overrides):
    oauth_client, _, store, _ = bridge_overrides

    async with _client() as client:
        start = await client.get("/auth/provider/start")
        callback = await client.get(
            "/auth/provider/callback",
            params={"code": "provider-code", "state": oauth_client.states[-1]},
        )

    assert start.status_code == 302
    assert callback.status_code == 200
    assert "text/html" in callback.headers["content-type"]
    assert "Success!" in callback.text
    assert await store.get("open-123") is not None


@pytest.mark.anyio
async def test_callback_state_is_single_use(bridge_overrides):
    oauth_client, *_ = bridge_overrides

    async with _client() as client:
        await client.get("/auth/provider/start")
        state = oauth_client.states[-1]
        first = await client.get("/auth/provider/callback", params={"code": "provider-code", "state": state})
        replay = await client.get("/auth/provider/callback", params={"code": "provider-code", "state": state})

    assert first.status_code == 200
    assert replay.status_code == 400
    assert "invalid_state" in replay.text
    assert oauth_client.codes == ["provider-code"]


@pytest.mark.parametrize(
    ("params", "expected"),
    [
        ({"error": "access_denied", "error_description": "<script>x</script>"}, "access_denied"),
        ({"code": "provider-code"}, "invalid_request"),
        ({"code": "provider-code", "state": "never-issued"}, "invalid_state"),
    ],
)
@pytest.mark.anyio
async def test_callback_errors_render_html(bridge_overrides, params, expected):
    async with _client() as client:
        response = await client.get("/auth/provider/callback", params=params)

    assert response.status_code == 400
    assert "text/html" in response.headers["content-type"]
    assert expected in response.text
    assert "<script>" not in response.text


@pytest.mark.parametrize(
    ("code", "expected"),
    [("rejected-code", "token_exchange_failed"), ("anonymous-code", "missing_subject")],
)
@pytest.mark.anyio
async def test_callback_exchange_failures(bridge_overrides, code, expected):
    oauth_client, _, store, _ = bridge_overrides

    async with _client() as client:
        await client.get("/auth/provider/start")
        response = await client.get(
            "/auth/provider/callback",
            params={"code": code, "state": oauth_client.states[-1]},
        )

    assert response.status_code == 400
    assert expected in response.text
    assert await store.list_safe() == []


@pytest.mark.anyio
async def test_revoke_forgets_provider_credentials(bridge_overrides):
    oauth_client, *_ = bridge_overrides

    async with _client() as client:
        tokens, _ = await _connect(client, oauth_client)
        headers = {"Authorization": f"Bearer {tokens['access_token']}"}
        revoked = await client.post("/api/connector/revoke", headers=headers)
        again = await client.post("/api/connector/revoke", headers=headers)
        user = await client.get("/api/provider/user", headers=headers)

    assert revoked.status_code == 200
    assert revoked.json() == {"revoked": True}
    assert again.status_code == 404
    assert again.json() == {"revoked": False}
    assert user.status_code == 401
    assert user.json()["error"] == "invalid_subject"


@pytest.mark.parametrize(
    "params",
    [{"max_count": 0}, {"max_count": "many"}, {"cursor": -1}, {"fields": "id;drop"}],
)
@pytest.mark.anyio
async def test_item_listing_validates_parameters(bridge_overrides, params):
    oauth_client, api_client, _, _ = bridge_overrides

    async with _client() as client:
        tokens, _ = await _connect(client, oauth_client)
        response = await client.get(
            "/api/provider/items",
            params=params,
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"
    assert api_client.calls == []


@pytest.mark.anyio
async def test_item_listing_clamps_oversized_page(bridge_overrides):
    oauth_client, api_client, _, _ = bridge_overrides

    async with _client() as client:
        tokens, _ = await _connect(client, oauth_client)
        response = await client.get(
            "/api/provider/items",
            params={"max_count": 50},
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )

    assert response.status_code == 200
    assert api_client.calls == [("items", "provider-access", {"fields": None, "max_count": 20, "cursor": None})]


@pytest.mark.anyio
async def test_auth_surface_rate_limit(bridge_overrides):
    _, _, _, state = bridge_overrides
    settings = state["settings"]
    state["settings"] = settings.model_copy(
        update={"rate_limit": settings.rate_limit.model_copy(update={"auth_max_requests": 2})}
    )

    async with _client() as client:
        responses = [await client.get("/auth/provider/start") for _ in range(3)]
        health = await client.get("/health")

    assert [response.status_code for response in responses] == [302, 302, 429]
    assert responses[-1].json() == {"error": "rate_limited"}
    assert int(responses[-1].headers["retry-after"]) >= 1
    assert health.status_code == 200


@pytest.mark.anyio
async def test_token_endpoint_rejects_foreign_client_id(bridge_overrides):
    oauth_client, *_ = bridge_overrides

    async with _client() as client:
        code = await _authorize(client, oauth_client)
        foreign = await client.post(
            "/oauth/token",
            data={"grant_type": "authorization_code", "code": code, "client_id": "someone-else"},
        )
        own = await client.post(
            "/oauth/token",
            data={"grant_type": "authorization_code", "code": code, "client_id": "test-connector"},
        )

    assert foreign.status_code == 401
    assert foreign.json()["error"] == "invalid_client"
    # The rejected attempt did not burn the one-time code.
    assert own.status_code == 200
