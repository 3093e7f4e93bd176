"""Tests for the SSE applications and their OAuth endpoints."""

import asyncio
import re
from urllib.parse import parse_qs, urlparse

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.testclient import TestClient

from claude_code_mcp.config import AuthSettings
from claude_code_mcp.services.oauth_store import OAuthStore, s256_challenge
from claude_code_mcp.web.sse import check_bearer, create_sse_app, proxied_prefix

REDIRECT_URI = "https://claude.ai/api/mcp/auth_callback"


def _app(auth_required=False, store=None):
    from claude_code_mcp.server import server

    return create_sse_app(
        lambda: server,
        name="claude-code",
        version="9.9.9",
        service="claude-code-mcp-sse",
        prefix="claude-code",
        auth=AuthSettings(auth_required=auth_required),
        store=store,
    )


def _request(path="/sse", headers=None):
    scope = {
        "type": "http",
        "method": "GET",
        "path": path,
        "root_path": "",
        "scheme": "http",
        "server": ("testserver", 80),
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    return Request(scope)


@pytest.fixture
def client():
    return TestClient(_app(), raise_server_exceptions=False)


def _register(client, **body):
    response = client.post("/register", json={"redirect_uris": [REDIRECT_URI], **body})
    assert response.status_code == 201
    return response.json()


def _authorize(client, registration, **params):
    query = {
        "client_id": registration["client_id"],
        "redirect_uri": REDIRECT_URI,
        "response_type": "code",
        "state": "xyz",
        **params,
    }
    return client.get("/oauth/authorize", params=query, follow_redirects=False)


def _code(response):
    assert response.status_code == 302
    return parse_qs(urlparse(response.headers["location"]).query)


class TestCreateSseApp:
    """Tests for the app factory."""

    def test_creates_starlette_app(self):
        """Test that the factory returns a Starlette app."""
        assert isinstance(_app(), Starlette)

    def test_routes(self):
        """Test that all endpoints are routed."""
        paths = [route.path for route in _app().routes if hasattr(route, "path")]
        for path in ["/health", "/sse", "/.well-known/mcp", "/register", "/oauth/authorize", "/oauth/token"]:
            assert path in paths
        assert "/messages" in paths

    def test_claude_code_app(self):
        """Test the Claude Code SSE app."""
        from claude_code_mcp.mcp_sse import create_app

        response = TestClient(create_app()).get("/health")
        assert response.json()["service"] == "claude-code-mcp-sse"

    def test_thinking_app(self):
        """Test the sequential thinking SSE app."""
        from claude_code_mcp.thinking_sse import create_app

        response = TestClient(create_app()).get("/.well-known/mcp")
        assert response.json()["name"] == "sequential-thinking"


class TestDiscovery:
    """Tests for health and discovery endpoints."""

    def test_health(self, client):
        """Test the health check."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "claude-code-mcp-sse", "version": "9.9.9"}

    def test_mcp_discovery(self, client):
        """Test the MCP discovery document."""
        body = client.get("/.well-known/mcp").json()
        assert body["transport"] == "sse"
        assert body["endpoints"] == {"sse": "/sse", "messages": "/messages/"}

    def test_oauth_discovery(self, client):
        """Test the OAuth discovery document."""
        body = client.get("/.well-known/oauth-authorization-server").json()
        assert body["issuer"] == "http://testserver"
        assert body["token_endpoint"] == "http://testserver/oauth/token"
        assert body["code_challenge_methods_supported"] == ["S256"]
        assert "none" in body["token_endpoint_auth_methods_supported"]

    def test_cors_preflight(self, client):
        """Test that CORS preflight requests are answered."""
        response = client.options(
            "/sse",
            headers={
                "Origin": "https://claude.ai",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "Authorization",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] in ("*", "https://claude.ai")


class TestRegister:
    """Tests for /register."""

    def test_register(self, client):
        """Test registering a confidential client."""
        body = _register(client, client_name="Claude")
        assert body["client_id"].startswith("claude_")
        assert len(body["client_secret"]) == 64
        assert body["redirect_uris"] == [REDIRECT_URI]
        assert body["token_endpoint_auth_method"] == "client_secret_post"

    def test_register_public_client(self, client):
        """Test that a public client gets no secret."""
        body = _register(client, token_endpoint_auth_method="none")
        assert "client_secret" not in body

    def test_invalid_json(self, client):
        """Test that a malformed body is rejected."""
        response = client.post("/register", content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_missing_redirect_uris(self, client):
        """Test that redirect_uris are required."""
        response = client.post("/register", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_redirect_uri"

    def test_registration_limit(self):
        """Test that registration answers 503 once the client limit is reached."""
        client = TestClient(_app(store=OAuthStore(max_clients=1)))
        _register(client)

        response = client.post("/register", json={"redirect_uris": [REDIRECT_URI]})

        assert response.status_code == 503
        assert response.json()["error"] == "temporarily_unavailable"


class TestAuthorize:
    """Tests for /oauth/authorize."""

    def test_issues_code(self, client):
        """Test that authorization redirects with a code and the state."""
        params = _code(_authorize(client, _register(client)))
        assert params["state"] == ["xyz"]
        assert params["code"][0]

    def test_unknown_client(self, client):
        """Test that an unknown client gets a 400 and no redirect."""
        response = client.get(
            "/oauth/authorize",
            params={"client_id": "claude_nope", "redirect_uri": REDIRECT_URI, "response_type": "code"},
            follow_redirects=False,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_client"

    def test_unregistered_redirect_not_followed(self, client):
        """Test that an unregistered redirect URI is never followed."""
        response = _authorize(client, _register(client), redirect_uri="https://evil.example/cb")
        assert response.status_code == 400
        assert "location" not in response.headers

    def test_single_redirect_uri_may_be_omitted(self, client):
        """Test that a sole registered redirect URI is the default."""
        registration = _register(client)
        response = client.get(
            "/oauth/authorize",
            params={"client_id": registration["client_id"], "response_type": "code"},
            follow_redirects=False,
        )
        assert response.headers["location"].startswith(REDIRECT_URI)

    def test_unsupported_response_type(self, client):
        """Test that response types other than code are refused."""
        params = _code(_authorize(client, _register(client), response_type="token"))
        assert params["error"] == ["unsupported_response_type"]

    def test_plain_pkce_rejected(self, client):
        """Test that the plain PKCE method is refused."""
        params = _code(
            _authorize(client, _register(client), code_challenge="abc", code_challenge_method="plain")
        )
        assert params["error"] == ["invalid_request"]

    def test_public_client_requires_pkce(self, client):
        """Test that a public client must use PKCE."""
        params = _code(_authorize(client, _register(client, token_endpoint_auth_method="none")))
        assert params["error"] == ["invalid_request"]


class TestToken:
    """Tests for /oauth/token."""

    def test_code_flow_with_form_post(self, client):
        """Test the code grant with form-encoded credentials."""
        registration = _register(client)
        code = _code(_authorize(client, registration))["code"][0]

        response = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": REDIRECT_URI,
                "client_id": registration["client_id"],
                "client_secret": registration["client_secret"],
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 3600
        assert body["access_token"] and body["refresh_token"]
        assert response.headers["cache-control"] == "no-store"

    def test_code_flow_with_basic_auth_and_json(self, client):
        """Test the code grant with Basic auth and a JSON body."""
        registration = _register(client, token_endpoint_auth_method="client_secret_basic")
        code = _code(_authorize(client, registration))["code"][0]

        response = client.post(
            "/oauth/token",
            json={"grant_type": "authorization_code", "code": code},
            auth=(registration["client_id"], registration["client_secret"]),
        )

        assert response.status_code == 200

    def test_code_reuse_rejected(self, client):
        """Test that a code cannot be used twice."""
        registration = _register(client)
        code = _code(_authorize(client, registration))["code"][0]
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": registration["client_id"],
            "client_secret": registration["client_secret"],
        }

        assert client.post("/oauth/token", data=data).status_code == 200
        response = client.post("/oauth/token", data=data)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_wrong_secret(self, client):
        """Test that a wrong client secret is rejected with 401."""
        registration = _register(client)
        code = _code(_authorize(client, registration))["code"][0]

        response = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": registration["client_id"],
                "client_secret": "0" * 64,
            },
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_client"

    def test_public_client_pkce_flow(self, client):
        """Test the code grant for a public client with PKCE."""
        registration = _register(client, token_endpoint_auth_method="none")
        verifier = "verifier-" + "x" * 50
        code = _code(
            _authorize(client, registration, code_challenge=s256_challenge(verifier), code_challenge_method="S256")
        )["code"][0]

        response = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": registration["client_id"],
                "code_verifier": verifier,
            },
        )

        assert response.status_code == 200

    def test_refresh_rotation(self, client):
        """Test that a refresh token works once and is rotated."""
        registration = _register(client)
        code = _code(_authorize(client, registration))["code"][0]
        credentials = {"client_id": registration["client_id"], "client_secret": registration["client_secret"]}
        tokens = client.post(
            "/oauth/token", data={"grant_type": "authorization_code", "code": code, **credentials}
        ).json()

        refreshed = client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"], **credentials},
        )
        reused = client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"], **credentials},
        )

        assert refreshed.status_code == 200
        assert refreshed.json()["refresh_token"] != tokens["refresh_token"]
        assert reused.status_code == 400

    def test_unsupported_grant_type(self, client):
        """Test that unknown grant types are refused."""
        registration = _register(client)
        response = client.post(
            "/oauth/token",
            data={
                "grant_type": "password",
                "client_id": registration["client_id"],
                "client_secret": registration["client_secret"],
            },
        )
        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_grant_type"


class TestSseAuth:
    """Tests for bearer checks on /sse."""

    def test_invalid_token_rejected(self, client):
        """Test that an invalid bearer token is rejected."""
        response = client.get("/sse", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401
        assert response.headers["www-authenticate"].startswith("Bearer")

    def test_wrong_scheme_rejected(self, client):
        """Test that a non-Bearer scheme is rejected."""
        response = client.get("/sse", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_token_required_when_auth_enabled(self):
        """Test that a token is required when auth is enabled."""
        client = TestClient(_app(auth_required=True), raise_server_exceptions=False)
        response = client.get("/sse")
        assert response.status_code == 401

    def test_check_bearer_accepts_valid_token(self):
        """Test that a valid token passes the check."""
        store = OAuthStore()
        registered, _ = store.register_client([REDIRECT_URI])
        pair = store.exchange_code(registered, store.issue_code(registered, REDIRECT_URI))

        request = _request(headers={"Authorization": f"Bearer {pair.access_token}"})

        assert check_bearer(request, store, auth_required=True) is None

    def test_check_bearer_allows_anonymous_when_optional(self):
        """Test that no token passes when auth is optional."""
        assert check_bearer(_request(), OAuthStore(), auth_required=False) is None

    def test_store_cleared_on_shutdown(self):
        """Test that shutdown clears the OAuth store."""
        store = OAuthStore()
        registered, _ = store.register_client([REDIRECT_URI])

        with TestClient(_app(store=store)):
            assert store.get_client(registered.client_id) is registered

        assert store.get_client(registered.client_id) is None


class TestProxiedPrefix:
    """Tests for reverse proxy detection."""

    def test_original_url_header(self):
        """Test detection via X-Original-URL."""
        assert proxied_prefix(_request(headers={"X-Original-URL": "/claude-code/sse"}), "claude-code")

    def test_referer(self):
        """Test detection via the Referer header."""
        request = _request(headers={"Referer": "https://host.example/claude-code/page"})
        assert proxied_prefix(request, "claude-code")

    def test_direct_access(self):
        """Test that direct requests are not treated as proxied."""
        assert not proxied_prefix(_request(), "claude-code")

    def test_other_prefix(self):
        """Test that another server's prefix does not match."""
        request = _request(headers={"X-Original-URL": "/sequential-thinking/sse"})
        assert not proxied_prefix(request, "claude-code")


async def _endpoint_event(app, headers=None):
    """Open /sse on the ASGI app and return the advertised messages endpoint."""
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/sse",
        "raw_path": b"/sse",
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"testserver")]
        + [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "server": ("testserver", 80),
        "client": ("127.0.0.1", 50000),
    }
    body = bytearray()
    endpoint = asyncio.Event()
    disconnected = asyncio.Event()

    async def receive():
        await disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.body":
            body.extend(message.get("body", b""))
            if b"event: endpoint" in body:
                endpoint.set()

    task = asyncio.create_task(app(scope, receive, send))
    try:
        await asyncio.wait_for(endpoint.wait(), timeout=5)
    finally:
        disconnected.set()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    match = re.search(r"event: endpoint\r?\ndata: (\S+)", body.decode())
    return match.group(1)


class TestSseStream:
    """Tests for opening the SSE stream itself."""

    @pytest.mark.asyncio
    async def test_direct_endpoint_is_unprefixed(self):
        """Test that a direct connection gets the plain messages path."""
        endpoint = await _endpoint_event(_app())
        assert endpoint.startswith("/messages/?session_id=")

    @pytest.mark.asyncio
    async def test_proxied_endpoint_carries_prefix(self):
        """Test that a connection through the proxy gets the prefixed messages path."""
        endpoint = await _endpoint_event(_app(), headers={"X-Original-URL": "/claude-code/sse"})
        assert endpoint.startswith("/claude-code/messages/?session_id=")

    @pytest.mark.asyncio
    async def test_valid_token_opens_stream(self):
        """Test that a valid bearer token opens the stream when auth is required."""
        store = OAuthStore()
        registered, _ = store.register_client([REDIRECT_URI])
        pair = store.exchange_code(registered, store.issue_code(registered, REDIRECT_URI))

        endpoint = await _endpoint_event(
            _app(auth_required=True, store=store),
            headers={"Authorization": f"Bearer {pair.access_token}"},
        )

        assert endpoint.startswith("/messages/?session_id=")
