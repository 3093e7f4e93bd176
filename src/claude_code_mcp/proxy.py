"""Reverse proxy exposing both SSE servers under one origin.

``/claude-code/*`` goes to the Claude Code server and ``/sequential-thinking/*``
to the sequential thinking server, with the prefix stripped. OAuth lives on
the Claude Code server; the root-level OAuth endpoints are forwarded there.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask
from starlette.datastructures import Headers

from claude_code_mcp import __version__
from claude_code_mcp.config import ProxySettings, proxy_settings

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("claude_code_mcp.proxy")

CLAUDE_CODE_PREFIX = "claude-code"
THINKING_PREFIX = "sequential-thinking"

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# SSE streams stay open indefinitely
UPSTREAM_TIMEOUT = httpx.Timeout(10.0, read=None)


class RequestLogMiddleware:
    """Log method, path and MCP headers of every HTTP request."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            headers = Headers(scope=scope)
            logger.info(
                f"{scope['method']} {scope['path']} "
                f"mcp-session-id={headers.get('mcp-session-id')} "
                f"content-type={headers.get('content-type')}"
            )
        await self.app(scope, receive, send)


def _request_headers(request: Request) -> dict:
    return {
        key: value
        for key, value in request.headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS and key.lower() not in ("host", "content-length")
    }


def _response_headers(upstream: httpx.Response) -> dict:
    # The body is re-streamed decoded, so its encoding and length no longer apply
    return {
        key: value
        for key, value in upstream.headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS
        and key.lower() not in ("content-encoding", "content-length")
    }


async def forward(
    request: Request,
    base_url: str,
    path: str,
    service: str,
    proxied: bool = True,
):
    """Forward a request upstream and stream the response back.

    With ``proxied`` set, the upstream learns the original path through
    ``X-Original-URL`` so it can advertise prefixed endpoints.
    """
    client: httpx.AsyncClient = request.app.state.http_client

    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    if request.url.query:
        url += f"?{request.url.query}"

    headers = _request_headers(request)
    if proxied:
        original_url = request.url.path
        if request.url.query:
            original_url += f"?{request.url.query}"
        headers["x-original-url"] = original_url
        headers["connection"] = "keep-alive"
        headers["cache-control"] = "no-cache"

    upstream_request = client.build_request(
        request.method,
        url,
        headers=headers,
        content=await request.body(),
    )
    try:
        upstream = await client.send(upstream_request, stream=True)
    except httpx.RequestError as e:
        logger.error(f"Upstream {service} unreachable at {url}: {e}")
        return JSONResponse({"error": "Bad gateway", "service": service}, status_code=502)

    return StreamingResponse(
        upstream.aiter_bytes(),
        status_code=upstream.status_code,
        headers=_response_headers(upstream),
        background=BackgroundTask(upstream.aclose),
    )


def create_app(
    settings: Optional[ProxySettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create and configure the proxy application.

    Args:
        settings: Upstream URLs and bind address (defaults to the environment's)
        transport: httpx transport for upstream calls (tests pass a mock)
    """
    settings = settings or proxy_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - one upstream client per app."""
        app.state.http_client = httpx.AsyncClient(timeout=UPSTREAM_TIMEOUT, transport=transport)
        yield
        await app.state.http_client.aclose()

    app = FastAPI(
        title="Claude Code MCP Proxy",
        description="Single origin for the Claude Code and sequential thinking MCP servers",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(RequestLogMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "MCP-Session-Id"],
    )

    @app.get("/.well-known/oauth-authorization-server")
    async def oauth_discovery(request: Request):
        base_url = str(request.base_url).rstrip("/")
        return {
            "issuer": base_url,
            "authorization_endpoint": f"{base_url}/oauth/authorize",
            "token_endpoint": f"{base_url}/oauth/token",
            "registration_endpoint": f"{base_url}/register",
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code", "refresh_token"],
            "token_endpoint_auth_methods_supported": ["client_secret_post", "client_secret_basic", "none"],
            "code_challenge_methods_supported": ["S256"],
            "services": {
                CLAUDE_CODE_PREFIX: f"{base_url}/{CLAUDE_CODE_PREFIX}",
                THINKING_PREFIX: f"{base_url}/{THINKING_PREFIX}",
            },
        }

    @app.get("/.well-known/mcp")
    async def mcp_discovery():
        oauth = {"discovery": "/.well-known/oauth-authorization-server"}
        return {
            "services": [
                {
                    "name": "ClaudeCode",
                    "version": __version__,
                    "transport": "sse",
                    "endpoints": {
                        "sse": f"/{CLAUDE_CODE_PREFIX}/sse",
                        "messages": f"/{CLAUDE_CODE_PREFIX}/messages/",
                    },
                    "oauth": oauth,
                },
                {
                    "name": "SequentialThinking",
                    "version": __version__,
                    "transport": "sse",
                    "endpoints": {
                        "sse": f"/{THINKING_PREFIX}/sse",
                        "messages": f"/{THINKING_PREFIX}/messages/",
                    },
                    "oauth": oauth,
                },
            ]
        }

    # OAuth is owned by the Claude Code server
    @app.post("/register")
    async def register(request: Request):
        return await forward(request, settings.claude_code_url, "register", CLAUDE_CODE_PREFIX, proxied=False)

    @app.get("/oauth/authorize")
    async def authorize(request: Request):
        return await forward(request, settings.claude_code_url, "oauth/authorize", CLAUDE_CODE_PREFIX, proxied=False)

    @app.post("/oauth/token")
    async def token(request: Request):
        return await forward(request, settings.claude_code_url, "oauth/token", CLAUDE_CODE_PREFIX, proxied=False)

    @app.api_route(f"/{CLAUDE_CODE_PREFIX}/{{path:path}}", methods=PROXY_METHODS)
    async def claude_code(path: str, request: Request):
        return await forward(request, settings.claude_code_url, path, CLAUDE_CODE_PREFIX)

    @app.api_route(f"/{THINKING_PREFIX}/{{path:path}}", methods=PROXY_METHODS)
    async def sequential_thinking(path: str, request: Request):
        return await forward(request, settings.sequential_thinking_url, path, THINKING_PREFIX)

    return app


def main():
    """Run the reverse proxy."""
    settings = proxy_settings
    logger.info(f"Starting proxy on http://{settings.host}:{settings.port}")
    logger.info(f"/{CLAUDE_CODE_PREFIX}/* -> {settings.claude_code_url}/*")
    logger.info(f"/{THINKING_PREFIX}/* -> {settings.sequential_thinking_url}/*")

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="info",
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


if __name__ == "__main__":
    main()
