"""Starlette application factory shared by the MCP SSE servers."""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from mcp.server import Server
from mcp.server.sse import SseServerTransport
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route

from claude_code_mcp.config import AuthSettings, auth_settings as default_auth_settings
from claude_code_mcp.services.oauth_store import OAuthStore
from claude_code_mcp.web.oauth import oauth_routes

logger = logging.getLogger("claude_code_mcp.sse")

MESSAGES_PATH = "/messages/"


def _unauthorized(message: str, error: Optional[str] = None) -> JSONResponse:
    challenge = "Bearer"
    if error:
        challenge += f' error="{error}"'
    return JSONResponse({"error": message}, status_code=401, headers={"WWW-Authenticate": challenge})


def check_bearer(request: Request, store: OAuthStore, auth_required: bool) -> Optional[JSONResponse]:
    """Return a 401 response if the request may not open a stream, else None.

    A presented token must be valid. Requests without one are let through
    unless authentication is required.
    """
    auth_header = request.headers.get("authorization", "")
    if not auth_header:
        if auth_required:
            return _unauthorized("Missing Authorization header. Use: Bearer <access_token>")
        return None

    if not auth_header.lower().startswith("bearer "):
        return _unauthorized("Invalid Authorization header. Use: Bearer <access_token>", "invalid_request")

    client_id = store.validate_access_token(auth_header[7:].strip())
    if client_id is None:
        logger.info("Rejected SSE connection with invalid or expired token")
        return _unauthorized("Invalid or expired access token", "invalid_token")

    logger.debug(f"Authenticated SSE connection for client {client_id}")
    return None


def proxied_prefix(request: Request, prefix: str) -> bool:
    """Whether the request came through the reverse proxy under ``/<prefix>/``."""
    marker = f"/{prefix}/"
    original_url = request.headers.get("x-original-url") or str(request.url)
    referer = request.headers.get("referer", "")
    return marker in original_url or marker in referer


def create_sse_app(
    server_factory: Callable[[], Server],
    name: str,
    version: str,
    service: str,
    prefix: str,
    auth: Optional[AuthSettings] = None,
    store: Optional[OAuthStore] = None,
) -> Starlette:
    """Create Starlette app with MCP SSE endpoint and OAuth routes.

    Args:
        server_factory: Returns the MCP server to run for each SSE connection
        name: Server name reported by discovery
        version: Server version reported by health and discovery
        service: Service name reported by the health check
        prefix: Path prefix the reverse proxy mounts this server under
        auth: Auth settings (defaults to the environment's)
        store: OAuth store (a fresh one by default)
    """
    auth = auth or default_auth_settings
    if store is None:
        store = OAuthStore(
            code_ttl_seconds=auth.code_ttl_seconds,
            token_ttl_seconds=auth.token_ttl_seconds,
            refresh_ttl_seconds=auth.refresh_ttl_seconds,
            unused_client_ttl_seconds=auth.unused_client_ttl_seconds,
            max_clients=auth.max_clients,
        )

    # Create SSE transport
    sse = SseServerTransport(MESSAGES_PATH)

    async def handle_sse(request: Request):
        """Handle SSE connection with bearer token authentication."""
        denied = check_bearer(request, store, auth.auth_required)
        if denied is not None:
            return denied

        scope = request.scope
        if proxied_prefix(request, prefix):
            # The client must post messages back through the proxy
            scope = {**scope, "root_path": f"/{prefix}"}
        logger.info(f"Establishing SSE stream (messages under {scope.get('root_path', '')}{MESSAGES_PATH})")

        try:
            async with sse.connect_sse(scope, request.receive, request._send) as streams:
                server = server_factory()
                await server.run(streams[0], streams[1], server.create_initialization_options())
        except Exception as e:
            logger.error(f"SSE connection error: {e}", exc_info=True)
            return JSONResponse(
                {"error": f"SSE connection error: {str(e)}"},
                status_code=500,
            )
        logger.info("SSE stream closed")
        return Response()

    # Health check endpoint (no auth required)
    async def health(request: Request):
        return JSONResponse({"status": "ok", "service": service, "version": version})

    async def mcp_discovery(request: Request):
        return JSONResponse(
            {
                "name": name,
                "version": version,
                "transport": "sse",
                "endpoints": {"sse": "/sse", "messages": MESSAGES_PATH},
            }
        )

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info(f"{service} starting")
        yield
        store.clear()
        logger.info(f"{service} stopped, OAuth state cleared")

    app = Starlette(
        debug=False,
        routes=[
            Route("/health", health),
            Route("/.well-known/mcp", mcp_discovery),
            *oauth_routes(),
            Route("/sse", endpoint=handle_sse),
            Mount(MESSAGES_PATH, app=sse.handle_post_message),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_credentials=True,
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Content-Type", "Authorization", "MCP-Session-Id"],
            )
        ],
        lifespan=lifespan,
    )
    app.state.oauth_store = store
    return app
