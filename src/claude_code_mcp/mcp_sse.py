"""MCP Server with SSE transport for remote connections."""

import logging

import uvicorn
from starlette.applications import Starlette

from claude_code_mcp import __version__
from claude_code_mcp.config import auth_settings, settings
from claude_code_mcp.server import server, startup_trace
from claude_code_mcp.web.sse import create_sse_app

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("claude_code_mcp.sse")

SERVICE_NAME = "claude-code-mcp-sse"


def create_app() -> Starlette:
    """Create the Starlette app serving the Claude Code tools."""
    return create_sse_app(
        lambda: server,
        name="claude-code",
        version=__version__,
        service=SERVICE_NAME,
        prefix="claude-code",
        auth=auth_settings,
    )


def main():
    """Run the MCP SSE server."""
    startup_trace()

    if auth_settings.auth_required:
        logger.info("Authentication ENABLED - bearer token required for connections")
    else:
        logger.info("Authentication DISABLED - connections without a token allowed")

    logger.info(f"Starting Claude Code MCP SSE Server on http://{settings.sse_host}:{settings.sse_port}")

    app = create_app()
    uvicorn.run(
        app,
        host=settings.sse_host,
        port=settings.sse_port,
        log_level="info",
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


if __name__ == "__main__":
    main()
