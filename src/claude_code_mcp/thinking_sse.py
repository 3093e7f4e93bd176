"""Sequential thinking MCP server with SSE transport.

Every SSE connection gets its own MCP server and its own thought history.
"""

import logging

import uvicorn
from mcp.server import Server
from mcp.types import TextContent, Tool
from starlette.applications import Starlette

from claude_code_mcp import __version__
from claude_code_mcp.config import auth_settings, settings
from claude_code_mcp.tools import sequential_thinking
from claude_code_mcp.tools.sequential_thinking import ThinkingSession
from claude_code_mcp.web.sse import create_sse_app

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("claude_code_mcp.thinking")

SERVER_NAME = "sequential-thinking"
SERVICE_NAME = "sequential-thinking-mcp-sse"


class ThoughtRejected(Exception):
    """Raised from call_tool so the SDK marks the result as an error."""


def create_thinking_server(session: ThinkingSession | None = None) -> Server:
    """Create an MCP server bound to one thinking session."""
    session = session or ThinkingSession()
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return [sequential_thinking.TOOL]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        if name != sequential_thinking.TOOL_NAME:
            raise ThoughtRejected(f"Unknown tool: {name}")
        result = session.process_thought(arguments)
        if result.is_error:
            raise ThoughtRejected(result.text)
        return [TextContent(type="text", text=result.text)]

    return server


def create_app() -> Starlette:
    """Create the Starlette app serving the sequential thinking tool."""
    return create_sse_app(
        create_thinking_server,
        name=SERVER_NAME,
        version=__version__,
        service=SERVICE_NAME,
        prefix="sequential-thinking",
        auth=auth_settings,
    )


def main():
    """Run the sequential thinking SSE server."""
    logger.info(
        f"Starting Sequential Thinking MCP SSE Server on http://{settings.sse_host}:{settings.thinking_sse_port}"
    )

    app = create_app()
    uvicorn.run(
        app,
        host=settings.sse_host,
        port=settings.thinking_sse_port,
        log_level="info",
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


if __name__ == "__main__":
    main()
