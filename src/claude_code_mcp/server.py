"""MCP Server exposing Claude Code tools over stdio."""

import asyncio
import logging

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from claude_code_mcp import __version__
from claude_code_mcp.config import settings
from claude_code_mcp.models import ToolResult
from claude_code_mcp.services.cli_executor import ClaudeCliExecutor, running_in_wsl
from claude_code_mcp.services.trace_log import write_startup_trace
from claude_code_mcp.tools import (
    claude_code,
    code_editor,
    code_formatter,
    code_reviewer,
    context_engine,
)
from claude_code_mcp.tools.results import error_result

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("claude_code_mcp")

# Initialize services
executor = ClaudeCliExecutor(settings)

# Create MCP server
server = Server("claude-code")

# Tool definitions
TOOLS: list[Tool] = [
    claude_code.TOOL,
    context_engine.TOOL,
    code_editor.TOOL,
    code_reviewer.TOOL,
    code_formatter.TOOL,
]


class ToolFailed(Exception):
    """Raised from call_tool so the SDK marks the result as an error."""


@server.list_tools()
async def list_tools() -> list[Tool]:
    """Return list of available tools."""
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Route tool calls to appropriate handlers."""
    result = await dispatch_tool(executor, name, arguments or {})
    if result.is_error:
        raise ToolFailed(result.text)
    return [TextContent(type="text", text=result.text)]


async def dispatch_tool(executor: ClaudeCliExecutor, name: str, arguments: dict) -> ToolResult:
    """Run a tool, turning handler exceptions into error results."""
    try:
        return await _handle_tool(executor, name, arguments)
    except Exception as e:
        logger.error(f"Error in tool {name}: {e}", exc_info=True)
        return error_result(str(e))


async def _handle_tool(executor: ClaudeCliExecutor, name: str, arguments: dict) -> ToolResult:
    """Handle a tool call."""
    logger.info(f"Tool {name} called")

    if name == "ClaudeCode":
        return await claude_code.run(executor, arguments)
    elif name == "ContextEngine":
        return await context_engine.run(executor, arguments)
    elif name == "CodeEditor":
        return await code_editor.run(executor, arguments)
    elif name == "CodeReviewer":
        return await code_reviewer.run(executor, arguments)
    elif name == "CodeFormatter":
        return await code_formatter.run(executor, arguments)
    else:
        return ToolResult(text=f"Unknown tool: {name}", is_error=True)


def startup_trace() -> None:
    """Write the startup trace and log the configuration in effect."""
    wsl = running_in_wsl()
    path = write_startup_trace(settings.log_dir, __version__, [tool.name for tool in TOOLS], wsl)
    logger.info(f"Claude executable: {settings.claude_executable_path}")
    logger.info(f"Working directory: {settings.user_directory}")
    logger.info(f"Running in WSL: {wsl}")
    logger.info(f"Startup trace: {path}")


def main():
    """Run the MCP server."""
    startup_trace()
    logger.info("Starting Claude Code MCP Server...")

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    asyncio.run(run())


if __name__ == "__main__":
    main()
