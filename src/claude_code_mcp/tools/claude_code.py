"""General-purpose Claude Code tool for prompts and direct CLI commands."""

import logging

from mcp.types import Tool

from claude_code_mcp.models import ExecutionRequest, ToolResult
from claude_code_mcp.services.cli_executor import ClaudeCliExecutor
from claude_code_mcp.tools.paths import format_paths_in_text
from claude_code_mcp.tools.results import render_outcome

logger = logging.getLogger("claude_code_mcp")

DEFAULT_ALLOWED_TOOLS = ["Bash", "Read", "Edit"]
DEFAULT_TIMEOUT_MS = 180000

TOOL = Tool(
    name="ClaudeCode",
    description="Run Claude Code commands and prompts with proper environment setup.",
    inputSchema={
        "type": "object",
        "properties": {
            "prompt": {"type": "string", "description": "A prompt to send to Claude Code"},
            "command": {
                "type": "string",
                "description": "Direct command to pass to Claude CLI (excluding 'claude' itself)",
            },
            "allowedTools": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of tools Claude Code is allowed to use",
            },
            "timeout": {
                "type": "number",
                "description": f"Maximum execution time in milliseconds (default: {DEFAULT_TIMEOUT_MS})",
            },
        },
        "required": [],
    },
)


async def run(executor: ClaudeCliExecutor, arguments: dict) -> ToolResult:
    prompt = arguments.get("prompt")
    command = arguments.get("command")
    if not prompt and not command:
        raise ValueError("Either prompt or command must be provided")

    # An explicit empty list means no tools, not the defaults
    allowed = arguments.get("allowedTools")
    request = ExecutionRequest(
        prompt=format_paths_in_text(prompt) if prompt else None,
        raw_command=None if prompt else command,
        allowed_capabilities=DEFAULT_ALLOWED_TOOLS if allowed is None else allowed,
        timeout_millis=int(arguments.get("timeout") or DEFAULT_TIMEOUT_MS),
        log_label="claude-code",
    )
    return render_outcome(await executor.execute(request))
