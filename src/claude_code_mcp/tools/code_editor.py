"""Implementation-focused tool for precise code edits."""

import logging
import shlex

from mcp.types import Tool

from claude_code_mcp.models import ExecutionRequest, ToolResult
from claude_code_mcp.services.cli_executor import ClaudeCliExecutor
from claude_code_mcp.tools.paths import (
    format_claude_code_path,
    format_claude_code_paths,
    format_paths_in_text,
)
from claude_code_mcp.tools.results import render_outcome

logger = logging.getLogger("claude_code_mcp")

DEFAULT_TIMEOUT_MS = 900000
SUMMARY_TIMEOUT_MS = 60000

ALLOWED_TOOLS = [
    "Read", "Edit", "MultiEdit", "Write", "Bash", "LS",
    "Glob", "Grep", "Task", "Batch", "TodoRead", "TodoWrite",
]

EDITED_MESSAGE = "File edited successfully. No additional output was returned."
SUMMARY_REQUEST = "Summarize the changes you just made in a few lines: what changed and why."

# Claude prints this for a turn that only used tools
NO_CONTENT = "(no content)"

PROMPT_TEMPLATE = """Make exactly the change described below and nothing else.
Follow the conventions already used in the file and the files around it, keep
related files consistent with each other, and do not add features that were
not asked for.

TASK:
{task}

FILE TO EDIT:
{file_path}
{code_context}
Use the available tools to edit the file."""

TOOL = Tool(
    name="CodeEditor",
    description=(
        "Implementation-focused tool for precise code editing tasks. "
        "Creates or modifies code following exact specifications."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "filePath": {"type": "string", "description": "Path to the file to edit or create"},
            "task": {"type": "string", "description": "Detailed implementation instructions"},
            "codeContext": {
                "type": "string",
                "description": (
                    "Relevant code context for the implementation (optional): related files, "
                    "patterns to follow, and how this file fits with others being changed"
                ),
            },
            "relatedFiles": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of related files that should be referenced for consistency (optional)",
            },
            "timeout": {
                "type": "number",
                "description": f"Maximum execution time in milliseconds (optional, default: {DEFAULT_TIMEOUT_MS})",
            },
        },
        "required": ["filePath", "task"],
    },
)


def build_context(code_context: str, related_files) -> str:
    """Append the related-files block to the caller's context and format its paths."""
    context = code_context or ""
    related = format_claude_code_paths(related_files)
    if related:
        if context:
            context += "\n\n"
        context += "RELATED FILES TO REFERENCE FOR CONSISTENCY:\n"
        context += "\n".join(f"- {path}" for path in related)
        context += "\n\nRead these files before making changes."
    return format_paths_in_text(context)


def build_prompt(file_path: str, task: str, code_context: str = "") -> str:
    return PROMPT_TEMPLATE.format(
        task=task,
        file_path=format_claude_code_path(file_path),
        code_context=f"\nRELEVANT CODE CONTEXT:\n{code_context}\n" if code_context else "",
    )


def _is_silent(result: ToolResult) -> bool:
    return result.empty_output or result.text.strip() == NO_CONTENT


async def run(executor: ClaudeCliExecutor, arguments: dict) -> ToolResult:
    file_path = arguments.get("filePath")
    task = arguments.get("task")
    if not file_path or not task:
        raise ValueError("Both filePath and task must be provided")

    context = build_context(arguments.get("codeContext", ""), arguments.get("relatedFiles") or [])
    outcome = await executor.execute(
        ExecutionRequest(
            prompt=build_prompt(file_path, task, context),
            allowed_capabilities=ALLOWED_TOOLS,
            timeout_millis=int(arguments.get("timeout") or DEFAULT_TIMEOUT_MS),
            log_label="code-editor",
        )
    )
    result = render_outcome(outcome)
    if result.is_error or not _is_silent(result):
        return result

    logger.info("Edit returned no output, requesting a summary of the changes")
    summary = render_outcome(
        await executor.execute(
            ExecutionRequest(
                raw_command=f"--continue -p {shlex.quote(SUMMARY_REQUEST)}",
                allowed_capabilities=ALLOWED_TOOLS,
                timeout_millis=SUMMARY_TIMEOUT_MS,
                log_label="code-editor-summary",
            )
        )
    )
    if summary.is_error or _is_silent(summary):
        return ToolResult(text=EDITED_MESSAGE, metadata=result.metadata)
    return summary
