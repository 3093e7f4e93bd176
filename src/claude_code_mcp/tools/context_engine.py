"""Code search tool returning exact matches from the codebase."""

import logging
import shlex

from mcp.types import Tool

from claude_code_mcp.models import ExecutionRequest, ToolResult
from claude_code_mcp.services.cli_executor import ClaudeCliExecutor
from claude_code_mcp.tools.paths import format_paths_in_text
from claude_code_mcp.tools.results import render_outcome

logger = logging.getLogger("claude_code_mcp")

SEARCH_MODES = ["keyword", "semantic", "pattern", "hybrid"]
DEFAULT_TIMEOUT_MS = 900000

# Read-only tools
ALLOWED_TOOLS = ["Read", "Glob", "Grep", "LS", "Task", "Batch", "TodoRead", "TodoWrite"]

PROMPT_TEMPLATE = """Search the codebase and return the code that answers the query below.
Quote code exactly as it appears in the files and do not guess.

For each match give the file as @path, the relevant snippet in a fenced block
with its language, and one or two lines on why it matches. Finish with any
relationships between the matched files.

<query>
{query}
</query>

<search_filters>
file_type: {file_type}
directory: {directory}
search_mode: {search_mode}
</search_filters>"""

TOOL = Tool(
    name="ContextEngine",
    description=(
        "Code search and retrieval tool that provides accurate context from a codebase. "
        "Returns exact code matches with minimal inference."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query to find code in the codebase"},
            "directory": {"type": "string", "description": "Specific directory to search in (optional)"},
            "fileType": {
                "type": "string",
                "description": "Filter by file extension (optional, e.g., 'js', 'ts', 'py')",
            },
            "searchMode": {
                "type": "string",
                "enum": SEARCH_MODES,
                "description": "Search mode to use (optional, default: hybrid)",
            },
            "isFollowUp": {
                "type": "boolean",
                "description": "Whether this query is a follow-up to a previous query (optional, default: false)",
            },
            "timeout": {
                "type": "number",
                "description": f"Maximum execution time in milliseconds (optional, default: {DEFAULT_TIMEOUT_MS})",
            },
        },
        "required": ["query"],
    },
)


def build_prompt(query: str, directory: str = "", file_type: str = "", search_mode: str = "hybrid") -> str:
    return PROMPT_TEMPLATE.format(
        query=query,
        file_type=file_type or "any",
        directory=format_paths_in_text(directory) if directory else "entire codebase",
        search_mode=search_mode,
    )


async def run(executor: ClaudeCliExecutor, arguments: dict) -> ToolResult:
    query = arguments.get("query")
    if not query:
        raise ValueError("Query must be provided")

    query = format_paths_in_text(query)
    search_mode = arguments.get("searchMode") or "hybrid"
    if search_mode not in SEARCH_MODES:
        raise ValueError(f"searchMode must be one of: {', '.join(SEARCH_MODES)}")
    timeout = int(arguments.get("timeout") or DEFAULT_TIMEOUT_MS)

    label = "context-engine"
    if arguments.get("isFollowUp"):
        logger.info("Processing follow-up query using --continue")
        follow_up = await executor.execute(
            ExecutionRequest(
                raw_command=f"--continue -p {shlex.quote(query)}",
                allowed_capabilities=ALLOWED_TOOLS,
                timeout_millis=timeout,
                log_label="context-engine-followup",
            )
        )
        result = render_outcome(follow_up)
        if not result.is_error and not result.empty_output:
            return result
        logger.info("Follow-up query returned no result, falling back to new query")
        query = f"(Follow-up query) {query}"
        label = "context-engine-fallback"

    prompt = build_prompt(
        query,
        directory=arguments.get("directory") or "",
        file_type=arguments.get("fileType") or "",
        search_mode=search_mode,
    )
    outcome = await executor.execute(
        ExecutionRequest(
            prompt=prompt,
            allowed_capabilities=ALLOWED_TOOLS,
            timeout_millis=timeout,
            log_label=label,
        )
    )
    return render_outcome(outcome)
