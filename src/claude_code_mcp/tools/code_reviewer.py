"""Code review tool that checks an implementation against its plan."""

import json
import logging
import re

from mcp.types import Tool

from claude_code_mcp.models import ExecutionRequest, ToolResult
from claude_code_mcp.services.cli_executor import ClaudeCliExecutor
from claude_code_mcp.tools.paths import format_claude_code_paths
from claude_code_mcp.tools.results import render_outcome

logger = logging.getLogger("claude_code_mcp")

DEFAULT_TIMEOUT_MS = 900000

ALLOWED_TOOLS = [
    "Read", "Glob", "Grep", "LS", "Bash", "Task",
    "WebFetch", "Batch", "TodoRead", "TodoWrite", "WebSearch",
]

# A backslash that does not start a JSON escape sequence
LONE_BACKSLASH = re.compile(r'\\(?!["\\/bfnrt])')

PROMPT_TEMPLATE = """Review the files below against the implementation plan.

Before writing the review, look at what actually changed with `git diff` and
`git diff --staged`, and run the project's type checker or tests where there is
one. Check current library documentation with WebSearch when the code depends
on it.

Report, in order of priority:
- [HIGH] bugs, type errors and security problems that must be fixed
- [MEDIUM] gaps against the plan and maintainability problems
- [LOW] style and minor improvements

One line per issue: `- [LEVEL] what is wrong: how to fix it`. Review the
changes, not the whole file. Items not tied to the plan are suggestions only.

IMPLEMENTATION PLAN:
{implementation_plan}
{review_focus}
FILES TO REVIEW:
{files}"""

TOOL = Tool(
    name="CodeReviewer",
    description=(
        "Code review tool that validates implementations against plans. Claude runs "
        "checks (type checks, git diff), verifies documentation via WebSearch, and returns "
        "prioritized feedback on completeness, quality, security and best practices."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "filePaths": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Array of paths to the files to review",
            },
            "implementationPlan": {
                "type": "string",
                "description": "Original implementation plan for comparison",
            },
            "reviewFocus": {
                "type": "string",
                "description": "Specific aspects to focus on during review (optional)",
            },
            "timeout": {
                "type": "number",
                "description": f"Maximum execution time in milliseconds (optional, default: {DEFAULT_TIMEOUT_MS})",
            },
        },
        "required": ["filePaths", "implementationPlan"],
    },
)


def parse_file_paths(value):
    """Accept a list, or a JSON array string as some SSE clients send it.

    Windows paths often arrive with unescaped backslashes, so a failed parse
    is retried once with lone backslashes escaped.
    """
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(LONE_BACKSLASH.sub(r"\\\\", value))
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse filePaths string: {e}")
        raise ValueError("Invalid filePaths format - expected array or valid JSON array string") from e


def normalize_path(path: str) -> str:
    return path.replace("\\\\", "/").replace("\\", "/")


def build_prompt(file_paths: list[str], implementation_plan: str, review_focus: str = "") -> str:
    formatted = format_claude_code_paths([normalize_path(p) for p in file_paths])
    files = "\n\n".join(f"FILE {i}: {path}" for i, path in enumerate(formatted, start=1))
    return PROMPT_TEMPLATE.format(
        implementation_plan=implementation_plan,
        review_focus=f"\nREVIEW FOCUS:\n{review_focus}\n" if review_focus else "",
        files=files,
    )


async def run(executor: ClaudeCliExecutor, arguments: dict) -> ToolResult:
    file_paths = parse_file_paths(arguments.get("filePaths"))
    implementation_plan = arguments.get("implementationPlan")
    if not isinstance(file_paths, list) or not file_paths or not implementation_plan:
        raise ValueError("Both filePaths (non-empty array) and implementationPlan must be provided")
    if not all(isinstance(p, str) for p in file_paths):
        raise ValueError("filePaths must contain only strings")

    outcome = await executor.execute(
        ExecutionRequest(
            prompt=build_prompt(file_paths, implementation_plan, arguments.get("reviewFocus") or ""),
            allowed_capabilities=ALLOWED_TOOLS,
            timeout_millis=int(arguments.get("timeout") or DEFAULT_TIMEOUT_MS),
            log_label="code-reviewer",
        )
    )
    return render_outcome(outcome)
