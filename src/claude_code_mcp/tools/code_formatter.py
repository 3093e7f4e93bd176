"""Tool that reformats a file without changing its behaviour."""

from mcp.types import Tool

from claude_code_mcp.models import ExecutionRequest, ToolResult
from claude_code_mcp.services.cli_executor import ClaudeCliExecutor
from claude_code_mcp.tools.paths import format_claude_code_path
from claude_code_mcp.tools.results import render_outcome

DEFAULT_TIMEOUT_MS = 120000

ALLOWED_TOOLS = ["Read", "Edit", "MultiEdit", "Write", "Bash", "LS", "Glob", "Grep"]

DEFAULT_RULES = (
    "- Apply consistent indentation\n"
    "- Use appropriate spacing\n"
    "- Follow naming conventions\n"
    "- Organize imports and dependencies\n"
    "- Remove unused code and comments"
)

PROMPT_TEMPLATE = """Format the code in {file_path} following the rules below and the
conventions of the language. Change layout only: behaviour must stay exactly
the same.

FORMATTING RULES:
{rules}

Use the available tools to read and rewrite the file."""

TOOL = Tool(
    name="CodeFormatter",
    description="Analyzes and formats code according to best practices and specified formatting rules.",
    inputSchema={
        "type": "object",
        "properties": {
            "filePath": {"type": "string", "description": "Path to the file to format"},
            "formattingRules": {
                "type": "string",
                "description": "Specific formatting rules to apply (optional)",
            },
            "language": {
                "type": "string",
                "description": "Programming language of the file (optional, will be detected if not provided)",
            },
            "timeout": {
                "type": "number",
                "description": f"Maximum execution time in milliseconds (optional, default: {DEFAULT_TIMEOUT_MS})",
            },
        },
        "required": ["filePath"],
    },
)


def build_prompt(file_path: str, rules: str = "", language: str = "") -> str:
    prompt = PROMPT_TEMPLATE.format(
        file_path=format_claude_code_path(file_path),
        rules=rules or DEFAULT_RULES,
    )
    if language:
        prompt += f"\n\nLANGUAGE: {language}"
    return prompt


async def run(executor: ClaudeCliExecutor, arguments: dict) -> ToolResult:
    file_path = arguments.get("filePath")
    if not file_path:
        raise ValueError("filePath must be provided")

    outcome = await executor.execute(
        ExecutionRequest(
            prompt=build_prompt(
                file_path,
                arguments.get("formattingRules") or "",
                arguments.get("language") or "",
            ),
            allowed_capabilities=ALLOWED_TOOLS,
            timeout_millis=int(arguments.get("timeout") or DEFAULT_TIMEOUT_MS),
            log_label="code-formatter",
        )
    )
    return render_outcome(outcome)
