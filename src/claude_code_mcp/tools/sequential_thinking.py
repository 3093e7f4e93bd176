"""Sequential thinking tool: a chain of thoughts with per-step tool recommendations."""

import json
import logging
from typing import Any, Optional

from mcp.types import Tool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from claude_code_mcp.models import ToolResult

logger = logging.getLogger("claude_code_mcp.thinking")

TOOL_NAME = "sequentialthinking_tools"


class ToolRecommendation(BaseModel):
    tool_name: str
    confidence: float = Field(ge=0, le=1)
    rationale: str
    priority: float
    suggested_inputs: Optional[dict[str, Any]] = None
    alternatives: Optional[list[str]] = None


class StepRecommendation(BaseModel):
    step_description: str
    recommended_tools: list[ToolRecommendation]
    expected_outcome: str
    next_step_conditions: Optional[list[str]] = None


class ThoughtData(BaseModel):
    """One thought as submitted by the client."""

    model_config = ConfigDict(extra="ignore")

    thought: str
    thought_number: int = Field(ge=1)
    total_thoughts: int = Field(ge=1)
    next_thought_needed: bool
    is_revision: Optional[bool] = None
    revises_thought: Optional[int] = Field(default=None, ge=1)
    branch_from_thought: Optional[int] = Field(default=None, ge=1)
    branch_id: Optional[str] = None
    needs_more_thoughts: Optional[bool] = None
    current_step: Optional[StepRecommendation] = None
    previous_steps: Optional[list[StepRecommendation]] = None
    remaining_steps: Optional[list[str]] = None


def _schema() -> dict:
    schema = ThoughtData.model_json_schema()
    schema.pop("title", None)
    return schema


TOOL = Tool(
    name=TOOL_NAME,
    description=(
        "Dynamic, reflective problem solving through a sequence of thoughts. Each thought "
        "can revise or branch from earlier ones, and each step can carry recommendations "
        "for which tools to use next, with a confidence and rationale for each."
    ),
    inputSchema=_schema(),
)


def format_recommendation(step: StepRecommendation) -> str:
    lines = [f"Step: {step.step_description}", "Recommended Tools:"]
    for tool in step.recommended_tools:
        line = f"  - {tool.tool_name} (priority: {tool.priority:g})"
        if tool.alternatives:
            line += f" (alternatives: {', '.join(tool.alternatives)})"
        lines.append(line)
        lines.append(f"    Rationale: {tool.rationale}")
        if tool.suggested_inputs:
            lines.append(f"    Suggested inputs: {json.dumps(tool.suggested_inputs)}")
    lines.append(f"Expected Outcome: {step.expected_outcome}")
    if step.next_step_conditions:
        lines.append("Conditions for next step:")
        lines.extend(f"  - {condition}" for condition in step.next_step_conditions)
    return "\n".join(lines)


def format_thought(data: ThoughtData) -> str:
    """Render a thought as a box for the server log."""
    if data.is_revision:
        header = f"Revision {data.thought_number}/{data.total_thoughts} (revising thought {data.revises_thought})"
    elif data.branch_from_thought:
        header = (
            f"Branch {data.thought_number}/{data.total_thoughts} "
            f"(from thought {data.branch_from_thought}, ID: {data.branch_id})"
        )
    else:
        header = f"Thought {data.thought_number}/{data.total_thoughts}"

    body = data.thought
    if data.current_step:
        body += f"\n\nRecommendation:\n{format_recommendation(data.current_step)}"

    body_lines = body.splitlines() or [""]
    width = max(len(header), *(len(line) for line in body_lines)) + 2
    border = "─" * width
    rows = [f"┌{border}┐", f"│ {header.ljust(width - 2)} │", f"├{border}┤"]
    rows.extend(f"│ {line.ljust(width - 2)} │" for line in body_lines)
    rows.append(f"└{border}┘")
    return "\n".join(rows)


class ThinkingSession:
    """Thought history and branches for one client connection."""

    def __init__(self):
        self.thought_history: list[ThoughtData] = []
        self.branches: dict[str, list[ThoughtData]] = {}

    def process_thought(self, arguments: dict) -> ToolResult:
        try:
            data = ThoughtData.model_validate(arguments or {})
        except ValidationError as e:
            return _failure(_describe(e))

        if data.thought_number > data.total_thoughts:
            data.total_thoughts = data.thought_number

        if data.current_step:
            data.previous_steps = [*(data.previous_steps or []), data.current_step]

        self.thought_history.append(data)
        if data.branch_from_thought and data.branch_id:
            self.branches.setdefault(data.branch_id, []).append(data)

        logger.info("\n" + format_thought(data))

        payload = {
            "thought_number": data.thought_number,
            "total_thoughts": data.total_thoughts,
            "next_thought_needed": data.next_thought_needed,
            "branches": list(self.branches),
            "thought_history_length": len(self.thought_history),
            "current_step": _dump(data.current_step),
            "previous_steps": [_dump(step) for step in data.previous_steps] if data.previous_steps else None,
            "remaining_steps": data.remaining_steps,
        }
        return ToolResult(text=json.dumps(payload, indent=2))


def _dump(step: Optional[StepRecommendation]):
    return step.model_dump(exclude_none=True) if step else None


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "input"
    return f"Invalid {field}: {first['msg']}"


def _failure(message: str) -> ToolResult:
    return ToolResult(
        text=json.dumps({"error": message, "status": "failed"}, indent=2),
        is_error=True,
    )
