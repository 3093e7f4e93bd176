"""Rendering of execution outcomes into tool results."""

import uuid

from claude_code_mcp.models import (
    ExecutionOutcome,
    ProcessFailure,
    SpawnError,
    Success,
    TimedOut,
    ToolResult,
)

ERROR_PREFIX = "Error executing Claude Code"

EMPTY_OUTPUT_MESSAGE = (
    "The query was processed but no results were returned. Please try again with "
    "more specific details or as a new query instead of a follow-up."
)


def render_outcome(outcome: ExecutionOutcome, empty_text: str = EMPTY_OUTPUT_MESSAGE) -> ToolResult:
    """Turn an execution outcome into the text a client sees.

    A successful run with no output is not an error: it gets ``empty_text``
    and ``empty_output=True`` so callers can decide what to do next.
    """
    if isinstance(outcome, Success):
        metadata = {"exit_code": outcome.exit_code, "session_id": str(uuid.uuid4())}
        if outcome.empty_output:
            return ToolResult(
                text=empty_text,
                empty_output=True,
                metadata={**metadata, "empty_output": True},
            )
        return ToolResult(text=outcome.stdout_text, metadata=metadata)

    if isinstance(outcome, ProcessFailure):
        return ToolResult(
            text=f"{ERROR_PREFIX}: {outcome.message}\n\n{outcome.stderr_text}",
            is_error=True,
            metadata={"exit_code": outcome.exit_code},
        )

    if isinstance(outcome, TimedOut):
        return ToolResult(
            text=f"{ERROR_PREFIX}: Command timed out after {outcome.timeout_millis}ms",
            is_error=True,
            metadata={"elapsed_millis": outcome.elapsed_millis},
        )

    if isinstance(outcome, SpawnError):
        return ToolResult(
            text=f"{ERROR_PREFIX}: Failed to execute command: {outcome.message}",
            is_error=True,
        )

    raise TypeError(f"Unknown execution outcome: {outcome!r}")


def error_result(message: str) -> ToolResult:
    return ToolResult(text=f"Error: {message}", is_error=True)
