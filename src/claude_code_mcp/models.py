"""Pydantic models for CLI execution requests, outcomes and tool results."""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ExecutionRequest(BaseModel):
    """One invocation of the Claude CLI.

    Exactly one of ``prompt`` and ``raw_command`` must be set. A prompt is
    delivered to the CLI through stdin; a raw command is appended to the
    command line verbatim and must come from a trusted caller.
    """

    model_config = ConfigDict(frozen=True)

    prompt: Optional[str] = None
    raw_command: Optional[str] = None
    allowed_capabilities: list[str] = Field(default_factory=list)
    timeout_millis: int = Field(gt=0)
    log_label: str = "claude-code"

    @model_validator(mode="after")
    def _exactly_one_input(self) -> "ExecutionRequest":
        if (self.prompt is None) == (self.raw_command is None):
            raise ValueError("Exactly one of prompt or raw_command must be provided")
        return self


# --- Outcomes ---


class Success(BaseModel):
    """The CLI exited with code 0."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["success"] = "success"
    stdout_text: str
    exit_code: int = 0
    empty_output: bool = False


class ProcessFailure(BaseModel):
    """The CLI ran and exited with a nonzero code."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["process_failure"] = "process_failure"
    stdout_text: str
    stderr_text: str
    exit_code: int
    message: str


class TimedOut(BaseModel):
    """The deadline passed before the CLI exited; the process group was reaped."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["timed_out"] = "timed_out"
    elapsed_millis: int
    timeout_millis: int
    forced_kill: bool = False


class SpawnError(BaseModel):
    """The CLI could not be started."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["spawn_error"] = "spawn_error"
    message: str


ExecutionOutcome = Annotated[
    Union[Success, ProcessFailure, TimedOut, SpawnError],
    Field(discriminator="kind"),
]


class ToolResult(BaseModel):
    """Uniform result envelope returned by every tool handler."""

    text: str
    is_error: bool = False
    empty_output: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
