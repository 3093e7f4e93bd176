"""Configuration settings for the Claude Code MCP servers."""

import tempfile
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Executor and server settings loaded from environment variables."""

    # Claude CLI
    claude_executable_path: str = Field(
        default="claude",
        validation_alias=AliasChoices("CLAUDE_EXECUTABLE_PATH", "CLAUDE_MCP_CLAUDE_EXECUTABLE_PATH"),
    )
    user_directory: Path = Field(
        default_factory=Path.cwd,
        validation_alias=AliasChoices("CC_USER_DIRECTORY", "CLAUDE_MCP_USER_DIRECTORY"),
    )
    extra_path: str | None = None  # Prepended to PATH for the CLI (e.g. a node bin dir)

    # Execution
    log_dir: Path = Path(tempfile.gettempdir()) / "claude-code-mcp"
    kill_grace_ms: int = 3000

    # MCP SSE settings
    sse_host: str = "0.0.0.0"
    sse_port: int = 3000
    thinking_sse_port: int = 3001

    model_config = {"env_prefix": "CLAUDE_MCP_", "populate_by_name": True}


class AuthSettings(BaseSettings):
    """OAuth settings for the SSE servers."""

    # When False, /sse accepts requests without a bearer token.
    # A token that is presented is always validated.
    auth_required: bool = False

    code_ttl_seconds: int = 300
    token_ttl_seconds: int = 3600
    refresh_ttl_seconds: int = 30 * 24 * 3600

    # Clients that never exchange a code are dropped after this long
    unused_client_ttl_seconds: int = 3600
    max_clients: int = 1000

    model_config = {"env_prefix": "CLAUDE_MCP_AUTH_"}


class ProxySettings(BaseSettings):
    """Settings for the reverse proxy in front of both SSE servers."""

    host: str = "0.0.0.0"
    port: int = 8080

    claude_code_url: str = "http://localhost:3000"
    sequential_thinking_url: str = "http://localhost:3001"

    model_config = {"env_prefix": "CLAUDE_MCP_PROXY_"}


settings = Settings()
auth_settings = AuthSettings()
proxy_settings = ProxySettings()
