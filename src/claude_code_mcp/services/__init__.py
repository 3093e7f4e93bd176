"""Services package for claude_code_mcp."""

from .cli_executor import ClaudeCliExecutor
from .oauth_store import OAuthStore
from .trace_log import TraceLog

__all__ = ["ClaudeCliExecutor", "OAuthStore", "TraceLog"]
