"""MCP servers that expose the Claude Code CLI as prompt-template tools."""

__version__ = "1.2.0"
