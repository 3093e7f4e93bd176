"""Formatting of file paths into Claude Code's ``@path`` references."""

import re
from typing import Iterable

SOURCE_EXTENSIONS = (
    "js|jsx|ts|tsx|py|java|cpp|c|h|go|rb|php|swift|kt|rs|vue|svelte|"
    "json|xml|yaml|yml|md|txt|css|scss|less|html"
)

# A file-looking token: optional ./, directories, name.ext. The lookbehind
# skips tokens already prefixed with @ or embedded in a longer path or URL.
PATH_PATTERN = re.compile(
    rf"(?<![@\w./-])(?:\./)?(?:[A-Za-z0-9_-]+/)*[A-Za-z0-9_-]+\.(?:{SOURCE_EXTENSIONS})\b(?![\w/-])"
)


def format_claude_code_path(file_path: str) -> str:
    """Format a file path as ``@path`` (leading slash removed)."""
    if not file_path:
        return ""

    clean = file_path[1:] if file_path.startswith("/") else file_path
    if clean.startswith("@"):
        return clean
    return f"@{clean}"


def format_claude_code_paths(file_paths) -> list[str]:
    if not isinstance(file_paths, (list, tuple)):
        return []
    return [format_claude_code_path(p) for p in file_paths]


def is_claude_code_path(path: str) -> bool:
    return bool(path) and path.startswith("@")


def extract_file_path(claude_code_path: str) -> str:
    """Strip the ``@`` prefix from a Claude Code path."""
    if not claude_code_path:
        return ""
    return claude_code_path[1:] if claude_code_path.startswith("@") else claude_code_path


def format_paths_in_text(text: str, known_paths: Iterable[str] = ()) -> str:
    """Prefix known paths and file-looking tokens in free text with ``@``."""
    if not text:
        return ""

    formatted = text
    for path in known_paths:
        if path and not is_claude_code_path(path):
            pattern = re.compile(rf"(?<![@\w/]){re.escape(path)}(?![\w/])")
            formatted = pattern.sub(lambda _: format_claude_code_path(path), formatted)

    def _prefix(match: re.Match) -> str:
        token = match.group(0)
        if "://" in token:
            return token
        return format_claude_code_path(token)

    return PATH_PATTERN.sub(_prefix, formatted)
