"""Per-execution diagnostic trace files.

Each CLI execution appends its configuration, command, output chunks and
final status to its own text file. The file is a debugging side channel only:
nothing reads it back, and a failure to write it never affects the execution.
"""

import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger("claude_code_mcp.trace")


class TraceLog:
    """Best-effort append-only trace file."""

    def __init__(self, path: Path):
        self.path = path
        self._warned = False

    @classmethod
    def open(cls, log_dir: Path, label: str) -> "TraceLog":
        """Create a trace file named from the label and the current time."""
        millis = int(time.time() * 1000)
        trace = cls(Path(log_dir) / f"{label}-{millis}-{uuid.uuid4().hex[:8]}.log")
        try:
            trace.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            trace._report(e)
        trace.write(f"Starting execution at {datetime.now(timezone.utc).isoformat()}\n")
        return trace

    def write(self, text: str) -> None:
        """Append text to the trace file, logging (not raising) on failure."""
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            self._report(e)

    def line(self, label: str, value: object) -> None:
        self.write(f"{label}: {value}\n")

    def _report(self, error: OSError) -> None:
        # One warning per trace; later failures go to debug
        if self._warned:
            logger.debug(f"Trace write failed for {self.path}: {error}")
            return
        self._warned = True
        logger.warning(f"Cannot write trace file {self.path}: {error}")


def write_startup_trace(log_dir: Path, version: str, tool_names: list[str], wsl: bool) -> Path:
    """Write the server-startup trace, replacing any previous one."""
    path = Path(log_dir) / "server-startup.log"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            f"Server started at {datetime.now(timezone.utc).isoformat()}\n"
            f"Version: {version}\n"
            f"Running in WSL: {wsl}\n"
            f"Available tools: {', '.join(tool_names)}\n"
            f"Python version: {sys.version.split()[0]}\n"
            f"Current directory: {Path.cwd()}\n",
            encoding="utf-8",
        )
    except OSError as e:
        logger.warning(f"Cannot write startup trace {path}: {e}")
    return path
