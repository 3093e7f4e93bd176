"""Pytest fixtures for claude_code_mcp tests."""

import os
from pathlib import Path

import pytest

from claude_code_mcp.config import AuthSettings, Settings
from claude_code_mcp.models import Success


def write_stub(directory: Path, body: str, name: str = "claude") -> Path:
    """Write an executable bash script standing in for the Claude CLI."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("#!/bin/bash\n" + body + "\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def process_gone(pid: int) -> bool:
    """True when the process no longer exists or is an unreaped zombie."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return True
    return stat.rsplit(")", 1)[1].split()[0] == "Z"


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def stub_dir(tmp_path):
    return tmp_path / "bin"


@pytest.fixture
def make_settings(tmp_path, work_dir):
    """Build executor settings around a stub executable."""

    def _make(executable, **overrides) -> Settings:
        values = {
            "claude_executable_path": str(executable),
            "user_directory": work_dir,
            "log_dir": tmp_path / "logs",
            "kill_grace_ms": 500,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def echo_prompt_stub(stub_dir):
    """CLI stub that prints the prompt it reads from /dev/stdin."""
    # Invoked as: claude -p /dev/stdin --allowedTools <tools>
    return write_stub(stub_dir, 'cat "$2"')


@pytest.fixture
def open_auth_settings():
    return AuthSettings(auth_required=False)


class FakeExecutor:
    """Records requests and replays queued outcomes."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    async def execute(self, request):
        self.requests.append(request)
        if self.outcomes:
            return self.outcomes.pop(0)
        return Success(stdout_text="ok\n")


@pytest.fixture
def fake_executor():
    return FakeExecutor
