"""Claude CLI execution with a deadline and escalating termination.

The executor launches one ``bash -c`` process per request, in its own process
group, and races its exit against a deadline. Every failure mode comes back as
an outcome value, never as an exception, so tool handlers can render all of
them the same way.
"""

import asyncio
import base64
import codecs
import logging
import os
import shlex
import shutil
import signal
import sys
import time
from contextlib import suppress
from pathlib import Path

from claude_code_mcp.config import Settings
from claude_code_mcp.models import (
    ExecutionOutcome,
    ExecutionRequest,
    ProcessFailure,
    SpawnError,
    Success,
    TimedOut,
)
from claude_code_mcp.services.trace_log import TraceLog

logger = logging.getLogger("claude_code_mcp.executor")

READ_CHUNK_SIZE = 4096
GROUP_POLL_SECONDS = 0.05


def running_in_wsl() -> bool:
    """Detect whether this process runs inside Windows Subsystem for Linux."""
    if sys.platform.startswith("linux") and (
        os.environ.get("WSL_DISTRO_NAME") or os.environ.get("WSLENV")
    ):
        return True

    with suppress(OSError):
        if "microsoft" in Path("/proc/version").read_text(encoding="utf-8").lower():
            return True

    return Path("/mnt/c").exists()


def build_command(request: ExecutionRequest, executable: str) -> str:
    """Build the shell command line for a request.

    The prompt is base64-encoded and decoded by the shell pipeline, so none of
    its characters are ever interpreted by the shell. A raw command is appended
    verbatim.
    """
    claude = shlex.quote(executable)
    tools = shlex.quote(",".join(request.allowed_capabilities))

    if request.prompt is not None:
        encoded = base64.b64encode(request.prompt.encode("utf-8")).decode("ascii")
        return (
            f"printf '%s' {shlex.quote(encoded)} | base64 -d | "
            f"{claude} -p /dev/stdin --allowedTools {tools}"
        )

    return f"{claude} {request.raw_command} --allowedTools {tools}"


def _signal_group(pgid: int, sig: signal.Signals) -> None:
    with suppress(ProcessLookupError):
        os.killpg(pgid, sig)


def _group_alive(pgid: int) -> bool:
    try:
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class ClaudeCliExecutor:
    """Runs Claude CLI requests; stateless between calls."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.wsl = running_in_wsl()

    async def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Execute one request and return its outcome."""
        trace = TraceLog.open(self.settings.log_dir, request.log_label)
        try:
            return await self._execute(request, trace)
        except Exception as e:
            logger.error(f"Unexpected error executing Claude CLI: {e}", exc_info=True)
            trace.line("Unexpected error", e)
            return SpawnError(message=f"Failed to execute command: {e}")

    def _child_env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.settings.extra_path:
            env["PATH"] = f"{self.settings.extra_path}{os.pathsep}{env.get('PATH', os.defpath)}"
        return env

    async def _execute(self, request: ExecutionRequest, trace: TraceLog) -> ExecutionOutcome:
        mode = "prompt" if request.prompt is not None else "command"
        tools = ", ".join(request.allowed_capabilities)
        cwd = Path(self.settings.user_directory)
        logger.info(f"Executing Claude CLI with {mode}, allowed tools: {tools}")

        trace.line("WSL", self.wsl)
        trace.line("User directory", cwd)
        trace.line("Claude path", self.settings.claude_executable_path)
        trace.line("Allowed tools", tools)
        trace.line("Timeout (ms)", request.timeout_millis)

        env = self._child_env()
        executable = shutil.which(
            self.settings.claude_executable_path, path=env.get("PATH", os.defpath)
        )
        if executable is None:
            return self._spawn_error(
                trace,
                f"Claude executable not found or not executable: {self.settings.claude_executable_path}",
            )
        if not cwd.is_dir():
            return self._spawn_error(trace, f"Working directory does not exist: {cwd}")

        command = build_command(request, executable)
        trace.line("Command", command)

        try:
            process = await asyncio.create_subprocess_exec(
                "bash",
                "-c",
                command,
                cwd=str(cwd),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            return self._spawn_error(trace, str(e))

        started = time.monotonic()
        try:
            return await self._race(process, request, trace, started)
        finally:
            if process.returncode is None:
                # Only reached when the caller cancelled us mid-flight
                _signal_group(process.pid, signal.SIGKILL)
                await process.wait()

    async def _race(
        self,
        process: asyncio.subprocess.Process,
        request: ExecutionRequest,
        trace: TraceLog,
        started: float,
    ) -> ExecutionOutcome:
        exit_task = asyncio.create_task(self._communicate(process, trace))
        deadline_task = asyncio.create_task(asyncio.sleep(request.timeout_millis / 1000))
        try:
            await asyncio.wait({exit_task, deadline_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            deadline_task.cancel()

        if exit_task.done():
            stdout, stderr, code = exit_task.result()
            return self._exit_outcome(stdout, stderr, code, trace)

        logger.warning(f"Command execution timed out after {request.timeout_millis}ms")
        trace.write(f"Command execution timed out after {request.timeout_millis}ms\n")

        forced_kill = await self._terminate(process, trace)
        exit_task.cancel()
        await asyncio.gather(exit_task, return_exceptions=True)

        elapsed = int((time.monotonic() - started) * 1000)
        trace.write(f"Command failed: Command timed out after {request.timeout_millis}ms\n")
        return TimedOut(
            elapsed_millis=elapsed,
            timeout_millis=request.timeout_millis,
            forced_kill=forced_kill,
        )

    async def _communicate(
        self, process: asyncio.subprocess.Process, trace: TraceLog
    ) -> tuple[str, str, int]:
        stdout, stderr = await asyncio.gather(
            self._drain(process.stdout, "STDOUT", trace),
            self._drain(process.stderr, "STDERR", trace),
        )
        code = await process.wait()
        return stdout, stderr, code

    async def _drain(self, stream: asyncio.StreamReader, name: str, trace: TraceLog) -> str:
        # Incremental decoding keeps multi-byte characters split across reads intact
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        parts = []
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            if not data:
                break
            chunk = decoder.decode(data)
            parts.append(chunk)
            logger.debug(f"[{name}]: {chunk.rstrip()}")
            trace.write(f"[{name}]: {chunk}")
        parts.append(decoder.decode(b"", final=True))
        return "".join(parts)

    async def _terminate(self, process: asyncio.subprocess.Process, trace: TraceLog) -> bool:
        """SIGTERM the process group, then SIGKILL it if it outlives the grace period.

        Returns True when SIGKILL was needed.
        """
        grace = self.settings.kill_grace_ms / 1000
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace

        logger.info("Attempting to terminate process...")
        _signal_group(process.pid, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(f"Process did not exit within {self.settings.kill_grace_ms}ms of SIGTERM")

        # Children of the shell may outlive it; the whole group must be gone
        while _group_alive(process.pid) and loop.time() < deadline:
            await asyncio.sleep(GROUP_POLL_SECONDS)
        if not _group_alive(process.pid):
            trace.write("Process terminated with SIGTERM\n")
            return False

        logger.warning("Forcing process termination with SIGKILL...")
        trace.write("Forcing process termination with SIGKILL\n")
        _signal_group(process.pid, signal.SIGKILL)
        await process.wait()
        return True

    def _exit_outcome(self, stdout: str, stderr: str, code: int, trace: TraceLog) -> ExecutionOutcome:
        logger.info(f"Process exited with code {code}")
        trace.write(f"Process exited with code {code}\n")

        if code == 0:
            empty = not stdout.strip()
            if empty:
                logger.warning("Command succeeded but produced no output")
                trace.write("Warning: Command produced no output\n")
            trace.write("Command completed successfully\n")
            return Success(stdout_text=stdout, exit_code=code, empty_output=empty)

        if code < 0:
            message = f"Process terminated by signal {-code}"
        else:
            message = f"Process exited with code {code}"
        logger.error(f"Command failed: {message}")
        trace.write(f"Command failed: {message}\n")
        return ProcessFailure(
            stdout_text=stdout,
            stderr_text=stderr,
            exit_code=code,
            message=message,
        )

    def _spawn_error(self, trace: TraceLog, message: str) -> SpawnError:
        logger.error(f"Process error: {message}")
        trace.write(f"Process error: {message}\n")
        return SpawnError(message=message)
