"""
Shell execution for project tools: foreground runs with a timeout and an
output cap, and detached background processes tracked per executor.
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, Dict, List, Optional

from ..error_handling.errors import ToolError, ToolTimeoutError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
MAX_OUTPUT_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_BACKGROUND = 16
_READ_CHUNK = 64 * 1024


class _CappedReader(threading.Thread):
    """Drains a pipe to EOF, keeping at most `limit` bytes."""

    def __init__(self, pipe: IO[bytes], limit: int):
        super().__init__(daemon=True)
        self.pipe = pipe
        self.limit = limit
        self.chunks: List[bytes] = []
        self.kept = 0
        self.truncated = False

    def run(self) -> None:
        try:
            while True:
                chunk = self.pipe.read(_READ_CHUNK)
                if not chunk:
                    break
                room = self.limit - self.kept
                if room <= 0:
                    self.truncated = True
                    continue
                if len(chunk) > room:
                    chunk = chunk[:room]
                    self.truncated = True
                self.chunks.append(chunk)
                self.kept += len(chunk)
        except (OSError, ValueError):
            # pipe closed underneath us after a kill
            pass
        finally:
            try:
                self.pipe.close()
            except OSError:
                pass

    def text(self) -> str:
        return b"".join(self.chunks).decode("utf-8", "replace")


@dataclass
class ShellResult:
    command: str
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    truncated: bool = False
    duration_s: float = 0.0

    def combined_output(self) -> str:
        output = self.stdout
        if self.stderr:
            output += ("\n" if output else "") + self.stderr
        return output


@dataclass
class BackgroundProcess:
    pid: int
    command: str
    process: subprocess.Popen

    def status(self) -> str:
        code = self.process.poll()
        return "running" if code is None else f"exited ({code})"

    def is_running(self) -> bool:
        return self.process.poll() is None


class BackgroundProcessTable:
    """Handle -> descriptor map for detached processes; owned by one executor."""

    def __init__(self, max_live: int = DEFAULT_MAX_BACKGROUND):
        self.max_live = max_live
        self._records: Dict[int, BackgroundProcess] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, pid: int) -> bool:
        return pid in self._records

    def add(self, record: BackgroundProcess) -> None:
        self._records[record.pid] = record

    def get(self, pid: int) -> Optional[BackgroundProcess]:
        return self._records.get(pid)

    def remove(self, pid: int) -> Optional[BackgroundProcess]:
        return self._records.pop(pid, None)

    def live_count(self) -> int:
        return sum(1 for record in self._records.values() if record.is_running())

    def records(self) -> List[BackgroundProcess]:
        return [self._records[pid] for pid in sorted(self._records)]

    def describe(self) -> str:
        if not self._records:
            return "No background processes running"
        return "\n".join(
            f"PID {record.pid} [{record.status()}]: {record.command}" for record in self.records()
        )


class ShellRunner:
    """Runs commands in the project directory with the session's environment overlay"""

    def __init__(
        self,
        cwd: str,
        env_overlay: Optional[Dict[str, str]] = None,
        *,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_output_bytes: int = MAX_OUTPUT_BYTES,
        max_background: int = DEFAULT_MAX_BACKGROUND,
    ):
        self.cwd = cwd
        # shared by reference so overlay updates reach later commands
        self.env_overlay = env_overlay if env_overlay is not None else {}
        self.default_timeout_ms = default_timeout_ms
        self.max_output_bytes = max_output_bytes
        self.background = BackgroundProcessTable(max_background)

    def environment(self) -> Dict[str, str]:
        merged = os.environ.copy()
        merged.update({str(k): str(v) for k, v in self.env_overlay.items()})
        return merged

    def run(self, command: str, timeout_ms: Optional[int] = None, stdin_data: Optional[str] = None) -> ShellResult:
        """Run a foreground command in its own process group; the group is killed on timeout."""
        timeout_ms = int(timeout_ms or self.default_timeout_ms)
        started = time.monotonic()
        logger.debug("shell: %s (timeout %sms)", command, timeout_ms)
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=self.cwd,
            env=self.environment(),
            stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
        out_reader = _CappedReader(proc.stdout, self.max_output_bytes)
        err_reader = _CappedReader(proc.stderr, self.max_output_bytes)
        out_reader.start()
        err_reader.start()

        if stdin_data is not None and proc.stdin is not None:
            try:
                proc.stdin.write(stdin_data.encode("utf-8"))
            except BrokenPipeError:
                pass
            finally:
                proc.stdin.close()

        timed_out = False
        try:
            proc.wait(timeout=timeout_ms / 1000.0)
        except subprocess.TimeoutExpired:
            timed_out = True
            self._kill_group(proc.pid, signal.SIGKILL)
            proc.wait()

        out_reader.join(timeout=5)
        err_reader.join(timeout=5)

        stdout = out_reader.text()
        stderr = err_reader.text()
        truncated = out_reader.truncated or err_reader.truncated
        combined_len = len(stdout.encode("utf-8")) + len(stderr.encode("utf-8"))
        if combined_len > self.max_output_bytes:
            truncated = True
            budget = max(self.max_output_bytes - len(stdout.encode("utf-8")), 0)
            stderr = stderr.encode("utf-8")[:budget].decode("utf-8", "ignore")

        return ShellResult(
            command=command,
            exit_code=None if timed_out else proc.returncode,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
            truncated=truncated,
            duration_s=time.monotonic() - started,
        )

    def execute(self, command: str, timeout_ms: Optional[int] = None, stdin_data: Optional[str] = None) -> str:
        """Tool-facing run: timeouts and silent failures raise, everything else is output text."""
        timeout_ms = int(timeout_ms or self.default_timeout_ms)
        result = self.run(command, timeout_ms, stdin_data=stdin_data)
        if result.timed_out:
            raise ToolTimeoutError(f"Command timed out after {timeout_ms}ms")
        output = result.combined_output()
        if result.truncated:
            output += f"\n[output truncated at {self.max_output_bytes} bytes]"
        if result.exit_code != 0 and not output:
            raise ToolError(f"Command failed with exit code {result.exit_code}: {command}", "non_zero_exit")
        return output or "Command completed successfully"

    # --- background processes -------------------------------------------------
    def spawn_background(self, command: str) -> BackgroundProcess:
        live = self.background.live_count()
        if live >= self.background.max_live:
            raise ToolError(
                f"Background process limit reached ({live} running); kill one with manage_process first",
                "limit_reached",
            )
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=self.cwd,
            env=self.environment(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        record = BackgroundProcess(pid=proc.pid, command=command, process=proc)
        self.background.add(record)
        logger.info("Started background process %s: %s", proc.pid, command)
        return record

    def _kill_group(self, pid: int, sig: int) -> None:
        try:
            os.killpg(pid, sig)
        except ProcessLookupError:
            pass

    def kill_background(self, pid: int) -> BackgroundProcess:
        record = self.background.get(pid)
        if record is None:
            raise ToolError(f"Process {pid} not found", "not_found")
        if record.is_running():
            self._kill_group(pid, signal.SIGTERM)
            try:
                record.process.wait(timeout=3)
            except subprocess.TimeoutExpired:
                self._kill_group(pid, signal.SIGKILL)
                record.process.wait()
        self.background.remove(pid)
        logger.info("Killed background process %s", pid)
        return record

    def restart_background(self, pid: int) -> BackgroundProcess:
        record = self.kill_background(pid)
        return self.spawn_background(record.command)
