"""
Subprocess-based execution bridge for sandbox units.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import tempfile
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import IO

from analyzer.schemas import ErrorEntry, ExitFrame, LogEntry
from sandbox.protocol import ProtocolError, decode_message

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    entries: list[LogEntry]
    exit_status: str | None
    runtime_ms: float
    timed_out: bool = False
    console: str = ""
    exit_code: int | None = None

    @property
    def completed(self) -> bool:
        """The unit ran to the end without an error."""
        return self.exit_status == "completed"

    @property
    def errors(self) -> list[str]:
        return [entry.payload.message for entry in self.entries if isinstance(entry, ErrorEntry)]


@dataclass
class _SandboxRun:
    """State of one launched unit while its stream is consumed."""
    process: subprocess.Popen[str]
    stderr: IO[bytes]
    started: float
    watchdog: threading.Timer | None = None
    timed_out: bool = False
    exit_status: str | None = None
    console: str = ""
    entries: list[LogEntry] = field(default_factory=list)

    @property
    def runtime_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000


class SandboxExecutor:
    """
    Run sandbox units in a child interpreter and stream their messages.

    The child reads the unit from stdin, which is closed right after, so it
    accepts no input once launched. A watchdog kills it after
    ``hard_timeout_s``. On Unix platforms, CPU and memory limits are also
    enforced via resource.setrlimit; on Windows only the watchdog applies.
    """

    DEFAULT_MEMORY_LIMIT_MB: int = 256
    DEFAULT_HARD_TIMEOUT_S: float = 10.0

    def __init__(self, hard_timeout_s: float | None = None, memory_limit_mb: int | None = None) -> None:
        self.hard_timeout_s: float = hard_timeout_s or self.DEFAULT_HARD_TIMEOUT_S
        self.memory_limit_mb: int = memory_limit_mb or self.DEFAULT_MEMORY_LIMIT_MB

    def stream(self, unit: str) -> Iterator[LogEntry]:
        """Yield log entries in emission order until the unit terminates."""
        run = self._launch(unit)
        yield from self._consume(run)

    def execute(self, unit: str) -> ExecutionResult:
        run = self._launch(unit)
        for _ in self._consume(run):
            pass
        return ExecutionResult(
            entries=run.entries,
            exit_status=run.exit_status,
            runtime_ms=run.runtime_ms,
            timed_out=run.timed_out,
            console=run.console,
            exit_code=run.process.returncode,
        )

    def _launch(self, unit: str) -> _SandboxRun:
        stderr = tempfile.TemporaryFile()
        process = subprocess.Popen(
            [sys.executable, "-I", "-"],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=stderr,
            text=True,
            encoding="utf-8",
            preexec_fn=self._limit_resources() if os.name != "nt" else None,
        )
        run = _SandboxRun(process=process, stderr=stderr, started=time.perf_counter())
        run.watchdog = threading.Timer(self.hard_timeout_s, self._kill, args=(run,))
        run.watchdog.daemon = True
        run.watchdog.start()

        assert process.stdin is not None
        try:
            process.stdin.write(unit)
        except BrokenPipeError:
            logger.warning("Sandbox process closed stdin before the unit was written")
        finally:
            try:
                process.stdin.close()
            except BrokenPipeError:
                pass
        return run

    def _kill(self, run: _SandboxRun) -> None:
        if run.process.poll() is None:
            logger.warning(f"Killing sandbox process {run.process.pid} after {self.hard_timeout_s}s")
            run.timed_out = True
            run.process.kill()

    def _consume(self, run: _SandboxRun) -> Iterator[LogEntry]:
        assert run.process.stdout is not None
        try:
            for line in run.process.stdout:
                if not line.strip():
                    continue
                try:
                    message = decode_message(line)
                except ProtocolError as exc:
                    message = ErrorEntry.from_message(str(exc))
                if isinstance(message, ExitFrame):
                    run.exit_status = message.status
                    break
                run.entries.append(message)
                yield message
        except GeneratorExit:
            # the host stopped listening: cancel the unit
            run.process.kill()
            raise
        finally:
            self._finish(run)

        if run.exit_status is None:
            entry = ErrorEntry.from_message(self._describe_crash(run))
            run.entries.append(entry)
            yield entry

    def _finish(self, run: _SandboxRun) -> None:
        process = run.process
        try:
            process.wait(timeout=self.hard_timeout_s)
        except subprocess.TimeoutExpired:
            run.timed_out = True
            process.kill()
            process.wait()
        if run.watchdog is not None:
            run.watchdog.cancel()
        if process.stdout is not None:
            process.stdout.close()

        run.stderr.seek(0)
        run.console = run.stderr.read().decode("utf-8", errors="replace")
        run.stderr.close()

    def _describe_crash(self, run: _SandboxRun) -> str:
        if run.timed_out:
            return f"Sandbox killed after {self.hard_timeout_s}s (hard timeout)"
        tail = run.console.strip().splitlines()[-1:] or ["no output"]
        return f"Sandbox process exited with code {run.process.returncode}: {tail[0]}"

    def _limit_resources(self):
        """Return a preexec_fn to enforce resource limits on Unix."""
        def _apply_limits():
            try:
                import resource
            except ImportError:
                return
            cpu_seconds = max(1, int(self.hard_timeout_s) + 1)
            memory_bytes = int(self.memory_limit_mb * 1024 * 1024)
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))
            if hasattr(resource, "RLIMIT_AS"):
                resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))
            elif hasattr(resource, "RLIMIT_DATA"):
                resource.setrlimit(resource.RLIMIT_DATA, (memory_bytes, memory_bytes))

        return _apply_limits
