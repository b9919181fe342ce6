"""Analyze, build and run a script in one call, as a host application would."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from analyzer import AnalysisError, analyze
from analyzer.schemas import ErrorEntry, LogEntry, SandboxConfiguration, VariableChange, VariableRead
from sandbox.executor import ExecutionResult, SandboxExecutor
from sandbox.generator import build_sandbox_unit

logger = logging.getLogger(__name__)


def run_source(
    source: str,
    config: SandboxConfiguration | None = None,
    executor: SandboxExecutor | None = None,
) -> ExecutionResult:
    """Run untrusted source end to end.

    An analysis failure is returned as a result holding a single error
    entry; nothing is executed in that case.
    """
    config = config or SandboxConfiguration()
    try:
        instrumented = analyze(source, config)
    except AnalysisError as e:
        logger.info(f"Analysis rejected source: {e}")
        return ExecutionResult(
            entries=[ErrorEntry.from_message(str(e))],
            exit_status=None,
            runtime_ms=0.0,
        )

    unit = build_sandbox_unit(instrumented, config)
    executor = executor or SandboxExecutor()
    return executor.execute(unit)


def variable_timeline(entries: Iterable[LogEntry]) -> list[VariableRead | VariableChange]:
    """Reads and writes only, in emission order."""
    return [entry for entry in entries if isinstance(entry, (VariableRead, VariableChange))]


def format_entry(entry: LogEntry) -> str:
    if isinstance(entry, ErrorEntry):
        return f"ERROR: {entry.payload.message}"
    label = "WRITE" if isinstance(entry, VariableChange) else "READ"
    return f"{label}: {entry.payload.name} = {json.dumps(entry.payload.value)}"
