"""
Sandbox Module

Execution harness for analyzed scripts.

This module provides:
- Sandbox unit generation (runtime guards + tracked user code)
- The runtime guard library (memory estimation, variable tracking, loop clock)
- The line-delimited JSON message protocol
- Subprocess-based execution with an ordered message stream

WARNING: This sandbox is NOT a hard security boundary. It is best-effort
static and runtime mitigation, not process-level capability isolation.
"""

__version__ = "0.1.0"

from .executor import ExecutionResult, SandboxExecutor
from .generator import build_sandbox_unit

__all__ = [
    "ExecutionResult",
    "SandboxExecutor",
    "build_sandbox_unit",
]
