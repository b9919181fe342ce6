"""
Analyzer Module

Static analysis and instrumentation of untrusted scripts.

This module provides:
- Parsing with fail-fast syntax errors
- Forbidden-access detection against a denylist of names and dotted paths
- Call-graph construction and recursion (cycle) rejection
- Loop time-budget instrumentation
- Source emission of the instrumented tree

Every check fails closed: when analysis raises, no code is returned.
"""

__version__ = "0.1.0"

from .errors import AnalysisError, PolicyViolation, RecursionDetected, SourceSyntaxError
from .pipeline import Analysis, analyze, run_analysis
from .schemas import SandboxConfiguration

__all__ = [
    "Analysis",
    "AnalysisError",
    "PolicyViolation",
    "RecursionDetected",
    "SandboxConfiguration",
    "SourceSyntaxError",
    "analyze",
    "run_analysis",
]
