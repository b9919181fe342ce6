"""Analysis-time errors. Any of these means no instrumented code is produced."""

from __future__ import annotations


class AnalysisError(Exception):
    """Base class for failures of the static analysis pass."""


class SourceSyntaxError(AnalysisError, SyntaxError):
    """The source text could not be parsed."""

    def __init__(self, message: str, lineno: int | None = None, offset: int | None = None) -> None:
        SyntaxError.__init__(self, message)
        self.msg = message
        self.lineno = lineno
        self.offset = offset

    def __str__(self) -> str:
        if self.lineno is None:
            return self.msg
        return f"{self.msg} (line {self.lineno})"


class PolicyViolation(AnalysisError):
    """The source references a denylisted name, dotted path or attribute."""

    def __init__(self, path: str, rule: str | None = None) -> None:
        self.path = path
        self.rule = rule or path
        super().__init__(f"Forbidden access detected: {path}")


class RecursionDetected(AnalysisError):
    """The call graph contains a cycle (direct or indirect recursion)."""

    def __init__(self, node: str, cycle: list[str] | None = None) -> None:
        self.node = node
        self.cycle = list(cycle) if cycle else [node, node]
        chain = " -> ".join(self.cycle)
        super().__init__(f"Recursion detected involving function: {node} ({chain})")
