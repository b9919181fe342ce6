"""
Call graph construction and recursion detection.

Only direct calls through a plain identifier (``f(...)``) made lexically
inside a named ``def`` are recorded. Method calls, calls through attributes
or variables, and calls inside lambdas or class bodies are not represented.
"""

from __future__ import annotations

import ast
import logging
from collections.abc import Iterator, Mapping, Sequence

from analyzer.errors import RecursionDetected

logger = logging.getLogger(__name__)

CallGraph = dict[str, list[str]]


class CallGraphBuilder(ast.NodeVisitor):
    """Collect ``caller -> callee`` edges keyed by function name."""

    def __init__(self) -> None:
        self.graph: CallGraph = {}
        # (kind, name); kind is one of function, method, class, lambda
        self._scopes: list[tuple[str, str | None]] = []

    def build(self, tree: ast.Module) -> CallGraph:
        for stmt in tree.body:
            if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self.graph.setdefault(stmt.name, [])
        self.visit(tree)
        return self.graph

    def _visit_outer_parts(self, node: ast.FunctionDef | ast.AsyncFunctionDef | ast.Lambda) -> None:
        if not isinstance(node, ast.Lambda):
            for decorator in node.decorator_list:
                self.visit(decorator)
            if node.returns is not None:
                self.visit(node.returns)
        for default in [*node.args.defaults, *node.args.kw_defaults]:
            if default is not None:
                self.visit(default)

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        self._visit_outer_parts(node)
        is_method = bool(self._scopes) and self._scopes[-1][0] == "class"
        if is_method:
            self._scopes.append(("method", None))
        else:
            self.graph.setdefault(node.name, [])
            self._scopes.append(("function", node.name))
        for stmt in node.body:
            self.visit(stmt)
        self._scopes.pop()

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        for expr in [*node.decorator_list, *node.bases, *node.keywords]:
            self.visit(expr)
        self._scopes.append(("class", node.name))
        for stmt in node.body:
            self.visit(stmt)
        self._scopes.pop()

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self._visit_outer_parts(node)
        self._scopes.append(("lambda", None))
        self.visit(node.body)
        self._scopes.pop()

    def visit_Call(self, node: ast.Call) -> None:
        if isinstance(node.func, ast.Name) and self._scopes:
            kind, caller = self._scopes[-1]
            if kind == "function" and caller is not None:
                self.graph[caller].append(node.func.id)
        self.generic_visit(node)


def build_call_graph(tree: ast.Module) -> CallGraph:
    return CallGraphBuilder().build(tree)


def detect_cycles(graph: Mapping[str, Sequence[str]]) -> None:
    """Depth-first search for a cycle in the call graph.

    Uses a "visited" set and an "on stack" set; reaching a node that is
    still on the stack closes a cycle. Self recursion and indirect
    recursion are reported the same way.

    Raises:
        RecursionDetected: Naming the node at which the cycle closes.
    """
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in graph:
        if root in visited:
            continue
        path: list[str] = [root]
        iterators: list[Iterator[str]] = [iter(graph.get(root, ()))]
        visited.add(root)
        on_stack.add(root)

        while iterators:
            callee = next(iterators[-1], None)
            if callee is None:
                iterators.pop()
                on_stack.discard(path.pop())
                continue
            if callee in on_stack:
                cycle = path[path.index(callee):] + [callee]
                logger.info(f"Rejecting source: recursion through {' -> '.join(cycle)}")
                raise RecursionDetected(callee, cycle)
            if callee in visited:
                continue
            visited.add(callee)
            on_stack.add(callee)
            path.append(callee)
            iterators.append(iter(graph.get(callee, ())))
