"""
Loop time-budget instrumentation.

Every loop body gets a guard call as its first statement::

    __sandbox_loop_guard__(__sandbox_start__, 2000)

The guard compares the time elapsed since the sandbox start marker with the
budget and raises once it is exceeded. It only runs when control re-enters a
loop body; a single iteration that never returns is not interrupted.
"""

from __future__ import annotations

import ast

GUARD_FUNCTION = "__sandbox_loop_guard__"
START_MARKER = "__sandbox_start__"


def make_guard_call(loop_timeout_ms: int) -> ast.Call:
    return ast.Call(
        func=ast.Name(id=GUARD_FUNCTION, ctx=ast.Load()),
        args=[
            ast.Name(id=START_MARKER, ctx=ast.Load()),
            ast.Constant(value=int(loop_timeout_ms)),
        ],
        keywords=[],
    )


def is_loop_guard(stmt: ast.stmt) -> bool:
    return (
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Call)
        and isinstance(stmt.value.func, ast.Name)
        and stmt.value.func.id == GUARD_FUNCTION
    )


class LoopInstrumenter(ast.NodeTransformer):
    """Insert the loop guard into ``while``/``for`` bodies and comprehensions.

    Comprehension clauses cannot hold statements, so the guard becomes the
    first ``if`` condition of each ``for`` clause (it returns True while the
    budget holds).
    """

    def __init__(self, loop_timeout_ms: int) -> None:
        self.loop_timeout_ms = loop_timeout_ms
        self.loops_guarded = 0

    def instrument(self, tree: ast.Module) -> int:
        self.visit(tree)
        ast.fix_missing_locations(tree)
        return self.loops_guarded

    def _guard_body(self, node: ast.While | ast.For | ast.AsyncFor) -> ast.AST:
        self.generic_visit(node)
        node.body.insert(0, ast.Expr(value=make_guard_call(self.loop_timeout_ms)))
        self.loops_guarded += 1
        return node

    def visit_While(self, node: ast.While) -> ast.AST:
        return self._guard_body(node)

    def visit_For(self, node: ast.For) -> ast.AST:
        return self._guard_body(node)

    def visit_AsyncFor(self, node: ast.AsyncFor) -> ast.AST:
        return self._guard_body(node)

    def visit_comprehension(self, node: ast.comprehension) -> ast.AST:
        self.generic_visit(node)
        node.ifs.insert(0, make_guard_call(self.loop_timeout_ms))
        self.loops_guarded += 1
        return node
