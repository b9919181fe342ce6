"""Serialize a (possibly instrumented) syntax tree back to source text."""

from __future__ import annotations

import ast


def emit_source(tree: ast.AST) -> str:
    return ast.unparse(ast.fix_missing_locations(tree))
