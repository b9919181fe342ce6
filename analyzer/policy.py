"""
Sandbox policy definitions and the forbidden-access detector.
"""

from __future__ import annotations

import ast
import logging
from collections.abc import Iterable

from analyzer.errors import PolicyViolation

logger = logging.getLogger(__name__)

# Identifiers starting with this prefix belong to the runtime guard library.
RESERVED_PREFIX = "__sandbox"

FORBIDDEN_NAMES = [
    "os",
    "sys",
    "subprocess",
    "socket",
    "shutil",
    "pathlib",
    "io",
    "ctypes",
    "importlib",
    "builtins",
    "urllib",
    "http",
    "requests",
    "multiprocessing",
    "threading",
    "signal",
    "inspect",
    "gc",
    "__import__",
    "__builtins__",
    "eval",
    "exec",
    "compile",
    "open",
    "input",
    "breakpoint",
    "globals",
    "locals",
    "vars",
    "getattr",
    "setattr",
    "delattr",
    "exit",
    "quit",
    "help",
]

FORBIDDEN_ATTRIBUTES = [
    "__class__",
    "__dict__",
    "__bases__",
    "__base__",
    "__mro__",
    "__subclasses__",
    "__globals__",
    "__builtins__",
    "__code__",
    "__closure__",
    "__getattribute__",
    "__reduce__",
    "__reduce_ex__",
    "__import__",
    "__loader__",
    "__spec__",
    "gi_frame",
    "gi_code",
    "cr_frame",
    "ag_frame",
    "f_globals",
    "f_locals",
    "f_builtins",
    "f_back",
    "tb_frame",
    # module handles leaked through other modules; matched on any object,
    # so `config.os` is rejected as well
    "os",
    "sys",
    "_os",
    "_sys",
    "subprocess",
    "builtins",
]

ALLOWED_MODULES = [
    "math",
    "random",
    "itertools",
    "functools",
    "collections",
    "typing",
    "dataclasses",
    "string",
    "statistics",
    "heapq",
    "bisect",
    "operator",
    "json",
    "re",
]


def resolve_access_path(node: ast.expr) -> str | None:
    """Join a member chain into a dotted path, e.g. ``window.location.href``.

    Returns None when the chain does not start at a plain identifier
    (call results, subscripts, literals). Such chains cannot be matched.
    """
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = resolve_access_path(node.value)
        if base is None:
            return None
        return f"{base}.{node.attr}"
    return None


def _attribute_chain(node: ast.Attribute) -> list[str]:
    names: list[str] = []
    current: ast.expr = node
    while isinstance(current, ast.Attribute):
        names.append(current.attr)
        current = current.value
    names.reverse()
    return names


class ForbiddenAccessDetector(ast.NodeVisitor):
    """Reject identifiers, member paths and imports that match the denylist.

    The first match aborts the walk with PolicyViolation, so a single
    violation anywhere in the tree (reachable or not) voids the analysis.
    """

    def __init__(
        self,
        forbidden_names: Iterable[str] | None = None,
        forbidden_attributes: Iterable[str] | None = None,
        check_computed_bases: bool = False,
    ) -> None:
        self.forbidden_names = frozenset(FORBIDDEN_NAMES if forbidden_names is None else forbidden_names)
        self.forbidden_attributes = frozenset(
            FORBIDDEN_ATTRIBUTES if forbidden_attributes is None else forbidden_attributes
        )
        self.check_computed_bases = check_computed_bases

    def check(self, tree: ast.AST) -> None:
        self.visit(tree)

    def _check_path(self, path: str) -> None:
        leading = path.split(".", 1)[0]
        if leading in self.forbidden_names:
            self._reject(path, leading)
        if path in self.forbidden_names:
            self._reject(path, path)

    def _reject(self, path: str, rule: str) -> None:
        logger.info(f"Rejecting source: forbidden access {path} (rule {rule})")
        raise PolicyViolation(path, rule)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith(RESERVED_PREFIX):
            self._reject(node.id, RESERVED_PREFIX)
        self._check_path(node.id)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        chain = _attribute_chain(node)
        for attr in chain:
            if attr in self.forbidden_attributes:
                self._reject(resolve_access_path(node) or f"<expr>.{'.'.join(chain)}", attr)

        path = resolve_access_path(node)
        if path is not None:
            self._check_path(path)
        elif self.check_computed_bases:
            for attr in chain:
                if attr in self.forbidden_names:
                    self._reject(f"<expr>.{'.'.join(chain)}", attr)
        self.generic_visit(node)

    def _check_binding(self, name: str | None) -> None:
        if name and name.startswith(RESERVED_PREFIX):
            self._reject(name, RESERVED_PREFIX)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._check_binding(node.name)
        self.generic_visit(node)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._check_binding(node.name)
        self.generic_visit(node)

    def visit_arg(self, node: ast.arg) -> None:
        self._check_binding(node.arg)
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        self._check_binding(node.name)
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global) -> None:
        for name in node.names:
            self._check_binding(name)

    visit_Nonlocal = visit_Global

    def visit_MatchAs(self, node: ast.MatchAs) -> None:
        self._check_binding(node.name)
        self.generic_visit(node)

    def visit_MatchStar(self, node: ast.MatchStar) -> None:
        self._check_binding(node.name)

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self._check_module_path(alias.name)
            if alias.asname:
                self.visit_Name(ast.Name(id=alias.asname, ctx=ast.Store()))

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        module = node.module or ""
        if module:
            self._check_module_path(module)
        for alias in node.names:
            if alias.name == "*":
                continue
            if module:
                self._check_path(f"{module}.{alias.name}")
            self.visit_Name(ast.Name(id=alias.asname or alias.name, ctx=ast.Store()))

    def _check_module_path(self, module: str) -> None:
        parts = module.split(".")
        for end in range(1, len(parts) + 1):
            self._check_path(".".join(parts[:end]))
