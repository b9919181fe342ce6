"""
Route top-level variables through the sandbox binding table.

Every read, write and delete of a module-level variable is rewritten into a
subscript on the tracker, e.g. ``total = total + x`` becomes
``__sandbox_env__['total'] = __sandbox_env__['total'] + x``. Python's
scoping rules decide which names inside functions, lambdas, classes and
comprehensions refer to module scope.

Names bound by ``def``, ``class``, ``import``, ``except ... as``, walrus
and ``match`` captures can't be subscript targets; they stay ordinary
globals of the sandbox namespace and are not tracked. A name a function
declares ``global`` and binds that way is never tracked, anywhere.
"""

from __future__ import annotations

import ast
from collections.abc import Iterable
from dataclasses import dataclass, field

from sandbox.runtime import CLASS_SCOPE_NAME, ENV_NAME

_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)


class _ScopeScanner(ast.NodeVisitor):
    """Collect the names one scope binds, without entering nested scopes."""

    def __init__(self) -> None:
        self.stores: set[str] = set()
        self.native: set[str] = set()
        self.globals: set[str] = set()
        self.nonlocals: set[str] = set()

    def scan(self, nodes: Iterable[ast.AST]) -> "_ScopeScanner":
        for node in nodes:
            self.visit(node)
        return self

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self.stores.add(node.id)

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        self.native.add(node.name)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self.native.add(node.name)

    def visit_Lambda(self, node: ast.Lambda) -> None:
        pass

    def _visit_comprehension(self, node: ast.AST) -> None:
        # only walrus targets leak out of a comprehension
        for child in ast.walk(node):
            if isinstance(child, ast.NamedExpr) and isinstance(child.target, ast.Name):
                self.native.add(child.target.id)

    visit_ListComp = _visit_comprehension
    visit_SetComp = _visit_comprehension
    visit_DictComp = _visit_comprehension
    visit_GeneratorExp = _visit_comprehension

    def visit_NamedExpr(self, node: ast.NamedExpr) -> None:
        if isinstance(node.target, ast.Name):
            self.native.add(node.target.id)
        self.visit(node.value)

    def visit_Import(self, node: ast.Import | ast.ImportFrom) -> None:
        for alias in node.names:
            if alias.name != "*":
                self.native.add(alias.asname or alias.name.split(".")[0])

    visit_ImportFrom = visit_Import

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name:
            self.native.add(node.name)
        self.generic_visit(node)

    def visit_MatchAs(self, node: ast.MatchAs) -> None:
        if node.name:
            self.native.add(node.name)
        self.generic_visit(node)

    def visit_MatchStar(self, node: ast.MatchStar) -> None:
        if node.name:
            self.native.add(node.name)

    def visit_MatchMapping(self, node: ast.MatchMapping) -> None:
        if node.rest:
            self.native.add(node.rest)
        self.generic_visit(node)

    def visit_TypeAlias(self, node: ast.AST) -> None:
        self.native.add(node.name.id)  # type: ignore[attr-defined]

    def visit_Global(self, node: ast.Global) -> None:
        self.globals.update(node.names)

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self.nonlocals.update(node.names)


@dataclass
class _Scope:
    kind: str
    locals: set[str] = field(default_factory=set)
    globals: set[str] = field(default_factory=set)


def _argument_names(args: ast.arguments) -> set[str]:
    names = {a.arg for a in [*args.posonlyargs, *args.args, *args.kwonlyargs]}
    if args.vararg:
        names.add(args.vararg.arg)
    if args.kwarg:
        names.add(args.kwarg.arg)
    return names


def collect_tracked_names(tree: ast.Module) -> set[str]:
    """Names that live in the binding table for this program."""
    scanner = _ScopeScanner().scan(tree.body)
    declared_global: set[str] = set()
    native_global: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Global):
            declared_global.update(node.names)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            inner = _ScopeScanner().scan(node.body)
            native_global |= inner.native & inner.globals
    return (scanner.stores | declared_global) - scanner.native - native_global


class BindingRewriter(ast.NodeTransformer):
    """Rewrite module-scope variable references into binding table subscripts."""

    def __init__(self, tracked: set[str]) -> None:
        self.tracked = tracked
        self._scopes: list[_Scope] = []

    def _refers_to_table(self, name: str, skip: int = 0) -> bool:
        scopes = self._scopes[: len(self._scopes) - skip]
        for depth, scope in enumerate(reversed(scopes), start=skip):
            if scope.kind == "module" or name in scope.globals:
                return name in self.tracked
            if scope.kind == "class" and depth > 0:
                continue
            if name in scope.locals:
                return False
        return name in self.tracked

    def _table_ref(self, name: str, ctx: ast.expr_context) -> ast.Subscript:
        return ast.Subscript(
            value=ast.Name(id=ENV_NAME, ctx=ast.Load()),
            slice=ast.Constant(value=name),
            ctx=ctx,
        )

    def _visit_list(self, nodes: list[ast.AST]) -> list:
        result = []
        for node in nodes:
            new = self.visit(node)
            if isinstance(new, list):
                result.extend(new)
            elif new is not None:
                result.append(new)
        return result

    def visit_Module(self, node: ast.Module) -> ast.AST:
        self._scopes.append(_Scope("module"))
        node.body = self._visit_list(node.body)
        self._scopes.pop()
        return node

    def _is_class_shadowed(self, name: str) -> bool:
        """A tracked name that the innermost class body also assigns."""
        scope = self._scopes[-1]
        return (
            scope.kind == "class"
            and name in scope.locals
            and name not in scope.globals
            and self._refers_to_table(name, skip=1)
        )

    def _class_lookup(self, name: str) -> ast.Call:
        # __sandbox_env__.lookup('x', __sandbox_class_scope__())
        return ast.Call(
            func=ast.Attribute(value=ast.Name(id=ENV_NAME, ctx=ast.Load()), attr="lookup", ctx=ast.Load()),
            args=[
                ast.Constant(value=name),
                ast.Call(func=ast.Name(id=CLASS_SCOPE_NAME, ctx=ast.Load()), args=[], keywords=[]),
            ],
            keywords=[],
        )

    def visit_Name(self, node: ast.Name) -> ast.AST:
        if isinstance(node.ctx, ast.Load) and self._is_class_shadowed(node.id):
            return ast.copy_location(self._class_lookup(node.id), node)
        if self._refers_to_table(node.id):
            return ast.copy_location(self._table_ref(node.id, node.ctx), node)
        return node

    def visit_Global(self, node: ast.Global) -> ast.AST:
        remaining = [name for name in node.names if name not in self.tracked]
        if not remaining:
            return ast.copy_location(ast.Pass(), node)
        node.names = remaining
        return node

    def visit_AugAssign(self, node: ast.AugAssign) -> ast.AST | list[ast.AST]:
        target = node.target
        if isinstance(target, ast.Name) and self._is_class_shadowed(target.id):
            # bind the class local first, then update it in place
            bind = ast.Assign(
                targets=[ast.Name(id=target.id, ctx=ast.Store())],
                value=self._class_lookup(target.id),
            )
            node.value = self.visit(node.value)
            return [ast.copy_location(bind, node), node]
        self.generic_visit(node)
        return node

    def visit_AnnAssign(self, node: ast.AnnAssign) -> ast.AST:
        self.generic_visit(node)
        if not isinstance(node.target, ast.Name):
            node.simple = 0
        return node

    def visit_NamedExpr(self, node: ast.NamedExpr) -> ast.AST:
        node.value = self.visit(node.value)
        return node

    def _visit_signature(self, args: ast.arguments) -> None:
        args.defaults = self._visit_list(args.defaults)
        args.kw_defaults = [self.visit(d) if d is not None else None for d in args.kw_defaults]
        for arg in [*args.posonlyargs, *args.args, *args.kwonlyargs, args.vararg, args.kwarg]:
            if arg is not None and arg.annotation is not None:
                arg.annotation = self.visit(arg.annotation)

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> ast.AST:
        node.decorator_list = self._visit_list(node.decorator_list)
        self._visit_signature(node.args)
        if node.returns is not None:
            node.returns = self.visit(node.returns)

        scanner = _ScopeScanner().scan(node.body)
        local_names = (
            scanner.stores | scanner.native | scanner.nonlocals | _argument_names(node.args)
        ) - scanner.globals
        self._scopes.append(_Scope("function", local_names, scanner.globals))
        node.body = self._visit_list(node.body) or [ast.Pass()]
        self._scopes.pop()
        return node

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_Lambda(self, node: ast.Lambda) -> ast.AST:
        self._visit_signature(node.args)
        scanner = _ScopeScanner().scan([node.body])
        self._scopes.append(_Scope("function", _argument_names(node.args) | scanner.native))
        node.body = self.visit(node.body)
        self._scopes.pop()
        return node

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.AST:
        node.decorator_list = self._visit_list(node.decorator_list)
        node.bases = self._visit_list(node.bases)
        node.keywords = self._visit_list(node.keywords)

        scanner = _ScopeScanner().scan(node.body)
        self._scopes.append(
            _Scope("class", (scanner.stores | scanner.native) - scanner.globals, scanner.globals)
        )
        node.body = self._visit_list(node.body) or [ast.Pass()]
        self._scopes.pop()
        return node

    def _visit_comprehension_node(self, node: ast.AST) -> ast.AST:
        generators: list[ast.comprehension] = node.generators  # type: ignore[attr-defined]
        # the first iterable is evaluated in the enclosing scope
        generators[0].iter = self.visit(generators[0].iter)

        targets: set[str] = set()
        for generator in generators:
            for child in ast.walk(generator.target):
                if isinstance(child, ast.Name):
                    targets.add(child.id)
        self._scopes.append(_Scope("comprehension", targets))
        for index, generator in enumerate(generators):
            generator.target = self.visit(generator.target)
            if index > 0:
                generator.iter = self.visit(generator.iter)
            generator.ifs = self._visit_list(generator.ifs)
        for attr in ("elt", "key", "value"):
            if hasattr(node, attr):
                setattr(node, attr, self.visit(getattr(node, attr)))
        self._scopes.pop()
        return node

    visit_ListComp = _visit_comprehension_node
    visit_SetComp = _visit_comprehension_node
    visit_DictComp = _visit_comprehension_node
    visit_GeneratorExp = _visit_comprehension_node


def track_top_level_bindings(tree: ast.Module) -> set[str]:
    """Rewrite ``tree`` in place; returns the tracked names."""
    tracked = collect_tracked_names(tree)
    BindingRewriter(tracked).visit(tree)
    ast.fix_missing_locations(tree)
    return tracked
