"""
Dump Overlay
============

Generic dump-on-evaluation rewrite used for loops and for every form that
has no dedicated generator. It never renames, caches or replays; it only
threads values through ``dump``/``loop_step`` calls so they are reported as
they are computed.

  - level 1: one summary event per evaluated form or loop iteration
  - level 2: additionally every nested call and every statement in a loop
    body, indented by nesting depth
"""

import ast
import copy
from typing import List, Sequence

from ..utils.helpers import as_load, call, first_line, loaded_names, located, name, source_of
from .context import Expansion

_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)
_SIMPLE_TARGETS = (ast.Name, ast.Tuple, ast.List, ast.Starred)


class _NestedCalls(ast.NodeTransformer):
    """Wrap each call below the root in a ``dump`` with its nesting depth."""

    def __init__(self, overlay: 'DumpOverlay', depth: int):
        self.overlay = overlay
        self.depth = depth

    def visit_Call(self, node: ast.Call) -> ast.expr:
        source = source_of(node)
        depth = self.depth
        self.depth += 1
        self.generic_visit(node)
        self.depth -= 1
        return self.overlay.dump_call(source, node, depth)

    def visit_Lambda(self, node: ast.Lambda) -> ast.expr:
        return node


class DumpOverlay:
    """Level-parameterised dump rewrite for statements and expressions."""

    def __init__(self, level: int, ctx):
        self.level = level
        self.ctx = ctx

    def dump_call(self, source: str, value: ast.expr, indent: int) -> ast.Call:
        return call(self.ctx.rt('dump'), ast.Constant(value=source), value,
                    ast.Constant(value=indent))

    def _step_call(self, header: str, form: str, value: ast.expr, indent: int) -> ast.Call:
        return call(self.ctx.rt('loop_step'), ast.Constant(value=header),
                    ast.Constant(value=form), value, ast.Constant(value=indent))

    def _nested(self, node: ast.expr, indent: int) -> ast.expr:
        node = copy.deepcopy(node)
        if self.level > 1:
            # generic_visit leaves the root itself alone
            _NestedCalls(self, indent + 1).generic_visit(node)
        return node

    # ---- Entry points ----

    def form(self, node: ast.AST, outer: Sequence[ast.expr] = ()):
        if isinstance(node, ast.expr):
            return Expansion(self.expression(node, 0))
        return Expansion(located(self.statement(node, 0, outer), node))

    def loop(self, node: ast.AST):
        if isinstance(node, _COMPREHENSIONS):
            return Expansion(self.comprehension(node, 0))
        return Expansion(located(self.loop_statement(node, 0), node))

    # ---- Expressions ----

    def expression(self, node: ast.expr, indent: int) -> ast.expr:
        return self.dump_call(source_of(node), self._nested(node, indent), indent)

    def comprehension(self, node: ast.expr, indent: int) -> ast.expr:
        original = source_of(node)
        node = copy.deepcopy(node)
        header = ' '.join(source_of(g).strip() for g in node.generators)
        if isinstance(node, ast.DictComp):
            form = f'{source_of(node.key)}: {source_of(node.value)}'
            node.value = self._step_call(header, form, self._nested(node.value, indent), indent)
        else:
            node.elt = self._step_call(header, source_of(node.elt),
                                       self._nested(node.elt, indent), indent)
        if self.level > 1 and not isinstance(node, ast.GeneratorExp):
            return self.dump_call(original, node, indent)
        return node

    # ---- Statements ----

    def block(self, statements: List[ast.stmt], indent: int) -> List[ast.stmt]:
        result: List[ast.stmt] = []
        for stmt in statements:
            result.extend(located(self.statement(stmt, indent), stmt))
        return result

    def statement(self, stmt: ast.stmt, indent: int, outer: Sequence[ast.expr] = ()) -> List[ast.stmt]:
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            node = copy.deepcopy(stmt)
            node.decorator_list = list(outer) + node.decorator_list
            report = ast.Expr(value=self.dump_call(first_line(stmt), name(stmt.name), indent))
            return [node, report]
        if isinstance(stmt, (ast.For, ast.AsyncFor, ast.While)):
            return self.loop_statement(stmt, indent)

        node = copy.deepcopy(stmt)
        if isinstance(node, ast.Expr):
            node.value = self.expression(stmt.value, indent)
        elif isinstance(node, ast.Return) and node.value is not None:
            node.value = self.expression(stmt.value, indent)
        elif isinstance(node, (ast.Assign, ast.AugAssign, ast.AnnAssign)) and node.value is not None:
            return self._assignment(stmt, indent)
        elif isinstance(node, ast.If):
            node.test = self.dump_call(f'if {source_of(stmt.test)}',
                                       self._nested(stmt.test, indent), indent)
            if self.level > 1:
                node.body = self.block(node.body, indent + 1)
                node.orelse = self.block(node.orelse, indent + 1)
        elif self.level > 1:
            self._descend(node, indent)
        return [node]

    def _assignment(self, stmt: ast.stmt, indent: int) -> List[ast.stmt]:
        node = copy.deepcopy(stmt)
        targets = stmt.targets if isinstance(stmt, ast.Assign) else [stmt.target]
        simple = all(
            isinstance(sub, _SIMPLE_TARGETS) or isinstance(sub, (ast.Load, ast.Store))
            for target in targets for sub in ast.walk(target)
        )
        if not simple:
            node.value = self.dump_call(source_of(stmt), self._nested(stmt.value, indent), indent)
            return [node]
        node.value = self._nested(stmt.value, indent)
        report = ast.Expr(value=self.dump_call(source_of(stmt), as_load(targets[0]), indent))
        return [node, report]

    def _descend(self, node: ast.stmt, indent: int) -> None:
        """Rewrite the nested blocks of with/try/match statements."""
        for field in ('body', 'orelse', 'finalbody'):
            block = getattr(node, field, None)
            if block:
                setattr(node, field, self.block(block, indent + 1))
        for handler in getattr(node, 'handlers', ()):
            handler.body = self.block(handler.body, indent + 1)
        for case in getattr(node, 'cases', ()):
            case.body = self.block(case.body, indent + 1)

    def loop_statement(self, stmt: ast.stmt, indent: int) -> List[ast.stmt]:
        node = copy.deepcopy(stmt)
        if isinstance(node, (ast.For, ast.AsyncFor)):
            keyword = 'async for' if isinstance(node, ast.AsyncFor) else 'for'
            target = source_of(node.target)
            header = f'{keyword} {target} in {source_of(node.iter)}'
            step = self._step_call(header, target, as_load(node.target), indent)
        else:
            header = f'while {source_of(node.test)}'
            names = loaded_names(node.test)
            snapshot = ast.Dict(
                keys=[ast.Constant(value=n) for n in names],
                values=[name(n) for n in names],
            )
            step = self._step_call(header, ', '.join(names), snapshot, indent)
        body = node.body
        if self.level > 1:
            body = self.block(body, indent + 1)
            node.orelse = self.block(node.orelse, indent + 1)
        node.body = [ast.Expr(value=step)] + body
        return [node]
