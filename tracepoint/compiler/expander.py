"""
Marker Expander
===============

Finds trace markers in a syntax tree and splices in the instrumented
replacement of the form each marker covers:

    @deep                      # decorator: the definition below it
    def area(shape): ...

    handler = shallow(lambda event: event.id)    # call: the wrapped expression

    with deep:                 # block: every statement inside
        for i in range(3):
            total += i

A marker is any name that resolves, in the target namespace, to an object
carrying ``__tracepoint_marker__`` (the trace level). Decorators written
above a marker are applied to the instrumented result.

Expression-level expansions may need statements to run first (an inline
event handler becomes a named definition); those are hoisted in front of the
statement that contains the expression.
"""

import ast
import copy
import logging
from collections import defaultdict
from typing import Any, List, Mapping, Optional, Sequence

from ..analysis.classifier import classify
from ..analysis.hierarchy import Category
from ..analysis.resolver import dotted_name, lookup
from ..config import get_config
from ..errors import InstrumentationError
from .context import Expansion, ExpansionContext
from .generators import Generator

logger = logging.getLogger(__name__)

_VALUE_STATEMENTS = (ast.Expr, ast.Assign, ast.AnnAssign, ast.Return)


class Expander(ast.NodeTransformer):
    """
    Expand every trace marker of a tree against one namespace.

    Usage:
        >>> from tracepoint import deep
        >>> tree = ast.parse('@deep\\ndef f(x):\\n    return x + 1')
        >>> Expander({'deep': deep, '__name__': 'demo'}).expand_module(tree)
    """

    def __init__(
        self,
        namespace: Mapping[str, Any],
        module: Optional[str] = None,
        scope: Sequence[str] = (),
    ):
        self.namespace = namespace
        self.ctx = ExpansionContext(
            namespace=namespace,
            module=module or namespace.get('__name__', '__main__'),
            runtime=get_config().runtime_name,
            scope=list(scope),
        )
        self._pending: List[List[ast.stmt]] = []
        self.stats = defaultdict(int)

    # ---- Markers ----

    def marker_level(self, node: ast.expr) -> Optional[int]:
        token = dotted_name(node)
        if token is None:
            return None
        try:
            obj = lookup(token, self.namespace)
        except LookupError:
            return None
        level = getattr(obj, '__tracepoint_marker__', None)
        return level if isinstance(level, int) else None

    def marker_index(self, decorators: List[ast.expr]) -> Optional[int]:
        for index, decorator in enumerate(decorators):
            if self.marker_level(decorator) is not None:
                return index
        return None

    def _is_marked(self, stmt: ast.stmt) -> bool:
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            return self.marker_index(stmt.decorator_list) is not None
        if isinstance(stmt, ast.With):
            return self._block_marker(stmt) is not None
        return False

    def _block_marker(self, node: ast.With) -> Optional[int]:
        if len(node.items) != 1 or node.items[0].optional_vars is not None:
            return None
        return self.marker_level(node.items[0].context_expr)

    # ---- Public surface ----

    def expand_module(self, tree: ast.Module) -> ast.Module:
        tree.body = self.expand_block(tree.body)
        return ast.fix_missing_locations(tree)

    def expand_block(self, statements: List[ast.stmt]) -> List[ast.stmt]:
        out: List[ast.stmt] = []
        for stmt in statements:
            self._pending.append([])
            try:
                result = self.visit(stmt)
            finally:
                hoisted = self._pending.pop()
            out.extend(hoisted)
            if result is None:
                continue
            out.extend(result if isinstance(result, list) else [result])
        return out

    def expand_marked_statement(
        self,
        stmt: ast.stmt,
        level: int,
        outer: Sequence[ast.expr] = (),
    ) -> List[ast.stmt]:
        """Expand ``stmt`` as if it carried a marker of ``level``."""
        self._pending.append([])
        try:
            self._visit_children(stmt)
            items = self._expand_statement_form(stmt, level, outer)
        finally:
            hoisted = self._pending.pop()
        return hoisted + items

    def expand_form(
        self,
        node: ast.AST,
        level: int,
        outer: Sequence[ast.expr] = (),
    ) -> Expansion:
        category = classify(node, self.namespace)
        self.stats[category.value] += 1
        logger.debug('expanding %s form at level %d in %s',
                     category.value, level, self.ctx.scope_identity)
        return Generator(level, self.ctx).generate(category, node, outer)

    # ---- Internals ----

    def _hoist(self, statements: List[ast.stmt]) -> None:
        if not statements:
            return
        if not self._pending:
            raise InstrumentationError('expression expansion needs an enclosing statement')
        self._pending[-1].extend(statements)

    def _visit_children(self, node: ast.AST) -> ast.AST:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            return self._visit_scoped(node)
        return self.generic_visit(node)

    def _visit_scoped(self, node) -> ast.AST:
        extra = [node.name] if isinstance(node, ast.ClassDef) else [node.name, '<locals>']
        self.ctx.scope.extend(extra)
        try:
            self.generic_visit(node)
        finally:
            del self.ctx.scope[-len(extra):]
        return node

    def _expand_statement_form(
        self,
        stmt: ast.stmt,
        level: int,
        outer: Sequence[ast.expr] = (),
    ) -> List[ast.stmt]:
        value = getattr(stmt, 'value', None) if isinstance(stmt, _VALUE_STATEMENTS) else None
        if value is not None and classify(value, self.namespace) is not Category.DEFAULT:
            expansion = self.expand_form(value, level)
            self._hoist(expansion.hoisted)
            stmt.value = expansion.replacement
            return [stmt]
        expansion = self.expand_form(stmt, level, outer)
        self._hoist(expansion.hoisted)
        return list(expansion.replacement)

    def generic_visit(self, node: ast.AST) -> ast.AST:
        for field_name, old in ast.iter_fields(node):
            if isinstance(old, list):
                if old and all(isinstance(v, ast.stmt) for v in old):
                    setattr(node, field_name, self.expand_block(old))
                    continue
                new: List[Any] = []
                for value in old:
                    if isinstance(value, ast.AST):
                        value = self.visit(value)
                        if value is None:
                            continue
                        if not isinstance(value, ast.AST):
                            new.extend(value)
                            continue
                    new.append(value)
                old[:] = new
            elif isinstance(old, ast.AST):
                new_node = self.visit(old)
                if new_node is None:
                    delattr(node, field_name)
                else:
                    setattr(node, field_name, new_node)
        return node

    # ---- Visitors ----

    def visit_FunctionDef(self, node):
        index = self.marker_index(node.decorator_list)
        if index is None:
            return self._visit_scoped(node)
        level = self.marker_level(node.decorator_list[index])
        outer = node.decorator_list[:index]
        node.decorator_list = node.decorator_list[index + 1:]
        self._visit_scoped(node)
        return self._expand_statement_form(node, level, outer)

    visit_AsyncFunctionDef = visit_FunctionDef
    visit_ClassDef = visit_FunctionDef

    def visit_With(self, node: ast.With):
        level = self._block_marker(node)
        if level is None:
            return self.generic_visit(node)
        out: List[ast.stmt] = []
        for stmt in node.body:
            if self._is_marked(stmt):
                out.extend(self.expand_block([stmt]))
            else:
                out.extend(self.expand_marked_statement(stmt, level))
        return out or [ast.Pass()]

    def visit_Call(self, node: ast.Call):
        level = self.marker_level(node.func)
        if (level is None or len(node.args) != 1 or node.keywords
                or isinstance(node.args[0], ast.Starred)):
            return self.generic_visit(node)
        form = self.visit(node.args[0])
        expansion = self.expand_form(copy.deepcopy(form), level)
        self._hoist(expansion.hoisted)
        return expansion.replacement
