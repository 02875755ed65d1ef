"""Utility helpers for building and inspecting syntax trees."""

import ast
import copy
import itertools
from collections import deque
from typing import Any, Container, Iterator, List, Optional

_counter = itertools.count(1)

_NESTED_SCOPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)
_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)


def fresh_name(base: str, kind: str, taken: Container[str] = ()) -> str:
    """
    Allocate a collision-free identifier such as ``fib__traced_12``.

    The counter is process-wide, so names never repeat across reloads.
    """
    base = base.strip('_') or 'anon'
    while True:
        name = f'{base}__{kind}_{next(_counter)}'
        if name not in taken:
            return name


def source_of(node: ast.AST) -> str:
    return ast.unparse(node)


def first_line(node: ast.AST) -> str:
    """Header line of a compound statement, without decorators."""
    stripped = copy.copy(node)
    if hasattr(stripped, 'decorator_list'):
        stripped.decorator_list = []
    for line in ast.unparse(stripped).splitlines():
        if line.strip():
            return line.rstrip(':').strip()
    return ''


def as_load(node: ast.expr) -> ast.expr:
    """Copy an assignment target as an expression that reads it back."""
    load = copy.deepcopy(node)
    for sub in ast.walk(load):
        if hasattr(sub, 'ctx'):
            sub.ctx = ast.Load()
    return load


def literal(value: Any) -> ast.expr:
    """AST for a literal built from str/int/None/tuples of those."""
    return ast.parse(repr(value), mode='eval').body


def attr(base: str, name: str) -> ast.Attribute:
    return ast.Attribute(value=ast.Name(id=base, ctx=ast.Load()), attr=name, ctx=ast.Load())


def call(func: ast.expr, *args: ast.expr, **keywords: ast.expr) -> ast.Call:
    return ast.Call(
        func=func,
        args=list(args),
        keywords=[ast.keyword(arg=k, value=v) for k, v in keywords.items()],
    )


def name(identifier: str, store: bool = False) -> ast.Name:
    return ast.Name(id=identifier, ctx=ast.Store() if store else ast.Load())


def iter_own_scope(nodes: List[ast.stmt]) -> Iterator[ast.AST]:
    """Walk statements without entering nested functions, lambdas or classes."""
    stack: List[ast.AST] = list(nodes)
    while stack:
        node = stack.pop()
        yield node
        for child in ast.iter_child_nodes(node):
            if isinstance(child, _NESTED_SCOPES):
                continue
            stack.append(child)


def is_generator_body(body: List[ast.stmt]) -> bool:
    return any(isinstance(n, (ast.Yield, ast.YieldFrom)) for n in iter_own_scope(body))


def walk_enclosing(node: ast.AST) -> Iterator[ast.AST]:
    """
    Breadth-first walk of the nodes evaluated in the scope around ``node``.

    Lambdas and nested definitions are skipped. Of a comprehension only the
    first iterable is visited; the rest runs in the comprehension's own scope.
    """
    todo = deque([node])
    while todo:
        node = todo.popleft()
        if isinstance(node, _NESTED_SCOPES):
            continue
        if isinstance(node, _COMPREHENSIONS):
            todo.append(node.generators[0].iter)
            continue
        yield node
        todo.extend(ast.iter_child_nodes(node))


def loaded_names(node: ast.AST) -> List[str]:
    """Names read by an expression in its own scope, first-seen order, skipping call targets."""
    callees = {id(n.func) for n in walk_enclosing(node) if isinstance(n, ast.Call)}
    seen: List[str] = []
    for sub in walk_enclosing(node):
        if (isinstance(sub, ast.Name) and isinstance(sub.ctx, ast.Load)
                and id(sub) not in callees and sub.id not in seen):
            seen.append(sub.id)
    return seen


def located(nodes: List[ast.stmt], origin: Optional[ast.AST]) -> List[ast.stmt]:
    """Point generated statements at the source line of ``origin``."""
    if origin is None or not hasattr(origin, 'lineno'):
        return nodes
    for node in nodes:
        for sub in ast.walk(node):
            if 'lineno' in sub._attributes and not hasattr(sub, 'lineno'):
                ast.copy_location(sub, origin)
    return nodes
