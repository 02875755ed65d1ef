"""
Tracer Entry Points
===================

``shallow`` (level 1) and ``deep`` (level 2) are the two instrumentation
entry points. In source handled by the loader they are markers that the
expander consumes at load time. Used directly at import time:

  - on a function they act as a decorator: the function's source is parsed,
    expanded and executed again, and the instrumented public object returned
  - on a lambda they wrap the callback with a tracing callback
  - on any other value they report it as a tapped value and return it
"""

import ast
import inspect
import logging
import sys
import textwrap
import types
from typing import Any, Callable, Dict

from ..compiler.expander import Expander
from ..config import get_config
from ..errors import InstrumentationError
from ..sink.router import route
from . import wrappers

logger = logging.getLogger(__name__)


class Tracer:
    """
    One instrumentation entry point at a fixed trace level.

    Usage:
        >>> @deep
        ... def fib(n):
        ...     return n if n < 2 else fib(n - 1) + fib(n - 2)
        >>> fib(3)                     # every recursive call is traced
        2
        >>> handler = shallow(lambda event: event['id'])
    """

    def __init__(self, level: int, label: str):
        if level not in (1, 2):
            raise ValueError(f'trace level must be 1 or 2, got {level!r}')
        self.level = level
        self.label = label

    @property
    def __tracepoint_marker__(self) -> int:
        return self.level

    def __repr__(self) -> str:
        return f'<tracepoint.{self.label} level={self.level}>'

    def __call__(self, target: Any) -> Any:
        if isinstance(target, (staticmethod, classmethod)):
            return self._instrument_function(target.__func__, sys._getframe(1).f_locals)
        if isinstance(target, types.FunctionType):
            if target.__name__ == '<lambda>':
                return wrappers.traced_callback(self.level, _lambda_source(target), target)
            return self._instrument_function(target, sys._getframe(1).f_locals)
        route(target)
        return target

    def __enter__(self):
        logger.debug('%r block entered outside the loader; nothing is instrumented', self)
        return self

    def __exit__(self, *exc):
        return False

    # ---- Decorator path ----

    def _instrument_function(self, func: types.FunctionType, caller_locals: Dict[str, Any]) -> Any:
        func = inspect.unwrap(func)
        node, firstlineno, filename = _definition_node(func)
        cfg = get_config()

        module_level = func.__qualname__ == func.__name__ and not func.__code__.co_freevars
        if module_level:
            namespace = func.__globals__
            resolve_in = func.__globals__
        else:
            namespace = dict(func.__globals__)
            namespace.update(caller_locals)
            namespace.update(_closure_values(func))
            resolve_in = namespace
        namespace.setdefault(cfg.runtime_name, wrappers)

        index = Expander(resolve_in).marker_index(node.decorator_list)
        if index is not None:
            # decorators above the marker are applied by Python afterwards
            node.decorator_list = node.decorator_list[index + 1:]

        scope = func.__qualname__.split('.')[:-1]
        expander = Expander(resolve_in, module=func.__module__, scope=scope)
        body = expander.expand_marked_statement(node, self.level)
        tree = ast.fix_missing_locations(ast.Module(body=body, type_ignores=[]))
        ast.increment_lineno(tree, firstlineno - 1)

        code = compile(tree, filename, 'exec')
        exec(code, namespace)
        result = namespace[node.name]
        if isinstance(result, types.FunctionType) and not module_level:
            result.__qualname__ = func.__qualname__
        return result


def _definition_node(func: types.FunctionType):
    """Parse the source of ``func`` back into its definition node."""
    try:
        lines, firstlineno = inspect.getsourcelines(func)
        filename = inspect.getsourcefile(func) or f'<tracepoint:{func.__name__}>'
    except (OSError, TypeError) as exc:
        raise InstrumentationError(f'source of {func.__qualname__} is unavailable') from exc
    tree = ast.parse(textwrap.dedent(''.join(lines)))
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == func.__name__:
            return node, firstlineno, filename
    raise InstrumentationError(f'no definition of {func.__name__} in its source')


def _closure_values(func: types.FunctionType) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for var, cell in zip(func.__code__.co_freevars, func.__closure__ or ()):
        try:
            values[var] = cell.cell_contents
        except ValueError:
            continue  # empty cell
    return values


def _lambda_source(func: Callable) -> str:
    """Source text of a lambda, or its qualified name when unavailable."""
    try:
        text = textwrap.dedent(inspect.getsource(func)).strip()
    except (OSError, TypeError):
        return func.__qualname__
    params = func.__code__.co_varnames[:func.__code__.co_argcount]
    for candidate in (text, f'({text})'):
        try:
            tree = ast.parse(candidate)
        except SyntaxError:
            continue
        for node in ast.walk(tree):
            if isinstance(node, ast.Lambda) and tuple(a.arg for a in node.args.args) == params:
                return ast.unparse(node)
    return func.__qualname__


shallow = Tracer(1, 'shallow')
deep = Tracer(2, 'deep')
