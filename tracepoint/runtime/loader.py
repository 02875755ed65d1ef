"""
Source Loader
=============

Loads Python source with trace markers expanded. Top-level statements are
expanded and executed one at a time, in order, so a marker or operator
defined by an earlier statement is visible when a later one is classified.

Loading the same source into the same namespace again is a reload: every
traced definition replays its last cached call as soon as it is reinstalled.

Usage:
    >>> module = load_file('shapes.py')
    >>> module.area({'w': 2, 'h': 3})       # traced
    >>> reload(module)                      # re-expands, replays area(...)
"""

import __future__
import ast
import logging
import sys
import types
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, Union

from ..compiler.expander import Expander
from ..config import get_config
from ..errors import InstrumentationError
from . import wrappers

logger = logging.getLogger(__name__)


def _future_flags(tree: ast.Module) -> int:
    flags = 0
    for stmt in tree.body:
        if isinstance(stmt, ast.ImportFrom) and stmt.module == '__future__':
            for alias in stmt.names:
                feature = getattr(__future__, alias.name, None)
                if feature is not None:
                    flags |= feature.compiler_flag
    return flags


def _prepare(namespace: MutableMapping[str, Any], tree: ast.Module, name: str) -> None:
    namespace.setdefault('__name__', name)
    namespace[get_config().runtime_name] = wrappers
    doc = ast.get_docstring(tree, clean=False)
    if doc is not None:
        namespace['__doc__'] = doc


def load_source(
    source: str,
    namespace: Optional[MutableMapping[str, Any]] = None,
    filename: str = '<tracepoint>',
) -> MutableMapping[str, Any]:
    """Expand and execute ``source`` in ``namespace``; returns the namespace."""
    namespace = {} if namespace is None else namespace
    try:
        tree = ast.parse(source, filename)
    except SyntaxError as exc:
        raise InstrumentationError(f'cannot parse {filename}: {exc.msg}') from exc
    _prepare(namespace, tree, '__tracepoint__')
    flags = _future_flags(tree)

    for stmt in tree.body:
        expander = Expander(namespace)
        body = expander.expand_block([stmt])
        if not body:
            continue
        chunk = ast.fix_missing_locations(ast.Module(body=body, type_ignores=[]))
        code = compile(chunk, filename, 'exec', flags=flags, dont_inherit=True)
        exec(code, namespace)
        if expander.stats:
            logger.debug('%s:%d expanded %s', filename, stmt.lineno, dict(expander.stats))
    return namespace


def expand_source(source: str, namespace: Optional[Dict[str, Any]] = None) -> str:
    """
    Return the expanded text of ``source`` without executing it.

    Markers and operators are resolved against ``namespace``; names the
    source itself would define are not visible here.
    """
    namespace = dict(namespace or {})
    namespace.setdefault('__name__', '__tracepoint__')
    tree = Expander(namespace).expand_module(ast.parse(source))
    return ast.unparse(tree)


def load_file(path: Union[str, Path], module_name: Optional[str] = None) -> types.ModuleType:
    """Load a source file as a module, registered in ``sys.modules``."""
    path = Path(path).resolve()
    name = module_name or path.stem
    module = sys.modules.get(name)
    if module is None or getattr(module, '__file__', None) != str(path):
        module = types.ModuleType(name)
        module.__file__ = str(path)
        sys.modules[name] = module
    logger.info('loading %s as %s', path, name)
    try:
        load_source(path.read_text(encoding='utf-8'), module.__dict__, str(path))
    except BaseException:
        if sys.modules.get(name) is module and not module.__dict__.get('__tracepoint_loaded__'):
            del sys.modules[name]
        raise
    module.__tracepoint_loaded__ = True
    return module


def reload(module: types.ModuleType) -> types.ModuleType:
    """Re-run ``module``'s file in place; traced definitions replay."""
    filename = getattr(module, '__file__', None)
    if not filename:
        raise InstrumentationError(f'{module.__name__} has no source file to reload')
    logger.info('reloading %s', module.__name__)
    load_source(Path(filename).read_text(encoding='utf-8'), module.__dict__, filename)
    return module
