"""
Name Resolver
=============

Turns the operator token of a definition form into a fully qualified
identity that the classification hierarchy can look up.

Operator tokens come in two flavours:

  - keyword tokens (``def``, ``lambda``, ``for`` ...) for syntax that has no
    callable behind it; these resolve to ``keyword:<token>``
  - dotted names (``area.register``, ``pydantic.validate_call``) which are
    looked up in the namespace the form will execute in

A dotted name resolves to the canonical ``module.qualname`` of the object it
names, so ``from pydantic import validate_call`` and
``pydantic.validate_call`` both land on the same identity.
"""

import ast
import builtins
import types
from typing import Any, List, Mapping, Optional

KEYWORD_PREFIX = 'keyword:'

KEYWORD_TOKENS = frozenset({
    'def', 'async def', 'lambda', 'for', 'async for', 'while', 'comprehension',
})

_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)


def dotted_name(node: ast.AST) -> Optional[str]:
    """Return ``a.b.c`` for a Name/Attribute chain, else ``None``."""
    parts: List[str] = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if not isinstance(node, ast.Name):
        return None
    parts.append(node.id)
    return '.'.join(reversed(parts))


def decorator_callee(node: ast.expr) -> ast.expr:
    """``@f(x)`` and ``@f`` both have callee ``f``."""
    return node.func if isinstance(node, ast.Call) else node


def operator_token(node: ast.AST) -> Optional[str]:
    """
    Extract the leading operator token of a form.

    Returns ``None`` for nodes that are not definition-shaped or whose
    operator is not a plain dotted name.
    """
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        if node.decorator_list:
            return dotted_name(decorator_callee(node.decorator_list[0]))
        return 'async def' if isinstance(node, ast.AsyncFunctionDef) else 'def'
    if isinstance(node, ast.Lambda):
        return 'lambda'
    if isinstance(node, ast.Call):
        return dotted_name(node.func)
    if isinstance(node, ast.AsyncFor):
        return 'async for'
    if isinstance(node, ast.For):
        return 'for'
    if isinstance(node, ast.While):
        return 'while'
    if isinstance(node, _COMPREHENSIONS):
        return 'comprehension'
    return None


def lookup(token: str, namespace: Mapping[str, Any]) -> Any:
    """
    Walk a dotted token to the object it names.

    Raises ``LookupError`` when any step is missing.
    """
    head, *rest = token.split('.')
    if head in namespace:
        obj = namespace[head]
    elif hasattr(builtins, head):
        obj = getattr(builtins, head)
    else:
        raise LookupError(token)
    for attr in rest:
        try:
            obj = getattr(obj, attr)
        except AttributeError:
            raise LookupError(token) from None
    return obj


def canonical_name(obj: Any) -> Optional[str]:
    """``module.qualname`` of an object, or ``None`` if it has none."""
    if isinstance(obj, types.ModuleType):
        return obj.__name__
    if isinstance(obj, types.MethodType):
        obj = obj.__func__
    module = getattr(obj, '__module__', None)
    qualname = getattr(obj, '__qualname__', None)
    if isinstance(module, str) and isinstance(qualname, str):
        return f'{module}.{qualname}'
    return None


def resolve(token: Optional[str], namespace: Mapping[str, Any]) -> Optional[str]:
    """
    Resolve an operator token to a fully qualified identity.

    Never raises: anything that cannot be resolved yields ``None``.

    Usage:
        >>> import functools
        >>> resolve('functools.reduce', {'functools': functools})
        'functools.reduce'
        >>> resolve('lambda', {})
        'keyword:lambda'
    """
    if not token:
        return None
    if token in KEYWORD_TOKENS:
        return KEYWORD_PREFIX + token
    try:
        obj = lookup(token, namespace)
    except LookupError:
        return None
    identity = canonical_name(obj)
    if identity is not None:
        return identity

    # Instances and other unqualified objects: qualify the longest prefix
    # that has a canonical name and append the remaining path.
    parts = token.split('.')
    for cut in range(len(parts) - 1, 0, -1):
        try:
            prefix = canonical_name(lookup('.'.join(parts[:cut]), namespace))
        except LookupError:
            return None
        if prefix is not None:
            return '.'.join([prefix] + parts[cut:])
    return None


def qualify(scope: str, name: str) -> str:
    return f'{scope}.{name}' if scope else name
