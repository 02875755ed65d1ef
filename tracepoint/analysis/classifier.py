"""
Form Classifier
===============

Maps a definition form to its category: extract the operator token, resolve
it against the namespace the form will run in, and look the identity up in
the current classification table. Every failure along the way degrades to
``Category.DEFAULT`` so any form can still be instrumented somehow.
"""

import ast
from typing import Any, Mapping, Optional, Tuple

from .hierarchy import Category, category_of
from .resolver import operator_token, resolve


def identify(node: ast.AST, namespace: Mapping[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(token, identity)`` for a form; either may be ``None``."""
    token = operator_token(node)
    return token, resolve(token, namespace)


def classify(node: ast.AST, namespace: Mapping[str, Any]) -> Category:
    """
    Classify a form against the current hierarchy snapshot.

    Usage:
        >>> classify(ast.parse('def f(x): return x').body[0], {})
        <Category.PLAIN_DEFINITION: 'PlainDefinition'>
    """
    _, identity = identify(node, namespace)
    return category_of(identity)
