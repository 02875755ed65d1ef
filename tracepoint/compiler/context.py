"""Expansion context and result types shared by the generators."""

import ast
from dataclasses import dataclass, field
from typing import Any, List, Mapping

from ..analysis.resolver import qualify
from ..utils.helpers import attr, fresh_name


@dataclass
class ExpansionContext:
    """Where a form is being expanded: namespace, module and lexical scope."""
    namespace: Mapping[str, Any]
    module: str
    runtime: str
    scope: List[str] = field(default_factory=list)

    def qualname(self, short: str) -> str:
        return '.'.join(self.scope + [short])

    def qualified(self, short: str) -> str:
        return qualify(self.module, self.qualname(short))

    def mangled(self, identifier: str) -> str:
        """``identifier`` as the compiler stores it inside the innermost class."""
        if not identifier.startswith('__') or identifier.endswith('__'):
            return identifier
        for index in range(len(self.scope) - 1, -1, -1):
            following = self.scope[index + 1] if index + 1 < len(self.scope) else None
            if self.scope[index] == '<locals>' or following == '<locals>':
                continue
            owner = self.scope[index].lstrip('_')
            return f'_{owner}{identifier}' if owner else identifier
        return identifier

    @property
    def scope_identity(self) -> str:
        return '.'.join([self.module] + self.scope)

    def rt(self, attribute: str) -> ast.Attribute:
        return attr(self.runtime, attribute)

    def fresh(self, base: str, kind: str) -> str:
        return fresh_name(base, kind, self.namespace)


@dataclass
class Expansion:
    """
    Result of one rewrite.

    ``replacement`` is a list of statements for statement forms and a single
    expression for expression forms. ``hoisted`` statements must run before
    the statement that contains the replacement.
    """
    replacement: Any
    hoisted: List[ast.stmt] = field(default_factory=list)
