"""
Classification Hierarchy
========================

Process-wide mapping from operator identity to one of a closed set of
categories. The category decides which generator rewrites a form.

The table is never edited in place. ``reset_and_extend`` validates its input,
builds a complete new table from the built-in defaults plus the extension and
swaps it in with a single assignment, so:

  - concurrent readers see either the old or the new table
  - a reset always yields exactly the built-in table
  - entries from an earlier extension never survive a later one
"""

import logging
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Dict, FrozenSet, Mapping, Optional

from pydantic import BeforeValidator, StrictStr, StringConstraints, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError

logger = logging.getLogger(__name__)


class Category(Enum):
    PLAIN_DEFINITION = 'PlainDefinition'
    GUARDED_DEFINITION = 'GuardedDefinition'
    MULTI_DISPATCH_IMPLEMENTATION = 'MultiDispatchImplementation'
    ANONYMOUS_CALLBACK = 'AnonymousCallback'
    EVENT_HANDLER_REGISTRATION = 'EventHandlerRegistration'
    LOOP_CONSTRUCT = 'LoopConstruct'
    DEFAULT = 'Default'


DEFINITION_CATEGORIES = frozenset({
    Category.PLAIN_DEFINITION,
    Category.GUARDED_DEFINITION,
    Category.MULTI_DISPATCH_IMPLEMENTATION,
})


# ═══════════════════════════════════════════════════════════════════════════
# Built-in table
# ═══════════════════════════════════════════════════════════════════════════

DEFAULT_OPERATORS: Mapping[Category, FrozenSet[str]] = MappingProxyType({
    Category.PLAIN_DEFINITION: frozenset({
        'keyword:def',
        'keyword:async def',
        'builtins.staticmethod',
        'builtins.classmethod',
    }),
    Category.GUARDED_DEFINITION: frozenset({
        'pydantic.validate_call_decorator.validate_call',
    }),
    Category.MULTI_DISPATCH_IMPLEMENTATION: frozenset({
        'functools.singledispatch.<locals>.register',
        'functools.singledispatchmethod.register',
    }),
    Category.ANONYMOUS_CALLBACK: frozenset({
        'keyword:lambda',
    }),
    Category.EVENT_HANDLER_REGISTRATION: frozenset({
        'signal.signal',
        'atexit.register',
    }),
    Category.LOOP_CONSTRUCT: frozenset({
        'keyword:for',
        'keyword:async for',
        'keyword:while',
        'keyword:comprehension',
    }),
})


def _require_set(value: Any) -> Any:
    if not isinstance(value, (set, frozenset)):
        raise ValueError(
            f'expected a set of operator identities, got {type(value).__name__}'
        )
    return value


OperatorSet = Annotated[
    FrozenSet[Annotated[StrictStr, StringConstraints(min_length=1)]],
    BeforeValidator(_require_set),
]

_EXTENSION_ADAPTER = TypeAdapter(Dict[Category, OperatorSet])


def _build(extra: Mapping[Category, FrozenSet[str]]) -> Mapping[str, Category]:
    table: Dict[str, Category] = {}
    for category, identities in DEFAULT_OPERATORS.items():
        for identity in identities:
            table[identity] = category
    # Later entries win; duplicates across categories follow input order.
    for category, identities in extra.items():
        for identity in identities:
            table[identity] = category
    return MappingProxyType(table)


_table: Mapping[str, Category] = _build({})


# ═══════════════════════════════════════════════════════════════════════════
# Public surface
# ═══════════════════════════════════════════════════════════════════════════

def reset_and_extend(
    extra: Optional[Mapping[Category, FrozenSet[str]]] = None,
) -> None:
    """
    Rebuild the classification table as defaults ∪ ``extra``.

    ``None`` (or an empty mapping) restores the built-in table. Keys are
    ``Category`` members (or their string values); values are sets of fully
    qualified operator identities. Invalid input raises ``ValidationError``
    and leaves the current table untouched.

    Usage:
        >>> reset_and_extend({Category.MULTI_DISPATCH_IMPLEMENTATION: {'my.ns.on_event'}})
        >>> category_of('my.ns.on_event')
        <Category.MULTI_DISPATCH_IMPLEMENTATION: 'MultiDispatchImplementation'>
    """
    global _table
    if extra is None:
        validated: Dict[Category, FrozenSet[str]] = {}
    else:
        try:
            validated = _EXTENSION_ADAPTER.validate_python(extra)
        except PydanticValidationError as exc:
            raise ValidationError(
                f'invalid classification extension: {exc}'
            ) from exc
    new_table = _build(validated)
    _table = new_table
    logger.debug('classification table rebuilt with %d operators', len(new_table))


def category_of(identity: Optional[str]) -> Category:
    if identity is None:
        return Category.DEFAULT
    return _table.get(identity, Category.DEFAULT)


def snapshot() -> Mapping[str, Category]:
    """Read-only view of the current table."""
    return _table


def operators(category: Category) -> FrozenSet[str]:
    table = _table
    return frozenset(k for k, v in table.items() if v is category)
