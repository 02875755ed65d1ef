"""
Argument Cache
==============

Process-wide table of the most recent argument vector seen by each
instrumented definition, keyed by the definition's identity key.

Identity keys:
  - plain / guarded definition:   ``'pkg.mod.func'``
  - multi-dispatch implementation: ``('pkg.mod.generic', 'int')``
  - event-handler registration:   ``('signal.signal', 'signal.SIGINT', 'pkg.mod')``

The cache exists only to replay the last call after a definition is
reloaded. Arguments are deep-copied when recorded, so a body that mutates
an argument does not change what a later replay passes. Objects that
cannot be copied are kept by reference.

Writes are last-write-wins with no locking: a single dict item assignment,
so concurrent callers on one key simply overwrite each other. Entries are
never evicted.
"""

import copy
import logging
from typing import Any, Dict, Hashable, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)


class ArgVector(NamedTuple):
    """Positional and keyword arguments of one call."""
    args: Tuple[Any, ...]
    kwargs: Dict[str, Any]

    def __repr__(self) -> str:
        parts = [repr(a) for a in self.args]
        parts.extend(f'{k}={v!r}' for k, v in self.kwargs.items())
        return f"({', '.join(parts)})"


_entries: Dict[Hashable, ArgVector] = {}


def _snapshot(value: Any) -> Any:
    try:
        return copy.deepcopy(value)
    except Exception as exc:
        logger.debug('caching %s by reference: %s', type(value).__name__, exc)
        return value


def record(key: Hashable, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> ArgVector:
    vector = ArgVector(
        tuple(_snapshot(a) for a in args),
        {k: _snapshot(v) for k, v in kwargs.items()},
    )
    _entries[key] = vector
    return vector


def lookup(key: Hashable) -> Optional[ArgVector]:
    return _entries.get(key)


def keys() -> List[Hashable]:
    return list(_entries)


def size() -> int:
    return len(_entries)


def clear() -> None:
    """Forget every cached vector. Development and test helper only."""
    _entries.clear()
