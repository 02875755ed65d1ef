"""
Wrapper Runtime
===============

Helpers called from instrumented code. Generated wrappers stay small and
delegate the actual tracing protocol here:

  1. record the arguments the caller supplied under the identity key
  2. emit a session-start marker (local time + separator)
  3. emit the call header: one ``>`` per trace level, then the key
  4. level > 1: emit ``args`` and the argument vector
  5. call the renamed original
  6. emit ``ret`` and the result, return the result unchanged

Nothing here catches exceptions from the traced body: if the body raises,
the error propagates and no ``ret`` line is emitted.

This module is bound into every instrumented namespace under
``TraceConfig.runtime_name``.
"""

import functools
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Optional, Sequence, Tuple

from ..config import get_config
from ..sink.router import route
from ..sink.sinks import current_sink
from . import arg_cache
from .arg_cache import ArgVector

logger = logging.getLogger(__name__)


class _Unsupplied:
    """Default of every wrapper parameter: the caller left it out."""

    def __repr__(self) -> str:
        return '<unsupplied>'


UNSUPPLIED = _Unsupplied()


class Unbound:
    """Placeholder bound by a forward declaration until the wrapper lands."""

    def __init__(self, name: str):
        self.name = name

    def __call__(self, *args, **kwargs):
        raise NameError(f'{self.name!r} is declared but not yet defined')

    def __repr__(self) -> str:
        return f'<Unbound {self.name}>'


def declare(current: Any, name: str) -> Any:
    """Keep an existing binding, otherwise bind an ``Unbound`` placeholder."""
    return current if current is not None else Unbound(name)


def key_text(key: Hashable) -> str:
    if isinstance(key, tuple):
        return ' '.join(str(part) for part in key)
    return str(key)


def _emit_call(sink, level: int, key: Hashable, vector: ArgVector) -> None:
    cfg = get_config()
    stamp = datetime.now().strftime(cfg.timestamp_format)
    sink.label(f'{stamp} {cfg.separator}', header=True)
    sink.label(f"{'>' * level} {key_text(key)}", header=True)
    if level > 1:
        sink.label('args')
        sink.value(vector)


def _emit_return(sink, result: Any) -> None:
    sink.label('ret')
    sink.value(result)


def supplied(
    positional: Sequence[str],
    args: Tuple[Any, ...],
    kwargs: Dict[str, Any],
) -> Tuple[Tuple[Any, ...], Dict[str, Any]]:
    """
    Drop the parameters the caller left to their defaults.

    ``args`` starts with one value per name in ``positional``, followed by
    any extra positional arguments. A supplied parameter that follows an
    unsupplied one can no longer travel by position, so it moves to the
    keywords.

    >>> supplied(('w', 'h', 'd'), (3, UNSUPPLIED, 5), {})
    ((3,), {'d': 5})
    """
    kept = []
    moved: Dict[str, Any] = {}
    for index, (param, value) in enumerate(zip(positional, args)):
        if value is UNSUPPLIED:
            continue
        if moved or len(kept) < index:
            moved[param] = value
        else:
            kept.append(value)
    kept.extend(args[len(positional):])
    moved.update((k, v) for k, v in kwargs.items() if v is not UNSUPPLIED)
    return tuple(kept), moved


def invoke(
    impl: Callable,
    level: int,
    key: Hashable,
    args: Tuple[Any, ...],
    kwargs: Dict[str, Any],
    positional: Sequence[str] = (),
) -> Any:
    """Run one traced call of a definition wrapper."""
    args, kwargs = supplied(positional, args, kwargs)
    vector = arg_cache.record(key, args, kwargs)
    sink = current_sink()
    _emit_call(sink, level, key, vector)
    result = impl(*args, **kwargs)
    _emit_return(sink, result)
    return result


async def invoke_async(
    impl: Callable,
    level: int,
    key: Hashable,
    args: Tuple[Any, ...],
    kwargs: Dict[str, Any],
    positional: Sequence[str] = (),
) -> Any:
    """``invoke`` for coroutine functions; the body is awaited in place."""
    args, kwargs = supplied(positional, args, kwargs)
    vector = arg_cache.record(key, args, kwargs)
    sink = current_sink()
    _emit_call(sink, level, key, vector)
    result = await impl(*args, **kwargs)
    _emit_return(sink, result)
    return result


def finish(wrapper: Callable, impl: Callable, name: str, key: Hashable) -> Callable:
    """Give the wrapper the public identity of the definition it replaces."""
    # Defaults stay UNSUPPLIED on the wrapper; the renamed original applies
    # its own. inspect.signature follows __wrapped__ to the real ones.
    functools.update_wrapper(wrapper, impl)
    prefix = impl.__qualname__.rpartition('.')[0]
    wrapper.__name__ = name
    wrapper.__qualname__ = f'{prefix}.{name}' if prefix else name
    wrapper.__tracepoint_key__ = key
    return wrapper


def replay(key: Hashable, target: Any, name: str) -> Optional[Any]:
    """
    Re-run the last cached call of a freshly (re)loaded definition.

    Skipped when nothing is cached, when ``name`` ends with the no-replay
    suffix, or when the target is a coroutine function. A replay that raises
    is logged with its traceback; the load itself carries on.
    """
    vector = arg_cache.lookup(key)
    if vector is None:
        return None
    suffix = get_config().no_replay_suffix
    if suffix and name.endswith(suffix):
        logger.debug('not replaying %s: effectful name', name)
        return None
    if inspect.iscoroutinefunction(target):
        logger.debug('not replaying %s: coroutine function', name)
        return None
    logger.debug('replaying %s with %r', key_text(key), vector)
    try:
        return target(*vector.args, **vector.kwargs)
    except Exception:
        logger.exception('replay of %s failed', key_text(key))
        return None


def replay_target(public: Any, raw: Callable) -> Callable:
    """Decorated objects that are not callable (``classmethod``) replay through the raw wrapper."""
    return public if callable(public) else raw


# ═══════════════════════════════════════════════════════════════════════════
# Callbacks and dump overlay
# ═══════════════════════════════════════════════════════════════════════════

def traced_callback(level: int, source: str, fn: Callable) -> Callable:
    """Wrap an anonymous callback; the header carries its source text."""

    @functools.wraps(fn)
    def callback(*args, **kwargs):
        sink = current_sink()
        sink.label(f"{'>' * level} {source}", header=True)
        if level > 1:
            sink.label('args')
            sink.value(ArgVector(args, kwargs))
        result = fn(*args, **kwargs)
        _emit_return(sink, result)
        return result

    callback.__tracepoint_source__ = source
    return callback


def dump(source: str, value: Any, indent: int = 0) -> Any:
    """Report an evaluated form and its result, then hand the result back."""
    route({'form': source, 'result': value, 'indent_level': indent})
    return value


def loop_step(header: str, form: str, value: Any, indent: int = 0) -> Any:
    """One summary line per loop iteration; returns ``value``."""
    route({'info': header, 'form': form, 'result': value, 'indent_level': indent})
    return value
