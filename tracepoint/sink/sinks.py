"""
Diagnostic Sinks
================

A sink accepts two kinds of emission:

  - ``label(text, header=False, depth=None)``: a line of text, optionally a
    header, optionally with a nesting depth hint
  - ``value(obj)``: a raw value to render

``LoggingSink`` renders through the standard ``logging`` module.
``SessionSink`` forwards to the active inspection session.
``RecordingSink`` keeps emissions in memory.

The ``use_sink`` override and the logging sink's current depth are
context-local: each thread (and each asyncio task) sees its own.
"""

import logging
import pprint
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, List, NamedTuple, Optional, Tuple

from ..config import get_config
from . import session as _session


_override: ContextVar[Optional[Any]] = ContextVar('_override', default=None)
_label_depth: ContextVar[int] = ContextVar('_label_depth', default=0)


class Label(NamedTuple):
    text: str
    header: bool = False
    depth: Optional[int] = None


class LoggingSink:
    """Render emissions as log records on the configured trace logger."""

    def __init__(self, logger_name: Optional[str] = None):
        self._logger_name = logger_name

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(self._logger_name or get_config().logger_name)

    def label(self, text: str, header: bool = False, depth: Optional[int] = None) -> None:
        cfg = get_config()
        _label_depth.set(depth or 0)
        indent = cfg.indent * (depth or 0)
        if header:
            self.logger.info('%s%s', indent, text)
        else:
            self.logger.info('%s%s:', indent, text)

    def value(self, obj: Any) -> None:
        cfg = get_config()
        # values sit one level below the label they follow
        indent = cfg.indent * (_label_depth.get() + 1)
        rendered = pprint.pformat(obj, width=cfg.pformat_width)
        for line in rendered.splitlines():
            self.logger.info('%s%s', indent, line)


class SessionSink:
    """Forward emissions to an inspection session; labels arrive as ``Label``."""

    def __init__(self, handle: '_session.SessionHandle'):
        self.handle = handle

    def label(self, text: str, header: bool = False, depth: Optional[int] = None) -> None:
        _session.submit(self.handle, Label(text, header, depth))

    def value(self, obj: Any) -> None:
        _session.submit(self.handle, obj)


class RecordingSink:
    """
    Keep every emission as a tuple, in order.

    Labels are recorded as ``('label', text, header, depth)`` and values as
    ``('value', obj)``.
    """

    def __init__(self):
        self.events: List[Tuple[Any, ...]] = []

    def label(self, text: str, header: bool = False, depth: Optional[int] = None) -> None:
        self.events.append(('label', text, header, depth))

    def value(self, obj: Any) -> None:
        self.events.append(('value', obj))

    def labels(self) -> List[str]:
        return [e[1] for e in self.events if e[0] == 'label']

    def values(self) -> List[Any]:
        return [e[1] for e in self.events if e[0] == 'value']

    def clear(self) -> None:
        self.events.clear()


_default_sink = LoggingSink()


def current_sink():
    """The explicit override, else the live session, else the logging sink."""
    override = _override.get()
    if override is not None:
        return override
    handle = _session.active_session()
    if handle is not None:
        return SessionSink(handle)
    return _default_sink


@contextmanager
def use_sink(sink) -> Iterator[Any]:
    """
    Route every emission to ``sink`` inside the block.

    Usage:
        >>> with use_sink(RecordingSink()) as rec:
        ...     traced(1)
        >>> rec.labels()
    """
    token = _override.set(sink)
    try:
        yield sink
    finally:
        _override.reset(token)
