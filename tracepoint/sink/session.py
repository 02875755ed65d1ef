"""
Inspection Session
==================

At most one inspection session is live per process. While one is open, all
diagnostic emissions are submitted to it instead of the logging sink. Opening
a session always supersedes the previous one.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_SESSION_CONFIG: Dict[str, Any] = {
    'name': 'tracepoint',
    'max_history': 1000,
    'on_submit': None,
}


@dataclass
class SessionHandle:
    """A live (or closed) inspection session."""
    config: Dict[str, Any]
    opened_at: float = field(default_factory=time.time)
    closed: bool = False
    history: Deque[Any] = field(default_factory=deque)

    def __post_init__(self):
        self.history = deque(self.history, maxlen=self.config.get('max_history'))

    @property
    def name(self) -> str:
        return self.config.get('name', '')


_active: Optional[SessionHandle] = None


def active_session() -> Optional[SessionHandle]:
    return _active


def open_session(config: Optional[Mapping[str, Any]] = None, **overrides) -> SessionHandle:
    """
    Open a new session, closing any live one first.

    ``config`` and ``overrides`` are merged over ``DEFAULT_SESSION_CONFIG``;
    unrecognised keys are kept as given.

    Usage:
        >>> handle = open_session(name='debug', max_history=50)
        >>> submit(handle, {'x': 1})
        >>> close_session(handle)
    """
    global _active
    if _active is not None:
        logger.info('closing inspection session %r before opening a new one', _active.name)
        close_session(_active)
    merged = dict(DEFAULT_SESSION_CONFIG)
    merged.update(config or {})
    merged.update(overrides)
    handle = SessionHandle(config=merged)
    _active = handle
    logger.debug('opened inspection session %r', handle.name)
    return handle


def close_session(handle: Optional[SessionHandle] = None) -> None:
    """Close ``handle`` (default: the live session)."""
    global _active
    handle = handle or _active
    if handle is None:
        return
    handle.closed = True
    if handle is _active:
        _active = None


def submit(handle: SessionHandle, value: Any) -> None:
    if handle.closed:
        raise RuntimeError(f'inspection session {handle.name!r} is closed')
    handle.history.append(value)
    callback: Optional[Callable[[Any], Any]] = handle.config.get('on_submit')
    if callback is not None:
        callback(value)
