"""
Tracepoint: Development-Time Instrumentation for Python
=======================================================

Tracepoint rewrites marked code at load time so that every definition,
callback, loop and form under a marker reports what it receives and what it
produces, and replays the last call of each traced definition when its
module is reloaded.

Core Components:
    - analysis: operator resolution, the classification hierarchy, the form classifier
    - compiler: the marker expander, per-category generators and the dump overlay
    - runtime: the argument cache, wrapper runtime, tracer entry points and loader
    - sink: the event router, output sinks and the sink session lifecycle

Usage:
    >>> from tracepoint import deep, shallow
    >>> @deep
    ... def area(w, h=1):
    ...     return w * h
    >>> area(3)              # header, args, ret
    3

    >>> import tracepoint
    >>> module = tracepoint.load_file('shapes.py')
    >>> tracepoint.reload(module)    # traced definitions replay their last call
"""

__version__ = "0.1.0"
__author__ = "Tracepoint Developers"

from tracepoint import errors
from tracepoint.config import TraceConfig, configure, get_config, reset_config
from tracepoint.analysis.hierarchy import Category, reset_and_extend, category_of
from tracepoint.analysis.classifier import classify
from tracepoint.analysis.resolver import resolve
from tracepoint.runtime import arg_cache
from tracepoint.runtime.tracer import Tracer, shallow, deep
from tracepoint.runtime.loader import load_source, load_file, reload, expand_source
from tracepoint.sink.router import route
from tracepoint.sink.session import open_session, close_session, active_session
from tracepoint.sink.sinks import LoggingSink, RecordingSink, use_sink

__all__ = [
    'errors',
    'TraceConfig', 'configure', 'get_config', 'reset_config',
    'Category', 'reset_and_extend', 'category_of', 'classify', 'resolve',
    'arg_cache',
    'Tracer', 'shallow', 'deep',
    'load_source', 'load_file', 'reload', 'expand_source',
    'route', 'open_session', 'close_session', 'active_session',
    'LoggingSink', 'RecordingSink', 'use_sink',
]
