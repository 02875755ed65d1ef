"""
Configuration
=============

Process-wide settings for tracepoint. Settings are plain dataclass fields;
``configure`` replaces the active instance wholesale so readers always see a
consistent set of values.
"""

import dataclasses
import logging
from dataclasses import dataclass


@dataclass(frozen=True)
class TraceConfig:
    """Settings consulted by generated wrappers and the logging sink."""
    separator: str = '=' * 40
    timestamp_format: str = '%H:%M:%S'
    logger_name: str = 'tracepoint.trace'
    no_replay_suffix: str = '_'   # Python's spelling of a trailing '!'
    indent: str = '  '
    pformat_width: int = 100
    runtime_name: str = '__tracepoint_rt__'
    enable_logging: bool = False


_config = TraceConfig()


def get_config() -> TraceConfig:
    return _config


def configure(**overrides) -> TraceConfig:
    """
    Replace the active configuration with ``overrides`` applied on top of it.

    Unknown keys raise ``TypeError`` (from ``dataclasses.replace``).

    Usage:
        >>> configure(separator='-' * 20, no_replay_suffix='_bang')
    """
    global _config
    _config = dataclasses.replace(_config, **overrides)
    if _config.enable_logging:
        logging.basicConfig(level=logging.DEBUG)
    return _config


def reset_config() -> TraceConfig:
    global _config
    _config = TraceConfig()
    return _config
