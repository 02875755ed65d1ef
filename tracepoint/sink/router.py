"""
Diagnostic Event Router
=======================

Producers hand the router either a structured trace step or an arbitrary
value. A trace step is a mapping whose keys are a non-empty subset of
``{form, result, indent_level, info}``; anything else is a tapped value.

Trace steps are split into separate emissions: ``info`` and ``form`` as
labels at ``indent_level``, then ``result`` as a raw value.
"""

from typing import Any, Mapping

from .sinks import current_sink

STEP_KEYS = frozenset({'form', 'result', 'indent_level', 'info'})


def is_step(event: Any) -> bool:
    return (
        isinstance(event, Mapping)
        and len(event) > 0
        and all(isinstance(k, str) for k in event)
        and set(event) <= STEP_KEYS
    )


def route(event: Any) -> None:
    sink = current_sink()
    if not is_step(event):
        sink.value(event)
        return
    depth = event.get('indent_level')
    if 'info' in event:
        sink.label(str(event['info']), header=False, depth=depth)
    if 'form' in event:
        sink.label(str(event['form']), header=False, depth=depth)
    if 'result' in event:
        sink.value(event['result'])
