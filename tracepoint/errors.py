"""Error types raised by tracepoint."""


class TracepointError(Exception):
    """Base class for tracepoint errors."""


class ValidationError(TracepointError, ValueError):
    """Classification update input has the wrong shape.

    Raised before the classification table is touched, so a failed update
    leaves the current table in place. The underlying pydantic error, when
    there is one, is chained as ``__cause__``.
    """


class InstrumentationError(TracepointError):
    """A callable could not be turned back into a definition form.

    Typically the source is unavailable (built-ins, ``exec``-created code,
    interactive sessions) or does not contain the expected definition.
    """
