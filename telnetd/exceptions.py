"""Exceptions raised by telnetd."""

__all__ = (
    "UsageError",
    "AlreadyRunning",
    "NotRunning",
    "BindFailed",
    "ProtocolError",
    "StreamClosed",
)


class UsageError(ValueError):
    """Bad administrative command or flag."""


class AlreadyRunning(RuntimeError):
    """Start requested of a listener or daemon that is already running."""


class NotRunning(RuntimeError):
    """Stop requested of a listener or daemon that is not running."""


class BindFailed(OSError):
    """Listening socket could not be bound."""


class ProtocolError(ValueError):
    """Malformed Telnet framing, the codec has already resynchronised."""

    def __init__(self, message, inband=b""):
        super().__init__(message)
        #: in-band data produced by the byte that raised, if any.
        self.inband = inband


class StreamClosed(ConnectionError):
    """Write or flush on a closed stream."""
