"""Per-connection terminal: size, attributes and signal delivery."""
# std imports
import collections
import dataclasses
import enum
import logging
from typing import Callable, Dict, Optional

__all__ = ('Terminal', 'Size', 'Attributes', 'Signal', 'SignalHandler')

logger = logging.getLogger('telnetd.terminal')

#: Terminal dimensions, cells wide (cols) by cells tall (rows).
Size = collections.namedtuple('Size', ['cols', 'rows'])

#: A signal handler receives the :class:`Signal` raised.
SignalHandler = Callable[['Signal'], None]


class Signal(enum.Enum):
    """Signals that may be raised on a :class:`Terminal`."""

    INT = 'INT'
    QUIT = 'QUIT'
    TSTP = 'TSTP'
    CONT = 'CONT'
    INFO = 'INFO'
    WINCH = 'WINCH'


def _default_control_chars():
    return {
        'VEOF': 0x04,    # ^D
        'VERASE': 0x7f,  # DEL
        'VKILL': 0x15,   # ^U
        'VINTR': 0x03,   # ^C
        'VWERASE': 0x17,  # ^W
    }


@dataclasses.dataclass
class Attributes:
    """
    Terminal line discipline attributes.

    ``echo`` requests input be echoed by the consumer, ``icanon`` requests
    line-at-a-time input, ``isig`` enables signal characters.
    """

    echo: bool = True
    icanon: bool = True
    isig: bool = True
    control_chars: Dict[str, int] = dataclasses.field(
        default_factory=_default_control_chars)

    def copy(self):
        return dataclasses.replace(
            self, control_chars=dict(self.control_chars))


class Terminal:
    """
    Terminal abstraction of a single Telnet connection.

    Holds the negotiated terminal type, window size and line attributes,
    and the connection's input and output streams.  Exactly one handler
    may be attached per :class:`Signal`; :meth:`raise_signal` delivers
    synchronously on the caller's context.
    """

    def __init__(self, name, term_type, size, attributes=None,
                 input=None, output=None):
        self.name = name
        self.type = term_type or 'unknown'
        self._size = Size(*size)
        self._attributes = (attributes or Attributes()).copy()
        self._handlers: Dict[Signal, Optional[SignalHandler]] = {}
        #: :class:`~telnetd.stream_reader.TelnetReader` of connection.
        self.input = input
        #: :class:`~telnetd.stream_writer.TelnetWriter` of connection.
        self.output = output

    def __repr__(self):
        return '<Terminal {0} type={1} size={2}x{3}>'.format(
            self.name, self.type, self._size.cols, self._size.rows)

    def get_size(self):
        """Return current :class:`Size`."""
        return self._size

    def set_size(self, cols, rows):
        """
        Set terminal size.

        :rtype: bool
        :returns: whether the size changed.
        """
        size = Size(cols, rows)
        if size == self._size:
            return False
        logger.debug('%s resized %dx%d -> %dx%d', self.name,
                     self._size.cols, self._size.rows, cols, rows)
        self._size = size
        return True

    @property
    def cols(self):
        return self._size.cols

    @property
    def rows(self):
        return self._size.rows

    def get_attributes(self):
        """Return a copy of the current :class:`Attributes`."""
        return self._attributes.copy()

    def set_attributes(self, attributes):
        """Replace current attributes by a copy of ``attributes``."""
        self._attributes = attributes.copy()

    def handle(self, signal, handler):
        """
        Attach ``handler`` for ``signal``, replacing any previous handler.

        :param Signal signal: signal to handle.
        :param Callable handler: receives the signal raised, or ``None``
            to detach.
        :returns: the previous handler, or ``None``.
        """
        previous = self._handlers.get(signal)
        self._handlers[signal] = handler
        return previous

    def raise_signal(self, signal):
        """Deliver ``signal`` to its attached handler, if any."""
        handler = self._handlers.get(signal)
        if handler is None:
            logger.debug('%s: %s ignored, no handler', self.name, signal.name)
            return
        handler(signal)

    async def flush(self):
        await self.output.flush()
