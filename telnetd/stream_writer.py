"""Module provides :class:`TelnetWriter`."""
# std imports
import asyncio
import logging

# local imports
from .exceptions import StreamClosed
from .telopt import IAC

__all__ = ('TelnetWriter', )

_DEFAULT_BUFSIZE = 2 ** 12  # 4 KiB


class TelnetWriter:
    """
    Output stream of a connection.

    Data written is encoded by the connection's
    :class:`~telnetd.codec.TelnetCodec` (LF becomes CR LF, IAC is doubled)
    and held in a local buffer until :meth:`flush`, or until the buffer
    exceeds ``bufsize``.  Negotiation commands sent by :meth:`send_iac`
    are transmitted immediately, after any data already buffered.
    """

    def __init__(self, transport, protocol, codec, *, reader=None,
                 on_activity=None, bufsize=_DEFAULT_BUFSIZE, log=None):
        """
        Class initializer.

        :param asyncio.Transport transport: connected transport.
        :param asyncio.Protocol protocol: owning protocol, providing flow
            control by ``_drain_helper()`` and notified of write errors
            by ``on_write_error(exc)``.
        :param telnetd.codec.TelnetCodec codec: outbound encoder.
        :param TelnetReader reader: exceptions set on the reader are
            raised by :meth:`drain`.
        :param Callable on_activity: called without arguments by each
            write operation, used for idle accounting.
        :param int bufsize: buffered bytes that cause transmission
            without waiting for :meth:`flush`.
        """
        self._transport = transport
        self._protocol = protocol
        self._codec = codec
        self._reader = reader
        self._on_activity = on_activity
        self._bufsize = bufsize
        self._buffer = bytearray()
        self._closed = False
        self.log = log or logging.getLogger(__name__)

    def __repr__(self):
        info = ['TelnetWriter']
        if self._buffer:
            info.append('{} bytes'.format(len(self._buffer)))
        if self._closed:
            info.append('closed')
        info.append(repr(self._codec))
        return '<{0}>'.format(' '.join(info))

    @property
    def transport(self):
        return self._transport

    @property
    def protocol(self):
        """The protocol attached to this stream."""
        return self._protocol

    def is_closing(self):
        """Whether :meth:`close` has been called or the peer went away."""
        return self._closed or self._transport.is_closing()

    def get_extra_info(self, name, default=None):
        """Get optional server protocol information."""
        return self._protocol.get_extra_info(name, default)

    def _touch(self):
        if self._on_activity is not None:
            self._on_activity()

    def _check_closed(self):
        if self._closed:
            raise StreamClosed('write on closed stream')

    def write(self, data):
        """
        Buffer bytes object ``data`` for transmission.

        :raises StreamClosed: when the stream has been closed.
        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError("data expected bytes, got {0}"
                            .format(type(data)))
        self._check_closed()
        self._touch()
        if not data:
            return
        self._buffer.extend(self._codec.encode(data))
        if len(self._buffer) >= self._bufsize:
            self.transmit()

    def write_byte(self, value):
        """Buffer a single byte ``value`` (0-255) for transmission."""
        self.write(bytes([value]))

    def writelines(self, lines):
        """Buffer each bytes object of iterable ``lines``."""
        self.write(b''.join(lines))

    def echo(self, data):
        """
        Conditionally write ``data`` when the server end is to echo input.

        Only a client that has agreed to (WILL, ECHO) expects this.
        """
        if self._codec.will_echo:
            self.write(data)

    def send_iac(self, buf):
        """
        Send a command starting with IAC (base 10 byte value 255).

        No transformations of bytes are performed.  Any buffered data is
        transmitted first, preserving order.
        """
        assert isinstance(buf, (bytes, bytearray)), buf
        assert buf and buf.startswith(IAC), buf
        if self._transport.is_closing():
            self.log.debug('send_iac on closing transport: {!r}'.format(buf))
            return
        self.transmit()
        self._transport.write(buf)

    def transmit(self):
        """Hand buffered data to the transport without awaiting flow control."""
        if self._buffer and not self._transport.is_closing():
            self._transport.write(bytes(self._buffer))
        self._buffer.clear()

    async def drain(self):
        """Wait until the transport write buffer is below its high-water mark."""
        if self._reader is not None:
            exc = self._reader.exception()
            if exc is not None:
                raise exc
        if self._transport.is_closing():
            # Yield to the event loop so connection_lost() may be called.
            await asyncio.sleep(0)
        await self._protocol._drain_helper()

    async def flush(self):
        """
        Transmit all buffered data and wait for transport flow control.

        On write error the protocol is notified, which forces the
        connection closed, and :class:`~.StreamClosed` is raised.
        """
        self._check_closed()
        self._touch()
        self.transmit()
        try:
            await self.drain()
        except ConnectionError as err:
            self._closed = True
            self._protocol.on_write_error(err)
            raise StreamClosed('flush failed: {}'.format(err)) from err

    def close(self):
        """Close the stream, further writes raise :class:`~.StreamClosed`."""
        if self._closed:
            return
        self._closed = True
        if self._buffer:
            self.log.debug('close discards {} buffered bytes'
                           .format(len(self._buffer)))
        self._buffer.clear()
