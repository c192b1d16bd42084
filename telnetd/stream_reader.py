"""Module provides class TelnetReader."""
# std imports
import asyncio
import logging

__all__ = ("TelnetReader",)

_DEFAULT_LIMIT = 2 ** 16  # 64 KiB


class TelnetReader:
    """
    Input stream of a connection, modelled on :class:`asyncio.StreamReader`.

    The protocol feeds only in-band data, already stripped of Telnet
    commands and canonicalised (CR LF and CR NUL become LF), by
    :meth:`feed_data`.  Readers block until at least one byte is available
    or end of stream is reached.
    """

    def __init__(self, limit=_DEFAULT_LIMIT, on_activity=None):
        """
        Class initializer.

        :param int limit: buffer size which pauses reading of the
            transport when exceeded twice over.
        :param Callable on_activity: called without arguments by each read
            operation, used for idle accounting.
        """
        self.log = logging.getLogger(__name__)
        if limit <= 0:
            raise ValueError("Limit cannot be <= 0")

        self._limit = limit
        self._on_activity = on_activity
        self._loop = asyncio.get_event_loop()
        self._buffer = bytearray()
        self._eof = False  # Whether we're done.
        self._waiter = None  # A future used by _wait_for_data()
        self._exception = None
        self._transport = None
        self._paused = False

    def __repr__(self):
        """Description of stream state."""
        info = [type(self).__name__]
        if self._buffer:
            info.append("{} bytes".format(len(self._buffer)))
        if self._eof:
            info.append("eof")
        if self._limit != _DEFAULT_LIMIT:
            info.append("limit={}".format(self._limit))
        if self._waiter:
            info.append("waiter={!r}".format(self._waiter))
        if self._exception:
            info.append("exception={!r}".format(self._exception))
        if self._paused:
            info.append("paused")
        return "<{}>".format(" ".join(info))

    def exception(self):
        return self._exception

    def set_exception(self, exc):
        self._exception = exc

        waiter = self._waiter
        if waiter is not None:
            self._waiter = None
            if not waiter.cancelled():
                waiter.set_exception(exc)

    def set_transport(self, transport):
        assert self._transport is None, "Transport already set"
        self._transport = transport

    def _wakeup_waiter(self):
        """Wakeup read*() functions waiting for data or EOF."""
        waiter = self._waiter
        if waiter is not None:
            self._waiter = None
            if not waiter.cancelled():
                waiter.set_result(None)

    def _maybe_resume_transport(self):
        if self._paused and len(self._buffer) <= self._limit:
            self._paused = False
            self._transport.resume_reading()

    def _touch(self):
        if self._on_activity is not None:
            self._on_activity()

    def feed_eof(self):
        """Mark end of stream, waking any blocked reader."""
        self._eof = True
        self._wakeup_waiter()

    def at_eof(self):
        """Return True if the buffer is empty and 'feed_eof' was called."""
        return self._eof and not self._buffer

    def feed_data(self, data):
        """Append in-band ``data`` for readers."""
        if self._eof:
            self.log.debug("feed_data after feed_eof, %d bytes dropped",
                           len(data))
            return

        if not data:
            return

        self._buffer.extend(data)
        self._wakeup_waiter()

        if (
            self._transport is not None
            and not self._paused
            and len(self._buffer) > 2 * self._limit
        ):
            try:
                self._transport.pause_reading()
            except NotImplementedError:
                # The transport can't be paused.
                # We'll just have to buffer all data.
                # Forget the transport so we don't keep trying.
                self._transport = None
            else:
                self._paused = True

    async def _wait_for_data(self, func_name):
        """Wait until feed_data() or feed_eof() is called."""
        # Running two read coroutines at the same time would have an
        # unexpected behaviour, it would not be possible to know which
        # coroutine would get the next data.
        if self._waiter is not None:
            raise RuntimeError(
                "{}() called while another coroutine is "
                "already waiting for incoming data".format(func_name)
            )

        assert not self._eof, "_wait_for_data after EOF"

        # Waiting for data while paused will make deadlock, so prevent it.
        if self._paused:
            self._paused = False
            self._transport.resume_reading()

        self._waiter = self._loop.create_future()
        try:
            await self._waiter
        finally:
            self._waiter = None

    async def _fill(self, func_name):
        # Block until the buffer holds data or end of stream.
        self._touch()
        if self._exception is not None:
            raise self._exception
        while not self._buffer and not self._eof:
            await self._wait_for_data(func_name)

    async def read_byte(self):
        """
        Read one byte of in-band data.

        :rtype: int
        :returns: byte value 0-255, or ``-1`` at end of stream.
        """
        await self._fill("read_byte")
        if not self._buffer:
            return -1
        value = self._buffer[0]
        del self._buffer[0]
        self._maybe_resume_transport()
        return value

    async def readinto(self, buf, offset=0, length=None):
        """
        Read up to ``length`` bytes into writable buffer ``buf``.

        :param bytearray buf: destination buffer.
        :param int offset: position of ``buf`` to begin writing.
        :param int length: maximum bytes to read, default fills ``buf``
            from ``offset``.
        :rtype: int
        :returns: number of bytes read, at least 1 and at most ``length``,
            or ``-1`` at end of stream.  The buffer is not guaranteed to be
            filled by one call.
        """
        if length is None:
            length = len(buf) - offset
        if length < 0 or offset < 0 or offset + length > len(buf):
            raise ValueError("offset={} length={} out of range for buffer "
                             "of size {}".format(offset, length, len(buf)))
        if length == 0:
            return 0
        await self._fill("readinto")
        if not self._buffer:
            return -1
        data = self._buffer[:length]
        buf[offset:offset + len(data)] = data
        del self._buffer[:len(data)]
        self._maybe_resume_transport()
        return len(data)

    async def read(self, n=-1):
        """
        Read up to ``n`` bytes.

        If ``n`` is not provided, or set to -1, read until EOF and return
        all read bytes.  Otherwise, block until at least one byte is
        available and return what is buffered, up to ``n`` bytes.

        :rtype: bytes
        :returns: ``b''`` at end of stream.
        """
        if n == 0:
            return b""

        if n < 0:
            blocks = []
            while True:
                block = await self.read(self._limit)
                if not block:
                    break
                blocks.append(block)
            return b"".join(blocks)

        await self._fill("read")
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        self._maybe_resume_transport()
        return data

    async def readline(self):
        """
        Read one line, terminated by LF.

        If only a partial line can be read due to EOF, the incomplete line
        is returned without terminating LF.  Returns ``b''`` when end of
        stream is reached with no bytes buffered.
        """
        line = bytearray()
        while True:
            await self._fill("readline")
            if not self._buffer:
                break
            idx = self._buffer.find(b"\n")
            if idx >= 0:
                line.extend(self._buffer[:idx + 1])
                del self._buffer[:idx + 1]
                break
            line.extend(self._buffer)
            self._buffer.clear()
            if len(line) > self._limit:
                raise ValueError("Line exceeds limit of {} bytes"
                                 .format(self._limit))
        self._maybe_resume_transport()
        return bytes(line)

    def __aiter__(self):
        return self

    async def __anext__(self):
        line = await self.readline()
        if not line:
            raise StopAsyncIteration
        return line
