"""
Module provides class :class:`Connection`, one active Telnet client.

A connection is an :class:`asyncio.Protocol`.  On connect it demands the
session options of the client (WILL ECHO, WILL SGA, DO NAWS, DO TTYPE),
and once all are answered, or ``connect_maxwait`` has elapsed, it enters
state ``ACTIVE``: a :class:`~telnetd.terminal.Terminal` is built from the
negotiated :class:`ConnectionData` and the session body given to the
class initializer is started as a task.  The connection is closed when
the session returns, the client disconnects, or :meth:`Connection.close`
is requested by anyone.
"""
# std imports
import asyncio
import collections
import datetime
import enum
import logging
import socket
import sys
import weakref

# local
from .accessories import log_exception
from .codec import TelnetCodec
from .exceptions import ProtocolError, StreamClosed
from .stream_reader import TelnetReader
from .stream_writer import TelnetWriter
from .telopt import AYT, BRK, DO, IP, LOGOUT, NAWS, TTYPE
from .terminal import Signal, Terminal

__all__ = ('Connection', 'ConnectionData', 'ConnectionEvent', 'EventKind',
           'State', 'BusyProtocol')

logger = logging.getLogger('telnetd.connection')


class State(enum.Enum):
    """Lifecycle states of a :class:`Connection`."""

    NEGOTIATING = 'negotiating'
    ACTIVE = 'active'
    CLOSING = 'closing'
    CLOSED = 'closed'


class EventKind(enum.Enum):
    """Kinds of :class:`ConnectionEvent`."""

    IDLE = 'idle'
    TIMED_OUT = 'timed_out'
    LOGOUT_REQUEST = 'logout_request'
    BREAK_SENT = 'break_sent'
    GEOMETRY_CHANGED = 'geometry_changed'


#: Event delivered to listeners of a connection.
ConnectionEvent = collections.namedtuple('ConnectionEvent',
                                         ['kind', 'connection'])


class ConnectionData:
    """
    Descriptor of a connection, populated during negotiation.

    Terminal type is stored lowercased, and is never empty.  Columns and
    rows are never less than 1: a window size of 0 reported by a client
    means "unknown" and the current value is kept.
    """

    def __init__(self, address, term='unknown', cols=80, rows=24,
                 environment=None):
        now = datetime.datetime.now()
        #: remote (host, port)
        self.address = tuple(address)
        self.login_time = now
        self.last_activity = now
        self.environment = dict(environment or {})
        self._terminal_type = (term or 'unknown').lower()
        self._columns = max(1, cols)
        self._rows = max(1, rows)
        self._update_environment()

    def __repr__(self):
        return ('<ConnectionData {0}:{1} term={2} {3}x{4}>'
                .format(self.host, self.port, self.terminal_type,
                        self.columns, self.rows))

    @property
    def host(self):
        return self.address[0] if self.address else ''

    @property
    def port(self):
        return self.address[1] if len(self.address) > 1 else 0

    @property
    def terminal_type(self):
        return self._terminal_type

    @property
    def columns(self):
        return self._columns

    @property
    def rows(self):
        return self._rows

    @property
    def idle(self):
        """Time elapsed since last activity, in seconds as float."""
        return (datetime.datetime.now() - self.last_activity).total_seconds()

    def touch(self):
        """Record activity."""
        self.last_activity = datetime.datetime.now()

    def set_terminal_type(self, ttype):
        """Set terminal type, empty values are ignored."""
        if ttype:
            self._terminal_type = ttype.lower()
            self._update_environment()

    def set_geometry(self, cols, rows):
        """
        Set terminal geometry, values of 0 keep the current dimension.

        :rtype: bool
        :returns: whether geometry changed.
        """
        cols, rows = cols or self._columns, rows or self._rows
        changed = (cols, rows) != (self._columns, self._rows)
        self._columns, self._rows = cols, rows
        self._update_environment()
        return changed

    def _update_environment(self):
        self.environment.update({
            'TERM': self._terminal_type,
            'COLUMNS': str(self._columns),
            'LINES': str(self._rows),
        })


class Connection(asyncio.streams.FlowControlMixin, asyncio.Protocol):
    """Telnet connection protocol, owning codec, streams and terminal."""

    #: seconds to flush output on close before it is abandoned.
    flush_timeout = 2.0

    #: seconds to await exit of the session body on close before it is
    #: cancelled.
    session_timeout = 5.0

    _transport = None
    _closer = None
    _session_task = None
    _deadline = None
    _forced = False

    def __init__(self, session=None, teardown=None, manager=None,
                 listeners=(), name='telnet', term='unknown', cols=80,
                 rows=24, connect_maxwait=10.0, max_protocol_errors=10):
        """
        Class initializer.

        :param Callable session: async function receiving this connection
            as its only argument, run when state becomes ``ACTIVE``.
        :param Callable teardown: function receiving this connection,
            called once when state becomes ``CLOSING``.
        :param ConnectionManager manager: held by weak reference, notified
            by ``deregister(connection)`` when closed.
        :param listeners: callables receiving each :class:`ConnectionEvent`.
        :param str name: terminal name.
        :param str term: terminal type until negotiated.
        :param int cols: terminal columns until negotiated.
        :param int rows: terminal rows until negotiated.
        :param float connect_maxwait: deadline for option negotiation, in
            seconds, after which defaults are used.
        :param int max_protocol_errors: protocol errors tolerated before
            the connection is closed.
        """
        super().__init__()
        self._session = session
        self._teardown = teardown
        self._manager = weakref.ref(manager) if manager is not None else None
        self._listeners = list(listeners)
        self.name = name
        self._defaults = (term, cols, rows)
        self.connect_maxwait = connect_maxwait
        self.max_protocol_errors = max_protocol_errors
        self.protocol_errors = 0
        self.state = State.NEGOTIATING
        #: whether an IDLE warning was issued since last activity.
        self.warned = False

        self.data = None
        self.codec = None
        self.reader = None
        self.writer = None
        self.terminal = None

        #: a future completed with this connection when ``ACTIVE``.
        self.waiter_active = self._loop.create_future()
        #: a future completed with this connection when ``CLOSED``.
        self.waiter_closed = self._loop.create_future()

    def __repr__(self):
        if self.data is None:
            return '<Peer - - {0}>'.format(self.state.value)
        return '<Peer {0} {1} {2}>'.format(self.data.host, self.data.port,
                                          self.state.value)

    # Base protocol methods

    def connection_made(self, transport):
        """
        Called when a connection is made.

        Sets attributes ``data``, ``codec``, ``reader`` and ``writer``,
        and begins option negotiation.
        """
        self._transport = transport
        term, cols, rows = self._defaults
        peername = transport.get_extra_info('peername') or ('', 0)
        self.data = ConnectionData(peername[:2], term=term, cols=cols,
                                   rows=rows)

        self.codec = TelnetCodec(send=self._send_iac)
        for tel_opt, callback_fn in ((NAWS, self.on_naws),
                                     (TTYPE, self.on_ttype),
                                     (LOGOUT, self.on_logout)):
            self.codec.set_ext_callback(tel_opt, callback_fn)
        for iac_cmd, callback_fn in ((BRK, self.on_brk),
                                     (IP, self.on_ip),
                                     (AYT, self.on_ayt)):
            self.codec.set_iac_callback(iac_cmd, callback_fn)

        self.reader = TelnetReader(on_activity=self._touch)
        self.reader.set_transport(transport)
        self.writer = TelnetWriter(transport, self, self.codec,
                                   reader=self.reader,
                                   on_activity=self._touch)

        logger.info('Connection from %s', self)
        self.codec.begin_negotiation()
        if self.connect_maxwait:
            self._deadline = self._loop.call_later(
                self.connect_maxwait, self._negotiation_complete, True)
        else:
            self._loop.call_soon(self._negotiation_complete, True)

    def data_received(self, data):
        """Process bytes received by transport."""
        self._touch()
        if self.state in (State.CLOSING, State.CLOSED):
            logger.debug('%s: %d bytes ignored while %s', self, len(data),
                         self.state.value)
            return

        inband = bytearray()
        for byte in data:
            try:
                inband.extend(self.codec.feed_byte(byte))
            except ProtocolError as err:
                inband.extend(err.inband)
                self.protocol_errors += 1
                logger.warning('%s: protocol error %d: %s', self,
                               self.protocol_errors, err)
                if self.protocol_errors > self.max_protocol_errors:
                    logger.warning('%s: too many protocol errors, closing.',
                                   self)
                    self.close()
                    return
            # a callback may have requested close.
            if self.state in (State.CLOSING, State.CLOSED):
                return

        if inband:
            self.reader.feed_data(bytes(inband))

        if self.state == State.NEGOTIATING and self.codec.is_negotiated:
            self._negotiation_complete()

    def eof_received(self):
        """Called when the other end calls write_eof() or equivalent."""
        logger.debug('EOF from %s, closing.', self)
        self.reader.feed_eof()

    def connection_lost(self, exc):
        """
        Called when the connection is lost or closed.

        :param Exception exc: exception.  ``None`` indicates close by EOF.
        """
        super().connection_lost(exc)
        if exc is None:
            logger.info('Connection closed by %s', self)
        else:
            logger.info('Connection lost for %s: %s', self, exc)
        if self.reader is not None:
            self.reader.feed_eof()
        self.close()

    # public properties

    @property
    def duration(self):
        """Time elapsed since client connected, in seconds as float."""
        if self.data is None:
            return 0.0
        return (datetime.datetime.now() - self.data.login_time).total_seconds()

    @property
    def idle(self):
        """Time elapsed since last activity, in seconds as float."""
        if self.data is None:
            return 0.0
        return self.data.idle

    @property
    def transport(self):
        return self._transport

    def get_extra_info(self, name, default=None):
        """Get optional connection or transport information."""
        if self._transport is not None:
            default = self._transport.get_extra_info(name, default)
        extra = {}
        if self.data is not None:
            extra.update(self.data.environment)
            extra.update({'term': self.data.terminal_type,
                          'cols': self.data.columns,
                          'rows': self.data.rows})
        return extra.get(name, default)

    # listeners

    def add_listener(self, listener):
        """Subscribe callable ``listener`` to :class:`ConnectionEvent`."""
        self._listeners.append(listener)

    def remove_listener(self, listener):
        """Unsubscribe ``listener``, previously given to add_listener()."""
        self._listeners.remove(listener)

    def dispatch(self, kind):
        """
        Deliver event of ``kind`` to listeners, in order of subscription.

        Events are not dispatched once the connection is closing.
        ``GEOMETRY_CHANGED`` resizes the terminal before listeners are
        informed, ``TIMED_OUT`` closes the connection after.
        """
        if self.state in (State.CLOSING, State.CLOSED):
            logger.debug('%s: %s not dispatched while %s', self, kind.name,
                         self.state.value)
            return
        if kind == EventKind.GEOMETRY_CHANGED:
            self._resize_terminal()
        event = ConnectionEvent(kind, self)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning('%s: listener %r failed on %s', self,
                               listener, kind.name)
                log_exception(logger.warning, *sys.exc_info())
        if kind == EventKind.TIMED_OUT:
            self.close()

    # codec callbacks

    def on_naws(self, cols, rows):
        """Callback receives NAWS response, :rfc:`1073`."""
        changed = self.data.set_geometry(cols, rows)
        if changed and self.state == State.ACTIVE:
            self.dispatch(EventKind.GEOMETRY_CHANGED)

    def on_ttype(self, ttype):
        """Callback for TTYPE response, :rfc:`1091`."""
        self.data.set_terminal_type(ttype)
        if self.terminal is not None:
            self.terminal.type = self.data.terminal_type

    def on_logout(self, cmd):
        """Callback for (DO | DONT) LOGOUT, :rfc:`727`."""
        if cmd == DO:
            self.dispatch(EventKind.LOGOUT_REQUEST)

    def on_brk(self, cmd):
        """Callback for IAC BRK."""
        self.dispatch(EventKind.BREAK_SENT)

    def on_ip(self, cmd):
        """Callback for IAC IP, also raised as ``INT`` on the terminal."""
        self.dispatch(EventKind.BREAK_SENT)
        if self.terminal is not None and self.state == State.ACTIVE:
            self.terminal.raise_signal(Signal.INT)

    def on_ayt(self, cmd):
        """Callback for IAC AYT, answered with visible evidence."""
        if self.writer.is_closing():
            return
        reply = '\r\n[{0}: yes]\r\n'.format(socket.gethostname())
        self.writer.write(reply.encode('ascii', 'replace'))
        self.writer.transmit()

    def on_write_error(self, exc):
        """Called by the writer when transmission failed."""
        logger.warning('%s: write failed: %s', self, exc)
        self._forced = True
        self.close()

    # lifecycle

    def close(self):
        """
        Request the connection be closed.

        May be called any number of times, from any task; concurrent
        requests collapse into one.

        :returns: awaitable completing when state is ``CLOSED``.
        """
        if self._closer is None:
            if self.state != State.CLOSED:
                self.state = State.CLOSING
            self._closer = self._loop.create_task(self._do_close())
        return self._closer

    def _touch(self):
        if self.data is not None:
            self.data.touch()
            self.warned = False

    def _send_iac(self, buf):
        self.writer.send_iac(buf)

    def _negotiation_complete(self, final=False):
        if self.state != State.NEGOTIATING:
            return
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        if final and not self.codec.is_negotiated:
            logger.debug('negotiation failed after {:1.2f}s: {!r}, using '
                         'term={}, cols={}, rows={}.'.format(
                             self.duration, self.codec,
                             self.data.terminal_type, self.data.columns,
                             self.data.rows))
        else:
            logger.debug('negotiation complete after {:1.2f}s.'
                         .format(self.duration))
        self._begin_session()

    def _begin_session(self):
        self.state = State.ACTIVE
        self.terminal = Terminal(self.name, self.data.terminal_type,
                                 (self.data.columns, self.data.rows),
                                 input=self.reader, output=self.writer)
        logger.debug('%s active: %r', self, self.terminal)
        if self._session is not None:
            self._session_task = self._loop.create_task(self._run_session())
        self.waiter_active.set_result(self)

    def _resize_terminal(self):
        if self.terminal is None:
            return
        if self.terminal.set_size(self.data.columns, self.data.rows):
            self.terminal.raise_signal(Signal.WINCH)

    async def _run_session(self):
        try:
            await self._session(self)
        except asyncio.CancelledError:
            logger.debug('%s: session cancelled.', self)
            raise
        except StreamClosed as err:
            logger.debug('%s: session ended by closed stream: %s', self, err)
        except Exception:
            logger.warning('%s: session failed.', self)
            log_exception(logger.warning, *sys.exc_info())
        finally:
            self.close()

    def abort(self):
        """
        Close immediately, without waiting for output or the session.

        :returns: awaitable completing when state is ``CLOSED``.
        """
        self._forced = True
        task = self._session_task
        if (task is not None and not task.done()
                and task is not asyncio.current_task()):
            task.cancel()
        if self._transport is not None:
            self._transport.abort()
        return self.close()

    async def _do_close(self):
        try:
            await self._close_streams()
            await self._await_session()
        finally:
            self._release()

    async def _close_streams(self):
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

        if self._teardown is not None:
            try:
                self._teardown(self)
            except Exception:
                logger.warning('%s: teardown failed.', self)
                log_exception(logger.warning, *sys.exc_info())

        # close output, then input
        if self.writer is not None:
            if not self.writer.is_closing():
                try:
                    await asyncio.wait_for(self.writer.flush(),
                                           self.flush_timeout)
                except asyncio.TimeoutError:
                    logger.warning('%s: flush timed out after %1.1fs.',
                                   self, self.flush_timeout)
                    self._forced = True
                except (StreamClosed, ConnectionError) as err:
                    logger.debug('%s: flush on close failed: %s', self, err)
            self.writer.close()
        if self.reader is not None:
            self.reader.feed_eof()

    async def _await_session(self):
        task = self._session_task
        if (task is None or task.done()
                or task is asyncio.current_task()):
            return
        done, _ = await asyncio.wait([task], timeout=self.session_timeout)
        if not done:
            logger.warning('%s: session did not exit after %1.1fs, '
                           'cancelling.', self, self.session_timeout)
            task.cancel()
            await asyncio.wait([task], timeout=self.flush_timeout)
            self._forced = True

    def _release(self):
        if self._transport is not None:
            if self._forced:
                self._transport.abort()
            else:
                self._transport.close()

        if not self.waiter_active.done():
            self.waiter_active.cancel()
        self.state = State.CLOSED
        self._listeners.clear()
        manager = self._manager() if self._manager is not None else None
        if manager is not None:
            manager.deregister(self)
        if self.data is not None:
            logger.info('%s closed after %1.2fs.', self, self.duration)
        self.waiter_closed.set_result(self)


class BusyProtocol(asyncio.Protocol):
    """Protocol of a refused connection: a short notice, then close."""

    message = b'Too many connections, try again later.\r\n'

    def connection_made(self, transport):
        peername = transport.get_extra_info('peername') or ('-', '-')
        logger.info('Refused connection from %s:%s, server busy.',
                    *peername[:2])
        transport.write(self.message)
        transport.close()
