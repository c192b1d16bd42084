"""
Module provides class :class:`ConnectionManager`.

The manager is the protocol factory given to the accept loop: each call
admits a new :class:`~telnetd.connection.Connection`, or, when
``max_connections`` are already live, answers with a
:class:`~telnetd.connection.BusyProtocol`.  A single housekeeping task
inspects all live connections every ``housekeeping_interval`` seconds for
idleness.
"""
# std imports
import asyncio
import logging

# local
from .connection import BusyProtocol, Connection, EventKind, State

__all__ = ('ConnectionManager',)

logger = logging.getLogger('telnetd.manager')


class ConnectionManager:
    """Admission control, idle housekeeping and shutdown of connections."""

    #: seconds to await connections aborted after the graceful drain.
    abort_timeout = 1.0

    def __init__(self, session, teardown=None, max_connections=1000,
                 warning_timeout=300, disconnect_timeout=300,
                 housekeeping_interval=60, connect_maxwait=10.0,
                 term='unknown', cols=80, rows=24, max_protocol_errors=10,
                 protocol_factory=Connection):
        """
        Class initializer.

        :param Callable session: async function receiving each connection
            when it becomes active, its return closes the connection.
        :param Callable teardown: function receiving each connection when
            it begins closing.
        :param int max_connections: live connections admitted at once.
        :param float warning_timeout: idle seconds before an ``IDLE``
            event, 0 disables.
        :param float disconnect_timeout: idle seconds before a
            ``TIMED_OUT`` event and close, 0 disables.  Also bounds the
            graceful drain of :meth:`stop`.
        :param float housekeeping_interval: seconds between idle sweeps.
        :param float connect_maxwait: negotiation deadline of connections.
        :param str term: default terminal type.
        :param int cols: default terminal columns.
        :param int rows: default terminal rows.
        :param int max_protocol_errors: protocol errors tolerated per
            connection.
        :param protocol_factory: class of admitted connections.
        """
        if max_connections < 1:
            raise ValueError('max_connections must be at least 1, got {0}'
                             .format(max_connections))
        if housekeeping_interval <= 0:
            raise ValueError('housekeeping_interval must be positive, got {0}'
                             .format(housekeeping_interval))
        self.session = session
        self.teardown = teardown
        self.max_connections = max_connections
        self.warning_timeout = warning_timeout
        self.disconnect_timeout = disconnect_timeout
        self.housekeeping_interval = housekeeping_interval
        self.protocol_factory = protocol_factory
        self._connection_kwds = dict(
            connect_maxwait=connect_maxwait, term=term, cols=cols, rows=rows,
            max_protocol_errors=max_protocol_errors)
        self._live = set()
        self._listeners = []
        self._housekeeper = None
        self._stopping = False

    def __repr__(self):
        return '<ConnectionManager live={0}/{1}{2}>'.format(
            len(self._live), self.max_connections,
            ' stopping' if self._stopping else '')

    def __call__(self):
        """Protocol factory of the accept loop: admit or refuse."""
        if self._stopping:
            logger.debug('refusing connection while stopping.')
            return BusyProtocol()
        if len(self._live) >= self.max_connections:
            logger.debug('refusing connection, %d of %d live.',
                         len(self._live), self.max_connections)
            return BusyProtocol()
        connection = self.protocol_factory(
            session=self.session, teardown=self.teardown, manager=self,
            listeners=self._listeners, **self._connection_kwds)
        self.register(connection)
        return connection

    @property
    def connections(self):
        """Snapshot list of live connections."""
        return list(self._live)

    @property
    def is_running(self):
        return self._housekeeper is not None and not self._housekeeper.done()

    def add_listener(self, listener):
        """
        Subscribe ``listener`` to events of connections admitted hereafter.

        :param Callable listener: receives each
            :class:`~telnetd.connection.ConnectionEvent`.
        """
        self._listeners.append(listener)

    def register(self, connection):
        """Add ``connection`` to the live set."""
        if len(self._live) >= self.max_connections:
            raise RuntimeError('{0} full, cannot register {1}'
                               .format(self, connection))
        self._live.add(connection)
        logger.debug('registered %r, %d live.', connection, len(self._live))

    def deregister(self, connection):
        """Remove ``connection`` from the live set, if present."""
        self._live.discard(connection)
        logger.debug('deregistered %r, %d live.', connection, len(self._live))

    def start(self):
        """Begin the housekeeping task."""
        if self.is_running:
            return
        self._stopping = False
        self._housekeeper = asyncio.get_event_loop().create_task(
            self._housekeeping())
        logger.debug('%r started.', self)

    def sweep(self):
        """
        Inspect each live connection for idleness once.

        A connection idle for at least ``disconnect_timeout`` is sent
        ``TIMED_OUT`` and closed.  Otherwise, when idle for at least
        ``warning_timeout``, it is sent ``IDLE``, once per idle period.
        """
        for connection in self.connections:
            if connection.state in (State.CLOSING, State.CLOSED):
                continue
            idle = connection.idle
            if self.disconnect_timeout and idle >= self.disconnect_timeout:
                logger.info('%s: idle %1.1fs, disconnecting.',
                            connection, idle)
                connection.dispatch(EventKind.TIMED_OUT)
                connection.close()
            elif (self.warning_timeout and idle >= self.warning_timeout
                  and not connection.warned):
                logger.debug('%s: idle %1.1fs.', connection, idle)
                connection.warned = True
                connection.dispatch(EventKind.IDLE)

    async def _housekeeping(self):
        while True:
            await asyncio.sleep(self.housekeeping_interval)
            try:
                self.sweep()
            except Exception:
                logger.exception('housekeeping sweep failed.')

    async def stop(self):
        """
        Close all live connections.

        Each connection is sent ``TIMED_OUT``; those not closed within
        ``disconnect_timeout`` seconds are aborted.
        """
        self._stopping = True
        if self._housekeeper is not None:
            self._housekeeper.cancel()
            await asyncio.wait([self._housekeeper])
            self._housekeeper = None

        connections = self.connections
        if not connections:
            logger.debug('%r stopped.', self)
            return
        logger.info('closing %d connections.', len(connections))
        for connection in connections:
            connection.dispatch(EventKind.TIMED_OUT)
            connection.close()

        waiters = [connection.waiter_closed for connection in connections]
        _, pending = await asyncio.wait(
            waiters, timeout=self.disconnect_timeout or None)
        if pending:
            remaining = [conn for conn in connections
                         if not conn.waiter_closed.done()]
            logger.warning('%d connections did not close after %1.1fs, '
                           'aborting.', len(remaining),
                           self.disconnect_timeout)
            for connection in remaining:
                connection.abort()
            await asyncio.wait(pending, timeout=self.abort_timeout)
        for connection in connections:
            self.deregister(connection)
        logger.debug('%r stopped.', self)
