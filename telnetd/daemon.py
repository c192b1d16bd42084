"""
Module provides :class:`Telnetd`, controller of the whole server.

Operations :meth:`Telnetd.start`, :meth:`Telnetd.stop` and
:meth:`Telnetd.status` drive one :class:`~telnetd.listener.PortListener`
and its :class:`~telnetd.manager.ConnectionManager`.
"""
# std imports
import asyncio
import collections
import enum
import logging

# local
from . import accessories
from .exceptions import AlreadyRunning, NotRunning
from .listener import PortListener
from .manager import ConnectionManager
from .session import SessionBridge

__all__ = ('Telnetd', 'Status', 'DaemonState', 'CONFIG')

CONFIG = collections.namedtuple(
    'CONFIG',
    ['host', 'port', 'loglevel', 'logfile', 'logfmt', 'shell',
     'max_connections', 'warning_timeout', 'disconnect_timeout',
     'housekeeping_interval', 'connect_maxwait', 'term', 'cols', 'rows'],
)(
    host='127.0.0.1',
    port=2019,
    loglevel='info',
    logfile=None,
    logfmt=accessories._DEFAULT_LOGFMT,
    shell=accessories.function_lookup('telnetd.shell.telnetd_shell'),
    max_connections=1000,
    warning_timeout=300,
    disconnect_timeout=300,
    housekeeping_interval=60,
    connect_maxwait=10.0,
    term='unknown',
    cols=80,
    rows=24,
)

logger = logging.getLogger('telnetd.daemon')


class DaemonState(enum.Enum):
    RUNNING = 'running'
    NOT_RUNNING = 'not_running'


#: Result of :meth:`Telnetd.status`, ``ip`` and ``port`` are ``None``
#: unless ``RUNNING``.
Status = collections.namedtuple('Status', ['state', 'ip', 'port'])


class Telnetd:
    """
    Telnet daemon controller.

    Keyword arguments override the matching field of :data:`CONFIG`, and
    ``login`` and ``properties`` are given to the
    :class:`~telnetd.session.SessionBridge`.

    :meth:`start` and :meth:`stop` are serialized: of two concurrent
    calls of :meth:`start`, one fails with
    :class:`~telnetd.exceptions.AlreadyRunning`.
    """

    def __init__(self, shell=CONFIG.shell, login=None, properties=None,
                 max_connections=CONFIG.max_connections,
                 warning_timeout=CONFIG.warning_timeout,
                 disconnect_timeout=CONFIG.disconnect_timeout,
                 housekeeping_interval=CONFIG.housekeeping_interval,
                 connect_maxwait=CONFIG.connect_maxwait,
                 term=CONFIG.term, cols=CONFIG.cols, rows=CONFIG.rows,
                 name='telnetd'):
        self.name = name
        self.bridge = SessionBridge(shell, properties=properties, login=login)
        self._manager_kwds = dict(
            max_connections=max_connections,
            warning_timeout=warning_timeout,
            disconnect_timeout=disconnect_timeout,
            housekeeping_interval=housekeeping_interval,
            connect_maxwait=connect_maxwait,
            term=term, cols=cols, rows=rows)
        self._listeners = []
        self._lock = asyncio.Lock()
        self.manager = None
        self.listener = None

    def __repr__(self):
        state, ip, port = self.status()
        if state == DaemonState.RUNNING:
            return '<Telnetd {0} {1}:{2}>'.format(state.value, ip, port)
        return '<Telnetd {0}>'.format(state.value)

    @property
    def is_running(self):
        return self.listener is not None

    def add_listener(self, listener):
        """Subscribe ``listener`` to events of all connections."""
        self._listeners.append(listener)
        if self.manager is not None:
            self.manager.add_listener(listener)

    def configure(self, shell=None, login=None, properties=None, **kwds):
        """
        Change configuration used by the next :meth:`start`.

        Keyword arguments are those of the class initializer, values of
        ``None`` for ``shell``, ``login`` and ``properties`` are unchanged.

        :raises AlreadyRunning: when running.
        :raises TypeError: on an unknown keyword argument.
        """
        if self.is_running:
            raise AlreadyRunning('{0!r} already running, cannot configure'
                                 .format(self))
        unknown = sorted(set(kwds) - set(self._manager_kwds))
        if unknown:
            raise TypeError('unexpected keyword arguments: {0}'
                            .format(', '.join(unknown)))
        self._manager_kwds.update(kwds)
        if shell is not None:
            self.bridge.shell = shell
        if login is not None:
            self.bridge.login = login
        if properties is not None:
            self.bridge.properties = dict(properties)

    async def start(self, ip=CONFIG.host, port=CONFIG.port, **kwds):
        """
        Start serving on ``(ip, port)``.

        Keyword arguments are given to :meth:`configure` first.

        :raises AlreadyRunning: when already running.
        :raises BindFailed: when the address cannot be bound, the daemon
            remains not running.
        """
        async with self._lock:
            if self.is_running:
                raise AlreadyRunning('{0!r} already running'.format(self))
            self.configure(**kwds)
            manager = ConnectionManager(
                session=self.bridge.run, teardown=self.bridge.teardown,
                **self._manager_kwds)
            for fn in self._listeners:
                manager.add_listener(fn)
            listener = PortListener(self.name, ip, port, manager)
            await listener.start()
            manager.start()
            self.manager, self.listener = manager, listener
        logger.info('%s: running on %s:%s', self.name, ip, listener.port)

    async def stop(self):
        """
        Stop serving: stop accepting, then close all connections.

        :raises NotRunning: when not running.
        """
        async with self._lock:
            if not self.is_running:
                raise NotRunning('{0!r} not running'.format(self))
            listener, manager = self.listener, self.manager
            self.listener = self.manager = None
            listener.close()
            try:
                await manager.stop()
            finally:
                await listener.wait_closed()
        logger.info('%s: stopped.', self.name)

    def status(self):
        """Return :class:`Status` of this daemon."""
        if not self.is_running:
            return Status(DaemonState.NOT_RUNNING, None, None)
        return Status(DaemonState.RUNNING, self.listener.ip,
                      self.listener.port)
