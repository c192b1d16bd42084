"""Module provides class :class:`PortListener`, the TCP accept loop."""
# std imports
import asyncio
import enum
import logging

# local
from .exceptions import AlreadyRunning, BindFailed

__all__ = ('PortListener', 'ListenerState')

logger = logging.getLogger('telnetd.listener')


class ListenerState(enum.Enum):
    STOPPED = 'stopped'
    LISTENING = 'listening'
    STOPPING = 'stopping'


class PortListener:
    """
    Accepts connections on ``(ip, port)``, handing each to ``manager``.

    The manager is called without arguments as the protocol factory of
    :meth:`asyncio.AbstractEventLoop.create_server`.
    """

    #: seconds :meth:`stop` awaits the accept loop to exit.
    stop_timeout = 2.0

    def __init__(self, name, ip, port, manager, backlog=10):
        self.name = name
        self.ip = ip
        self.port = port
        self.backlog = backlog
        self.manager = manager
        self.state = ListenerState.STOPPED
        self._server = None

    def __repr__(self):
        return '<PortListener {0} {1}:{2} {3}>'.format(
            self.name, self.ip, self.port, self.state.value)

    @property
    def sockets(self):
        """Listening sockets, empty unless ``LISTENING``."""
        if self._server is None:
            return ()
        return tuple(self._server.sockets or ())

    async def start(self):
        """
        Bind and begin accepting connections.

        When ``port`` is 0, an unused port is chosen by the operating
        system and stored as attribute ``port``.

        :raises AlreadyRunning: when not ``STOPPED``.
        :raises BindFailed: when the address cannot be bound.
        """
        if self.state != ListenerState.STOPPED:
            raise AlreadyRunning('{0} is {1}'.format(self, self.state.value))
        loop = asyncio.get_event_loop()
        try:
            self._server = await loop.create_server(
                self.manager, self.ip, self.port, backlog=self.backlog)
        except OSError as err:
            logger.warning('%s: bind failed: %s', self, err)
            raise BindFailed(err.errno, 'cannot bind {0}:{1}: {2}'.format(
                self.ip, self.port, err.strerror or err)) from err
        if not self.port and self._server.sockets:
            self.port = self._server.sockets[0].getsockname()[1]
        self.state = ListenerState.LISTENING
        logger.info('%s: listening on %s:%s', self.name, self.ip, self.port)

    def close(self):
        """Close the listening socket, no further connections are accepted."""
        if self._server is None or self.state != ListenerState.LISTENING:
            return
        self.state = ListenerState.STOPPING
        self._server.close()

    async def wait_closed(self, timeout=None):
        """
        Wait for the accept loop to exit, bounded by ``timeout`` seconds.

        :rtype: bool
        :returns: whether the loop exited in time.
        """
        if self._server is None:
            return True
        timeout = self.stop_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._server.wait_closed(), timeout)
        except asyncio.TimeoutError:
            # connections still held by the server are closed by the
            # manager, not awaited here.
            logger.debug('%s: accept loop still held after %1.1fs.',
                         self, timeout)
            return False
        finally:
            self._server = None
            self.state = ListenerState.STOPPED
        return True

    async def stop(self):
        """Stop accepting connections."""
        if self.state == ListenerState.STOPPED:
            return
        self.close()
        await self.wait_closed()
        logger.info('%s: stopped listening on %s:%s', self.name, self.ip,
                    self.port)
