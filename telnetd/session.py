"""
Module provides :class:`SessionBridge`, glue between a connection and a shell.

A shell is any async function of signature::

    async def shell(ctx, stdin, stdout, stderr, args)

where ``stdin`` is the :class:`~telnetd.stream_reader.TelnetReader` of the
connection, ``stdout`` and ``stderr`` its
:class:`~telnetd.stream_writer.TelnetWriter`, and ``ctx`` a
:class:`SessionContext`.  The shell must return when ``stdin`` reaches end
of stream.
"""
# std imports
import logging
import os

__all__ = ('SessionBridge', 'SessionContext')

logger = logging.getLogger('telnetd.session')


class SessionContext:
    """Context of one shell session: properties, variables and exit."""

    def __init__(self, connection, properties=None):
        self.connection = connection
        self.properties = dict(properties or {})
        #: session variables, ``terminal`` is the connection's terminal.
        self.variables = {'terminal': connection.terminal}

    def __repr__(self):
        return '<SessionContext {0!r}>'.format(self.connection)

    @property
    def terminal(self):
        return self.variables['terminal']

    def get_property(self, name):
        """
        Return string value of property ``name``, or ``None``.

        Explicit properties of the bridge are consulted first, then the
        environment negotiated by the connection, then the environment of
        this process.
        """
        if name in self.properties:
            return self.properties[name]
        environment = {}
        if self.connection.data is not None:
            environment = self.connection.data.environment
        if name in environment:
            return environment[name]
        return os.environ.get(name)

    def exit(self):
        """Request the connection be closed."""
        logger.debug('%r: exit requested.', self)
        return self.connection.close()


class SessionBridge:
    """
    Runs ``shell`` for each active connection.

    :meth:`run` is given to :class:`~telnetd.manager.ConnectionManager` as
    the session body, :meth:`teardown` as the teardown callback.
    """

    def __init__(self, shell, args=('--login',), properties=None,
                 login=None):
        """
        Class initializer.

        :param Callable shell: async shell function.
        :param tuple args: arguments given to the shell.
        :param dict properties: explicit properties of every context.
        :param Callable login: optional async function of signature
            ``login(ctx, stdin, stdout)``, a false return value closes the
            connection before the shell is entered.
        """
        self.shell = shell
        self.args = tuple(args)
        self.properties = dict(properties or {})
        self.login = login
        self._sessions = set()

    def __repr__(self):
        return '<SessionBridge shell={0} sessions={1}>'.format(
            getattr(self.shell, '__name__', self.shell), len(self._sessions))

    async def run(self, connection):
        """Enter the shell for ``connection``, returning when it exits."""
        if connection in self._sessions:
            raise RuntimeError('shell already entered for {0!r}'
                               .format(connection))
        self._sessions.add(connection)
        ctx = SessionContext(connection, self.properties)
        stdin, stdout = connection.reader, connection.writer
        try:
            if self.login is not None:
                if not await self.login(ctx, stdin, stdout):
                    logger.info('%r: login refused.', connection)
                    return
            logger.debug('%r: enter shell %r', connection, self)
            await self.shell(ctx, stdin, stdout, stdout, self.args)
        finally:
            self._sessions.discard(connection)

    def teardown(self, connection):
        """Forget ``connection``."""
        self._sessions.discard(connection)
