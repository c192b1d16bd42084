"""
The ``main`` function here is wired to the command line tool by name
telnetd.  Command ``start`` serves in the foreground, and if this
process receives the SIGTERM or SIGINT signal, it attempts to shutdown
gracefully.

:class:`TelnetdCommand` may also drive a daemon embedded in another
program, such as an administrative console, by giving it a
:class:`~telnetd.sync.BlockingTelnetd` instance.

Exit codes are 0 on success (or help), 1 on failure, and 2 on usage
error.
"""
# std imports
import argparse
import asyncio
import logging
import signal
import sys

# local
from . import accessories
from .daemon import CONFIG, DaemonState, Telnetd
from .exceptions import (AlreadyRunning, BindFailed, NotRunning,
                         UsageError)
from .sync import BlockingTelnetd

__all__ = ('TelnetdCommand', 'make_embedded_command', 'parse_args',
           'run_daemon', 'main')

logger = logging.getLogger('telnetd.cmdline')

EXIT_SUCCESS, EXIT_FAILURE, EXIT_USAGE = 0, 1, 2


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


def _shell_lookup(pymod_path):
    try:
        return accessories.function_lookup(pymod_path)
    except (ImportError, AttributeError, AssertionError, ValueError) as err:
        raise argparse.ArgumentTypeError(
            'cannot use shell {0!r}: {1}'.format(pymod_path, err))


def _port(value):
    port = int(value)
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(
            'port must be in range 0-65535, got {0}'.format(port))
    return port


def get_parser():
    parser = _ArgumentParser(
        prog='telnetd',
        description='Telnet server of an interactive command shell',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument('command', choices=('start', 'stop', 'status'),
                        nargs='?', default=None,
                        help='daemon operation, usage is shown when none')
    parser.add_argument('-i', '--ip', default=CONFIG.host,
                        help='bind address')
    parser.add_argument('-p', '--port', type=_port, default=CONFIG.port,
                        help='bind port')
    parser.add_argument('--loglevel', default=CONFIG.loglevel,
                        choices=('debug', 'info', 'warning', 'error',
                                 'critical'),
                        help='level name')
    parser.add_argument('--logfile', default=CONFIG.logfile,
                        help='filepath')
    parser.add_argument('--logfmt', default=CONFIG.logfmt,
                        help='log format')
    parser.add_argument('--shell', default=CONFIG.shell,
                        type=_shell_lookup, help='module.function_name')
    parser.add_argument('--max-connections', type=int,
                        default=CONFIG.max_connections,
                        help='concurrent connections admitted')
    parser.add_argument('--warning-timeout', type=float,
                        default=CONFIG.warning_timeout,
                        help='idle warning (0 disables)')
    parser.add_argument('--timeout', dest='disconnect_timeout', type=float,
                        default=CONFIG.disconnect_timeout,
                        help='idle disconnect (0 disables)')
    parser.add_argument('--housekeeping-interval', type=float,
                        default=CONFIG.housekeeping_interval,
                        help='seconds between idle checks')
    parser.add_argument('--connect-maxwait', type=float,
                        default=CONFIG.connect_maxwait,
                        help='timeout for pending negotiation')
    parser.add_argument('--term', default=CONFIG.term,
                        help='terminal type when not negotiated')
    parser.add_argument('--cols', type=int, default=CONFIG.cols,
                        help='terminal columns when not negotiated')
    parser.add_argument('--rows', type=int, default=CONFIG.rows,
                        help='terminal rows when not negotiated')
    return parser


def parse_args(argv):
    """
    Parse command line arguments ``argv`` into a dictionary.

    :raises UsageError: on invalid arguments.
    """
    args = vars(get_parser().parse_args(argv))
    if args['max_connections'] < 1:
        raise UsageError('--max-connections must be at least 1')
    if args['housekeeping_interval'] <= 0:
        raise UsageError('--housekeeping-interval must be positive')
    return args


async def run_daemon(ip=CONFIG.host, port=CONFIG.port, **kwds):
    """
    Serve on ``(ip, port)`` until SIGTERM or SIGINT is received.

    Keyword arguments are given to :class:`~telnetd.daemon.Telnetd`.
    """
    loop = asyncio.get_event_loop()
    daemon = Telnetd(**kwds)
    await daemon.start(ip, port)

    stop_requested = asyncio.Event()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, stop_requested.set)

    logger.info('Server ready on {0}:{1}'.format(ip, daemon.status().port))
    try:
        await stop_requested.wait()
        logger.info('Signal received, closing server.')
    finally:
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(signum)
        await daemon.stop()

    logger.info('Server stop.')


class TelnetdCommand:
    """
    Administrative command interpreter: ``start``, ``stop``, ``status``.

    When no daemon is given, ``start`` serves in the foreground with
    :func:`run_daemon`, and ``stop`` and ``status`` report on a daemon
    which is, necessarily, not running in this process.  Otherwise the
    options of ``start`` configure the given daemon.  Without a command,
    usage is shown.
    """

    def __init__(self, daemon=None, out=None, err=None):
        self.daemon = daemon
        self.out = out or sys.stdout
        self.err = err or sys.stderr

    def _print(self, text, stream=None):
        print(text, file=stream or self.out)

    def run(self, argv):
        """
        Execute command line ``argv``.

        :rtype: int
        :returns: exit code.
        """
        try:
            args = parse_args(argv)
        except UsageError as err:
            self._print(get_parser().format_usage().rstrip(), self.err)
            self._print('telnetd: error: {0}'.format(err), self.err)
            return EXIT_USAGE
        except SystemExit as err:
            # --help
            return err.code or EXIT_SUCCESS

        if args['command'] is None:
            self._print(get_parser().format_usage().rstrip())
            return EXIT_SUCCESS

        accessories.make_logger(name='telnetd', loglevel=args.pop('loglevel'),
                                logfile=args.pop('logfile'),
                                logfmt=args.pop('logfmt'))
        command = args.pop('command')
        logger.debug('Command {0}: {1}'.format(
            command, accessories.repr_mapping(args)))

        try:
            if command == 'start':
                return self.start(**args)
            if command == 'stop':
                return self.stop()
            return self.status()
        except (AlreadyRunning, NotRunning, BindFailed) as err:
            self._print('telnetd: {0}'.format(err), self.err)
            return EXIT_FAILURE

    def start(self, ip, port, **kwds):
        if self.daemon is None:
            asyncio.run(run_daemon(ip, port, **kwds))
        else:
            self.daemon.start(ip, port, **kwds)
            self._print('started on {0}:{1}'.format(
                ip, self.daemon.status().port))
        return EXIT_SUCCESS

    def stop(self):
        if self.daemon is None:
            raise NotRunning('not running')
        self.daemon.stop()
        self._print('stopped')
        return EXIT_SUCCESS

    def status(self):
        if self.daemon is None:
            state = DaemonState.NOT_RUNNING
        else:
            state, ip, port = self.daemon.status()
        if state == DaemonState.RUNNING:
            self._print('running on {0}:{1}'.format(ip, port))
        else:
            self._print('not running')
        return EXIT_SUCCESS


def make_embedded_command(**kwds):
    """Return :class:`TelnetdCommand` of a new, embedded, blocking daemon."""
    return TelnetdCommand(daemon=BlockingTelnetd(**kwds))


def main():
    sys.exit(TelnetdCommand().run(sys.argv[1:]))


if __name__ == '__main__':
    main()
