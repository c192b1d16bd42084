"""Test accessories for telnetd project."""
# std imports
import asyncio
import contextlib
import socket

# local imports
from telnetd.listener import PortListener
from telnetd.manager import ConnectionManager
from telnetd.telopt import DO, ECHO, IAC, IS, NAWS, SB, SE, SGA, TTYPE, WILL

# 3rd party
import pytest

__all__ = ('bind_host', 'unused_tcp_port', 'serving', 'read_until',
           'client_negotiate', 'NEGOTIATION')

#: bytes sent by the server end of every new connection.
NEGOTIATION = (IAC + WILL + ECHO + IAC + WILL + SGA +
               IAC + DO + NAWS + IAC + DO + TTYPE)


@pytest.fixture(scope="module", params=['127.0.0.1'])
def bind_host(request):
    """ Localhost bind address. """
    return request.param


@pytest.fixture
def unused_tcp_port(bind_host):
    """ An unused TCP port of ``bind_host``. """
    with contextlib.closing(socket.socket()) as sock:
        sock.bind((bind_host, 0))
        return sock.getsockname()[1]


@contextlib.asynccontextmanager
async def serving(host, port, session=None, **kwds):
    """
    Serve connections on (host, port) with a new ConnectionManager.

    Yields the manager, stopped on exit.
    """
    async def _idle_session(connection):
        while await connection.reader.read_byte() != -1:
            pass

    kwds.setdefault('connect_maxwait', 0.05)
    manager = ConnectionManager(session=session or _idle_session, **kwds)
    listener = PortListener('test', host, port, manager)
    await listener.start()
    manager.start()
    try:
        yield manager
    finally:
        listener.close()
        await manager.stop()
        await listener.wait_closed()


async def read_until(reader, pattern, timeout=2.0):
    """Read from asyncio ``reader`` until ``pattern`` is received."""
    buf = b''
    while pattern not in buf:
        data = await asyncio.wait_for(reader.read(1024), timeout)
        if not data:
            raise EOFError('EOF before {!r}, received {!r}'
                           .format(pattern, buf))
        buf += data
    return buf


def client_negotiate(writer, ttype=b'xterm', cols=80, rows=24):
    """Answer the server's demands, as a well-behaved client would."""
    writer.write(IAC + DO + ECHO + IAC + DO + SGA)
    writer.write(IAC + WILL + NAWS + IAC + SB + NAWS +
                 cols.to_bytes(2, 'big') + rows.to_bytes(2, 'big') +
                 IAC + SE)
    writer.write(IAC + WILL + TTYPE + IAC + SB + TTYPE + IS + ttype +
                 IAC + SE)
