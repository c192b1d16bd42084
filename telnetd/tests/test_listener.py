"""Test the TCP accept loop, :class:`PortListener`."""
# std imports
import asyncio

# local imports
from telnetd.exceptions import AlreadyRunning, BindFailed
from telnetd.listener import ListenerState, PortListener
from telnetd.manager import ConnectionManager
from telnetd.tests.accessories import NEGOTIATION, bind_host, unused_tcp_port

# 3rd party
import pytest


async def _session(connection):
    await connection.reader.read()


@pytest.mark.asyncio
async def test_start_stop(bind_host, unused_tcp_port):
    """Listener accepts connections until stopped."""
    # given,
    manager = ConnectionManager(session=_session, connect_maxwait=0.05)
    listener = PortListener('test', bind_host, unused_tcp_port, manager)
    assert listener.state == ListenerState.STOPPED

    # exercise,
    await listener.start()

    # verify,
    assert listener.state == ListenerState.LISTENING
    assert listener.sockets
    reader, writer = await asyncio.open_connection(bind_host, unused_tcp_port)
    assert await asyncio.wait_for(
        reader.readexactly(len(NEGOTIATION)), 1.0) == NEGOTIATION

    listener.close()
    assert listener.state == ListenerState.STOPPING
    await manager.stop()
    assert await listener.wait_closed()
    assert listener.state == ListenerState.STOPPED
    assert listener.sockets == ()
    with pytest.raises(OSError):
        await asyncio.open_connection(bind_host, unused_tcp_port)


@pytest.mark.asyncio
async def test_start_twice(bind_host, unused_tcp_port):
    manager = ConnectionManager(session=_session)
    listener = PortListener('test', bind_host, unused_tcp_port, manager)
    await listener.start()
    with pytest.raises(AlreadyRunning):
        await listener.start()
    await listener.stop()
    await listener.stop()
    assert listener.state == ListenerState.STOPPED


@pytest.mark.asyncio
async def test_bind_failed(bind_host, unused_tcp_port):
    """A second listener of the same address fails to bind."""
    # given,
    manager = ConnectionManager(session=_session)
    first = PortListener('first', bind_host, unused_tcp_port, manager)
    second = PortListener('second', bind_host, unused_tcp_port, manager)
    await first.start()

    # exercise,
    with pytest.raises(BindFailed) as exc_info:
        await second.start()

    # verify,
    assert isinstance(exc_info.value, OSError)
    assert exc_info.value.errno is not None
    assert second.state == ListenerState.STOPPED
    await first.stop()


@pytest.mark.asyncio
async def test_any_port(bind_host):
    """Port 0 is replaced by the port chosen by the operating system."""
    manager = ConnectionManager(session=_session)
    listener = PortListener('test', bind_host, 0, manager)
    await listener.start()
    assert listener.port != 0
    assert listener.sockets[0].getsockname()[1] == listener.port
    await listener.stop()
