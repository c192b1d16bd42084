"""Test admission, housekeeping and shutdown of :class:`ConnectionManager`."""
# std imports
import asyncio
import time

# local imports
from telnetd.connection import BusyProtocol, EventKind, State
from telnetd.manager import ConnectionManager
from telnetd.tests.accessories import (NEGOTIATION, bind_host, serving,
                                       unused_tcp_port)

# 3rd party
import pytest


class FakeConnection:
    """Stands in for a connection in housekeeping tests."""

    def __init__(self, idle, state=State.ACTIVE):
        self.idle = idle
        self.state = state
        self.warned = False
        self.events = []
        self.closed = 0

    def dispatch(self, kind):
        self.events.append(kind)

    def close(self):
        self.closed += 1


def test_sweep():
    """Idle connections are warned once, then timed out."""
    # given,
    manager = ConnectionManager(session=None, warning_timeout=10,
                                disconnect_timeout=20)
    quiet = FakeConnection(idle=1)
    idle = FakeConnection(idle=15)
    gone = FakeConnection(idle=25)
    closing = FakeConnection(idle=99, state=State.CLOSING)
    for conn in (quiet, idle, gone, closing):
        manager.register(conn)

    # exercise,
    manager.sweep()
    manager.sweep()

    # verify,
    assert quiet.events == []
    assert idle.events == [EventKind.IDLE]
    assert idle.warned
    assert gone.events == [EventKind.TIMED_OUT, EventKind.TIMED_OUT]
    assert gone.closed == 2
    assert closing.events == []


@pytest.mark.asyncio
async def test_sweep_before_connection_made():
    """A connection admitted but not yet made does not interrupt a sweep."""
    # given,
    manager = ConnectionManager(session=None, warning_timeout=10,
                                disconnect_timeout=20)
    pending = manager()
    gone = FakeConnection(idle=25)
    manager.register(gone)

    # exercise,
    manager.sweep()

    # verify,
    assert pending.idle == pending.duration == 0.0
    assert pending.state == State.NEGOTIATING
    assert gone.events == [EventKind.TIMED_OUT]
    assert gone.closed == 1


def test_sweep_disabled():
    """Timeouts of 0 are disabled."""
    manager = ConnectionManager(session=None, warning_timeout=0,
                                disconnect_timeout=0)
    conn = FakeConnection(idle=1e6)
    manager.register(conn)
    manager.sweep()
    assert conn.events == []


def test_register_bounded():
    """The live set never exceeds max_connections."""
    manager = ConnectionManager(session=None, max_connections=2)
    first, second = FakeConnection(0), FakeConnection(0)
    manager.register(first)
    manager.register(second)
    with pytest.raises(RuntimeError):
        manager.register(FakeConnection(0))
    assert len(manager.connections) == 2

    manager.deregister(first)
    manager.deregister(first)
    assert manager.connections == [second]


def test_admission_refused():
    """The protocol factory answers busy when full."""
    manager = ConnectionManager(session=None, max_connections=1)
    manager.register(FakeConnection(0))
    assert isinstance(manager(), BusyProtocol)


@pytest.mark.parametrize('kwds', [
    dict(max_connections=0),
    dict(housekeeping_interval=0),
])
def test_bad_arguments(kwds):
    with pytest.raises(ValueError):
        ConnectionManager(session=None, **kwds)


@pytest.mark.asyncio
async def test_idle_then_timeout(bind_host, unused_tcp_port):
    """A silent client is warned, then disconnected."""
    # given,
    events = []
    stamps = []

    def listener(event):
        events.append(event.kind)
        stamps.append(time.monotonic())

    async with serving(bind_host, unused_tcp_port, warning_timeout=0.1,
                       disconnect_timeout=0.3, housekeeping_interval=0.02,
                       connect_maxwait=0.01) as manager:
        manager.add_listener(listener)
        reader, writer = await asyncio.open_connection(
            bind_host, unused_tcp_port)
        began = time.monotonic()

        # exercise,
        data = await asyncio.wait_for(reader.read(), 2.0)
        ended = time.monotonic()

        # verify,
        assert data == NEGOTIATION
        assert events == [EventKind.IDLE, EventKind.TIMED_OUT]
        assert 0.1 <= stamps[0] - began + 0.02 < 0.3
        assert 0.3 <= stamps[1] - began + 0.02 < 1.0
        assert ended - began < 1.5
        await asyncio.sleep(0.05)
        assert manager.connections == []


@pytest.mark.asyncio
async def test_activity_resets_idle(bind_host, unused_tcp_port):
    """Input from the client resets the idle warning."""
    events = []

    async with serving(bind_host, unused_tcp_port, warning_timeout=0.1,
                       disconnect_timeout=10, housekeeping_interval=0.02,
                       connect_maxwait=0.01) as manager:
        manager.add_listener(lambda event: events.append(event.kind))
        reader, writer = await asyncio.open_connection(
            bind_host, unused_tcp_port)
        await asyncio.sleep(0.2)
        assert events == [EventKind.IDLE]

        writer.write(b'x')
        await asyncio.sleep(0.2)
        assert events == [EventKind.IDLE, EventKind.IDLE]
        writer.close()


@pytest.mark.asyncio
async def test_admission_limit(bind_host, unused_tcp_port):
    """Connections beyond max_connections receive a busy line and close."""
    # given,
    async with serving(bind_host, unused_tcp_port,
                       max_connections=2) as manager:
        clients = []
        for _ in range(2):
            clients.append(await asyncio.open_connection(
                bind_host, unused_tcp_port))
            await asyncio.wait_for(
                clients[-1][0].readexactly(len(NEGOTIATION)), 1.0)
        assert len(manager.connections) == 2

        # exercise,
        reader, writer = await asyncio.open_connection(
            bind_host, unused_tcp_port)
        data = await asyncio.wait_for(reader.read(), 1.0)

        # verify,
        assert data == BusyProtocol.message
        assert data.decode('ascii').endswith('\r\n')
        assert len(manager.connections) == 2

        # a connection may be admitted once another has closed,
        clients[0][1].close()
        for _ in range(20):
            if len(manager.connections) < 2:
                break
            await asyncio.sleep(0.02)
        reader, writer = await asyncio.open_connection(
            bind_host, unused_tcp_port)
        data = await asyncio.wait_for(
            reader.readexactly(len(NEGOTIATION)), 1.0)
        assert data == NEGOTIATION
        for _, client_writer in clients[1:]:
            client_writer.close()
        writer.close()


@pytest.mark.asyncio
async def test_stop(bind_host, unused_tcp_port):
    """Stop sends TIMED_OUT to each connection and closes it."""
    # given,
    events = []
    async with serving(bind_host, unused_tcp_port) as manager:
        manager.add_listener(events.append)
        reader, writer = await asyncio.open_connection(
            bind_host, unused_tcp_port)
        await asyncio.wait_for(reader.readexactly(len(NEGOTIATION)), 1.0)
        connection, = manager.connections

        # exercise,
        await asyncio.wait_for(manager.stop(), 2.0)

        # verify,
        assert not manager.is_running
        assert manager.connections == []
        assert connection.state == State.CLOSED
        assert [event.kind for event in events] == [EventKind.TIMED_OUT]
        assert await asyncio.wait_for(reader.read(), 1.0) == b''
        assert isinstance(manager(), BusyProtocol)


@pytest.mark.asyncio
async def test_stop_forced(bind_host, unused_tcp_port):
    """Sessions ignoring close are aborted after disconnect_timeout."""
    # given,
    _waiter = asyncio.Future()

    async def stubborn(connection):
        _waiter.set_result(connection)
        while True:
            await asyncio.sleep(10)

    async with serving(bind_host, unused_tcp_port, session=stubborn,
                       disconnect_timeout=0.1) as manager:
        reader, writer = await asyncio.open_connection(
            bind_host, unused_tcp_port)
        connection = await asyncio.wait_for(_waiter, 1.0)

        # exercise,
        began = time.monotonic()
        await asyncio.wait_for(manager.stop(), 2.0)

        # verify,
        assert time.monotonic() - began < 1.5
        assert connection.state == State.CLOSED
        assert manager.connections == []
