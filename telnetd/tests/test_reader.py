"""Test the input stream of a connection, :class:`TelnetReader`."""
# std imports
import asyncio

# local imports
from telnetd.stream_reader import TelnetReader

# 3rd party
import pytest


@pytest.mark.asyncio
async def test_read_byte():
    """read_byte returns byte values, then -1 at end of stream."""
    reader = TelnetReader()
    reader.feed_data(b'\x00\xff')
    reader.feed_eof()

    assert await reader.read_byte() == 0
    assert await reader.read_byte() == 255
    assert await reader.read_byte() == -1
    assert await reader.read_byte() == -1


@pytest.mark.asyncio
async def test_read_byte_blocks():
    """read_byte blocks until data is fed."""
    # given,
    reader = TelnetReader()
    task = asyncio.ensure_future(reader.read_byte())
    await asyncio.sleep(0)
    assert not task.done()

    # exercise,
    reader.feed_data(b'A')

    # verify,
    assert await asyncio.wait_for(task, 0.5) == 0x41


@pytest.mark.asyncio
async def test_read_byte_unblocked_by_eof():
    reader = TelnetReader()
    task = asyncio.ensure_future(reader.read_byte())
    await asyncio.sleep(0)
    reader.feed_eof()
    assert await asyncio.wait_for(task, 0.5) == -1


@pytest.mark.asyncio
async def test_readinto():
    """readinto returns at least 1 and at most length, without filling."""
    # given,
    reader = TelnetReader()
    reader.feed_data(b'abc')
    buf = bytearray(b'........')

    # exercise,
    num = await reader.readinto(buf, 2, 5)

    # verify, only what is available is read,
    assert num == 3
    assert buf == bytearray(b'..abc...')

    reader.feed_data(b'0123456789')
    assert await reader.readinto(buf, 0, 4) == 4
    assert buf == bytearray(b'0123c...')
    assert await reader.readinto(buf) == 6
    assert buf == bytearray(b'456789..')


@pytest.mark.asyncio
async def test_readinto_eof():
    reader = TelnetReader()
    reader.feed_eof()
    assert await reader.readinto(bytearray(4)) == -1


@pytest.mark.asyncio
async def test_readinto_zero_length():
    reader = TelnetReader()
    assert await reader.readinto(bytearray(4), 4, 0) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize('offset, length', [(-1, 1), (0, 5), (3, 2), (0, -1)])
async def test_readinto_bad_range(offset, length):
    reader = TelnetReader()
    reader.feed_data(b'data')
    with pytest.raises(ValueError):
        await reader.readinto(bytearray(4), offset, length)


@pytest.mark.asyncio
async def test_read():
    reader = TelnetReader()
    reader.feed_data(b'hello world')
    assert await reader.read(5) == b'hello'
    assert await reader.read(0) == b''
    reader.feed_eof()
    assert await reader.read() == b' world'
    assert await reader.read(1) == b''


@pytest.mark.asyncio
async def test_readline():
    """readline returns each LF-terminated line, a partial line at EOF."""
    reader = TelnetReader()
    reader.feed_data(b'one\ntwo\nthr')
    reader.feed_data(b'ee')
    reader.feed_eof()

    assert await reader.readline() == b'one\n'
    assert await reader.readline() == b'two\n'
    assert await reader.readline() == b'three'
    assert await reader.readline() == b''


@pytest.mark.asyncio
async def test_readline_limit():
    reader = TelnetReader(limit=4)
    reader.feed_data(b'0123456789')
    with pytest.raises(ValueError):
        await reader.readline()


@pytest.mark.asyncio
async def test_async_iteration():
    reader = TelnetReader()
    reader.feed_data(b'a\nb\n')
    reader.feed_eof()
    assert [line async for line in reader] == [b'a\n', b'b\n']


@pytest.mark.asyncio
async def test_activity():
    """Each read operation is reported as activity."""
    touched = []
    reader = TelnetReader(on_activity=lambda: touched.append(True))
    reader.feed_data(b'xy')
    await reader.read_byte()
    await reader.readinto(bytearray(1))
    assert len(touched) == 2


@pytest.mark.asyncio
async def test_exception():
    """An exception set on the reader is raised by readers."""
    reader = TelnetReader()
    task = asyncio.ensure_future(reader.read_byte())
    await asyncio.sleep(0)
    reader.set_exception(ConnectionResetError('gone'))
    with pytest.raises(ConnectionResetError):
        await asyncio.wait_for(task, 0.5)
    assert isinstance(reader.exception(), ConnectionResetError)


@pytest.mark.asyncio
async def test_feed_after_eof():
    reader = TelnetReader()
    reader.feed_eof()
    reader.feed_data(b'late')
    assert reader.at_eof()
    assert await reader.read() == b''


@pytest.mark.asyncio
async def test_concurrent_readers():
    reader = TelnetReader()
    task = asyncio.ensure_future(reader.read_byte())
    await asyncio.sleep(0)
    with pytest.raises(RuntimeError):
        await reader.read_byte()
    reader.feed_eof()
    await task


def test_bad_limit():
    with pytest.raises(ValueError):
        TelnetReader(limit=0)
