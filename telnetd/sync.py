r"""
Synchronous (blocking) interface for telnetd.

The asyncio event loop runs in a background thread, and blocking methods
wait on thread-safe futures.  For hosts that are not asyncio programs,
such as an administrative console::

    from telnetd.sync import BlockingTelnetd

    daemon = BlockingTelnetd()
    daemon.start('127.0.0.1', 2019)
    print(daemon.status())
    daemon.stop()
"""

# std imports
import asyncio
import concurrent.futures
import threading
from typing import Any, Optional

# local
from .daemon import CONFIG, DaemonState, Status, Telnetd

__all__ = ('BlockingTelnetd',)


class BlockingTelnetd:
    """
    Blocking telnet daemon controller.

    Wraps :class:`~telnetd.daemon.Telnetd`, keyword arguments are given to
    its class initializer.

    :param timeout: Timeout of start and stop in seconds, ``None`` waits
        forever.
    """

    def __init__(self, timeout: Optional[float] = None, **kwargs: Any):
        """Initialize daemon parameters without starting."""
        self._timeout = timeout
        self._daemon: Optional[Telnetd] = None
        self._kwargs = kwargs
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _run_loop(self) -> None:
        """Run event loop in background thread."""
        assert self._loop is not None
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(target=self._run_loop,
                                            name='telnetd', daemon=True)
            self._thread.start()
        return self._loop

    def _call(self, coro_fn, *args, **kwargs) -> Any:
        loop = self._ensure_loop()

        async def _wrapper():
            # Telnetd is created on the loop thread, its futures belong to it.
            if self._daemon is None:
                self._daemon = Telnetd(**self._kwargs)
            return await coro_fn(self._daemon, *args, **kwargs)

        future = asyncio.run_coroutine_threadsafe(_wrapper(), loop)
        try:
            return future.result(timeout=self._timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise TimeoutError('{0} timed out'.format(coro_fn.__name__)) \
                from exc

    def start(self, ip: str = CONFIG.host, port: int = CONFIG.port,
              **kwargs: Any) -> None:
        """
        Start serving on ``(ip, port)``, blocking until bound.

        Keyword arguments change configuration, as
        :meth:`~telnetd.daemon.Telnetd.configure`.

        :raises AlreadyRunning: If already running.
        :raises BindFailed: If the address cannot be bound.
        """
        with self._lock:
            self._call(Telnetd.start, ip, port, **kwargs)

    def stop(self) -> None:
        """
        Stop serving, blocking until all connections are closed.

        :raises NotRunning: If not running.
        """
        with self._lock:
            self._call(Telnetd.stop)

    def status(self) -> Status:
        """Return current :class:`~telnetd.daemon.Status`."""
        if self._daemon is None:
            return Status(DaemonState.NOT_RUNNING, None, None)
        return self._daemon.status()

    def close(self) -> None:
        """Stop if running, then stop the event loop thread."""
        if self._daemon is not None and self._daemon.is_running:
            self.stop()
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        if self._loop is not None and not self._loop.is_closed():
            self._loop.close()
        self._loop = self._thread = None

    def __enter__(self) -> 'BlockingTelnetd':
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
