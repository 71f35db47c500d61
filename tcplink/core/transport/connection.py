import asyncio
import logging
import sys

from tcplink.core.helpers.registry import ListenerRegistry
from tcplink.core.helpers.spawn import TaskSpawner
from tcplink.core.helpers.utils import call_in_loop
from tcplink.core.models.config import ConnectionConfig, validate_port
from tcplink.core.models.state import LinkState
from tcplink.core.ports.listener import ConnectionListener
from tcplink.core.transport.addr import get_local_addr, get_remote_addr


class Connection:
    """
    Wraps one connected TCP stream and exposes it as a stream of events.

    The connection exclusively owns its StreamReader/StreamWriter pair. Once
    started, a dedicated receive loop task reads the stream and dispatches
    `started`, `received_data` and finally `shutdown` to the registered
    ConnectionListener instances. Sending is synchronous with respect to the
    caller: `send_data()` writes, drains, then dispatches `sent_data` on the
    caller's task.

    Received chunks are opaque: each one holds every byte the transport had
    buffered when the read completed, so a burst arriving at once is
    delivered as a single chunk. `ConnectionConfig.chunk_size` optionally
    caps the chunk size. No message boundaries are preserved or implied.

    Shutdown is terminal. `stop()` half-closes the stream and interrupts the
    pending read; the receive loop then runs its termination path exactly
    once, whatever caused it (local stop, end of stream, or transport error):
    dispatch `shutdown`, then close the writer. A connection can never be
    restarted.
    """
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: ConnectionConfig | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if reader is None:
            raise ValueError("reader must not be None")
        if writer is None:
            raise ValueError("writer must not be None")

        self._reader = reader
        self._writer = writer
        self._config = config or ConnectionConfig()
        self._loop = loop or asyncio.get_running_loop()
        self._spawner = TaskSpawner(loop=self._loop)
        self._listeners: ListenerRegistry[ConnectionListener] = ListenerRegistry()

        self._state = LinkState.created
        self._shutdown = False
        self._receive_task: asyncio.Task[None] | None = None
        self._release_task: asyncio.Task[None] | None = None
        self._pending_read: asyncio.Task[bytes] | None = None
        self._reported: BaseException | None = None
        self._terminated = asyncio.Event()

        self._remote = get_remote_addr(writer.transport)
        self._local = get_local_addr(writer.transport)
        self._logger = logging.getLogger("core.transport.connection")

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        config: ConnectionConfig | None = None,
    ) -> "Connection":
        """
        Dial `host:port` and wrap the new stream.

        Raises ValueError for a malformed address and ConnectionError when
        the peer cannot be reached.
        """
        if not host:
            raise ValueError("host must not be empty")
        validate_port(port)

        try:
            reader, writer = await asyncio.open_connection(host=host, port=port)
        except OSError as ex:
            raise ConnectionError(f"Unable to connect to {host}:{port}: {ex}") from ex

        return cls(reader, writer, config=config)

    def __repr__(self) -> str:
        remote = "%s:%d" % self._remote if self._remote else "?"
        return f"<Connection {remote} {self._state}>"

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    @property
    def local_port(self) -> int:
        return self._local[1] if self._local else 0

    @property
    def remote_port(self) -> int:
        return self._remote[1] if self._remote else 0

    @property
    def remote_address(self) -> tuple[str, int] | None:
        return self._remote

    def add_listener(self, listener: ConnectionListener) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: ConnectionListener) -> None:
        self._listeners.remove(listener)

    def start(self) -> None:
        """
        Start the receive loop on its own task.

        A connection can only be started once; any later call, including
        after a stop, raises RuntimeError.
        """
        if self._state is not LinkState.created or self._shutdown:
            raise RuntimeError(f"Connection can only be started once (state={self._state})")

        self._state = LinkState.running
        self._receive_task = self._spawner.spawn(
            self._receive_loop(),
            name=f"Receiver:{self.remote_port}"
        )
        self._logger.debug(f"{self!r} - Started")

    def stop(self) -> None:
        """
        Half-close the stream and interrupt the receive loop.

        Safe to call several times, from a listener callback, or from
        another thread. The `shutdown` event is dispatched later by the
        receive loop, not by this method. A connection that was never
        started has no receive loop: its stream is released in the
        background and `wait_closed()` returns once that is done.
        """
        if not self._shutdown:
            self._logger.debug(f"{self!r} - Stopping")

        # visible to every thread as soon as stop() returns
        self._shutdown = True
        call_in_loop(self._loop, self._stop)

    async def close(self) -> None:
        """
        Stop the connection and fully close the underlying stream.
        """
        self.stop()
        self._writer.close()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """
        Wait until the receive loop has terminated.

        Returns immediately when called from the receive loop itself, e.g.
        from a listener callback.
        """
        if asyncio.current_task() is self._receive_task:
            return
        await self._terminated.wait()

    async def send_data(self, data: bytes) -> None:
        """
        Write `data` to the peer and wait until it is flushed to the
        transport, then dispatch `sent_data`.

        Raises BrokenPipeError once the connection is shutting down, and
        propagates any transport error raised by the write.
        """
        if data is None:
            raise ValueError("data must not be None")
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"data must be bytes-like, got: {type(data).__name__}")
        if self._shutdown:
            raise BrokenPipeError(f"{self!r} is shut down")

        payload = bytes(data)
        self._writer.write(payload)
        await self._writer.drain()

        if not self._shutdown:
            await self._listeners.dispatch("sent_data", self, payload)

    async def fail(self, exc: Exception) -> None:
        """
        Report an error detected outside the receive loop, e.g. by a
        broadcast, to the listeners and stop the connection.
        """
        if self._shutdown:
            return

        self._reported = exc
        await self._listeners.dispatch("handle_exception", self, exc)
        self.stop()

    def _stop(self) -> None:
        self._shutdown = True
        if self._state in (LinkState.created, LinkState.running):
            self._state = LinkState.shutting_down

        if not self._writer.transport.is_closing() and self._writer.can_write_eof():
            try:
                self._writer.write_eof()
            except OSError as ex:
                self._logger.debug(f"{self!r} - Half-close failed: {ex}")

        if self._pending_read is not None:
            self._pending_read.cancel()

        if self._receive_task is None and self._release_task is None:
            # never started: nobody else will release the stream
            if self._loop.is_closed():
                self._writer.close()
            else:
                self._release_task = self._spawner.spawn(
                    self._release(),
                    name=f"Release:{self.remote_port}"
                )

    async def _release(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError as ex:
            self._logger.debug(f"{self!r} - Error while closing: {ex}")
        finally:
            self._state = LinkState.terminated
            self._terminated.set()

    async def _read(self) -> bytes:
        self._pending_read = self._loop.create_task(
            self._reader.read(self._config.chunk_size or sys.maxsize)
        )
        try:
            return await self._pending_read
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            # the read was interrupted by stop()
            return b""
        finally:
            self._pending_read = None

    async def _receive_loop(self) -> None:
        try:
            await self._listeners.dispatch("started", self)

            while not self._shutdown:
                data = await self._read()
                if not data:
                    self._logger.debug(f"{self!r} - End of stream")
                    break
                if self._shutdown:
                    break

                await self._listeners.dispatch("received_data", self, data)
        except OSError as ex:
            if not self._shutdown:
                self._logger.debug(f"{self!r} - Receive failed: {ex}")
                self._reported = ex
                await self._listeners.dispatch("handle_exception", self, ex)
        finally:
            await self._terminate()

    async def _terminate(self) -> None:
        self._shutdown = True
        self._state = LinkState.shutting_down
        await self._listeners.dispatch("shutdown", self)

        try:
            self._writer.close()
            await self._writer.wait_closed()
        except OSError as ex:
            if ex is not self._reported:
                await self._listeners.dispatch("handle_exception", self, ex)
        finally:
            self._state = LinkState.terminated
            self._terminated.set()
            self._logger.debug(f"{self!r} - Terminated")
