import asyncio
import logging
import socket
import threading
from collections.abc import Callable

from tcplink.core.helpers.registry import ListenerRegistry
from tcplink.core.helpers.spawn import TaskSpawner
from tcplink.core.helpers.utils import call_in_loop
from tcplink.core.models.config import ServerConfig
from tcplink.core.models.state import LinkState
from tcplink.core.ports.listener import ConnectionListener, ServerListener
from tcplink.core.transport.connection import Connection


class Server:
    """
    Owns the lifecycle of a listening TCP socket and of every Connection
    created for the clients it accepts.

    Once started, a dedicated accept loop task waits for clients. Each
    accepted socket is wrapped in a Connection, registered in the server's
    live-connection set, announced to the ServerListener instances through
    `connected`, and only then started. Listeners therefore always see a new
    connection before it can receive anything, and can attach their own
    ConnectionListener without racing the first inbound bytes.

    The live-connection set only holds open connections: the server watches
    every child through a private listener and drops it as soon as it
    signals `shutdown`. Callers only ever get a read-only snapshot of it.

    `stop()` cancels the pending accept, stops every live connection and
    clears the set. The accept loop then closes the listening socket and
    dispatches `shutdown` exactly once. A server can be started only once.
    """
    def __init__(
        self,
        config: ServerConfig,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._listeners: ListenerRegistry[ServerListener] = ListenerRegistry()
        self._connections: set[Connection] = set()
        self._connections_lock = threading.Lock()
        self._tracker = _ConnectionTracker(self._discard)

        self._state = LinkState.created
        self._shutdown = False
        self._socket: socket.socket | None = None
        self._listen: tuple[str, int] | None = None
        self._spawner: TaskSpawner | None = None
        self._accept_task: asyncio.Task[None] | None = None
        self._pending_accept: asyncio.Task[tuple[socket.socket, object]] | None = None
        self._terminated = asyncio.Event()

        self._logger = logging.getLogger("core.transport.server")

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    @property
    def port(self) -> int:
        """
        The bound local port once started, the requested port otherwise.
        """
        return self._listen[1] if self._listen else self._config.port

    @property
    def listen(self) -> tuple[str, int] | None:
        return self._listen

    @property
    def connections(self) -> frozenset[Connection]:
        with self._connections_lock:
            return frozenset(self._connections)

    def add_listener(self, listener: ServerListener) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: ServerListener) -> None:
        self._listeners.remove(listener)

    async def start(self) -> None:
        """
        Bind the listening socket and spawn the accept loop.

        Raises RuntimeError when the server was already started or stopped,
        and propagates OSError when the socket cannot be bound.
        """
        if self._state is not LinkState.created or self._shutdown:
            raise RuntimeError(f"Server can only be started once (state={self._state})")

        self._state = LinkState.running
        self._loop = self._loop or asyncio.get_running_loop()

        try:
            self._socket = await self._create_socket()
        except OSError as ex:
            self._logger.error(
                f"Failed to bind to {self._config.bind_address or '*'}:{self._config.port}: {ex}"
            )
            self._shutdown = True
            self._state = LinkState.terminated
            self._terminated.set()
            raise

        self._listen = self._socket.getsockname()[:2]
        self._spawner = TaskSpawner(loop=self._loop)
        self._accept_task = self._spawner.spawn(
            self._accept_loop(),
            name=f"Acceptor:{self._config.port}"
        )
        host, port = self._listen
        self._logger.info(f"Server listening on {host}:{port}")

    def stop(self) -> None:
        """
        Stop accepting clients and stop every live connection.

        Idempotent, and safe to call from a listener callback or from
        another thread.
        """
        if not self._shutdown:
            self._logger.info("Shutting down server.")

        # visible to every thread as soon as stop() returns
        self._shutdown = True
        if self._loop is None:
            self._stop()
        else:
            call_in_loop(self._loop, self._stop)

    async def shutdown(self) -> None:
        """
        Stop the server and wait for the accept loop and the stopped
        connections to terminate, up to `timeout_graceful_shutdown`.
        """
        connections = self.connections
        self.stop()

        waiters = [connection.wait_closed() for connection in connections]
        waiters.append(self.wait_closed())

        try:
            await asyncio.wait_for(
                asyncio.gather(*waiters),
                timeout=self._config.timeout_graceful_shutdown
            )
        except asyncio.TimeoutError:
            self._logger.error(
                f"Timeout graceful shutdown exceeded, "
                f"{sum(c.state is not LinkState.terminated for c in connections)} "
                f"connection(s) still closing"
            )

    async def wait_closed(self) -> None:
        """
        Wait until the accept loop has terminated.

        Returns immediately when called from the accept loop itself.
        """
        if self._accept_task is not None and asyncio.current_task() is self._accept_task:
            return
        await self._terminated.wait()

    async def send_data(self, data: bytes) -> None:
        """
        Broadcast `data` to a snapshot of the live connections.

        A connection failing during the broadcast is reported to its own
        listeners and stopped; the broadcast carries on with the others.
        """
        if data is None:
            raise ValueError("data must not be None")
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"data must be bytes-like, got: {type(data).__name__}")
        if self._accept_task is None:
            raise RuntimeError("Server is not running")

        for connection in self.connections:
            if connection.is_shutdown:
                continue

            try:
                await connection.send_data(data)
            except OSError as ex:
                if connection.is_shutdown:
                    self._logger.debug(f"{connection!r} closed during broadcast: {ex}")
                    continue

                self._logger.warning(f"Broadcast to {connection!r} failed: {ex}")
                await connection.fail(ex)

    async def _create_socket(self) -> socket.socket:
        config = self._config
        infos = await self._loop.getaddrinfo(
            config.bind_address,
            config.port,
            type=socket.SOCK_STREAM,
            flags=socket.AI_PASSIVE,
        )
        family, type_, proto, _, address = infos[0]

        sock = socket.socket(family, type_, proto)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(address)
            sock.listen(config.backlog if config.backlog > 0 else socket.SOMAXCONN)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        return sock

    def _stop(self) -> None:
        self._shutdown = True
        if self._state is LinkState.created:
            # nothing to release, the accept loop never ran
            self._state = LinkState.terminated
            self._terminated.set()
        elif self._state is LinkState.running:
            self._state = LinkState.shutting_down

        if self._pending_accept is not None:
            self._pending_accept.cancel()

        with self._connections_lock:
            connections = list(self._connections)
            self._connections.clear()

        for connection in connections:
            connection.stop()

    def _discard(self, connection: Connection) -> None:
        with self._connections_lock:
            self._connections.discard(connection)

    async def _accept(self) -> socket.socket | None:
        self._pending_accept = self._loop.create_task(
            self._loop.sock_accept(self._socket)
        )
        try:
            client, _ = await self._pending_accept
            return client
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            # the accept was interrupted by stop()
            return None
        finally:
            self._pending_accept = None

    async def _accept_loop(self) -> None:
        try:
            await self._listeners.dispatch("started", self)

            while not self._shutdown:
                client = await self._accept()
                if client is None:
                    break

                await self._handle_client(client)
        except OSError as ex:
            if not self._shutdown:
                self._logger.error(f"Accept error: {ex}")
                await self._listeners.dispatch("handle_exception", self, ex)
        finally:
            await self._terminate()

    async def _handle_client(self, client: socket.socket) -> None:
        try:
            reader, writer = await asyncio.open_connection(sock=client)
        except OSError as ex:
            self._logger.warning(f"Unable to set up accepted client: {ex}")
            client.close()
            return

        connection = Connection(
            reader,
            writer,
            config=self._config.connection,
            loop=self._loop
        )
        with self._connections_lock:
            self._connections.add(connection)
        connection.add_listener(self._tracker)
        self._logger.debug(f"{connection!r} - Connection accepted")

        await self._listeners.dispatch("connected", self, connection)

        if connection.state is LinkState.created and not self._shutdown:
            connection.start()
        else:
            # stopped by a listener while being announced
            self._discard(connection)
            await connection.close()

    async def _terminate(self) -> None:
        self._shutdown = True
        self._state = LinkState.shutting_down

        if self._socket is not None:
            self._socket.close()

        await self._listeners.dispatch("shutdown", self)

        self._state = LinkState.terminated
        self._terminated.set()
        self._logger.info("Server stopped")


class _ConnectionTracker(ConnectionListener):
    """Keeps the live-connection set in sync with child shutdowns."""

    def __init__(self, discard: Callable[[Connection], None]) -> None:
        self._discard = discard

    async def shutdown(self, connection: Connection) -> None:
        self._discard(connection)
