from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tcplink.core.transport.connection import Connection
    from tcplink.core.transport.server import Server


class ConnectionListener:
    """
    Observer of the lifecycle and data events of a single Connection.

    Every callback is a coroutine awaited on the task that produced the event:
    `started`, `received_data` and `shutdown` run on the connection's receive
    loop, while `sent_data` runs on the task that called `send_data()`. Events
    coming from the receive loop are delivered strictly one after the other.

    All methods are no-ops, so an observer subclasses this class and overrides
    only the events it cares about. A listener may add or remove listeners,
    including itself, from inside a callback; the change applies from the next
    event on.
    """

    async def started(self, connection: "Connection") -> None:
        """The receive loop is running; no data has been read yet."""

    async def sent_data(self, connection: "Connection", data: bytes) -> None:
        """`data` has been fully written to the transport."""

    async def received_data(self, connection: "Connection", data: bytes) -> None:
        """
        A chunk of bytes was read from the peer.

        Chunk boundaries follow the transport's buffering and timing, not the
        boundaries of the peer's writes.
        """

    async def shutdown(self, connection: "Connection") -> None:
        """The receive loop terminated. Dispatched exactly once."""

    async def handle_exception(self, connection: "Connection", exc: Exception) -> None:
        """
        A transport error occurred in the connection.

        `shutdown` is always dispatched after this event for the same
        termination.
        """


class ServerListener:
    """
    Observer of the lifecycle events of a Server.

    Callbacks are coroutines awaited sequentially on the server's accept loop.
    As with ConnectionListener, every method is a no-op by default.
    """

    async def started(self, server: "Server") -> None:
        """The server is listening; no client has been accepted yet."""

    async def connected(self, server: "Server", connection: "Connection") -> None:
        """
        A client was accepted.

        The connection is already part of `server.connections` but it is not
        started yet: it is started once all listeners have returned, so a
        listener attached here never misses the first received bytes.
        """

    async def handle_exception(self, server: "Server", exc: Exception) -> None:
        """
        The accept loop failed. `shutdown` will follow.
        """

    async def shutdown(self, server: "Server") -> None:
        """The server stopped accepting connections. Dispatched exactly once."""
