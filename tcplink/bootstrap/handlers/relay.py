import logging

from tcplink.core.ports.listener import ConnectionListener, ServerListener
from tcplink.core.transport.connection import Connection
from tcplink.core.transport.server import Server


class RelayListener(ServerListener):
    """
    Turns a Server into a broadcast relay: every chunk received from one
    client is sent, unchanged, to every live client including the sender.

    It attaches a ClientForwarder to each accepted connection from
    `connected`, before the connection starts receiving.
    """
    def __init__(self) -> None:
        self._logger = logging.getLogger("bootstrap.handlers.relay")

    async def started(self, server: Server) -> None:
        host, port = server.listen
        self._logger.info(f"Relay server started at {host}:{port}")

    async def connected(self, server: Server, connection: Connection) -> None:
        connection.add_listener(ClientForwarder(server))
        self._logger.info(
            f"Client connected from {connection.remote_address}, "
            f"{len(server.connections)} client(s) online"
        )

    async def handle_exception(self, server: Server, exc: Exception) -> None:
        self._logger.error(f"Relay server failed: {exc}", exc_info=exc)

    async def shutdown(self, server: Server) -> None:
        self._logger.info("Relay server stopped")


class ClientForwarder(ConnectionListener):
    def __init__(self, server: Server) -> None:
        self._server = server
        self._logger = logging.getLogger("bootstrap.handlers.relay")

    async def received_data(self, connection: Connection, data: bytes) -> None:
        await self._server.send_data(data)

    async def handle_exception(self, connection: Connection, exc: Exception) -> None:
        self._logger.warning(f"Client {connection.remote_address} failed: {exc}")

    async def shutdown(self, connection: Connection) -> None:
        self._logger.info(f"Client {connection.remote_address} disconnected")
