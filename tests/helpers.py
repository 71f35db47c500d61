import asyncio
import os
import socket
from collections.abc import Callable

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, YamlConfigSettingsSource

from tcplink.bootstrap.config.settings import TcpLinkConfig
from tcplink.core.ports.listener import ConnectionListener, ServerListener


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


def free_port() -> int:
    """Return a port nobody listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class ConnectionRecorder(ConnectionListener):
    def __init__(self) -> None:
        self.events: list[str] = []
        self.received: list[bytes] = []
        self.sent: list[bytes] = []
        self.exceptions: list[Exception] = []

    @property
    def was_started(self) -> bool:
        return "started" in self.events

    @property
    def shutdowns(self) -> int:
        return self.events.count("shutdown")

    @property
    def received_bytes(self) -> bytes:
        return b"".join(self.received)

    async def started(self, connection) -> None:
        self.events.append("started")

    async def sent_data(self, connection, data: bytes) -> None:
        self.events.append("sent_data")
        self.sent.append(data)

    async def received_data(self, connection, data: bytes) -> None:
        self.events.append("received_data")
        self.received.append(data)

    async def shutdown(self, connection) -> None:
        self.events.append("shutdown")

    async def handle_exception(self, connection, exc: Exception) -> None:
        self.events.append("handle_exception")
        self.exceptions.append(exc)


class ServerRecorder(ServerListener):
    def __init__(self) -> None:
        self.events: list[str] = []
        self.connections: list = []
        self.exceptions: list[Exception] = []

    @property
    def was_started(self) -> bool:
        return "started" in self.events

    @property
    def shutdowns(self) -> int:
        return self.events.count("shutdown")

    async def started(self, server) -> None:
        self.events.append("started")

    async def connected(self, server, connection) -> None:
        self.events.append("connected")
        self.connections.append(connection)

    async def handle_exception(self, server, exc: Exception) -> None:
        self.events.append("handle_exception")
        self.exceptions.append(exc)

    async def shutdown(self, server) -> None:
        self.events.append("shutdown")


class PeerServer:
    """
    Plain asyncio TCP server playing the remote end of a Connection.
    """
    def __init__(self) -> None:
        self._server: asyncio.AbstractServer | None = None
        self._accepted: asyncio.Queue[tuple[asyncio.StreamReader, asyncio.StreamWriter]] = asyncio.Queue()
        self._writers: list[asyncio.StreamWriter] = []
        self.port = 0

    async def __aenter__(self) -> "PeerServer":
        self._server = await asyncio.start_server(self._on_client, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc_info) -> None:
        for writer in self._writers:
            writer.close()
        self._server.close()

    async def _on_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.append(writer)
        self._accepted.put_nowait((reader, writer))

    async def accept(self, timeout: float = 2.0) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await asyncio.wait_for(self._accepted.get(), timeout)


class FakeTcpLinkConfig(TcpLinkConfig):
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=os.environ["TEST_TCPLINKCONFIG"]),
        )
