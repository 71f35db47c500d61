from dataclasses import dataclass, field

MAX_PORT = 0xFFFF


def validate_port(port: int) -> int:
    if not isinstance(port, int) or isinstance(port, bool) or not 0 <= port <= MAX_PORT:
        raise ValueError(f"Port must be between 0 and {MAX_PORT}, got: {port!r}")
    return port


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Static configuration of a Connection.
    """
    chunk_size: int | None = None
    """
    Optional cap on the number of bytes delivered by a single
    `received_data` event. None delivers every byte already buffered when
    the read completes as one chunk.
    """

    def __post_init__(self) -> None:
        if self.chunk_size is not None and self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got: {self.chunk_size}")


@dataclass(frozen=True)
class ServerConfig:
    """
    Static configuration for a Server, fixed at construction.

    No socket is opened until the server is started.
    """
    port: int
    """
    TCP port to bind, between 0 and 65535. If set to 0, the OS selects an
    available port.
    """

    backlog: int = 0
    """
    Maximum number of pending TCP connections waiting for accept().
    A value less than or equal to 0 selects the platform default.
    """

    bind_address: str | None = None
    """
    Local address the server binds to. None accepts connections on any/all
    local addresses.
    """

    timeout_graceful_shutdown: float = 5.0
    """
    Maximum time (in seconds) `Server.shutdown()` waits for the accept loop
    and the child connections to terminate.
    """

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    """
    Configuration applied to every accepted connection.
    """

    def __post_init__(self) -> None:
        validate_port(self.port)
        if self.timeout_graceful_shutdown <= 0:
            raise ValueError("timeout_graceful_shutdown must be > 0")
