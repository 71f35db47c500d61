import asyncio
from typing import Any


def get_remote_addr(transport: asyncio.BaseTransport) -> tuple[str, int] | None:
    """
    Return the (host, port) of the peer, or None when it cannot be resolved.
    """
    info = None
    sock = transport.get_extra_info("socket")
    if sock is not None:
        try:
            info = sock.getpeername()
        except OSError:
            info = None

    if info is None:
        info = transport.get_extra_info("peername")

    return _as_addr(info)


def get_local_addr(transport: asyncio.BaseTransport) -> tuple[str, int] | None:
    """
    Return the local (host, port) of the transport, or None when unknown.
    """
    info = None
    sock = transport.get_extra_info("socket")
    if sock is not None:
        try:
            info = sock.getsockname()
        except OSError:
            info = None

    if info is None:
        info = transport.get_extra_info("sockname")

    return _as_addr(info)


def _as_addr(info: Any) -> tuple[str, int] | None:
    # IPv6 addresses come as (host, port, flowinfo, scope_id)
    if isinstance(info, (tuple, list)) and len(info) >= 2:
        host, port = info[0], info[1]
        if isinstance(host, str) and isinstance(port, int):
            return host, port
    return None
