import json
from functools import lru_cache

from pydantic import ValidationError

from tcplink.bootstrap.config.loader import get_cli_args
from tcplink.bootstrap.config.settings import TcpLinkConfig
from tcplink.bootstrap.handlers.relay import RelayListener
from tcplink.core.transport.server import Server


@lru_cache
def get_server() -> Server:
    config = get_config()
    server = Server(config=config.to_server_config())
    server.add_listener(get_relay())
    return server


@lru_cache
def get_relay() -> RelayListener:
    return RelayListener()


@lru_cache
def get_config() -> TcpLinkConfig:
    cli = get_cli_args()
    overrides: dict = {}
    if cli.host is not None:
        overrides["host"] = cli.host
    if cli.port is not None:
        overrides["port"] = cli.port

    try:
        return TcpLinkConfig(server=overrides) if overrides else TcpLinkConfig()
    except ValidationError as ex:
        msg = ["Configuration validation failed:"]
        errs = json.loads(ex.json())
        for err in errs:
            msg.append(f"  {'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}")
        raise SystemExit("\n".join(msg))
