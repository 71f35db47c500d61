import argparse
import os
from functools import lru_cache
from pathlib import Path

CONFIG_ENV = "TCPLINKCONFIG"
DEFAULT_CONFIG_FILE = "tcplink.yaml"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcplink",
        description=(
            "Start a tcplink relay server.\n\n"
            "Every chunk of bytes received from a client is broadcast, "
            "as is, to all connected clients."
        ),
        formatter_class=argparse.RawTextHelpFormatter
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        help="Path to a tcplink configuration file"
    )

    parser.add_argument(
        "-H", "--host",
        type=str,
        help="Bind address, overrides server.host"
    )

    parser.add_argument(
        "-p", "--port",
        type=int,
        help="TCP port to listen on, overrides server.port (0 picks a free port)"
    )

    parser.add_argument(
        "-l", "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=(
            "Logging verbosity.\n"
            "Choose among: DEBUG, INFO, WARNING, ERROR, CRITICAL.\n\n"
            "DEBUG    → every connection lifecycle transition.\n"
            "INFO     → server start/stop and client connections (default).\n"
            "WARNING  → only warnings and errors.\n"
            "ERROR    → only errors.\n"
            "CRITICAL → only critical failures.\n\n"
            "Example:\n"
            "  --log-level DEBUG"
        ),
    )

    return parser


@lru_cache
def get_cli_args() -> argparse.Namespace:
    return build_parser().parse_args()


def resolve_configfile(raw: str | None) -> Path | None:
    """
    Resolve the configuration file to load.

    Priority: explicit path > TCPLINKCONFIG environment variable > default
    file in the current working directory. An explicitly requested file must
    exist; the default file is optional.
    """
    raw = raw or os.getenv(CONFIG_ENV)

    if raw is None:
        file = Path.cwd() / DEFAULT_CONFIG_FILE
        return file if file.is_file() else None

    file = Path(raw)
    if not file.is_file():
        raise SystemExit(
            f"[config] Configuration file not found: '{file}'.\n"
            "  - Use --config <file.yaml>\n"
            f"  - Or set the {CONFIG_ENV} environment variable\n"
            f"  - Or place a '{DEFAULT_CONFIG_FILE}' file in the current working directory."
        )

    return file


@lru_cache
def get_configfile() -> Path | None:
    return resolve_configfile(get_cli_args().config)
