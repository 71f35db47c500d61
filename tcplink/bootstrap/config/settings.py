from typing import Annotated

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource, YamlConfigSettingsSource

from tcplink.bootstrap.config.loader import get_configfile
from tcplink.core.models.config import MAX_PORT, ConnectionConfig, ServerConfig


class ServerSettings(BaseModel):
    host: Annotated[
        str | None,
        Field(
            description=(
                "Local address the server binds to.\n"
                "Leave empty (null) to accept connections on all local addresses."
            ),
            default="127.0.0.1"
        )
    ]

    port: Annotated[
        int,
        Field(
            description="TCP port to listen on. 0 lets the OS pick a free port.",
            default=7000
        )
    ]

    backlog: Annotated[
        int,
        Field(
            description=(
                "Maximum number of pending TCP connections.\n"
                "A value <= 0 selects the platform default."
            ),
            default=0
        )
    ]

    timeout_graceful_shutdown: Annotated[
        float,
        Field(
            description="Maximum time allowed for graceful shutdown.",
            default=5.0,
            gt=0
        )
    ]

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 <= v <= MAX_PORT:
            raise ValueError(f"port must be between 0 and {MAX_PORT}")
        return v


class ConnectionSettings(BaseModel):
    chunk_size: Annotated[
        int | None,
        Field(
            description=(
                "Optional cap in bytes on a single received chunk.\n"
                "Leave empty (null) to deliver every byte already buffered as one chunk."
            ),
            default=None,
            gt=0
        )
    ]


class TcpLinkConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TCPLINK_",
        env_nested_delimiter="__",
        extra="ignore"
    )

    server: Annotated[
        ServerSettings,
        Field(
            description=(
                "Listening socket configuration.\n"
                "Controls where the server accepts TCP clients and how long\n"
                "a graceful shutdown may take."
            ),
            default_factory=ServerSettings
        )
    ]

    connection: Annotated[
        ConnectionSettings,
        Field(
            description="Per-connection I/O configuration.",
            default_factory=ConnectionSettings
        )
    ]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        configfile = get_configfile()
        if configfile is None:
            return init_settings, env_settings
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=configfile),
        )

    def to_server_config(self) -> ServerConfig:
        server = self.server
        return ServerConfig(
            port=server.port,
            backlog=server.backlog,
            bind_address=server.host or None,
            timeout_graceful_shutdown=server.timeout_graceful_shutdown,
            connection=ConnectionConfig(chunk_size=self.connection.chunk_size),
        )
