import os
from typing import Generator

import pytest
import yaml

from tests.helpers import FakeTcpLinkConfig

from tcplink.bootstrap.config.settings import TcpLinkConfig


@pytest.fixture(scope="session")
def config_file(tmp_path_factory):
    base = tmp_path_factory.mktemp("config")
    file = base / "tcplink.yaml"

    data = {
        "server": {
            "host": "127.0.0.1",
            "port": 0,
            "backlog": 10,
            "timeout_graceful_shutdown": 1,
        },
        "connection": {
            "chunk_size": 1024,
        }
    }

    file.write_text(yaml.dump(data))
    return file


@pytest.fixture
def tcplink_config(config_file) -> Generator[TcpLinkConfig, None, None]:
    backup = os.environ.copy()

    try:
        os.environ["TEST_TCPLINKCONFIG"] = str(config_file)
        yield FakeTcpLinkConfig()
    finally:
        os.environ.clear()
        os.environ.update(backup)
