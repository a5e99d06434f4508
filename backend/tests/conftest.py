import socket

import pytest
from aiohttp.test_utils import TestServer


def unused_port() -> int:
    """A localhost TCP port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
async def http_server():
    """Factory starting aiohttp applications on 127.0.0.1."""
    servers = []

    async def start(app):
        server = TestServer(app, host="127.0.0.1")
        await server.start_server()
        servers.append(server)
        return server

    yield start

    for server in servers:
        await server.close()
