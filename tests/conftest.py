# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Shared fixtures and in-memory SSH fakes.

The fakes stand in for asyncssh objects at the seams RemoteConnection uses:
the connector (``asyncssh.connect``), the client connection
(``create_process``, ``open_connection``, ``close``) and the client process
(``stdin``, ``stdout``, ``change_terminal_size``). The fake shell echoes
whatever is written to it.
"""

import asyncio
import socket
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import yaml

from devbridge.host_config import GatewayConfig
from devbridge.ssh.connection import RemoteConnection, SSHSettings
from devbridge.ssh.registry import ConnectionRegistry


def free_port() -> int:
    """Return a currently unused localhost TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class FakeStdout:
    def __init__(self):
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()

    def feed(self, data: str) -> None:
        self._queue.put_nowait(data)

    def feed_eof(self) -> None:
        self._queue.put_nowait("")

    async def read(self, n: int = -1) -> str:
        return await self._queue.get()


class FakeStdin:
    def __init__(self, process: "FakeProcess"):
        self._process = process
        self.written: List[str] = []

    def write(self, data: str) -> None:
        if self._process.closed:
            raise BrokenPipeError("channel closed")
        self.written.append(data)
        self._process.stdout.feed(data)


class FakeProcess:
    """Echoing PTY process."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.stdout = FakeStdout()
        self.stdin = FakeStdin(self)
        self.closed = False
        self.sizes: List[tuple] = []

    def change_terminal_size(self, cols: int, rows: int) -> None:
        if self.closed:
            raise BrokenPipeError("channel closed")
        self.sizes.append((cols, rows))

    def remote_exit(self) -> None:
        """Simulate the remote shell exiting on its own."""
        self.closed = True
        self.stdout.feed_eof()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.stdout.feed_eof()


class FakeSSHConnection:
    def __init__(self, client: Any, options: Dict[str, Any]):
        self.client = client
        self.options = options
        self.processes: List[FakeProcess] = []
        self.closed = False
        self.fail_create_process: Optional[Exception] = None

    async def create_process(self, **kwargs) -> FakeProcess:
        if self.fail_create_process:
            raise self.fail_create_process
        process = FakeProcess(**kwargs)
        self.processes.append(process)
        return process

    async def open_connection(self, host: str, port: int):
        return await asyncio.open_connection(host, port)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.client.connection_lost(None)

    async def wait_closed(self) -> None:
        return None

    def drop(self, exc: Optional[Exception] = None) -> None:
        """Simulate the remote side going away."""
        self.closed = True
        self.client.connection_lost(exc or ConnectionResetError("Connection lost"))


class FakeConnector:
    """Callable replacing asyncssh.connect."""

    def __init__(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.connections: List[FakeSSHConnection] = []

    async def __call__(self, **options) -> FakeSSHConnection:
        self.calls.append(options)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        client = options["client_factory"]()
        conn = FakeSSHConnection(client, options)
        self.connections.append(conn)
        return conn

    @property
    def last(self) -> FakeSSHConnection:
        return self.connections[-1]


class RecordingClient:
    """Stand-in for a ClientSession that records outbound messages."""

    def __init__(self, client_id: str = "client-1", authenticated: bool = True):
        self.client_id = client_id
        self.authenticated = authenticated
        self.messages: List[Dict[str, Any]] = []
        self.touched = 0

    def touch(self) -> None:
        self.touched += 1

    async def send(self, message: Dict[str, Any]) -> bool:
        self.messages.append(message)
        return True

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m.get("type") == message_type]

    async def wait_for(self, message_type: str, count: int = 1, timeout: float = 2.0):
        """Wait until count messages of message_type arrived; return the last one."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            found = self.of_type(message_type)
            if len(found) >= count:
                return found[count - 1]
            await asyncio.sleep(0.01)
        raise AssertionError(f"No {message_type} message; got {[m['type'] for m in self.messages]}")


async def drain(queue: asyncio.Queue, timeout: float = 2.0) -> List[Optional[str]]:
    """Read items up to and including the None end marker."""
    items: List[Optional[str]] = []
    while True:
        item = await asyncio.wait_for(queue.get(), timeout)
        items.append(item)
        if item is None:
            return items


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def remote(connector):
    return RemoteConnection(SSHSettings(), connector=connector)


@pytest.fixture
async def connected(remote):
    ok, error = await remote.connect("example.com", 22, "dev", password="pw")
    assert ok, error
    return remote


@pytest.fixture
def registry(connector):
    return ConnectionRegistry(connection_factory=lambda: RemoteConnection(connector=connector))


@pytest.fixture
def make_config(tmp_path):
    """Write a config.yml and load it with an isolated environment."""

    def _make(data: Optional[Dict[str, Any]] = None, env: Optional[Dict[str, str]] = None) -> GatewayConfig:
        path = Path(tmp_path) / "config.yml"
        if data is not None:
            path.write_text(yaml.safe_dump(data))
        return GatewayConfig(path, env=env or {})

    return _make
