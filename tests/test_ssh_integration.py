# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""RemoteConnection against a real in-process asyncssh server.

The server accepts password "secret" or the test client key, allows
direct-tcpip channels and runs a tiny line shell:

    term=<type> size=<cols>x<rows>     on start
    out:<line>                         for every input line
    resized=<cols>x<rows>              on window change
    "exit" ends the shell
"""

import asyncio
from typing import List

import asyncssh
import pytest

from devbridge.ssh.connection import RemoteConnection, SSHSettings
from tests.conftest import free_port

pytestmark = pytest.mark.integration

CLIENT_KEY = asyncssh.generate_private_key("ssh-ed25519")


async def _shell(process: asyncssh.SSHServerProcess) -> None:
    width, height, _, _ = process.get_terminal_size()
    process.stdout.write(f"term={process.get_terminal_type()} size={width}x{height}\n")
    while True:
        try:
            line = await process.stdin.readline()
        except asyncssh.TerminalSizeChanged as exc:
            process.stdout.write(f"resized={exc.width}x{exc.height}\n")
            continue
        if not line:
            break
        line = line.rstrip("\r\n")
        if line == "exit":
            break
        process.stdout.write(f"out:{line}\n")
    process.exit(0)


class _Server(asyncssh.SSHServer):
    def __init__(self, connections: List[asyncssh.SSHServerConnection]):
        self._connections = connections

    def connection_made(self, conn: asyncssh.SSHServerConnection) -> None:
        self._connections.append(conn)

    def begin_auth(self, username: str) -> bool:
        return True

    def password_auth_supported(self) -> bool:
        return True

    def validate_password(self, username: str, password: str) -> bool:
        return password == "secret"

    def public_key_auth_supported(self) -> bool:
        return True

    def validate_public_key(self, username: str, key: asyncssh.SSHKey) -> bool:
        return key.export_public_key() == CLIENT_KEY.export_public_key()

    def connection_requested(self, dest_host, dest_port, orig_host, orig_port):
        return True


class SSHTestServer:
    def __init__(self):
        self.connections: List[asyncssh.SSHServerConnection] = []
        self._acceptor = None
        self.port = 0

    async def start(self) -> None:
        self._acceptor = await asyncssh.listen(
            "127.0.0.1",
            0,
            server_host_keys=[asyncssh.generate_private_key("ssh-ed25519")],
            server_factory=lambda: _Server(self.connections),
            process_factory=_shell,
            line_editor=False,
        )
        self.port = self._acceptor.get_port()

    async def stop(self) -> None:
        self._acceptor.close()
        await self._acceptor.wait_closed()

    def drop_all(self) -> None:
        for conn in self.connections:
            conn.abort()


@pytest.fixture
async def ssh_server():
    server = SSHTestServer()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
async def live(ssh_server):
    """RemoteConnection logged in with a password."""
    connection = RemoteConnection(SSHSettings(connect_timeout=5))
    ok, error = await connection.connect("127.0.0.1", ssh_server.port, "dev", password="secret")
    assert ok, error
    yield connection
    await connection.disconnect()


async def _read_until(queue: asyncio.Queue, needle: str, timeout: float = 5.0) -> str:
    """Collect output chunks until needle appears."""
    buffer = ""

    async def _collect():
        nonlocal buffer
        while needle not in buffer:
            chunk = await queue.get()
            if chunk is None:
                raise AssertionError(f"Shell ended before {needle!r}; got {buffer!r}")
            buffer += chunk

    await asyncio.wait_for(_collect(), timeout)
    return buffer


async def _echo(reader, writer):
    data = await reader.read(1024)
    writer.write(data.upper())
    await writer.drain()
    writer.close()


class TestRealServer:
    """Test the connection lifecycle over real SSH"""

    async def test_wrong_password(self, ssh_server):
        """Test failed authentication is reported"""
        connection = RemoteConnection(SSHSettings(connect_timeout=5))

        ok, error = await connection.connect("127.0.0.1", ssh_server.port, "dev", password="wrong")

        assert ok is False
        assert error
        assert connection.is_connected() is False

    async def test_private_key_login(self, ssh_server):
        """Test key-based login with an exported PEM key"""
        connection = RemoteConnection(SSHSettings(connect_timeout=5))
        pem = CLIENT_KEY.export_private_key().decode()

        ok, error = await connection.connect("127.0.0.1", ssh_server.port, "dev", private_key=pem)

        assert ok, error
        await connection.disconnect()

    async def test_encrypted_private_key(self, ssh_server):
        """Test a passphrase-protected key is decrypted"""
        connection = RemoteConnection(SSHSettings(connect_timeout=5))
        pem = CLIENT_KEY.export_private_key("pkcs8-pem", passphrase="hunter2").decode()

        ok, error = await connection.connect(
            "127.0.0.1", ssh_server.port, "dev", private_key=pem, passphrase="hunter2"
        )

        assert ok, error
        await connection.disconnect()

    async def test_refused_port(self):
        """Test connecting to a closed port fails quickly"""
        connection = RemoteConnection(SSHSettings(connect_timeout=5))

        ok, error = await connection.connect("127.0.0.1", free_port(), "dev", password="x")

        assert ok is False
        assert error

    async def test_shell_pty_and_echo(self, live):
        """Test the shell gets the PTY type and size and round-trips input"""
        shell, error = await live.start_shell("main", cols=100, rows=30)
        assert error is None

        assert "term=xterm-256color" in await _read_until(shell.output, "size=100x30")
        live.write_to_shell("main", "hello\n")
        assert "out:hello" in await _read_until(shell.output, "out:hello")

    async def test_resize(self, live):
        """Test window changes reach the remote"""
        shell, _ = await live.start_shell("main")
        await _read_until(shell.output, "size=")

        assert live.resize_shell("main", 132, 43) is True

        assert "resized=132x43" in await _read_until(shell.output, "resized=132x43")

    async def test_multiple_shells(self, live):
        """Test shells on one connection are independent"""
        one, _ = await live.start_shell("one")
        two, _ = await live.start_shell("two")
        await _read_until(one.output, "size=")
        await _read_until(two.output, "size=")

        live.write_to_shell("two", "second\n")
        live.write_to_shell("one", "first\n")

        assert "out:first" in await _read_until(one.output, "out:first")
        assert "out:second" in await _read_until(two.output, "out:second")

    async def test_remote_exit(self, live):
        """Test an exiting shell ends its channel and leaves the map"""
        shell, _ = await live.start_shell("main")
        await _read_until(shell.output, "size=")

        live.write_to_shell("main", "exit\n")
        while await asyncio.wait_for(shell.output.get(), 5) is not None:
            pass
        await asyncio.sleep(0.05)

        assert live.get_active_shells() == []
        assert shell.close_requested is False

    async def test_port_forward(self, live):
        """Test a forwarded port reaches a service next to the server"""
        service = await asyncio.start_server(_echo, "127.0.0.1", 0)
        service_port = service.sockets[0].getsockname()[1]
        local_port = free_port()
        try:
            ok, error = await live.setup_port_forward(local_port, "127.0.0.1", service_port)
            assert ok, error

            reader, writer = await asyncio.open_connection("127.0.0.1", local_port)
            writer.write(b"tunnel")
            await writer.drain()
            assert await asyncio.wait_for(reader.read(1024), 5) == b"TUNNEL"
            writer.close()
        finally:
            service.close()

    async def test_server_drop(self, ssh_server, live):
        """Test a server-side drop clears state and notifies"""
        lost = asyncio.Event()
        live.on_disconnect = lost.set
        shell, _ = await live.start_shell("main")

        ssh_server.drop_all()

        await asyncio.wait_for(lost.wait(), 5)
        assert live.is_connected() is False
        assert live.get_active_shells() == []
        items = []
        while True:
            item = await asyncio.wait_for(shell.output.get(), 5)
            items.append(item)
            if item is None:
                break
        assert items.count(None) == 1
