# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""One authenticated SSH connection to one remote host.

A RemoteConnection owns:
- the asyncssh client connection
- a map of named interactive shells (session_id -> ShellSession)
- a map of local port forwards (local_port -> PortForward)

Every operation reports failure through its return value instead of
raising, so handlers can turn outcomes straight into response messages.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import asyncssh

from devbridge.models.config import SSHConfig
from devbridge.ssh.forward import PortForward
from devbridge.ssh.shell import ShellSession

logger = logging.getLogger(__name__)

CLOSE_WAIT_TIMEOUT = 5.0


@dataclass
class SSHSettings:
    """Connection parameters shared by every RemoteConnection."""

    connect_timeout: float = 30.0
    keepalive_interval: float = 10.0
    keepalive_count_max: int = 3
    known_hosts: Optional[str] = None
    forward_bind_address: str = "127.0.0.1"
    term_type: str = "xterm-256color"

    @classmethod
    def from_config(cls, config: SSHConfig) -> "SSHSettings":
        return cls(
            connect_timeout=config.connect_timeout,
            keepalive_interval=config.keepalive_interval,
            keepalive_count_max=config.keepalive_count_max,
            known_hosts=config.known_hosts,
            forward_bind_address=config.forward_bind_address,
            term_type=config.term_type,
        )


class _GatewaySSHClient(asyncssh.SSHClient):
    """Reports connection loss back to the owning RemoteConnection."""

    def __init__(self, owner: "RemoteConnection"):
        self._owner = owner

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._owner._on_connection_lost(exc)


class RemoteConnection:
    """SSH connection with multiplexed shells and local port forwards."""

    def __init__(
        self,
        settings: Optional[SSHSettings] = None,
        connector: Optional[Callable[..., Any]] = None,
    ):
        self.settings = settings or SSHSettings()
        self._connector = connector or asyncssh.connect

        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.username: Optional[str] = None

        self._conn: Optional[Any] = None  # asyncssh.SSHClientConnection
        self._connected = False
        self._connecting = False
        self._closing = False
        self._shells: Dict[str, ShellSession] = {}
        self._pending_shells: set = set()
        self._forwards: Dict[int, PortForward] = {}

        # Invoked after the remote side drops the connection unasked
        self.on_disconnect: Optional[Callable[[], None]] = None

    def is_connected(self) -> bool:
        return self._connected

    async def connect(
        self,
        host: str,
        port: int,
        username: str,
        password: Optional[str] = None,
        private_key: Optional[str] = None,
        passphrase: Optional[str] = None,
    ) -> Tuple[bool, Optional[str]]:
        """Open the SSH connection.

        Makes exactly one attempt, bounded by ``settings.connect_timeout``.

        Returns:
            (success, error_message)
        """
        if self._connected:
            return False, "Already connected"
        if self._connecting:
            return False, "Connection attempt already in progress"

        options: Dict[str, Any] = {
            "host": host,
            "port": port,
            "username": username,
            "known_hosts": self.settings.known_hosts,
            "keepalive_interval": self.settings.keepalive_interval,
            "keepalive_count_max": self.settings.keepalive_count_max,
            "client_factory": lambda: _GatewaySSHClient(self),
        }

        self._connecting = True
        self._closing = False
        try:
            if private_key:
                options["client_keys"] = [asyncssh.import_private_key(private_key, passphrase)]
            else:
                # Password only: skip the agent and ~/.ssh key lookup
                options["client_keys"] = None
                options["agent_path"] = None
            if password:
                options["password"] = password

            conn = await asyncio.wait_for(
                self._connector(**options), timeout=self.settings.connect_timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"SSH connection to {host}:{port} timed out")
            return False, f"Connection timed out after {self.settings.connect_timeout:g}s"
        except (asyncssh.KeyImportError, asyncssh.Error, OSError, ValueError) as e:
            logger.error(f"SSH connection error for {username}@{host}:{port}: {e}")
            return False, str(e) or e.__class__.__name__
        finally:
            self._connecting = False

        if self._closing:
            # disconnect() ran while the handshake was in flight
            logger.info(f"SSH connection to {host}:{port} abandoned, disconnected during connect")
            conn.close()
            try:
                await asyncio.wait_for(conn.wait_closed(), timeout=CLOSE_WAIT_TIMEOUT)
            except (asyncio.TimeoutError, asyncssh.Error, OSError) as e:
                logger.debug(f"Error waiting for SSH close: {e}")
            return False, "Disconnected during connect"

        self._conn = conn
        self._connected = True
        self.host = host
        self.port = port
        self.username = username
        logger.info(f"SSH connected to {host}:{port}")
        return True, None

    async def start_shell(
        self, session_id: str = "default", cols: int = 80, rows: int = 24
    ) -> Tuple[Optional[ShellSession], Optional[str]]:
        """Open a PTY shell channel named session_id.

        Returns:
            (session, error_message)
        """
        if not self._connected or self._conn is None:
            return None, "SSH not connected"
        if session_id in self._shells or session_id in self._pending_shells:
            return None, f"Shell session '{session_id}' already exists"

        self._pending_shells.add(session_id)
        try:
            process = await self._conn.create_process(
                term_type=self.settings.term_type,
                term_size=(cols, rows),
                stderr=asyncssh.STDOUT,
                encoding="utf-8",
                errors="replace",
            )
        except (asyncssh.Error, OSError) as e:
            logger.error(f"Failed to start shell {session_id}: {e}")
            return None, str(e) or e.__class__.__name__
        finally:
            self._pending_shells.discard(session_id)

        if not self._connected:
            process.close()
            return None, "SSH not connected"

        shell = ShellSession(session_id, process, cols, rows, on_closed=self._forget_shell)
        self._shells[session_id] = shell
        shell.start()
        logger.info(f"SSH shell started: {session_id} ({cols}x{rows})")
        return shell, None

    def _forget_shell(self, shell: ShellSession) -> None:
        if self._shells.get(shell.session_id) is shell:
            del self._shells[shell.session_id]

    def get_shell(self, session_id: str) -> Optional[ShellSession]:
        return self._shells.get(session_id)

    def write_to_shell(self, session_id: str, data: str) -> bool:
        shell = self._shells.get(session_id)
        if shell is None:
            return False
        return shell.write(data)

    def resize_shell(self, session_id: str, cols: int, rows: int) -> bool:
        shell = self._shells.get(session_id)
        if shell is None:
            return False
        return shell.resize(cols, rows)

    def close_shell(self, session_id: str) -> bool:
        """Close one shell. Returns whether it existed."""
        shell = self._shells.pop(session_id, None)
        if shell is None:
            return False
        shell.close()
        logger.info(f"SSH shell closed: {session_id}")
        return True

    def get_active_shells(self) -> List[str]:
        return list(self._shells)

    async def setup_port_forward(
        self, local_port: int, remote_host: str, remote_port: int
    ) -> Tuple[bool, Optional[str]]:
        """Listen on local_port and tunnel each connection to remote_host:remote_port.

        Returns:
            (success, error_message)
        """
        if not self._connected or self._conn is None:
            return False, "SSH not connected"
        if local_port in self._forwards:
            return False, f"Port {local_port} is already forwarded"

        forward = PortForward(
            self._conn,
            local_port,
            remote_host,
            remote_port,
            bind_address=self.settings.forward_bind_address,
        )
        # Reserve the port so a concurrent request sees the duplicate
        self._forwards[local_port] = forward
        try:
            await forward.start()
        except OSError as e:
            self._forwards.pop(local_port, None)
            logger.error(f"Failed to forward port {local_port}: {e}")
            return False, str(e)

        if not self._connected:
            self._forwards.pop(local_port, None)
            forward.abort()
            return False, "SSH not connected"
        return True, None

    def stop_port_forward(self, local_port: int) -> bool:
        """Stop listening on local_port. Returns whether a forward existed."""
        forward = self._forwards.pop(local_port, None)
        if forward is None:
            return False
        forward.stop()
        return True

    def get_port_forwards(self) -> List[Dict[str, Any]]:
        return [
            {
                "localPort": f.local_port,
                "remoteHost": f.remote_host,
                "remotePort": f.remote_port,
            }
            for f in self._forwards.values()
        ]

    def _teardown(self) -> None:
        """Close every shell and forward and mark the connection down."""
        for session_id in list(self._shells):
            shell = self._shells.pop(session_id)
            shell.close()
        for local_port in list(self._forwards):
            self._forwards.pop(local_port).abort()
        self._connected = False

    def _on_connection_lost(self, exc: Optional[Exception]) -> None:
        if self._closing or not self._connected:
            return
        if exc:
            logger.warning(f"SSH connection to {self.host}:{self.port} lost: {exc}")
        else:
            logger.info(f"SSH connection to {self.host}:{self.port} closed by remote")
        self._teardown()
        self._conn = None
        if self.on_disconnect:
            try:
                self.on_disconnect()
            except Exception as e:
                logger.error(f"Error in disconnect callback: {e}")

    async def disconnect(self) -> None:
        """Tear everything down. Safe to call repeatedly or when never connected."""
        self._closing = True
        was_connected = self._connected
        self._teardown()

        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()
            try:
                await asyncio.wait_for(conn.wait_closed(), timeout=CLOSE_WAIT_TIMEOUT)
            except (asyncio.TimeoutError, asyncssh.Error, OSError) as e:
                logger.debug(f"Error waiting for SSH close: {e}")
        if was_connected:
            logger.info("SSH connection disconnected")

    def info(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "connected": self._connected,
            "shells": self.get_active_shells(),
            "forwards": self.get_port_forwards(),
        }
