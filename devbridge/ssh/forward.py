# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Local-to-remote TCP port forwarding through an SSH connection.

A PortForward binds a local listener. Every accepted local connection gets
its own bridge: a fresh direct-tcpip channel to (remote_host, remote_port)
and two pump tasks copying bytes in each direction. Bridges are independent
of each other and of the listener.
"""

import asyncio
import logging
from typing import Any, Optional, Set

logger = logging.getLogger(__name__)

BUFFER_SIZE = 65536


async def _pipe(reader: Any, writer: Any) -> None:
    """Copy bytes from reader to writer until EOF, then half-close."""
    while True:
        data = await reader.read(BUFFER_SIZE)
        if not data:
            break
        writer.write(data)
        await writer.drain()
    try:
        if writer.can_write_eof():
            writer.write_eof()
    except (OSError, RuntimeError):
        pass


def _close_writer(writer: Any) -> None:
    try:
        writer.close()
    except Exception:
        pass


class PortForward:
    """One local listener forwarding to remote_host:remote_port."""

    def __init__(
        self,
        conn: Any,  # asyncssh.SSHClientConnection
        local_port: int,
        remote_host: str,
        remote_port: int,
        bind_address: str = "127.0.0.1",
    ):
        self.conn = conn
        self.local_port = local_port
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.bind_address = bind_address
        self._server: Optional[asyncio.AbstractServer] = None
        self._bridges: Set[asyncio.Task] = set()

    @property
    def active_bridges(self) -> int:
        return len(self._bridges)

    @property
    def listening(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> None:
        """Bind the local listener. Raises OSError if the bind fails."""
        self._server = await asyncio.start_server(
            self._on_accept, host=self.bind_address, port=self.local_port
        )
        logger.info(
            f"Port forward established: {self.bind_address}:{self.local_port} -> "
            f"{self.remote_host}:{self.remote_port}"
        )

    async def _on_accept(
        self, local_reader: asyncio.StreamReader, local_writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._bridges.add(task)
        try:
            await self._bridge(local_reader, local_writer)
        finally:
            if task is not None:
                self._bridges.discard(task)

    async def _bridge(
        self, local_reader: asyncio.StreamReader, local_writer: asyncio.StreamWriter
    ) -> None:
        peer = local_writer.get_extra_info("peername")
        try:
            remote_reader, remote_writer = await self.conn.open_connection(
                self.remote_host, self.remote_port
            )
        except Exception as e:
            logger.error(
                f"Port forward error: cannot open channel to "
                f"{self.remote_host}:{self.remote_port} for {peer}: {e}"
            )
            _close_writer(local_writer)
            return

        logger.debug(f"Bridge opened: {peer} -> {self.remote_host}:{self.remote_port}")
        pumps = [
            asyncio.create_task(_pipe(local_reader, remote_writer)),
            asyncio.create_task(_pipe(remote_reader, local_writer)),
        ]
        try:
            await asyncio.gather(*pumps)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Bridge error on localhost:{self.local_port} for {peer}: {e}")
        finally:
            for pump in pumps:
                pump.cancel()
            _close_writer(remote_writer)
            _close_writer(local_writer)
            logger.debug(f"Bridge closed: {peer} -> {self.remote_host}:{self.remote_port}")

    def stop(self) -> None:
        """Close the listener.

        Bridges already established keep running until their own ends close,
        matching how closing a listening socket leaves accepted sockets alone.
        """
        if self._server is not None:
            self._server.close()
            self._server = None
            logger.info(f"Port forward stopped: localhost:{self.local_port}")

    def abort(self) -> None:
        """Close the listener and cancel every in-flight bridge."""
        self.stop()
        for task in list(self._bridges):
            task.cancel()
        self._bridges.clear()
