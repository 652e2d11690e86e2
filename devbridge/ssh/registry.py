# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Per-client registry of RemoteConnections.

One RemoteConnection per client identity, created lazily on first use and
destroyed when the client disconnects or asks to. The registry is built by
the composition root and handed to whoever needs it.
"""

import logging
from typing import Callable, Dict, List, Optional

from devbridge.ssh.connection import RemoteConnection, SSHSettings

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Maps client_id -> RemoteConnection."""

    def __init__(
        self,
        settings: Optional[SSHSettings] = None,
        connection_factory: Optional[Callable[[], RemoteConnection]] = None,
    ):
        self.settings = settings or SSHSettings()
        self._factory = connection_factory or (lambda: RemoteConnection(self.settings))
        self._connections: Dict[str, RemoteConnection] = {}

    def get_connection(self, client_id: str) -> RemoteConnection:
        """Get the client's connection, creating an unconnected one if needed."""
        connection = self._connections.get(client_id)
        if connection is None:
            connection = self._factory()
            self._connections[client_id] = connection
            logger.debug(f"Created SSH connection slot for client {client_id}")
        return connection

    def has_connection(self, client_id: str) -> bool:
        return client_id in self._connections

    async def remove_connection(self, client_id: str) -> None:
        """Disconnect and forget the client's connection, if any."""
        connection = self._connections.pop(client_id, None)
        if connection is None:
            return
        try:
            await connection.disconnect()
        except Exception as e:
            logger.error(f"Error disconnecting SSH for client {client_id}: {e}")
        logger.info(f"Removed SSH connection for client {client_id}")

    async def cleanup(self) -> None:
        """Disconnect every tracked connection (server shutdown)."""
        client_ids: List[str] = list(self._connections)
        for client_id in client_ids:
            await self.remove_connection(client_id)
        if client_ids:
            logger.info(f"Cleaned up {len(client_ids)} SSH connection(s)")

    def connection_count(self) -> int:
        return len(self._connections)
