# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""WebSocket client sessions - one per connection (identified by UUID).

Tracks authentication and liveness per client, serializes outbound writes,
and reaps clients that stop sending anything (including pings).
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ClientSession:
    """One WebSocket client."""

    def __init__(self, websocket: WebSocket, client_id: Optional[str] = None, authenticated: bool = False):
        self.client_id = client_id or str(uuid.uuid4())
        self.websocket = websocket
        self.authenticated = authenticated
        self.connected_at = time.time()
        self.last_heartbeat = time.time()  # Track last activity
        self.closed = False
        self._send_lock = asyncio.Lock()

    def touch(self) -> None:
        self.last_heartbeat = time.time()

    async def send(self, message: Dict[str, Any]) -> bool:
        """Send one JSON message. Returns False if the socket is gone."""
        if self.closed:
            return False
        async with self._send_lock:
            try:
                await self.websocket.send_text(json.dumps(message))
                return True
            except Exception as e:
                logger.debug(f"Error sending to WebSocket [{self.client_id}]: {e}")
                self.closed = True
                return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing WebSocket [{self.client_id}]: {e}")


class ClientManager:
    """Registry of connected ClientSessions with stale-client reaping."""

    CHECK_INTERVAL = 10  # Seconds between stale checks

    def __init__(self, heartbeat_timeout: float = 0.0, auth_required: bool = False):
        self.heartbeat_timeout = heartbeat_timeout
        self.auth_required = auth_required
        self._clients: Dict[str, ClientSession] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        # Invoked with each reaped client id after its socket is closed
        self.on_stale: Optional[Callable[[str], Awaitable[None]]] = None

    def __len__(self) -> int:
        return len(self._clients)

    def get(self, client_id: str) -> Optional[ClientSession]:
        return self._clients.get(client_id)

    async def register(self, websocket: WebSocket) -> ClientSession:
        # Without a configured token every client starts authenticated
        client = ClientSession(websocket, authenticated=not self.auth_required)
        async with self._lock:
            self._clients[client.client_id] = client
        logger.debug(f"Registered client {client.client_id} ({len(self._clients)} connected)")
        return client

    async def unregister(self, client_id: str) -> None:
        async with self._lock:
            client = self._clients.pop(client_id, None)
        if client:
            client.closed = True
            logger.debug(f"Unregistered client {client_id} ({len(self._clients)} connected)")

    async def start_cleanup_task(self):
        """Start background task to close stale clients."""
        if self.heartbeat_timeout <= 0:
            return
        if not self._cleanup_task or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_stale_clients())
            logger.info("Started stale client cleanup task")

    async def stop_cleanup_task(self):
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            logger.info("Stopped stale client cleanup task")

    def find_stale(self, now: Optional[float] = None) -> List[str]:
        if self.heartbeat_timeout <= 0:
            return []
        now = time.time() if now is None else now
        return [
            client_id
            for client_id, client in self._clients.items()
            if now - client.last_heartbeat > self.heartbeat_timeout
        ]

    async def reap_stale(self) -> List[str]:
        """Close every stale client. Returns the reaped ids."""
        async with self._lock:
            stale = self.find_stale()
            for client_id in stale:
                client = self._clients[client_id]
                logger.warning(
                    f"Detected stale client: {client_id} "
                    f"- last heartbeat {time.time() - client.last_heartbeat:.1f}s ago"
                )

        # Close outside the lock; the endpoint's finally block unregisters
        for client_id in stale:
            client = self._clients.get(client_id)
            if client:
                await client.close(code=1001, reason="Heartbeat timeout")
            if self.on_stale:
                await self.on_stale(client_id)
        return stale

    async def _cleanup_stale_clients(self):
        interval = min(self.CHECK_INTERVAL, self.heartbeat_timeout)
        while True:
            try:
                await asyncio.sleep(interval)
                await self.reap_stale()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in cleanup task: {e}")

    async def close_all(self) -> None:
        for client in list(self._clients.values()):
            await client.close(code=1001, reason="Server shutting down")
