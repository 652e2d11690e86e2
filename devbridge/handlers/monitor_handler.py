# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Handler for ``monitor_*`` messages.

Clients opt in with ``monitor_subscribe``; watcher events are then relayed to
them verbatim as ``{type: <event>, data: <event data>}``.
"""

import logging
from typing import Any, Dict, Optional

from devbridge.monitor.watcher import SessionWatcher
from devbridge.router import MessageHandler

logger = logging.getLogger(__name__)


class MonitorHandler(MessageHandler):
    prefix = "monitor_"

    def __init__(self, watcher: Optional[SessionWatcher] = None):
        self.watcher = watcher
        self._subscribers: Dict[str, Any] = {}  # client_id -> ClientSession
        if watcher is not None:
            watcher.subscribe(self.broadcast)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def handle(self, client: Any, message: Dict[str, Any]) -> None:
        message_type = message["type"]
        if message_type == "monitor_subscribe":
            self._subscribers[client.client_id] = client
            logger.info(f"Client {client.client_id} subscribed to session monitor")
        elif message_type == "monitor_unsubscribe":
            self._subscribers.pop(client.client_id, None)
            logger.info(f"Client {client.client_id} unsubscribed from session monitor")
        else:
            logger.warning(f"Unknown monitor message type: {message_type}")
            return
        await client.send({"type": f"{message_type}_response", "data": {"success": True}})

    async def broadcast(self, event_type: str, data: Dict[str, Any]) -> None:
        for client in list(self._subscribers.values()):
            await client.send({"type": event_type, "data": data})

    async def cleanup(self, client_id: str) -> None:
        self._subscribers.pop(client_id, None)
