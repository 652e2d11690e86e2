# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""FastAPI gateway server.

One WebSocket per client at ``/ws``. Each connection gets a UUID client id;
inbound JSON messages go through the MessageRouter, outbound messages are
written through the client's ClientSession. When the socket goes away the
client's SSH connection is removed and every handler cleans up.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from devbridge import __version__
from devbridge.handlers.files_handler import FilesHandler
from devbridge.handlers.git_handler import GitHandler
from devbridge.handlers.monitor_handler import MonitorHandler
from devbridge.handlers.search_handler import SearchHandler
from devbridge.handlers.ssh_handler import SSHHandler
from devbridge.host_config import GatewayConfig, load_config
from devbridge.monitor.watcher import SessionWatcher
from devbridge.router import MessageRouter
from devbridge.ssh.connection import SSHSettings
from devbridge.ssh.registry import ConnectionRegistry
from devbridge.web.client_manager import ClientManager

logger = logging.getLogger(__name__)


def build_router(
    config: GatewayConfig,
    registry: ConnectionRegistry,
    watcher: Optional[SessionWatcher] = None,
) -> MessageRouter:
    """Router with the handlers in dispatch order: ssh, file, search, git, monitor."""
    model = config.model
    root = config.files_root
    return MessageRouter(
        auth_token=model.auth.token,
        handlers=[
            SSHHandler(registry),
            FilesHandler(root, model.files),
            SearchHandler(root, model.search),
            GitHandler(root),
            MonitorHandler(watcher),
        ],
    )


def create_app(
    config: Optional[GatewayConfig] = None,
    registry: Optional[ConnectionRegistry] = None,
    watcher: Optional[SessionWatcher] = None,
) -> FastAPI:
    """Compose the gateway: registry, router, client manager and routes."""
    config = config or load_config()
    model = config.model

    if registry is None:
        registry = ConnectionRegistry(SSHSettings.from_config(model.ssh))
    if watcher is None and model.monitor.enabled:
        watcher = SessionWatcher(config.claude_home, model.monitor.debounce_ms)

    router = build_router(config, registry, watcher)
    clients = ClientManager(
        heartbeat_timeout=model.server.heartbeat_timeout,
        auth_required=router.auth_required,
    )

    async def cleanup_client(client_id: str) -> None:
        """Tear down everything the client owned. Safe to run twice."""
        await registry.remove_connection(client_id)
        await router.cleanup_client(client_id)
        await clients.unregister(client_id)

    clients.on_stale = cleanup_client

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if not router.auth_required:
            logger.warning("No auth token configured, all clients are accepted")
        if watcher is not None:
            await watcher.start()
        await clients.start_cleanup_task()
        yield
        # Shutdown
        await clients.stop_cleanup_task()
        if watcher is not None:
            await watcher.stop()
        await clients.close_all()
        await registry.cleanup()
        logger.info("Gateway shut down")

    app = FastAPI(title="devbridge", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.registry = registry
    app.state.router = router
    app.state.clients = clients
    app.state.watcher = watcher

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "clients": len(clients),
            "ssh_connections": registry.connection_count(),
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Multiplexed gateway channel for one client."""
        await websocket.accept()
        client = await clients.register(websocket)
        client_id = client.client_id
        logger.info(f"WebSocket connected [{client_id}]")

        try:
            while True:
                text = await websocket.receive_text()
                try:
                    message = json.loads(text)
                except json.JSONDecodeError:
                    await client.send({"type": "error", "error": "Invalid message format"})
                    continue
                if not isinstance(message, dict):
                    await client.send({"type": "error", "error": "Invalid message format"})
                    continue
                await router.dispatch(client, message)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected [{client_id}]")
        except Exception as e:
            logger.exception(f"WebSocket error [{client_id}]: {e}")
        finally:
            await cleanup_client(client_id)

    return app
