# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Handler for ``ssh_*`` messages.

Binds each client's RemoteConnection (from the registry) to that client's
WebSocket: requests become connection operations, and every shell's output
channel is drained by one forwarding task that tags chunks with the shell's
session id.
"""

import asyncio
import logging
from typing import Any, Dict, Set

from pydantic import ValidationError

from devbridge.models.messages import (
    PortForwardRequest,
    ShellCloseRequest,
    ShellInputRequest,
    ShellResizeRequest,
    ShellStartRequest,
    SSHConnectRequest,
    StopPortForwardRequest,
)
from devbridge.router import MessageHandler, payload, validation_reason
from devbridge.ssh.registry import ConnectionRegistry
from devbridge.ssh.shell import ShellSession

logger = logging.getLogger(__name__)


class SSHHandler(MessageHandler):
    """Routes ssh_* messages to the client's RemoteConnection."""

    prefix = "ssh_"

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        # client_id -> session_id -> output forwarding task
        self._forwarders: Dict[str, Dict[str, asyncio.Task]] = {}
        self._background: Set[asyncio.Task] = set()
        self._routes = {
            "ssh_connect": self._connect,
            "ssh_start_shell": self._start_shell,
            "ssh_input": self._input,
            "ssh_resize": self._resize,
            "ssh_close_shell": self._close_shell,
            "ssh_list_shells": self._list_shells,
            "ssh_disconnect": self._disconnect,
            "ssh_port_forward": self._port_forward,
            "ssh_stop_port_forward": self._stop_port_forward,
            "ssh_status": self._status,
        }

    async def handle(self, client: Any, message: Dict[str, Any]) -> None:
        route = self._routes.get(message["type"])
        if route is None:
            logger.warning(f"Unknown SSH message type: {message['type']}")
            return
        await route(client, payload(message))

    async def _connect(self, client: Any, data: Dict[str, Any]) -> None:
        try:
            request = SSHConnectRequest.model_validate(data)
        except ValidationError as e:
            await client.send(
                {
                    "type": "ssh_connect_response",
                    "data": {"success": False, "message": validation_reason(e)},
                }
            )
            return

        logger.info(
            f"SSH connect request: host={request.host}, port={request.port}, "
            f"username={request.username}, hasPassword={bool(request.password)}, "
            f"hasPrivateKey={bool(request.private_key)}"
        )
        connection = self.registry.get_connection(client.client_id)
        success, error = await connection.connect(
            request.host,
            request.port,
            request.username,
            password=request.password,
            private_key=request.private_key,
            passphrase=request.passphrase,
        )
        if success:
            connection.on_disconnect = lambda: self._on_connection_lost(client)
            await client.send({"type": "ssh_connect_response", "data": {"success": True}})
        else:
            await client.send(
                {"type": "ssh_connect_response", "data": {"success": False, "message": error}}
            )

    def _on_connection_lost(self, client: Any) -> None:
        self._spawn(
            client.send(
                {
                    "type": "ssh_status",
                    "data": {"status": "disconnected", "message": "Connection lost"},
                }
            )
        )

    async def _start_shell(self, client: Any, data: Dict[str, Any]) -> None:
        request = ShellStartRequest.model_validate(data)
        connection = self.registry.get_connection(client.client_id)
        shell, error = await connection.start_shell(request.session_id, request.cols, request.rows)
        if shell is None:
            await client.send({"type": "ssh_status", "data": {"status": "error", "message": error}})
            return

        await client.send({"type": "ssh_shell_started", "data": {"sessionId": shell.session_id}})
        task = asyncio.create_task(self._forward_output(client, shell))
        self._forwarders.setdefault(client.client_id, {})[shell.session_id] = task

    async def _forward_output(self, client: Any, shell: ShellSession) -> None:
        """Drain the shell's output channel to the client, in order."""
        try:
            while True:
                chunk = await shell.output.get()
                ended = chunk is None
                # Coalesce whatever is already queued into one frame
                parts = [] if ended else [chunk]
                while not ended and not shell.output.empty():
                    item = shell.output.get_nowait()
                    if item is None:
                        ended = True
                    else:
                        parts.append(item)
                if parts:
                    await client.send(
                        {
                            "type": "ssh_output",
                            "data": {"sessionId": shell.session_id, "output": "".join(parts)},
                        }
                    )
                if ended:
                    break

            closed: Dict[str, Any] = {"sessionId": shell.session_id}
            if shell.close_requested:
                closed["success"] = True
            await client.send({"type": "ssh_shell_closed", "data": closed})
        finally:
            tasks = self._forwarders.get(client.client_id)
            if tasks is not None and tasks.get(shell.session_id) is asyncio.current_task():
                del tasks[shell.session_id]
                if not tasks:
                    del self._forwarders[client.client_id]

    async def _input(self, client: Any, data: Dict[str, Any]) -> None:
        request = ShellInputRequest.model_validate(data)
        connection = self.registry.get_connection(client.client_id)
        if not connection.write_to_shell(request.session_id, request.input):
            logger.debug(f"Dropped input for unknown shell {request.session_id} [{client.client_id}]")

    async def _resize(self, client: Any, data: Dict[str, Any]) -> None:
        request = ShellResizeRequest.model_validate(data)
        connection = self.registry.get_connection(client.client_id)
        connection.resize_shell(request.session_id, request.cols, request.rows)

    async def _close_shell(self, client: Any, data: Dict[str, Any]) -> None:
        request = ShellCloseRequest.model_validate(data)
        connection = self.registry.get_connection(client.client_id)
        if not connection.close_shell(request.session_id):
            # Known shells are answered by their forwarding task after the last output
            await client.send(
                {
                    "type": "ssh_shell_closed",
                    "data": {"sessionId": request.session_id, "success": False},
                }
            )

    async def _list_shells(self, client: Any, data: Dict[str, Any]) -> None:
        connection = self.registry.get_connection(client.client_id)
        await client.send(
            {
                "type": "ssh_list_shells_response",
                "data": {"shells": connection.get_active_shells()},
            }
        )

    async def _disconnect(self, client: Any, data: Dict[str, Any]) -> None:
        await self.registry.remove_connection(client.client_id)
        await client.send(
            {"type": "ssh_status", "data": {"status": "disconnected", "message": "Disconnected"}}
        )

    async def _port_forward(self, client: Any, data: Dict[str, Any]) -> None:
        try:
            request = PortForwardRequest.model_validate(data)
        except ValidationError as e:
            await client.send(
                {
                    "type": "ssh_port_forward_response",
                    "data": {
                        "success": False,
                        "localPort": data.get("localPort"),
                        "message": validation_reason(e),
                    },
                }
            )
            return

        connection = self.registry.get_connection(client.client_id)
        success, error = await connection.setup_port_forward(
            request.local_port, request.remote_host, request.remote_port
        )
        response: Dict[str, Any] = {"success": success, "localPort": request.local_port}
        if error:
            response["message"] = error
        await client.send({"type": "ssh_port_forward_response", "data": response})

    async def _stop_port_forward(self, client: Any, data: Dict[str, Any]) -> None:
        request = StopPortForwardRequest.model_validate(data)
        connection = self.registry.get_connection(client.client_id)
        existed = connection.stop_port_forward(request.local_port)
        await client.send(
            {
                "type": "ssh_port_forward_response",
                "data": {
                    "success": True,
                    "localPort": request.local_port,
                    "message": "Port forward stopped" if existed else "Port forward not active",
                },
            }
        )

    async def _status(self, client: Any, data: Dict[str, Any]) -> None:
        if self.registry.has_connection(client.client_id):
            info = self.registry.get_connection(client.client_id).info()
        else:
            info = {"connected": False, "shells": [], "forwards": []}
        status = "connected" if info["connected"] else "disconnected"
        await client.send(
            {
                "type": "ssh_status",
                "data": {
                    "status": status,
                    "host": info.get("host"),
                    "shells": info["shells"],
                    "forwards": info["forwards"],
                },
            }
        )

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def active_forwarders(self, client_id: str) -> int:
        return len(self._forwarders.get(client_id, {}))

    async def cleanup(self, client_id: str) -> None:
        await self.registry.remove_connection(client_id)
        tasks = self._forwarders.pop(client_id, {})
        for task in tasks.values():
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            logger.debug(f"Stopped {len(tasks)} output forwarder(s) for {client_id}")
