# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Authentication gate and prefix-based message dispatch.

Every inbound message is a JSON object ``{type, data?}``. The router answers
``auth`` and ``ping`` itself, rejects everything else from clients that have
not authenticated (when a token is configured), and hands the rest to the
first registered handler whose prefix matches the type.
"""

import hmac
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

logger = logging.getLogger(__name__)


def payload(message: Dict[str, Any]) -> Dict[str, Any]:
    """Return the message's fields.

    Clients usually nest fields under ``data``; flat messages carry them at
    the top level.
    """
    data = message.get("data")
    if isinstance(data, dict):
        return data
    return {k: v for k, v in message.items() if k != "type"}


def validation_reason(error: ValidationError) -> str:
    """Short human-readable summary of a pydantic validation error."""
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "message"
        parts.append(f"{location}: {item.get('msg')}")
    return "Invalid message: " + "; ".join(parts)


class MessageHandler:
    """Base class for handlers owning one message-type prefix."""

    prefix = ""

    def can_handle(self, message_type: str) -> bool:
        return bool(self.prefix) and message_type.startswith(self.prefix)

    async def handle(self, client: Any, message: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def cleanup(self, client_id: str) -> None:
        """Release per-client state. Called once when the client goes away."""


class MessageRouter:
    """Routes messages from a ClientSession to the matching handler."""

    def __init__(self, auth_token: str = "", handlers: Optional[List[MessageHandler]] = None):
        self.auth_token = auth_token or ""
        self.handlers: List[MessageHandler] = []
        for handler in handlers or []:
            self.register(handler)

    @property
    def auth_required(self) -> bool:
        return bool(self.auth_token)

    def register(self, handler: MessageHandler) -> None:
        self.handlers.append(handler)

    def find_handler(self, message_type: str) -> Optional[MessageHandler]:
        for handler in self.handlers:
            if handler.can_handle(message_type):
                return handler
        return None

    def check_token(self, token: Any) -> bool:
        if not self.auth_required:
            return True
        if not isinstance(token, str):
            return False
        return hmac.compare_digest(token.encode(), self.auth_token.encode())

    async def dispatch(self, client: Any, message: Dict[str, Any]) -> None:
        """Handle one inbound message for client."""
        message_type = message.get("type")
        if not isinstance(message_type, str) or not message_type:
            await client.send({"type": "error", "error": "Message type is required"})
            return

        client.touch()

        if message_type == "auth":
            await self._handle_auth(client, message)
            return
        if message_type == "ping":
            await client.send({"type": "pong"})
            return

        if not client.authenticated:
            logger.warning(f"Rejected {message_type} from unauthenticated client {client.client_id}")
            await client.send({"type": "error", "error": "Not authenticated"})
            return

        handler = self.find_handler(message_type)
        if handler is None:
            logger.warning(f"Unknown message type: {message_type}")
            return

        try:
            await handler.handle(client, message)
        except ValidationError as e:
            await client.send({"type": "error", "error": validation_reason(e)})
        except Exception as e:
            logger.exception(f"Handler error for {message_type} [{client.client_id}]: {e}")
            await client.send({"type": "error", "error": str(e) or e.__class__.__name__})

    async def _handle_auth(self, client: Any, message: Dict[str, Any]) -> None:
        token = payload(message).get("token")
        success = self.check_token(token)
        if not self.auth_required:
            logger.info(f"No auth token configured, accepting client {client.client_id}")
        elif success:
            logger.info(f"Client authenticated: {client.client_id}")
        else:
            logger.warning(f"Authentication failed for client {client.client_id}")
        client.authenticated = success
        await client.send({"type": "auth_response", "data": {"success": success}})

    async def cleanup_client(self, client_id: str) -> None:
        """Run every handler's cleanup hook for client_id."""
        for handler in self.handlers:
            try:
                await handler.cleanup(client_id)
            except Exception as e:
                logger.error(f"Cleanup failed in {handler.__class__.__name__} for {client_id}: {e}")
