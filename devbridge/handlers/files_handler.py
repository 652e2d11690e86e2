# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Handler for ``file_*`` messages (tree, expand, list, read)."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from devbridge.files import browser, reader
from devbridge.files.browser import FileBrowserError, resolve_path
from devbridge.handlers.common import run_blocking
from devbridge.models.config import FilesConfig
from devbridge.models.messages import (
    FileExpandRequest,
    FileListRequest,
    FileReadRequest,
    FileTreeRequest,
)
from devbridge.router import MessageHandler, payload

logger = logging.getLogger(__name__)


class FilesHandler(MessageHandler):
    prefix = "file_"

    def __init__(self, root: Path, settings: Optional[FilesConfig] = None):
        self.root = Path(root)
        self.settings = settings or FilesConfig()

    async def handle(self, client: Any, message: Dict[str, Any]) -> None:
        message_type = message["type"]
        data = payload(message)
        try:
            if message_type == "file_tree":
                response = await self._tree(data)
            elif message_type == "file_expand":
                response = await self._expand(data)
            elif message_type == "file_list":
                response = await self._list(data)
            elif message_type == "file_read":
                response = await self._read(data)
            else:
                logger.warning(f"Unknown file message type: {message_type}")
                return
        except FileBrowserError as e:
            logger.error(f"{message_type} failed: {e}")
            await client.send({"type": "error", "error": str(e)})
            return
        await client.send({"type": f"{message_type}_response", "data": response})

    async def _tree(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = FileTreeRequest.model_validate(data)
        max_depth = (
            request.max_depth
            if "max_depth" in request.model_fields_set
            else self.settings.tree_max_depth
        )
        return await run_blocking(
            browser.generate_tree,
            resolve_path(self.root, request.path),
            max_depth,
            self.settings.tree_max_nodes,
        )

    async def _expand(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = FileExpandRequest.model_validate(data)
        return await run_blocking(
            browser.expand_directory,
            resolve_path(self.root, request.path),
            request.dir_path,
            request.max_depth,
        )

    async def _list(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = FileListRequest.model_validate(data)
        path = resolve_path(self.root, request.path)
        entries = await run_blocking(browser.list_directory, path)
        return {"path": str(path), "entries": entries}

    async def _read(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = FileReadRequest.model_validate(data)
        return await run_blocking(
            reader.read_file,
            resolve_path(self.root, request.path),
            self.settings.max_file_size,
            request.path,
        )
