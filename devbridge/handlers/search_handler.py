# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Handler for ``search`` messages."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from devbridge.files import search as search_service
from devbridge.files.browser import resolve_path
from devbridge.files.search import SearchError
from devbridge.handlers.common import run_blocking
from devbridge.models.config import SearchConfig
from devbridge.models.messages import SearchRequest
from devbridge.router import MessageHandler, payload

logger = logging.getLogger(__name__)


class SearchHandler(MessageHandler):
    prefix = "search"

    def __init__(self, root: Path, settings: Optional[SearchConfig] = None):
        self.root = Path(root)
        self.settings = settings or SearchConfig()

    async def handle(self, client: Any, message: Dict[str, Any]) -> None:
        request = SearchRequest.model_validate(payload(message))
        options = request.options
        max_results = min(options.max_results or self.settings.max_results, self.settings.max_results)
        try:
            results = await run_blocking(
                search_service.search,
                request.query,
                resolve_path(self.root, request.path),
                case_sensitive=options.case_sensitive,
                regex=options.regex,
                file_type=options.file_type,
                max_results=max_results,
                timeout=self.settings.timeout,
            )
        except SearchError as e:
            await client.send({"type": "error", "error": str(e)})
            return
        logger.debug(f"Search '{request.query}' returned {len(results)} result(s)")
        await client.send(
            {"type": "search_response", "data": {"query": request.query, "results": results}}
        )
