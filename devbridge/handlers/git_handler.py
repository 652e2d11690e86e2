# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Handler for ``git_*`` messages."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from devbridge.files.browser import resolve_path
from devbridge.git.service import GitError, GitService
from devbridge.handlers.common import run_blocking
from devbridge.models.messages import GitCommitRequest, GitFileRequest, GitRepoRequest
from devbridge.router import MessageHandler, payload

logger = logging.getLogger(__name__)


class GitHandler(MessageHandler):
    """Routes git_* messages to GitService.

    Stage, unstage and discard answer with the refreshed status so the
    client's changes list stays in step.
    """

    prefix = "git_"

    def __init__(self, root: Path, service: Optional[GitService] = None):
        self.root = Path(root)
        self.service = service or GitService()
        self._routes = {
            "git_check_repo": self._check_repo,
            "git_status": self._status,
            "git_file_diff": self._file_diff,
            "git_commit": self._commit,
            "git_stage": self._stage,
            "git_unstage": self._unstage,
            "git_discard": self._discard,
        }

    async def handle(self, client: Any, message: Dict[str, Any]) -> None:
        message_type = message["type"]
        route = self._routes.get(message_type)
        if route is None:
            logger.warning(f"Unknown git message type: {message_type}")
            return
        try:
            response = await route(payload(message))
        except GitError as e:
            logger.error(f"{message_type} failed: {e}")
            await client.send({"type": "error", "error": f"{message_type} failed: {e}"})
            return
        await client.send({"type": f"{message_type}_response", "data": response})

    def _working_dir(self, path: Optional[str]) -> Path:
        return resolve_path(self.root, path)

    async def _check_repo(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = GitRepoRequest.model_validate(data)
        is_repo = await run_blocking(self.service.is_git_repo, self._working_dir(request.path))
        return {"isGitRepo": is_repo}

    async def _status(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = GitRepoRequest.model_validate(data)
        files = await run_blocking(self.service.get_status, self._working_dir(request.path))
        return {"files": files}

    async def _file_diff(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = GitFileRequest.model_validate(data)
        logger.info(f"Git diff request: filePath={request.file_path}, staged={request.staged}")
        diff = await run_blocking(
            self.service.get_file_diff,
            self._working_dir(request.path),
            request.file_path,
            request.staged,
        )
        return {"filePath": request.file_path, "diff": diff}

    async def _commit(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = GitCommitRequest.model_validate(data)
        working_dir = self._working_dir(request.path)
        try:
            output = await run_blocking(
                self.service.commit, working_dir, request.message, request.mode
            )
        except GitError as e:
            return {"success": False, "error": str(e)}
        logger.info(f"Git {request.mode} completed in {working_dir}")
        return {"success": True, "output": output}

    async def _stage(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = GitFileRequest.model_validate(data)
        working_dir = self._working_dir(request.path)
        await run_blocking(self.service.stage_file, working_dir, request.file_path)
        return await self._file_result(working_dir, request.file_path)

    async def _unstage(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = GitFileRequest.model_validate(data)
        working_dir = self._working_dir(request.path)
        await run_blocking(self.service.unstage_file, working_dir, request.file_path)
        return await self._file_result(working_dir, request.file_path)

    async def _discard(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = GitFileRequest.model_validate(data)
        working_dir = self._working_dir(request.path)
        await run_blocking(
            self.service.discard_file,
            working_dir,
            request.file_path,
            request.status or "modified",
        )
        return await self._file_result(working_dir, request.file_path)

    async def _file_result(self, working_dir: Path, file_path: str) -> Dict[str, Any]:
        files = await run_blocking(self.service.get_status, working_dir)
        return {"success": True, "filePath": file_path, "files": files}
