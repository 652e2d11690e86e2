# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Passive monitor for coding-assistant session logs.

Watches ``<claude_home>/history.jsonl`` for new user prompts. Each prompt
names its session and project; the watcher then follows
``<claude_home>/projects/<project-dir>/<session>.jsonl`` and turns new
entries into events:

    user_input, assistant_message, tool_call, tool_result, file_change, progress

Events go to every subscribed callback as ``callback(event_type, data)``.
"""

import asyncio
import inspect
import json
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import watchfiles

logger = logging.getLogger(__name__)

Event = Tuple[str, Dict[str, Any]]
EventCallback = Callable[[str, Dict[str, Any]], Any]

FILE_TOOLS = ("Edit", "Write")


def project_dir_name(project_path: str) -> str:
    """Directory name used under projects/ for a working directory."""
    return re.sub(r"[^A-Za-z0-9-]", "-", project_path)


def decode_history_entry(entry: Dict[str, Any]) -> Event:
    return (
        "user_input",
        {
            "message": entry.get("display", ""),
            "timestamp": entry.get("timestamp"),
            "sessionId": entry.get("sessionId"),
            "project": entry.get("project"),
        },
    )


def decode_session_entry(entry: Dict[str, Any]) -> List[Event]:
    """Events carried by one session log entry (file_change excluded)."""
    events: List[Event] = []
    entry_type = entry.get("type")
    timestamp = entry.get("timestamp")

    if entry_type == "assistant":
        message = entry.get("message") or {}
        for block in message.get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                events.append(
                    (
                        "assistant_message",
                        {
                            "content": block.get("text", ""),
                            "timestamp": timestamp,
                            "messageId": message.get("id"),
                        },
                    )
                )
            elif block.get("type") == "tool_use":
                events.append(
                    (
                        "tool_call",
                        {
                            "toolName": block.get("name"),
                            "toolId": block.get("id"),
                            "input": block.get("input"),
                            "timestamp": timestamp,
                        },
                    )
                )
    elif entry_type == "system":
        data = entry.get("data") or {}
        if data.get("type") == "tool_result":
            events.append(
                (
                    "tool_result",
                    {
                        "toolId": data.get("tool_use_id"),
                        "content": data.get("content"),
                        "timestamp": timestamp,
                    },
                )
            )
    elif entry_type == "progress":
        data = entry.get("data") or {}
        events.append(("progress", {"message": data.get("message"), "timestamp": timestamp}))

    return events


def file_change_event(tool_call: Dict[str, Any]) -> Optional[Event]:
    """Before/after contents for an Edit or Write tool call."""
    if tool_call.get("toolName") not in FILE_TOOLS:
        return None
    tool_input = tool_call.get("input") or {}
    file_path = tool_input.get("file_path")
    if not file_path:
        return None

    try:
        old_content = Path(file_path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        old_content = ""

    if tool_call["toolName"] == "Edit":
        new_content = old_content.replace(
            tool_input.get("old_string", ""), tool_input.get("new_string", ""), 1
        )
    else:
        new_content = tool_input.get("content", "")

    return (
        "file_change",
        {
            "filePath": file_path,
            "operation": tool_call["toolName"].lower(),
            "oldContent": old_content,
            "newContent": new_content,
            "timestamp": tool_call.get("timestamp"),
        },
    )


class _Tail:
    """Reads complete new lines appended to a file since the last read."""

    def __init__(self, path: Path, from_end: bool = False):
        self.path = path
        self.offset = 0
        if from_end:
            try:
                self.offset = path.stat().st_size
            except OSError:
                self.offset = 0

    def read_lines(self) -> List[str]:
        try:
            size = self.path.stat().st_size
        except OSError:
            return []
        if size < self.offset:
            # Truncated or replaced
            self.offset = 0
        if size == self.offset:
            return []

        with open(self.path, "rb") as f:
            f.seek(self.offset)
            chunk = f.read(size - self.offset)
        # Leave a trailing partial line for the next read
        end = chunk.rfind(b"\n")
        if end < 0:
            return []
        self.offset += end + 1
        text = chunk[: end + 1].decode("utf-8", errors="replace")
        return [line for line in text.splitlines() if line.strip()]


class SessionWatcher:
    """Follows the assistant's history and active session logs."""

    def __init__(self, claude_home: Path, debounce_ms: int = 100):
        self.claude_home = Path(claude_home).expanduser().resolve()
        self.debounce_ms = debounce_ms
        self.history_path = self.claude_home / "history.jsonl"
        self.active_session_id: Optional[str] = None
        self._history = _Tail(self.history_path, from_end=True)
        self._session: Optional[_Tail] = None
        self._subscribers: List[EventCallback] = []
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def session_path(self) -> Optional[Path]:
        return self._session.path if self._session else None

    def subscribe(self, callback: EventCallback) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def start(self) -> None:
        if self.running:
            return
        if not self.claude_home.is_dir():
            logger.warning(f"Session monitor disabled, {self.claude_home} does not exist")
            return
        self._history = _Tail(self.history_path, from_end=True)
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())
        logger.info(f"Watching history: {self.history_path}")

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Session monitor stopped")

    async def _watch_loop(self) -> None:
        try:
            async for changes in watchfiles.awatch(
                self.claude_home,
                debounce=self.debounce_ms,
                stop_event=self._stop_event,
            ):
                changed = {Path(path) for _, path in changes}
                await self.process_changes(changed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Session monitor error: {e}")

    async def process_changes(self, changed_paths) -> None:
        """Read new entries from whichever watched files changed."""
        if self.history_path in changed_paths:
            await self._process_history()
        if self._session and self._session.path in changed_paths:
            await self._process_session()

    async def _process_history(self) -> None:
        for line in self._history.read_lines():
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed history line: {line[:100]}")
                continue
            event_type, data = decode_history_entry(entry)
            await self._emit(event_type, data)
            logger.debug(f"User input: {str(data['message'])[:50]}")

            session_id = data.get("sessionId")
            project = data.get("project")
            if session_id and project and session_id != self.active_session_id:
                self._follow_session(session_id, project)
                # Pick up anything written before we started following
                await self._process_session()

    def _follow_session(self, session_id: str, project: str) -> None:
        self.active_session_id = session_id
        path = self.claude_home / "projects" / project_dir_name(project) / f"{session_id}.jsonl"
        self._session = _Tail(path)
        logger.info(f"Watching session: {path}")

    async def _process_session(self) -> None:
        if self._session is None:
            return
        for line in self._session.read_lines():
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed session line: {line[:100]}")
                continue
            for event_type, data in decode_session_entry(entry):
                await self._emit(event_type, data)
                if event_type == "tool_call":
                    change = file_change_event(data)
                    if change:
                        await self._emit(*change)

    async def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event_type, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in monitor subscriber: {e}")
