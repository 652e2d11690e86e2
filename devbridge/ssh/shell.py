# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Interactive PTY shell multiplexed inside a remote SSH connection.

Each ShellSession owns an asyncssh client process and an output channel
(an asyncio.Queue). A single pump task copies remote output into the
channel in order; when the stream ends, from either side, the channel
receives exactly one ``None`` end marker. Consumers read the channel and
never touch the SSH process directly.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 8192


class ShellSession:
    """One pseudo-terminal stream inside a RemoteConnection."""

    def __init__(
        self,
        session_id: str,
        process: Any,  # asyncssh.SSHClientProcess
        cols: int,
        rows: int,
        on_closed: Optional[Callable[["ShellSession"], None]] = None,
    ):
        self.session_id = session_id
        self.cols = cols
        self.rows = rows
        self.output: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self.close_requested = False
        self._process = process
        self._on_closed = on_closed
        self._closed = False
        self._pump_task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start copying remote output into the output channel."""
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        try:
            while not self._closed:
                data = await self._process.stdout.read(READ_CHUNK_SIZE)
                if not data:
                    break
                if isinstance(data, bytes):
                    data = data.decode("utf-8", errors="replace")
                self.output.put_nowait(data)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            if not self._closed:
                logger.warning(f"Shell {self.session_id} stream error: {e}")
        finally:
            self._finish()

    def _finish(self) -> None:
        """Mark the session closed and emit the end marker, once."""
        if self._closed:
            return
        self._closed = True
        self.output.put_nowait(None)
        logger.debug(f"Shell {self.session_id} closed (requested={self.close_requested})")
        if self._on_closed:
            try:
                self._on_closed(self)
            except Exception as e:
                logger.error(f"Error in shell close callback for {self.session_id}: {e}")

    def write(self, data: str) -> bool:
        """Write input to the shell. Returns False if the stream refuses it."""
        if self._closed:
            return False
        try:
            self._process.stdin.write(data)
            return True
        except Exception as e:
            logger.warning(f"Shell {self.session_id} write failed: {e}")
            return False

    def resize(self, cols: int, rows: int) -> bool:
        if self._closed:
            return False
        try:
            self._process.change_terminal_size(cols, rows)
        except Exception as e:
            logger.warning(f"Shell {self.session_id} resize failed: {e}")
            return False
        self.cols = cols
        self.rows = rows
        return True

    def close(self) -> None:
        """Close the remote channel and end the output stream."""
        if self._closed:
            return
        self.close_requested = True
        try:
            self._process.close()
        except Exception as e:
            logger.debug(f"Shell {self.session_id} close error: {e}")
        if self._pump_task and not self._pump_task.done():
            self._pump_task.cancel()
        self._finish()
