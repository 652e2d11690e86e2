# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Tests for the session log monitor and the monitor_* handler."""

import asyncio
import json

import pytest

from devbridge.handlers.monitor_handler import MonitorHandler
from devbridge.monitor.watcher import (
    SessionWatcher,
    _Tail,
    decode_history_entry,
    decode_session_entry,
    file_change_event,
    project_dir_name,
)
from tests.conftest import RecordingClient


def _append(path, *entries):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")


@pytest.fixture
def claude_home(tmp_path):
    home = tmp_path / "claude"
    home.mkdir()
    return home


@pytest.fixture
def events():
    return []


@pytest.fixture
def watcher(claude_home, events):
    watcher = SessionWatcher(claude_home)
    watcher.subscribe(lambda event_type, data: events.append((event_type, data)))
    return watcher


class TestDecoding:
    """Test log entry decoding"""

    def test_project_dir_name(self):
        """Test non-alphanumeric characters become dashes"""
        assert project_dir_name("/home/dev/my_app.v2") == "-home-dev-my-app-v2"

    def test_history_entry(self):
        """Test a history line becomes user_input"""
        event = decode_history_entry(
            {"display": "fix the bug", "timestamp": 1700000000, "sessionId": "s1", "project": "/p"}
        )

        assert event == (
            "user_input",
            {"message": "fix the bug", "timestamp": 1700000000, "sessionId": "s1", "project": "/p"},
        )

    def test_assistant_blocks(self):
        """Test text and tool_use blocks become separate events in order"""
        entry = {
            "type": "assistant",
            "timestamp": "t1",
            "message": {
                "id": "msg_1",
                "content": [
                    {"type": "text", "text": "Looking at it"},
                    {"type": "tool_use", "name": "Read", "id": "tool_1", "input": {"file_path": "/a"}},
                    "ignored",
                ],
            },
        }

        assert decode_session_entry(entry) == [
            ("assistant_message", {"content": "Looking at it", "timestamp": "t1", "messageId": "msg_1"}),
            ("tool_call", {"toolName": "Read", "toolId": "tool_1", "input": {"file_path": "/a"}, "timestamp": "t1"}),
        ]

    def test_tool_result(self):
        """Test system tool results are decoded"""
        entry = {
            "type": "system",
            "timestamp": "t2",
            "data": {"type": "tool_result", "tool_use_id": "tool_1", "content": "ok"},
        }

        assert decode_session_entry(entry) == [
            ("tool_result", {"toolId": "tool_1", "content": "ok", "timestamp": "t2"})
        ]

    def test_progress(self):
        """Test progress entries are decoded"""
        entry = {"type": "progress", "timestamp": "t3", "data": {"message": "Thinking"}}

        assert decode_session_entry(entry) == [("progress", {"message": "Thinking", "timestamp": "t3"})]

    def test_unknown_entry(self):
        """Test unrecognized entries produce nothing"""
        assert decode_session_entry({"type": "user", "message": {}}) == []

    def test_edit_file_change(self, tmp_path):
        """Test an Edit shows the file before and after the replacement"""
        target = tmp_path / "app.py"
        target.write_text("x = 1\ny = 1\n")
        tool_call = {
            "toolName": "Edit",
            "input": {"file_path": str(target), "old_string": "= 1", "new_string": "= 2"},
            "timestamp": "t4",
        }

        event_type, data = file_change_event(tool_call)

        assert event_type == "file_change"
        assert data["operation"] == "edit"
        assert data["oldContent"] == "x = 1\ny = 1\n"
        assert data["newContent"] == "x = 2\ny = 1\n"

    def test_write_new_file(self, tmp_path):
        """Test a Write to a new file has empty old content"""
        tool_call = {
            "toolName": "Write",
            "input": {"file_path": str(tmp_path / "new.py"), "content": "print()\n"},
        }

        _, data = file_change_event(tool_call)

        assert data["oldContent"] == ""
        assert data["newContent"] == "print()\n"
        assert data["operation"] == "write"

    def test_other_tools_ignored(self):
        """Test non-file tools produce no file_change"""
        assert file_change_event({"toolName": "Bash", "input": {"command": "ls"}}) is None
        assert file_change_event({"toolName": "Edit", "input": {}}) is None


class TestTail:
    """Test incremental line reading"""

    def test_partial_line_held_back(self, tmp_path):
        """Test an unterminated line waits for its newline"""
        path = tmp_path / "log.jsonl"
        path.write_text("one\ntw")
        tail = _Tail(path)

        assert tail.read_lines() == ["one"]
        with open(path, "a") as f:
            f.write("o\nthree\n")
        assert tail.read_lines() == ["two", "three"]
        assert tail.read_lines() == []

    def test_from_end_skips_existing(self, tmp_path):
        """Test tailing from the end ignores earlier content"""
        path = tmp_path / "log.jsonl"
        path.write_text("old\n")
        tail = _Tail(path, from_end=True)

        with open(path, "a") as f:
            f.write("new\n")

        assert tail.read_lines() == ["new"]

    def test_truncation_restarts(self, tmp_path):
        """Test a truncated file is read again from the start"""
        path = tmp_path / "log.jsonl"
        path.write_text("aaaa\nbbbb\n")
        tail = _Tail(path)
        tail.read_lines()

        path.write_text("c\n")

        assert tail.read_lines() == ["c"]

    def test_missing_file(self, tmp_path):
        """Test a missing file reads as empty"""
        assert _Tail(tmp_path / "absent").read_lines() == []


class TestSessionWatcher:
    """Test following history into session logs"""

    async def test_history_starts_session_follow(self, watcher, claude_home, events):
        """Test a new prompt switches to its session and replays it"""
        session_file = watcher.claude_home / "projects" / project_dir_name("/work/app") / "s1.jsonl"
        _append(
            session_file,
            {"type": "assistant", "timestamp": "t1", "message": {"id": "m1", "content": [{"type": "text", "text": "hi"}]}},
        )
        _append(watcher.history_path, {"display": "hello", "sessionId": "s1", "project": "/work/app"})

        await watcher.process_changes({watcher.history_path})

        assert [e[0] for e in events] == ["user_input", "assistant_message"]
        assert watcher.active_session_id == "s1"
        assert watcher.session_path == session_file

    async def test_existing_history_is_skipped(self, claude_home, events):
        """Test prompts written before the watcher started are not replayed"""
        _append(claude_home / "history.jsonl", {"display": "old", "sessionId": "s0", "project": "/p"})
        watcher = SessionWatcher(claude_home)
        watcher.subscribe(lambda t, d: events.append((t, d)))

        _append(watcher.history_path, {"display": "new", "sessionId": "s0", "project": "/p"})
        await watcher.process_changes({watcher.history_path})

        assert [d["message"] for t, d in events if t == "user_input"] == ["new"]

    async def test_session_appends(self, watcher, claude_home, events):
        """Test new session lines are emitted with file changes after tool calls"""
        target = claude_home / "code.py"
        target.write_text("a = 1\n")
        _append(watcher.history_path, {"display": "go", "sessionId": "s2", "project": "/w"})
        await watcher.process_changes({watcher.history_path})
        events.clear()

        _append(
            watcher.session_path,
            {
                "type": "assistant",
                "timestamp": "t",
                "message": {
                    "id": "m",
                    "content": [
                        {
                            "type": "tool_use",
                            "name": "Edit",
                            "id": "tool_9",
                            "input": {"file_path": str(target), "old_string": "1", "new_string": "2"},
                        }
                    ],
                },
            },
            {"type": "system", "timestamp": "t", "data": {"type": "tool_result", "tool_use_id": "tool_9", "content": "done"}},
        )
        await watcher.process_changes({watcher.session_path})

        assert [e[0] for e in events] == ["tool_call", "file_change", "tool_result"]
        assert events[1][1]["newContent"] == "a = 2\n"

    async def test_same_session_not_reset(self, watcher, events):
        """Test further prompts in the active session keep the same tail"""
        _append(watcher.history_path, {"display": "one", "sessionId": "s3", "project": "/w"})
        await watcher.process_changes({watcher.history_path})
        tail = watcher._session

        _append(watcher.history_path, {"display": "two", "sessionId": "s3", "project": "/w"})
        await watcher.process_changes({watcher.history_path})

        assert watcher._session is tail

    async def test_malformed_lines_skipped(self, watcher, events):
        """Test invalid JSON lines do not stop processing"""
        watcher.history_path.write_text("not json\n")
        _append(watcher.history_path, {"display": "ok"})

        await watcher.process_changes({watcher.history_path})

        assert [d["message"] for _, d in events] == ["ok"]

    async def test_async_and_failing_subscribers(self, watcher, events):
        """Test async callbacks are awaited and failing ones are contained"""
        received = []

        async def async_callback(event_type, data):
            received.append(event_type)

        def failing(event_type, data):
            raise RuntimeError("subscriber broke")

        watcher.subscribe(failing)
        watcher.subscribe(async_callback)
        _append(watcher.history_path, {"display": "x"})

        await watcher.process_changes({watcher.history_path})

        assert received == ["user_input"]
        assert len(events) == 1

    async def test_unsubscribe(self, claude_home):
        """Test unsubscribed callbacks receive nothing"""
        received = []
        watcher = SessionWatcher(claude_home)
        callback = lambda event_type, data: received.append(event_type)  # noqa: E731
        watcher.subscribe(callback)
        watcher.subscribe(callback)
        watcher.unsubscribe(callback)
        _append(watcher.history_path, {"display": "x"})

        await watcher.process_changes({watcher.history_path})

        assert received == []

    async def test_start_missing_directory(self, tmp_path):
        """Test the watcher stays off when the directory is absent"""
        watcher = SessionWatcher(tmp_path / "nowhere")

        await watcher.start()

        assert watcher.running is False
        await watcher.stop()

    @pytest.mark.slow
    async def test_live_watch(self, watcher, events):
        """Test file system notifications drive the watcher"""
        watcher.debounce_ms = 10
        await watcher.start()
        try:
            assert watcher.running is True
            await asyncio.sleep(0.2)
            _append(watcher.history_path, {"display": "live"})
            for _ in range(100):
                if events:
                    break
                await asyncio.sleep(0.05)
        finally:
            await watcher.stop()

        assert events and events[0][1]["message"] == "live"
        assert watcher.running is False


class TestMonitorHandler:
    """Test monitor subscriptions"""

    async def test_subscribe_and_broadcast(self, watcher):
        """Test only subscribed clients receive events"""
        handler = MonitorHandler(watcher)
        subscribed = RecordingClient("a")
        bystander = RecordingClient("b")

        await handler.handle(subscribed, {"type": "monitor_subscribe"})
        _append(watcher.history_path, {"display": "hello"})
        await watcher.process_changes({watcher.history_path})

        assert subscribed.messages[0] == {"type": "monitor_subscribe_response", "data": {"success": True}}
        assert subscribed.messages[1]["type"] == "user_input"
        assert subscribed.messages[1]["data"]["message"] == "hello"
        assert bystander.messages == []

    async def test_unsubscribe_and_cleanup(self):
        """Test unsubscribe and client cleanup drop the subscription"""
        handler = MonitorHandler()
        first = RecordingClient("a")
        second = RecordingClient("b")
        await handler.handle(first, {"type": "monitor_subscribe"})
        await handler.handle(second, {"type": "monitor_subscribe"})

        await handler.handle(first, {"type": "monitor_unsubscribe"})
        await handler.cleanup("b")

        assert handler.subscriber_count == 0
        assert first.messages[-1] == {"type": "monitor_unsubscribe_response", "data": {"success": True}}
