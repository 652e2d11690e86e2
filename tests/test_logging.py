# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Tests for logging configuration."""

import logging

import pytest

from devbridge.utils import logging as devbridge_logging


@pytest.fixture
def fresh_logging(monkeypatch, tmp_path):
    """Reset module state so configure_logging runs again."""
    monkeypatch.setattr(devbridge_logging, "_configured", False)
    monkeypatch.setattr(devbridge_logging, "_debug_mode", False)
    monkeypatch.setattr(devbridge_logging, "_daemon_mode", False)
    monkeypatch.setattr(devbridge_logging, "_log_file", None)
    monkeypatch.delenv("DEVBRIDGE_DEBUG", raising=False)
    monkeypatch.delenv("DEVBRIDGE_LOG_LEVEL", raising=False)
    monkeypatch.setenv("DEVBRIDGE_LOG_FILE", str(tmp_path / "logs" / "devbridge.log"))
    root = logging.getLogger("devbridge")
    saved = (root.level, list(root.handlers))
    yield tmp_path
    for handler in root.handlers:
        handler.close()
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]


def test_file_and_daemon_handlers(fresh_logging):
    """Test daemon mode logs to the rotating file and stderr"""
    devbridge_logging.configure_logging(daemon=True, log_level="warning")

    root = logging.getLogger("devbridge")
    assert root.level == logging.WARNING
    kinds = {type(handler).__name__ for handler in root.handlers}
    assert kinds == {"RotatingFileHandler", "StreamHandler"}
    assert (fresh_logging / "logs").is_dir()


def test_configure_once(fresh_logging):
    """Test later calls do not reconfigure"""
    devbridge_logging.configure_logging(log_level="ERROR")
    devbridge_logging.configure_logging(log_level="DEBUG")

    assert logging.getLogger("devbridge").level == logging.ERROR


def test_debug_from_environment(fresh_logging, monkeypatch):
    """Test DEVBRIDGE_DEBUG enables debug level"""
    monkeypatch.setenv("DEVBRIDGE_DEBUG", "1")

    devbridge_logging.configure_logging()

    assert devbridge_logging.is_debug_mode() is True
    assert logging.getLogger("devbridge").level == logging.DEBUG


def test_get_logger_namespaces(caplog):
    """Test console loggers live under the devbridge namespace and log success"""
    out = devbridge_logging.get_logger("cli")

    with caplog.at_level(devbridge_logging.SUCCESS_LEVEL, logger="devbridge.cli"):
        out.success("Gateway listening", console_output=False)

    assert out.name == "devbridge.cli"
    assert caplog.records[-1].levelname == "SUCCESS"
    assert caplog.records[-1].message == "Gateway listening"


def test_console_logger_print_and_warning(capsys, caplog):
    """Test print only writes to the console while warning also logs"""
    out = devbridge_logging.get_logger("devbridge.cli")

    with caplog.at_level(logging.WARNING, logger="devbridge.cli"):
        out.print("# config.yml", style="dim")
        out.warning("No auth token set")

    assert "# config.yml" in capsys.readouterr().out
    assert [r.message for r in caplog.records] == ["No auth token set"]
