# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Centralized path definitions for devbridge.

Usage:
    from devbridge.paths import HostPaths

    config_file = HostPaths.config_file()
    log_file = HostPaths.log_file()
"""

import os
from pathlib import Path


class HostPaths:
    """Paths on the machine running the gateway."""

    @staticmethod
    def config_dir() -> Path:
        """~/.config/devbridge/ (or $XDG_CONFIG_HOME/devbridge/)"""
        xdg = os.getenv("XDG_CONFIG_HOME")
        if xdg:
            return Path(xdg) / "devbridge"
        return Path.home() / ".config" / "devbridge"

    @staticmethod
    def config_file() -> Path:
        """~/.config/devbridge/config.yml"""
        return HostPaths.config_dir() / "config.yml"

    @staticmethod
    def data_dir() -> Path:
        """~/.local/share/devbridge/"""
        xdg = os.getenv("XDG_DATA_HOME")
        if xdg:
            return Path(xdg) / "devbridge"
        return Path.home() / ".local" / "share" / "devbridge"

    @staticmethod
    def log_dir() -> Path:
        """~/.local/share/devbridge/logs/"""
        return HostPaths.data_dir() / "logs"

    @staticmethod
    def log_file() -> Path:
        """~/.local/share/devbridge/logs/devbridge.log"""
        return HostPaths.log_dir() / "devbridge.log"

    @staticmethod
    def claude_home() -> Path:
        """~/.claude - where the coding assistant writes its session logs."""
        return Path.home() / ".claude"
