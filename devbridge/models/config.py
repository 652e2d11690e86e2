# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Pydantic models for gateway configuration (~/.config/devbridge/config.yml)."""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ServerConfig(BaseModel):
    """HTTP/WebSocket listener settings."""

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    heartbeat_timeout: float = Field(default=0.0, ge=0)  # 0 disables stale reaping


class AuthConfig(BaseModel):
    """Shared-secret authentication.

    An empty token disables the check (development mode).
    """

    token: str = ""


class SSHConfig(BaseModel):
    """Outbound SSH connection settings."""

    connect_timeout: float = Field(default=30.0, gt=0)
    keepalive_interval: float = Field(default=10.0, ge=0)
    keepalive_count_max: int = Field(default=3, ge=1)
    known_hosts: Optional[str] = None  # None = host keys not verified
    forward_bind_address: str = "127.0.0.1"
    term_type: str = "xterm-256color"


class FilesConfig(BaseModel):
    """File browsing and reading limits."""

    root: Optional[str] = None  # None = server working directory
    max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)
    tree_max_depth: int = Field(default=3, ge=0)
    tree_max_nodes: int = Field(default=5000, gt=0)


class SearchConfig(BaseModel):
    """ripgrep wrapper settings."""

    timeout: float = Field(default=5.0, gt=0)
    max_results: int = Field(default=500, gt=0)


class MonitorConfig(BaseModel):
    """Coding-assistant session log watcher settings."""

    enabled: bool = True
    claude_home: Optional[str] = None  # None = ~/.claude
    debounce_ms: int = Field(default=100, ge=0)


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    file: Optional[str] = None

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value


class GatewayConfigModel(BaseModel):
    """Root configuration model."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
