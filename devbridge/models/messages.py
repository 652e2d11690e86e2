# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Pydantic models for inbound WebSocket message payloads.

Clients send camelCase field names (``sessionId``, ``localPort``); the
models accept either camelCase or snake_case and ignore unknown fields.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# SSH


class SSHConnectRequest(Payload):
    host: str = Field(min_length=1)
    port: int = Field(default=22, ge=1, le=65535)
    username: str = Field(min_length=1)
    password: Optional[str] = None
    private_key: Optional[str] = None
    passphrase: Optional[str] = None


class ShellStartRequest(Payload):
    session_id: str = "default"
    cols: int = Field(default=80, ge=1)
    rows: int = Field(default=24, ge=1)

    @field_validator("cols", "rows", mode="before")
    @classmethod
    def _zero_means_default(cls, value, info):
        # Clients send 0 or null before their terminal has been measured
        if value in (None, 0, ""):
            return cls.model_fields[info.field_name].default
        return value


class ShellInputRequest(Payload):
    session_id: str = "default"
    input: str


class ShellResizeRequest(Payload):
    session_id: str = "default"
    cols: int = Field(ge=1)
    rows: int = Field(ge=1)


class ShellCloseRequest(Payload):
    session_id: str


class PortForwardRequest(Payload):
    local_port: int = Field(ge=1, le=65535)
    remote_host: str = Field(min_length=1)
    remote_port: int = Field(ge=1, le=65535)


class StopPortForwardRequest(Payload):
    local_port: int


# Files


class FileTreeRequest(Payload):
    path: Optional[str] = None
    max_depth: int = Field(default=3, ge=0)


class FileExpandRequest(Payload):
    path: Optional[str] = None
    dir_path: str
    max_depth: int = Field(default=1, ge=0)


class FileListRequest(Payload):
    path: Optional[str] = None


class FileReadRequest(Payload):
    path: str = Field(min_length=1)


# Search


class SearchOptions(Payload):
    case_sensitive: bool = False
    regex: bool = False
    file_type: Optional[str] = None
    max_results: Optional[int] = Field(default=None, gt=0)


class SearchRequest(Payload):
    query: str
    path: Optional[str] = None
    options: SearchOptions = Field(default_factory=SearchOptions)


# Git


class GitRepoRequest(Payload):
    path: Optional[str] = None


class GitFileRequest(Payload):
    path: Optional[str] = None
    file_path: str = Field(min_length=1)
    staged: bool = False
    status: Optional[str] = None


class GitCommitRequest(Payload):
    path: Optional[str] = None
    message: str = ""
    mode: Literal["commit", "amend", "push", "sync"] = "commit"
