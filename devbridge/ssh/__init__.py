# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""SSH connection management: remote connections, shells, port forwards."""

from devbridge.ssh.connection import RemoteConnection, SSHSettings
from devbridge.ssh.forward import PortForward
from devbridge.ssh.registry import ConnectionRegistry
from devbridge.ssh.shell import ShellSession

__all__ = [
    "ConnectionRegistry",
    "PortForward",
    "RemoteConnection",
    "SSHSettings",
    "ShellSession",
]
