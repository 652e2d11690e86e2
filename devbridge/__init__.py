# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""devbridge - Remote-development gateway multiplexing SSH shells, files, search and git over one WebSocket."""

__version__ = "0.1.0"
