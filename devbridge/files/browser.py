# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Directory trees and listings for the file browser."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

IGNORED_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        "dist",
        "build",
        ".next",
        "coverage",
        ".cache",
        "__pycache__",
        ".venv",
        "venv",
    }
)

IGNORED_FILES = frozenset({".DS_Store", "Thumbs.db", ".env", ".env.local"})

DEFAULT_MAX_NODES = 5000
EXPAND_MAX_NODES = 500


class FileBrowserError(Exception):
    """Raised when a path cannot be browsed or read."""


def is_ignored(name: str) -> bool:
    return name in IGNORED_DIRS or name in IGNORED_FILES


def resolve_path(root: Union[str, Path], path: Optional[str]) -> Path:
    """Resolve a client-supplied path against root.

    Empty or "." means root itself; absolute paths are used as given.
    """
    root = Path(root).expanduser()
    if not path or path == ".":
        return root
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return candidate
    return root / candidate


def _sort_key(node: Dict[str, Any]):
    return (node["type"] != "directory", node["name"].lower(), node["name"])


@dataclass
class _TreeContext:
    max_nodes: int
    node_count: int = 0
    truncated: bool = False
    access_errors: List[str] = field(default_factory=list)


def _relative(root: Path, path: Path) -> str:
    return os.path.relpath(path, root)


def _has_visible_children(path: Path) -> bool:
    try:
        with os.scandir(path) as entries:
            return any(not is_ignored(entry.name) for entry in entries)
    except OSError:
        return False


def _build_tree(root: Path, current: Path, depth: int, max_depth: int, ctx: _TreeContext) -> Dict[str, Any]:
    if ctx.node_count >= ctx.max_nodes:
        ctx.truncated = True
        return {"name": ".", "path": ".", "type": "directory", "hasChildren": True}

    stats = current.stat()
    rel = _relative(root, current)
    name = "." if rel == "." else current.name
    ctx.node_count += 1

    if not current.is_dir():
        return {"name": name, "path": rel, "type": "file", "size": stats.st_size}

    node: Dict[str, Any] = {"name": name, "path": rel, "type": "directory"}

    if depth >= max_depth:
        node["hasChildren"] = _has_visible_children(current)
        return node

    try:
        with os.scandir(current) as it:
            entries = sorted(it, key=lambda e: e.name)
    except PermissionError:
        ctx.access_errors.append(rel)
        node["accessDenied"] = True
        return node
    except OSError as e:
        logger.error(f"Failed to read directory {current}: {e}")
        node["children"] = []
        return node

    children = []
    for entry in entries:
        if ctx.node_count >= ctx.max_nodes:
            ctx.truncated = True
            break
        if is_ignored(entry.name):
            continue
        entry_path = Path(entry.path)
        try:
            children.append(_build_tree(root, entry_path, depth + 1, max_depth, ctx))
        except PermissionError:
            entry_rel = _relative(root, entry_path)
            ctx.access_errors.append(entry_rel)
            try:
                entry_type = "directory" if entry.is_dir() else "file"
            except OSError:
                entry_type = "directory"
            children.append(
                {"name": entry.name, "path": entry_rel, "type": entry_type, "accessDenied": True}
            )
            ctx.node_count += 1
        except OSError as e:
            # Broken symlinks and entries removed mid-scan
            logger.warning(f"Failed to process {entry_path}: {e}")

    node["children"] = sorted(children, key=_sort_key)
    return node


def generate_tree(
    root: Union[str, Path], max_depth: int = 3, max_nodes: int = DEFAULT_MAX_NODES
) -> Dict[str, Any]:
    """Build a nested tree of root, at most max_depth levels and max_nodes nodes.

    Returns:
        {"tree", "totalNodes", "truncated", "accessErrors"}
    """
    root = Path(root)
    if not root.exists():
        raise FileBrowserError(f"Path does not exist: {root}")
    ctx = _TreeContext(max_nodes=max_nodes)
    try:
        tree = _build_tree(root, root, 0, max_depth, ctx)
    except OSError as e:
        raise FileBrowserError(f"Failed to read {root}: {e}") from e
    return {
        "tree": tree,
        "totalNodes": ctx.node_count,
        "truncated": ctx.truncated,
        "accessErrors": ctx.access_errors,
    }


def expand_directory(
    root: Union[str, Path],
    dir_path: str,
    max_depth: int = 1,
    max_nodes: int = EXPAND_MAX_NODES,
) -> Dict[str, Any]:
    """Build the subtree under dir_path (relative to root) for lazy loading.

    Node paths stay relative to root so the client can splice them in.
    """
    root = Path(root)
    target = resolve_path(root, dir_path)
    if not target.is_dir():
        raise FileBrowserError(f"Not a directory: {dir_path}")
    ctx = _TreeContext(max_nodes=max_nodes)
    try:
        tree = _build_tree(root, target, 0, max_depth, ctx)
    except OSError as e:
        raise FileBrowserError(f"Failed to read {dir_path}: {e}") from e
    return {
        "tree": tree,
        "totalNodes": ctx.node_count,
        "truncated": ctx.truncated,
        "accessErrors": ctx.access_errors,
    }


def list_directory(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Non-recursive listing of path, directories first."""
    path = Path(path)
    try:
        with os.scandir(path) as it:
            entries = list(it)
    except OSError as e:
        logger.error(f"Failed to list directory {path}: {e}")
        raise FileBrowserError(f"Failed to list directory: {e}") from e

    nodes = []
    for entry in entries:
        if is_ignored(entry.name):
            continue
        try:
            is_dir = entry.is_dir()
            node: Dict[str, Any] = {
                "name": entry.name,
                "path": entry.path,
                "type": "directory" if is_dir else "file",
            }
            if not is_dir:
                node["size"] = entry.stat().st_size
        except OSError as e:
            logger.warning(f"Failed to stat {entry.path}: {e}")
            continue
        nodes.append(node)
    return sorted(nodes, key=_sort_key)
