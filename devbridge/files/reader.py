# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Read text files for the code viewer."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from devbridge.files.browser import FileBrowserError

logger = logging.getLogger(__name__)

LANGUAGE_MAP = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".h": "c",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".sh": "bash",
    ".bash": "bash",
    ".zsh": "bash",
    ".fish": "fish",
    ".ps1": "powershell",
    ".html": "html",
    ".htm": "html",
    ".xml": "xml",
    ".css": "css",
    ".scss": "scss",
    ".sass": "sass",
    ".less": "less",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".ini": "ini",
    ".md": "markdown",
    ".sql": "sql",
    ".graphql": "graphql",
    ".gql": "graphql",
    ".vue": "vue",
    ".svelte": "svelte",
    ".dockerfile": "dockerfile",
}

# Names without a useful extension
FILENAME_MAP = {
    "Dockerfile": "dockerfile",
    "Makefile": "makefile",
}

BINARY_EXTENSIONS = frozenset(
    {
        ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".svg",
        ".pdf", ".zip", ".tar", ".gz", ".rar", ".7z",
        ".exe", ".dll", ".so", ".dylib",
        ".mp3", ".mp4", ".avi", ".mov", ".wav",
        ".ttf", ".otf", ".woff", ".woff2",
        ".bin", ".dat", ".db", ".sqlite",
    }
)


def detect_language(path: Union[str, Path]) -> str:
    path = Path(path)
    if path.name in FILENAME_MAP:
        return FILENAME_MAP[path.name]
    return LANGUAGE_MAP.get(path.suffix.lower(), "plaintext")


def is_binary_path(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in BINARY_EXTENSIONS


def read_file(
    path: Union[str, Path],
    max_size: int = 10 * 1024 * 1024,
    display_path: Optional[str] = None,
) -> Dict[str, Any]:
    """Read path as UTF-8 text.

    Files over max_size come back empty with ``truncated`` set; known binary
    extensions come back as a placeholder.

    Returns:
        {"path", "content", "language", "size", "isBinary", "truncated"}
    """
    path = Path(path)
    shown = display_path or str(path)
    try:
        size = path.stat().st_size
    except OSError as e:
        logger.error(f"Failed to read file {path}: {e}")
        raise FileBrowserError(f"Failed to read file: {e}") from e
    if path.is_dir():
        raise FileBrowserError(f"Is a directory: {shown}")

    if size > max_size:
        logger.warning(f"File too large: {path} ({size} bytes)")
        return {
            "path": shown,
            "content": "",
            "language": detect_language(path),
            "size": size,
            "isBinary": is_binary_path(path),
            "truncated": True,
        }

    if is_binary_path(path):
        return {
            "path": shown,
            "content": "[Binary file]",
            "language": "binary",
            "size": size,
            "isBinary": True,
            "truncated": False,
        }

    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.error(f"Failed to read file {path}: {e}")
        raise FileBrowserError(f"Failed to read file: {e}") from e

    return {
        "path": shown,
        "content": content,
        "language": detect_language(path),
        "size": size,
        "isBinary": False,
        "truncated": False,
    }
