# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Text search over a directory tree using ripgrep."""

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

RG_BINARY = "rg"


class SearchError(Exception):
    """Raised when a search cannot be run."""


def is_ripgrep_installed() -> bool:
    return shutil.which(RG_BINARY) is not None


def build_ripgrep_args(
    case_sensitive: bool = False,
    regex: bool = False,
    file_type: Optional[str] = None,
    max_count: Optional[int] = None,
) -> List[str]:
    args = ["--json", "--line-number", "--column", "--no-heading", "--with-filename"]
    if not case_sensitive:
        args.append("--ignore-case")
    if not regex:
        args.append("--fixed-strings")
    if file_type:
        args.append(f"--type={file_type}")
    if max_count:
        # Per-file match cap; the overall cap is applied while parsing
        args.append(f"--max-count={max_count}")
    return args


def parse_ripgrep_output(output: str, max_results: Optional[int] = None) -> List[Dict[str, Any]]:
    """Convert ``rg --json`` output into match records."""
    results: List[Dict[str, Any]] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse ripgrep line: {line[:200]}")
            continue
        if event.get("type") != "match":
            continue

        data = event.get("data", {})
        submatches = data.get("submatches") or [{}]
        first = submatches[0]
        results.append(
            {
                "file": data.get("path", {}).get("text", ""),
                "line": data.get("line_number"),
                "column": first.get("start", 0),
                "content": data.get("lines", {}).get("text", "").strip(),
                "match": first.get("match", {}).get("text", ""),
            }
        )
        if max_results and len(results) >= max_results:
            break
    return results


def search(
    query: str,
    path: Union[str, Path],
    case_sensitive: bool = False,
    regex: bool = False,
    file_type: Optional[str] = None,
    max_results: Optional[int] = None,
    timeout: float = 5.0,
) -> List[Dict[str, Any]]:
    """Search for query under path.

    Fixed-string and case-insensitive unless told otherwise. No matches is
    an empty list, not an error.
    """
    if not query or not query.strip():
        raise SearchError("Search query cannot be empty")

    args = build_ripgrep_args(case_sensitive, regex, file_type, max_results)
    cmd = [RG_BINARY, *args, "--", query, str(path)]
    logger.debug(f"Executing search: {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        logger.error("ripgrep not installed")
        raise SearchError(
            "ripgrep is not installed. Please install it: https://github.com/BurntSushi/ripgrep"
        )
    except subprocess.TimeoutExpired:
        logger.error("Search timeout")
        raise SearchError("Search timeout exceeded")

    # Exit code 1 means no matches
    if result.returncode == 1:
        return []
    if result.returncode != 0:
        # 2 is also used for partial errors (unreadable files) alongside matches
        if result.returncode == 2 and result.stdout:
            logger.warning(f"Ripgrep stderr: {result.stderr.strip()}")
        else:
            logger.error(f"Search failed: {result.stderr.strip()}")
            raise SearchError(f"Search failed: {result.stderr.strip() or result.returncode}")

    return parse_ripgrep_output(result.stdout, max_results)
