# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Git operations for the changes panel, run through the git CLI."""

import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30
NETWORK_TIMEOUT = 120  # push / pull


class GitError(Exception):
    """Raised when a git command fails."""


def parse_status_line(line: str) -> Optional[Dict]:
    """Parse one line of ``git status --porcelain``.

    Format is ``XY PATH`` or ``XY ORIG -> PATH`` for renames. Staged changes
    take priority over work-tree changes.
    """
    if len(line) < 3:
        return None

    index_status = line[0]
    work_tree_status = line[1]
    file_path = line[3:]

    if "R" in (index_status, work_tree_status):
        parts = file_path.split(" -> ")
        if len(parts) == 2:
            return {
                "path": parts[1],
                "status": "renamed",
                "staged": index_status == "R",
                "oldPath": parts[0],
            }

    if index_status == "A":
        status, staged = "added", True
    elif index_status == "D":
        status, staged = "deleted", True
    elif index_status == "M":
        status, staged = "modified", True
    elif work_tree_status == "M":
        status, staged = "modified", False
    elif work_tree_status == "D":
        status, staged = "deleted", False
    elif "?" in (index_status, work_tree_status):
        status, staged = "untracked", False
    elif work_tree_status == "A":
        status, staged = "added", False
    else:
        status = "modified"
        staged = index_status not in (" ", "?")

    return {"path": file_path, "status": status, "staged": staged}


def parse_status(output: str) -> List[Dict]:
    files = []
    for line in output.splitlines():
        parsed = parse_status_line(line)
        if parsed:
            files.append(parsed)
    return files


def _looks_binary(path: Path) -> bool:
    try:
        with open(path, "rb") as f:
            return b"\0" in f.read(8192)
    except OSError:
        return False


def untracked_file_diff(repo_root: Union[str, Path], file_path: str) -> str:
    """Unified diff showing an untracked file as entirely added."""
    full_path = Path(repo_root) / file_path
    header = [f"diff --git a/{file_path} b/{file_path}", "new file mode 100644"]
    if _looks_binary(full_path):
        return "\n".join(header + ["Binary file"])

    try:
        content = full_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.error(f"Failed to generate untracked file diff: {e}")
        raise GitError(f"Failed to read {file_path}: {e}") from e

    lines = content.splitlines()
    return "\n".join(
        header
        + ["--- /dev/null", f"+++ b/{file_path}", f"@@ -0,0 +1,{len(lines)} @@"]
        + [f"+{line}" for line in lines]
    )


class GitService:
    """Thin wrapper around the git CLI, operating from the repository root."""

    def __init__(self, git_binary: str = "git"):
        self.git_binary = git_binary

    def _run(self, args: List[str], cwd: Union[str, Path], timeout: float = GIT_TIMEOUT) -> str:
        try:
            result = subprocess.run(
                [self.git_binary] + args,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise GitError("git is not installed") from e
        except subprocess.TimeoutExpired as e:
            raise GitError(f"git {args[0]} timed out") from e

        if result.returncode != 0:
            message = (result.stderr or result.stdout).strip() or f"exit code {result.returncode}"
            logger.debug(f"git {' '.join(args)} failed in {cwd}: {message}")
            raise GitError(message)
        return result.stdout

    def is_git_repo(self, working_dir: Union[str, Path]) -> bool:
        try:
            return self._run(["rev-parse", "--is-inside-work-tree"], working_dir).strip() == "true"
        except (GitError, OSError):
            return False

    def get_repo_root(self, working_dir: Union[str, Path]) -> Optional[str]:
        try:
            return self._run(["rev-parse", "--show-toplevel"], working_dir).strip()
        except (GitError, OSError):
            return None

    def _cwd(self, working_dir: Union[str, Path]) -> Union[str, Path]:
        return self.get_repo_root(working_dir) or working_dir

    def get_status(self, working_dir: Union[str, Path]) -> List[Dict]:
        cwd = self._cwd(working_dir)
        try:
            output = self._run(["status", "--porcelain", "-uall"], cwd)
        except GitError as e:
            logger.error(f"Failed to get git status: {e}")
            raise
        return parse_status(output)

    def get_file_diff(self, working_dir: Union[str, Path], file_path: str, staged: bool = False) -> str:
        """Unified diff for one file.

        Untracked files get a synthetic all-added diff, newly added files
        diff against the empty tree, everything else against HEAD.
        """
        cwd = self._cwd(working_dir)
        status_out = self._run(["status", "--porcelain", "--", file_path], cwd)
        status_line = status_out.splitlines()[0] if status_out.strip() else ""
        index_status = status_line[0] if len(status_line) > 0 else " "
        work_tree_status = status_line[1] if len(status_line) > 1 else " "

        if "?" in (index_status, work_tree_status):
            return untracked_file_diff(cwd, file_path)

        if staged or index_status == "A":
            diff = self._run(["diff", "--cached", "--", file_path], cwd)
            if diff.strip() or index_status != "A":
                return diff
            return untracked_file_diff(cwd, file_path)

        try:
            diff = self._run(["diff", "HEAD", "--", file_path], cwd)
            if diff.strip():
                return diff
        except GitError:
            # No HEAD yet
            pass

        diff = self._run(["diff", "--", file_path], cwd)
        if diff.strip():
            return diff
        return self._run(["diff", "--cached", "--", file_path], cwd)

    def commit(self, working_dir: Union[str, Path], message: str, mode: str = "commit") -> str:
        """Commit staged changes.

        mode: commit | amend | push (commit, then push) | sync (commit,
        pull --rebase, push). Amend with an empty message keeps the old one.
        """
        cwd = self._cwd(working_dir)

        if mode == "amend":
            if message.strip():
                args = ["commit", "--amend", "-m", message]
            else:
                args = ["commit", "--amend", "--no-edit"]
            return self._run(args, cwd).strip()

        if not message.strip():
            raise GitError("Commit message is required")

        output = self._run(["commit", "-m", message], cwd).strip()
        if mode == "push":
            self._run(["push"], cwd, timeout=NETWORK_TIMEOUT)
            return output + "\nPushed successfully."
        if mode == "sync":
            self._run(["pull", "--rebase"], cwd, timeout=NETWORK_TIMEOUT)
            self._run(["push"], cwd, timeout=NETWORK_TIMEOUT)
            return output + "\nSynced successfully."
        return output

    def stage_file(self, working_dir: Union[str, Path], file_path: str) -> None:
        self._run(["add", "--", file_path], self._cwd(working_dir))

    def unstage_file(self, working_dir: Union[str, Path], file_path: str) -> None:
        self._run(["restore", "--staged", "--", file_path], self._cwd(working_dir))

    def discard_file(
        self, working_dir: Union[str, Path], file_path: str, status: Optional[str] = None
    ) -> None:
        """Throw away work-tree changes; untracked files are deleted."""
        cwd = self._cwd(working_dir)
        if status == "untracked":
            self._run(["clean", "-f", "--", file_path], cwd)
        else:
            self._run(["restore", "--", file_path], cwd)
