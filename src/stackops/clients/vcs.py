"""Git adapter used by the deploy run."""

from __future__ import annotations

import re
from pathlib import Path

from stackops.errors import ErrorKind, FetchError
from stackops.execution.runner import CommandRunner

# Only allow safe git ref names (branches, tags, SHAs).
_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9._/+-]+$")


def _validate_ref(ref: str) -> None:
    if not _SAFE_REF_RE.match(ref):
        raise FetchError(f"branch contains invalid characters: {ref[:120]}")
    if ref.startswith("-"):
        raise FetchError(f"branch must not start with '-': {ref[:120]}")


def _validate_url(url: str) -> None:
    if not url:
        raise FetchError("repository URL is not configured")
    if url.startswith("-"):
        raise FetchError(f"repository URL must not start with '-': {url[:120]}")


class GitClient:
    def __init__(self, runner: CommandRunner, timeout: float) -> None:
        self._runner = runner
        self._timeout = timeout

    def clone(self, url: str, branch: str, dest: str | Path) -> str:
        _validate_url(url)
        _validate_ref(branch)
        result = self._runner.run(
            ["git", "clone", "--branch", branch, "--single-branch", "--", url, str(dest)],
            phase=ErrorKind.FETCH,
            timeout=self._timeout,
        )
        if not result.ok:
            raise FetchError(
                f"git clone failed with exit code {result.returncode}",
                tool_output=result.output,
            )
        return result.output

    def pull(self, dest: str | Path, branch: str) -> str:
        _validate_ref(branch)
        result = self._runner.run(
            ["git", "-C", str(dest), "pull", "--ff-only", "origin", branch],
            phase=ErrorKind.FETCH,
            timeout=self._timeout,
        )
        if not result.ok:
            raise FetchError(
                f"git pull failed with exit code {result.returncode}",
                tool_output=result.output,
            )
        return result.output

    def head_commit(self, dest: str | Path) -> str:
        result = self._runner.run(
            ["git", "-C", str(dest), "rev-parse", "HEAD"],
            phase=ErrorKind.FETCH,
            timeout=self._timeout,
        )
        if not result.ok:
            raise FetchError("cannot resolve HEAD commit", tool_output=result.output)
        return result.output.strip()
