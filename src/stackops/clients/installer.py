"""Dependency installer adapter (npm by default)."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from stackops.errors import ErrorKind, InstallError
from stackops.execution.runner import CommandRunner


class NpmInstaller:
    def __init__(
        self,
        runner: CommandRunner,
        timeout: float,
        command: Sequence[str] = ("npm", "install"),
    ) -> None:
        if not command:
            raise ValueError("install command must not be empty")
        self._runner = runner
        self._timeout = timeout
        self._command = tuple(command)

    def install(self, dest: str | Path) -> str:
        result = self._runner.run(
            self._command,
            phase=ErrorKind.INSTALL,
            timeout=self._timeout,
            cwd=dest,
        )
        if not result.ok:
            raise InstallError(
                f"'{' '.join(self._command)}' failed with exit code {result.returncode}",
                tool_output=result.output,
            )
        return result.output
