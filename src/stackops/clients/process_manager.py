"""PM2 process manager adapter."""

from __future__ import annotations

import json
import logging
import re

from stackops.errors import ErrorKind, ProcessControlError, ProcessNotFoundError
from stackops.execution.runner import CommandRunner

logger = logging.getLogger(__name__)

_NOT_FOUND_RE = re.compile(r"process or namespace .* not found|process .* not found", re.IGNORECASE)


class Pm2ProcessManager:
    def __init__(self, runner: CommandRunner, timeout: float, binary: str = "pm2") -> None:
        self._runner = runner
        self._timeout = timeout
        self._binary = binary

    def restart(self, name: str) -> str:
        if not name or name.startswith("-"):
            raise ProcessControlError(f"invalid process name: {name[:120]!r}")
        result = self._runner.run(
            [self._binary, "restart", name],
            phase=ErrorKind.PROCESS_CONTROL,
            timeout=self._timeout,
        )
        if _NOT_FOUND_RE.search(result.output):
            raise ProcessNotFoundError(name, tool_output=result.output)
        if not result.ok:
            raise ProcessControlError(
                f"pm2 restart failed with exit code {result.returncode}",
                tool_output=result.output,
            )
        return result.output

    def status(self, name: str) -> str | None:
        """Return the pm2 status of ``name`` (e.g. ``online``), or None if unknown."""
        result = self._runner.run(
            [self._binary, "jlist"],
            phase=ErrorKind.PROCESS_CONTROL,
            timeout=self._timeout,
        )
        if not result.ok:
            raise ProcessControlError(
                f"pm2 jlist failed with exit code {result.returncode}",
                tool_output=result.output,
            )
        # pm2 may print update notices before the JSON payload.
        payload = result.output[result.output.find("["):] if "[" in result.output else "[]"
        try:
            processes = json.loads(payload)
        except ValueError:
            logger.warning("pm2 jlist returned non-JSON output")
            return None
        for proc in processes:
            if proc.get("name") == name:
                return (proc.get("pm2_env") or {}).get("status")
        return None
