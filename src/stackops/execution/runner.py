"""Run external command-line tools.

Commands are always argument lists (never a shell string), stdin is closed and
each call carries its own timeout. A timeout kills the child process and is
reported as :class:`PhaseTimeoutError`; ``subprocess.run`` also kills the
child when the caller is interrupted, so no handle outlives the call.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from stackops.errors import ErrorKind, PhaseTimeoutError
from stackops.utils.masking import Redactor
from stackops.utils.time import elapsed_ms

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    output: str
    duration_ms: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _truncate_text(value: str, max_chars: int) -> str:
    if len(value) <= max_chars:
        return value
    return "..." + value[-(max_chars - 3):]


class CommandRunner:
    def __init__(self, redactor: Redactor | None = None, max_output_chars: int = 20_000) -> None:
        self._redactor = redactor or Redactor()
        self._max_output_chars = max_output_chars

    @property
    def redactor(self) -> Redactor:
        return self._redactor

    def run(
        self,
        args: Sequence[str],
        *,
        phase: ErrorKind,
        timeout: float,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        stdout_path: str | Path | None = None,
    ) -> CommandResult:
        """Run ``args`` and return its redacted, truncated output.

        With ``stdout_path`` the child's stdout goes to that file and only
        stderr is captured; otherwise stdout and stderr are merged. An
        ``OSError`` opening ``stdout_path`` propagates to the caller.
        """
        argv = tuple(str(arg) for arg in args)
        display = self._redactor.text(" ".join(argv))
        merged_env = {**os.environ, **env} if env else None
        logger.info("Running: %s", display)

        started = time.monotonic()
        if stdout_path is not None:
            with Path(stdout_path).open("wb") as sink:
                completed = self._spawn(
                    argv, phase, timeout, display, cwd=cwd, env=merged_env,
                    stdout=sink, stderr=subprocess.PIPE,
                )
            raw_output = completed.stderr if completed is not None else b""
        else:
            completed = self._spawn(
                argv, phase, timeout, display, cwd=cwd, env=merged_env,
                stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            )
            raw_output = completed.stdout if completed is not None else b""

        if completed is None:
            return CommandResult(
                args=argv,
                returncode=EXIT_NOT_FOUND,
                output=f"executable not found: {argv[0]}",
                duration_ms=elapsed_ms(started, time.monotonic()),
            )

        output = (raw_output or b"").decode("utf-8", errors="replace").strip()
        output = _truncate_text(self._redactor.text(output), self._max_output_chars)
        result = CommandResult(
            args=argv,
            returncode=completed.returncode,
            output=output,
            duration_ms=elapsed_ms(started, time.monotonic()),
        )
        if not result.ok:
            logger.warning("Command exited %d: %s", result.returncode, display)
        return result

    @staticmethod
    def _spawn(
        argv: tuple[str, ...],
        phase: ErrorKind,
        timeout: float,
        display: str,
        **kwargs,
    ) -> subprocess.CompletedProcess | None:
        """Run ``argv``; None means the executable does not exist."""
        try:
            return subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                timeout=timeout,
                check=False,
                **kwargs,
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning("Command timed out after %ss: %s", timeout, display)
            raise PhaseTimeoutError(phase, timeout, display) from exc
        except FileNotFoundError as exc:
            logger.warning("Executable not found (%s): %s", exc.strerror, display)
            return None
