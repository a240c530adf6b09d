"""Error taxonomy shared by the orchestrators and the CLI."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    FETCH = "fetch_failure"
    INSTALL = "install_failure"
    PROCESS_CONTROL = "restart_failure"
    DUMP = "dump_failure"
    UPLOAD = "upload_failure"
    PRUNE = "prune_failure"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    CONFIG = "config_error"


class OpsError(Exception):
    """Base exception for orchestration failures.

    ``tool_output`` holds the (already redacted) output of the external tool
    that failed, when there is one.
    """

    kind: ErrorKind = ErrorKind.CONFIG

    def __init__(self, message: str, *, tool_output: str | None = None) -> None:
        self.message = message
        self.tool_output = tool_output
        super().__init__(message)


class FetchError(OpsError):
    """Clone or pull failed."""

    kind = ErrorKind.FETCH


class InstallError(OpsError):
    """Dependency installation failed."""

    kind = ErrorKind.INSTALL


class ProcessControlError(OpsError):
    """The process manager could not restart the managed process."""

    kind = ErrorKind.PROCESS_CONTROL


class ProcessNotFoundError(ProcessControlError):
    """The process manager does not know the requested process."""

    def __init__(self, name: str, *, tool_output: str | None = None) -> None:
        self.name = name
        super().__init__(f"Process '{name}' not found", tool_output=tool_output)


class DumpError(OpsError):
    kind = ErrorKind.DUMP


class UploadError(OpsError):
    kind = ErrorKind.UPLOAD

    def __init__(
        self,
        message: str,
        *,
        tool_output: str | None = None,
        attempts: int = 1,
    ) -> None:
        self.attempts = attempts
        super().__init__(message, tool_output=tool_output)


class PruneError(OpsError):
    kind = ErrorKind.PRUNE


class PhaseTimeoutError(OpsError):
    """A phase exceeded its configured timeout.

    ``phase_kind`` is the failure kind of the phase that was interrupted, so
    callers can report a timed-out fetch as a fetch failure.
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, phase_kind: ErrorKind, timeout_seconds: float, command: str) -> None:
        self.phase_kind = phase_kind
        self.timeout_seconds = timeout_seconds
        super().__init__(f"'{command}' timed out after {timeout_seconds:g}s")


class ConcurrencyGuardSkip(OpsError):
    """Another run holds the guard for the same key. Not a failure."""

    kind = ErrorKind.SKIPPED

    def __init__(self, key: str, holder: str | None = None) -> None:
        self.key = key
        self.holder = holder
        detail = f" (held by pid {holder})" if holder else ""
        super().__init__(f"Run for '{key}' already in progress{detail}")


class ConfigurationError(OpsError):
    kind = ErrorKind.CONFIG


def phase_kind_of(exc: OpsError) -> ErrorKind:
    """Return the failure kind used for exit codes and run summaries."""
    if isinstance(exc, PhaseTimeoutError):
        return exc.phase_kind
    return exc.kind
