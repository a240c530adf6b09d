"""Exit codes for the stackops CLI."""

from __future__ import annotations

from stackops.errors import ErrorKind


class ExitCode:
    """Exit codes for CLI commands."""

    SUCCESS = 0
    FAILURE = 1
    FETCH_FAILURE = 2
    INSTALL_FAILURE = 3
    RESTART_FAILURE = 4
    DUMP_FAILURE = 5
    UPLOAD_FAILURE = 6
    PRUNE_FAILURE = 7
    CONFIG_ERROR = 8

    @classmethod
    def for_kind(cls, kind: ErrorKind | None) -> int:
        if kind is None:
            return cls.FAILURE
        return _BY_KIND.get(kind, cls.FAILURE)


_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.FETCH: ExitCode.FETCH_FAILURE,
    ErrorKind.INSTALL: ExitCode.INSTALL_FAILURE,
    ErrorKind.PROCESS_CONTROL: ExitCode.RESTART_FAILURE,
    ErrorKind.DUMP: ExitCode.DUMP_FAILURE,
    ErrorKind.UPLOAD: ExitCode.UPLOAD_FAILURE,
    ErrorKind.PRUNE: ExitCode.PRUNE_FAILURE,
    ErrorKind.CONFIG: ExitCode.CONFIG_ERROR,
    ErrorKind.SKIPPED: ExitCode.SUCCESS,
}

DEFAULT_TAIL_ENTRIES = 20
