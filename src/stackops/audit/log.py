"""Append-only JSON Lines audit log.

Several processes may append to the same file at once (an hourly backup can
overlap a manual deploy). Every entry is written with a single ``write`` on
a descriptor opened with ``O_APPEND`` while holding an exclusive ``flock``,
so lines never interleave. Entries are never rewritten; readers scan from the
end of the file.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
from pathlib import Path

from stackops.domain.models import AuditLogEntry
from stackops.utils.masking import Redactor
from stackops.utils.serialization import json_default

logger = logging.getLogger(__name__)

_TAIL_BLOCK_SIZE = 8192
_FILE_MODE = 0o640


class AuditLog:
    def __init__(self, path: str, redactor: Redactor | None = None) -> None:
        self._path = Path(path)
        self._redactor = redactor or Redactor()
        self._fd: int | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def redactor(self) -> Redactor:
        return self._redactor

    def open(self) -> None:
        if self._fd is not None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._fd = os.open(self._path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, _FILE_MODE)

    def close(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        os.close(fd)

    def __enter__(self) -> "AuditLog":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def append(self, entry: AuditLogEntry) -> None:
        payload = self._redactor.fields(entry.to_dict())
        line = json.dumps(payload, ensure_ascii=True, default=json_default) + "\n"
        data = line.encode("utf-8")

        transient = self._fd is None
        if transient:
            self.open()
        fd = self._fd
        assert fd is not None
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                written = os.write(fd, data)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            if transient:
                self.close()
        if written != len(data):
            raise OSError(f"Short write to audit log {self._path}: {written}/{len(data)} bytes")

    def tail(self, count: int = 20) -> list[AuditLogEntry]:
        """Return the last ``count`` entries, oldest first."""
        if count <= 0 or not self._path.exists():
            return []
        lines = _read_last_lines(self._path, count)
        entries: list[AuditLogEntry] = []
        for raw in lines:
            try:
                entries.append(AuditLogEntry.from_dict(json.loads(raw)))
            except (ValueError, KeyError) as exc:
                logger.warning("Skipping unreadable audit line in %s: %s", self._path, exc)
        return entries


def _read_last_lines(path: Path, count: int) -> list[str]:
    with path.open("rb") as handle:
        handle.seek(0, os.SEEK_END)
        position = handle.tell()
        buffer = b""
        # One extra line so a partially read first line is never returned.
        while position > 0 and buffer.count(b"\n") <= count:
            step = min(_TAIL_BLOCK_SIZE, position)
            position -= step
            handle.seek(position)
            buffer = handle.read(step) + buffer
    lines = [line for line in buffer.split(b"\n") if line.strip()]
    if position > 0:
        lines = lines[1:]
    return [line.decode("utf-8", errors="replace") for line in lines[-count:]]
