"""Mutual-exclusion guard keyed on a name (one backup per database)."""

from __future__ import annotations

import fcntl
import logging
import os
import re
from pathlib import Path

from stackops.errors import ConcurrencyGuardSkip

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class RunGuard:
    """Non-blocking advisory file lock.

    The lock is held by the open file description, so it is released by the
    kernel if the process dies without calling :meth:`release`.
    """

    def __init__(self, lock_dir: str | Path, key: str) -> None:
        self._key = key
        self._path = Path(lock_dir) / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.lock"
        self._file = None

    @property
    def path(self) -> Path:
        return self._path

    def acquire(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self._path, "a+")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.seek(0)
            holder = handle.read().strip() or None
            handle.close()
            raise ConcurrencyGuardSkip(self._key, holder) from None
        except BaseException:
            handle.close()
            raise
        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._file = handle
        logger.debug("Acquired run guard %s", self._path)

    def release(self) -> None:
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None

    def __enter__(self) -> "RunGuard":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
