"""mysqldump adapter.

The password is handed to mysqldump through a temporary option file created
with mode 0600 and removed on every exit path, so it never shows up in the
process table or in any log line.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import SecretStr

from stackops.errors import DumpError, ErrorKind
from stackops.execution.runner import CommandRunner

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"


def _option_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class MysqlDumpTool:
    def __init__(
        self,
        runner: CommandRunner,
        timeout: float,
        binary: str = "mysqldump",
        extra_args: tuple[str, ...] = ("--single-transaction", "--quick", "--routines", "--triggers"),
    ) -> None:
        self._runner = runner
        self._timeout = timeout
        self._binary = binary
        self._extra_args = extra_args

    def dump(
        self,
        database: str,
        user: str,
        credential: SecretStr,
        dest_path: str | Path,
        *,
        host: str = "localhost",
        port: int = 3306,
    ) -> int:
        """Dump ``database`` into ``dest_path`` and return its size in bytes.

        Output goes to ``<dest_path>.partial`` first and is renamed only after
        mysqldump succeeded with non-empty output.
        """
        dest = Path(dest_path)
        if dest.exists():
            raise DumpError(f"artifact {dest.name} already exists")
        partial = dest.with_name(dest.name + PARTIAL_SUFFIX)
        try:
            options_path = self._write_option_file(user, credential, host, port)
        except OSError as exc:
            raise DumpError(f"cannot write mysqldump option file: {exc}") from exc
        completed = False
        try:
            result = self._runner.run(
                [
                    self._binary,
                    f"--defaults-extra-file={options_path}",
                    *self._extra_args,
                    database,
                ],
                phase=ErrorKind.DUMP,
                timeout=self._timeout,
                stdout_path=partial,
            )
            if not result.ok:
                raise DumpError(
                    f"mysqldump failed with exit code {result.returncode}",
                    tool_output=result.output,
                )
            size = partial.stat().st_size
            if size == 0:
                raise DumpError("mysqldump produced an empty dump", tool_output=result.output)
            os.replace(partial, dest)
            completed = True
            return size
        except OSError as exc:
            raise DumpError(f"cannot write dump {dest.name}: {exc}") from exc
        finally:
            _remove_quietly(options_path)
            if not completed:
                _remove_quietly(partial)

    @staticmethod
    def _write_option_file(user: str, credential: SecretStr, host: str, port: int) -> Path:
        fd, name = tempfile.mkstemp(prefix="stackops-my-", suffix=".cnf")
        try:
            os.fchmod(fd, 0o600)
            content = (
                "[client]\n"
                f"user={_option_value(user)}\n"
                f"password={_option_value(credential.get_secret_value())}\n"
                f"host={_option_value(host)}\n"
                f"port={port}\n"
            )
            os.write(fd, content.encode("utf-8"))
        finally:
            os.close(fd)
        return Path(name)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Failed to remove %s: %s", path, exc)
