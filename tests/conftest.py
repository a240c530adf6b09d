from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from stackops import config
from stackops.audit.log import AuditLog
from stackops.errors import ErrorKind, UploadError
from stackops.execution.runner import CommandResult
from stackops.utils.masking import Redactor


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # Never pick up a developer's .env or config file during tests.
    monkeypatch.setenv("STACKOPS_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.delenv("STACKOPS_CONFIG", raising=False)
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


class FakeClock:
    """Deterministic UTC clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeRunner:
    """Stands in for CommandRunner; returns queued results in order."""

    def __init__(self, *results: CommandResult, stdout: bytes = b"") -> None:
        self.results = list(results)
        self.calls: list[dict[str, object]] = []
        self.stdout = stdout

    def run(self, args, *, phase: ErrorKind, timeout: float, cwd=None, env=None, stdout_path=None):
        self.calls.append(
            {"args": tuple(args), "phase": phase, "timeout": timeout, "cwd": cwd, "stdout_path": stdout_path}
        )
        if stdout_path is not None:
            Path(stdout_path).write_bytes(self.stdout)
        result = self.results.pop(0) if self.results else ok()
        if isinstance(result, BaseException):
            raise result
        return result


def ok(output: str = "") -> CommandResult:
    return CommandResult(args=(), returncode=0, output=output, duration_ms=1)


def failed(output: str = "boom", code: int = 1) -> CommandResult:
    return CommandResult(args=(), returncode=code, output=output, duration_ms=1)


class FakeVcs:
    def __init__(self, fail_with: Exception | None = None, commit: str = "abc123") -> None:
        self.fail_with = fail_with
        self.commit = commit
        self.clones: list[tuple[str, str, str]] = []
        self.pulls: list[tuple[str, str]] = []

    def clone(self, url, branch, dest):
        if self.fail_with:
            raise self.fail_with
        Path(dest).mkdir(parents=True)
        self.clones.append((url, branch, str(dest)))
        return f"Cloning into '{dest}'..."

    def pull(self, dest, branch):
        if self.fail_with:
            raise self.fail_with
        self.pulls.append((str(dest), branch))
        return "Already up to date."

    def head_commit(self, dest):
        return self.commit


class FakeInstaller:
    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.calls = 0

    def install(self, dest):
        self.calls += 1
        if self.fail_with:
            raise self.fail_with
        return "added 12 packages"


class FakeProcessManager:
    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.restarts: list[str] = []
        self.running: set[str] = set()

    def restart(self, name):
        if self.fail_with:
            raise self.fail_with
        self.restarts.append(name)
        self.running.add(name)
        return f"[PM2] [{name}](0) ✓"

    def status(self, name):
        return "online" if name in self.running else None


class FakeDumpTool:
    def __init__(self, content: bytes = b"-- dump\nCREATE TABLE t (id int);\n", fail_with: Exception | None = None) -> None:
        self.content = content
        self.fail_with = fail_with
        self.calls: list[dict[str, object]] = []

    def dump(self, database, user, credential, dest_path, *, host="localhost", port=3306):
        self.calls.append({"database": database, "user": user, "dest": str(dest_path)})
        if self.fail_with:
            raise self.fail_with
        Path(dest_path).write_bytes(self.content)
        return len(self.content)


class FakeStorage:
    def __init__(self, failures: int = 0, prefix: str = "backups") -> None:
        self.failures = failures
        self.prefix = prefix
        self.put_calls: list[tuple[str, str]] = []
        self.objects: dict[str, bytes] = {}

    def key_for(self, filename):
        return f"{self.prefix}/{filename}"

    def uri_for(self, key):
        return f"s3://bucket/{key}"

    def put(self, local_path, key, metadata=None):
        self.put_calls.append((str(local_path), key))
        if self.failures:
            self.failures -= 1
            raise UploadError(f"upload to {self.uri_for(key)} failed: connection reset")
        self.objects[key] = Path(local_path).read_bytes()

    def exists(self, key):
        return key in self.objects


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit(tmp_path: Path) -> AuditLog:
    return AuditLog(str(tmp_path / "logs" / "audit.jsonl"), Redactor())
