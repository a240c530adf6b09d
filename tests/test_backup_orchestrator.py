from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import SecretStr

from conftest import FakeDumpTool, FakeStorage
from stackops.config import BackupSettings
from stackops.domain.models import Outcome
from stackops.errors import DumpError, ErrorKind, PhaseTimeoutError
from stackops.execution.guard import RunGuard
from stackops.orchestration.backup import BackupOrchestrator
from stackops.orchestration.retention import marker_path

PASSWORD = "s3cr3t-Pa55"


def _settings(tmp_path: Path, **overrides) -> BackupSettings:
    values = dict(
        database="myappdb",
        user="backup",
        backup_dir=str(tmp_path / "backups"),
        bucket="bucket",
        retention_days=7,
        max_attempts=3,
        backoff_base_seconds=1.0,
        backoff_cap_seconds=4.0,
        lock_dir=str(tmp_path / "locks"),
    )
    values.update(overrides)
    return BackupSettings(**values)


def _orchestrator(tmp_path, audit, clock, dump=None, storage=None, sleeps=None, **overrides):
    settings = _settings(tmp_path, **overrides)
    return BackupOrchestrator(
        settings,
        dump or FakeDumpTool(),
        storage or FakeStorage(),
        audit,
        credential_provider=lambda: SecretStr(PASSWORD),
        clock=clock,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


def _entries(audit) -> list[dict]:
    return [json.loads(line) for line in audit.path.read_text().splitlines()]


def test_successful_run_uploads_one_artifact(tmp_path, audit, clock) -> None:
    storage = FakeStorage()
    result = _orchestrator(tmp_path, audit, clock, storage=storage).run()

    assert result.outcome is Outcome.SUCCESS
    artifact = result.artifact
    assert artifact is not None
    assert artifact.outcome is Outcome.SUCCESS
    assert Path(artifact.local_path).name == "myappdb_2024-03-01-12-00-00.sql"
    assert artifact.remote_key == "backups/myappdb_2024-03-01-12-00-00.sql"
    assert artifact.checksum is not None and artifact.size > 0
    assert storage.exists(artifact.remote_key)
    assert len(storage.put_calls) == 1
    assert marker_path(Path(artifact.local_path)).exists()


def test_one_audit_entry_per_phase_plus_run_summary(tmp_path, audit, clock) -> None:
    _orchestrator(tmp_path, audit, clock).run()

    entries = _entries(audit)
    assert [entry["phase"] for entry in entries] == ["dump", "upload", "prune", "run"]
    assert all(entry["outcome"] == "success" for entry in entries)
    assert all(isinstance(entry["duration_ms"], int) for entry in entries)


def test_dump_failure_never_uploads(tmp_path, audit, clock) -> None:
    storage = FakeStorage()
    dump = FakeDumpTool(fail_with=DumpError("mysqldump failed with exit code 2"))

    result = _orchestrator(tmp_path, audit, clock, dump=dump, storage=storage).run()

    assert result.outcome is Outcome.FAILURE
    assert result.error_kind is ErrorKind.DUMP
    assert result.artifact.outcome is Outcome.FAILURE
    assert storage.put_calls == []
    assert [entry["phase"] for entry in _entries(audit)] == ["dump", "run"]


def test_dump_timeout_is_a_dump_failure(tmp_path, audit, clock) -> None:
    dump = FakeDumpTool(fail_with=PhaseTimeoutError(ErrorKind.DUMP, 5, "mysqldump"))
    result = _orchestrator(tmp_path, audit, clock, dump=dump).run()

    assert result.error_kind is ErrorKind.DUMP
    assert result.phases[0].error_kind is ErrorKind.TIMEOUT


def test_upload_always_failing_retries_three_times_and_keeps_dump(tmp_path, audit, clock) -> None:
    storage = FakeStorage(failures=99)
    sleeps: list[float] = []

    result = _orchestrator(tmp_path, audit, clock, storage=storage, sleeps=sleeps).run()

    assert result.outcome is Outcome.FAILURE
    assert result.error_kind is ErrorKind.UPLOAD
    assert len(storage.put_calls) == 3
    assert sleeps == [1.0, 2.0]
    local = Path(result.artifact.local_path)
    assert local.exists()
    assert not marker_path(local).exists()
    upload_entry = _entries(audit)[1]
    assert upload_entry["phase"] == "upload"
    assert upload_entry["details"]["attempts"] == 3


def test_upload_recovers_after_transient_failure(tmp_path, audit, clock) -> None:
    storage = FakeStorage(failures=1)
    result = _orchestrator(tmp_path, audit, clock, storage=storage).run()

    assert result.outcome is Outcome.SUCCESS
    assert len(storage.put_calls) == 2


def test_expired_artifact_pruned_on_next_run_remote_untouched(tmp_path, audit, clock) -> None:
    storage = FakeStorage()
    orchestrator = _orchestrator(tmp_path, audit, clock, storage=storage)

    first = orchestrator.run()
    clock.advance(days=8)
    second = orchestrator.run()

    assert second.outcome is Outcome.SUCCESS
    assert not Path(first.artifact.local_path).exists()
    assert not marker_path(Path(first.artifact.local_path)).exists()
    assert Path(second.artifact.local_path).exists()
    assert second.pruned == (Path(first.artifact.local_path).name,)
    assert storage.exists(first.artifact.remote_key)
    assert storage.exists(second.artifact.remote_key)


def test_artifact_within_retention_is_kept(tmp_path, audit, clock) -> None:
    orchestrator = _orchestrator(tmp_path, audit, clock)

    first = orchestrator.run()
    clock.advance(days=6)
    second = orchestrator.run()

    assert second.pruned == ()
    assert Path(first.artifact.local_path).exists()


def test_expired_dump_without_upload_is_not_pruned(tmp_path, audit, clock) -> None:
    failing = _orchestrator(tmp_path, audit, clock, storage=FakeStorage(failures=99))
    first = failing.run()
    clock.advance(days=30)
    _orchestrator(tmp_path, audit, clock).run()

    assert Path(first.artifact.local_path).exists()


def test_run_is_skipped_while_guard_is_held(tmp_path, audit, clock) -> None:
    dump = FakeDumpTool()
    orchestrator = _orchestrator(tmp_path, audit, clock, dump=dump)

    with RunGuard(tmp_path / "locks", "backup-myappdb"):
        result = orchestrator.run()

    assert result.outcome is Outcome.SKIPPED
    assert result.error_kind is ErrorKind.SKIPPED
    assert result.artifact is None
    assert dump.calls == []
    entry = _entries(audit)[-1]
    assert entry["outcome"] == "skipped"
    assert entry["phase"] == "guard"


def test_second_run_in_same_second_does_not_overwrite(tmp_path, audit, clock) -> None:
    orchestrator = _orchestrator(tmp_path, audit, clock)

    first = orchestrator.run()
    second = orchestrator.run()

    assert first.outcome is Outcome.SUCCESS
    assert second.outcome is Outcome.FAILURE
    assert second.error_kind is ErrorKind.DUMP
    assert len(list((tmp_path / "backups").glob("*.sql"))) == 1


def test_credential_never_reaches_audit_log(tmp_path, audit, clock) -> None:
    dump = FakeDumpTool(
        fail_with=DumpError(
            "mysqldump failed with exit code 2",
            tool_output=f"mysqldump: Got error: 1045: Access denied (password {PASSWORD})",
        )
    )
    _orchestrator(tmp_path, audit, clock, dump=dump).run()

    assert PASSWORD not in audit.path.read_text()


def test_resume_uploads_pushes_pending_dumps(tmp_path, audit, clock) -> None:
    first = _orchestrator(tmp_path, audit, clock, storage=FakeStorage(failures=99)).run()
    storage = FakeStorage()

    resumed = _orchestrator(tmp_path, audit, clock, storage=storage).resume_uploads()

    assert [artifact.outcome for artifact in resumed] == [Outcome.SUCCESS]
    assert storage.exists(first.artifact.remote_key)
    assert marker_path(Path(first.artifact.local_path)).exists()


def test_interrupt_during_upload_leaves_failure_entry(tmp_path, audit, clock) -> None:
    class InterruptingStorage(FakeStorage):
        def put(self, local_path, key, metadata=None):
            raise KeyboardInterrupt

    orchestrator = _orchestrator(tmp_path, audit, clock, storage=InterruptingStorage())
    with pytest.raises(KeyboardInterrupt):
        orchestrator.run()

    last = _entries(audit)[-1]
    assert last["phase"] == "run"
    assert last["outcome"] == "failure"
    assert last["details"]["artifact"]["outcome"] == "failure"


def test_unusable_backup_dir_is_a_dump_failure(tmp_path, audit, clock) -> None:
    (tmp_path / "backups").write_text("not a directory")
    storage = FakeStorage()

    result = _orchestrator(tmp_path, audit, clock, storage=storage).run()

    assert result.outcome is Outcome.FAILURE
    assert result.error_kind is ErrorKind.DUMP
    assert storage.put_calls == []
    entries = _entries(audit)
    assert [entry["phase"] for entry in entries] == ["dump", "run"]
    assert entries[0]["outcome"] == "failure"
    assert entries[0]["error_kind"] == "dump_failure"
    assert isinstance(entries[0]["duration_ms"], int)
    assert entries[-1]["error_kind"] == "dump_failure"


def test_unreadable_dump_is_a_dump_failure(tmp_path, audit, clock, monkeypatch) -> None:
    def _unreadable(path):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr("stackops.orchestration.backup.sha256_file", _unreadable)
    storage = FakeStorage()

    result = _orchestrator(tmp_path, audit, clock, storage=storage).run()

    assert result.error_kind is ErrorKind.DUMP
    assert storage.put_calls == []
    assert _entries(audit)[0]["error_kind"] == "dump_failure"


def test_marker_write_failure_is_an_upload_failure(tmp_path, audit, clock, monkeypatch) -> None:
    def _fail_marker(*args, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("stackops.orchestration.backup.write_durable_marker", _fail_marker)
    storage = FakeStorage()

    result = _orchestrator(tmp_path, audit, clock, storage=storage).run()

    assert result.outcome is Outcome.FAILURE
    assert result.error_kind is ErrorKind.UPLOAD
    assert len(storage.put_calls) == 1
    local = Path(result.artifact.local_path)
    assert local.exists()
    assert not marker_path(local).exists()
    entries = _entries(audit)
    assert [entry["phase"] for entry in entries] == ["dump", "upload", "run"]
    assert entries[1]["error_kind"] == "upload_failure"
    assert "No space left on device" in entries[1]["message"]


def test_resume_reports_unreadable_dump_as_upload_failure(tmp_path, audit, clock, monkeypatch) -> None:
    _orchestrator(tmp_path, audit, clock, storage=FakeStorage(failures=99)).run()

    def _unreadable(path):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr("stackops.orchestration.backup.sha256_file", _unreadable)
    storage = FakeStorage()

    resumed = _orchestrator(tmp_path, audit, clock, storage=storage).resume_uploads()

    assert [artifact.error_kind for artifact in resumed] == [ErrorKind.UPLOAD]
    assert storage.put_calls == []
    assert _entries(audit)[-1]["error_kind"] == "upload_failure"
