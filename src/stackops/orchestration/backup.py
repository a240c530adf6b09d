"""Backup run: dump the database, upload the dump, prune expired local copies.

Runs for the same database never overlap: a run that finds the guard held
is recorded as skipped. A failed or partial dump is never uploaded. Upload is
the only retried step; when every attempt fails the dump stays on disk
without a durable marker so ``resume_uploads`` (or a later run) can push it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from pydantic import SecretStr

from stackops.audit.log import AuditLog
from stackops.config import BackupSettings
from stackops.domain.models import (
    AuditLogEntry,
    BackupArtifact,
    BackupRunResult,
    OperationKind,
    Outcome,
    PhaseResult,
)
from stackops.errors import (
    ConcurrencyGuardSkip,
    DumpError,
    ErrorKind,
    OpsError,
    UploadError,
    phase_kind_of,
)
from stackops.execution.guard import RunGuard
from stackops.execution.retry import BackoffPolicy, RetryExhausted, retry_call
from stackops.orchestration.phases import PhaseOutcome, phase_entry, run_phase
from stackops.orchestration.retention import (
    artifact_filename,
    list_artifacts,
    prune_expired,
    write_durable_marker,
)
from stackops.utils.hashing import sha256_file
from stackops.utils.time import Clock, utc_now

logger = logging.getLogger(__name__)


class DumpTool(Protocol):
    def dump(
        self,
        database: str,
        user: str,
        credential: SecretStr,
        dest_path: str | Path,
        *,
        host: str = ...,
        port: int = ...,
    ) -> int: ...


class ObjectStorage(Protocol):
    def key_for(self, filename: str) -> str: ...

    def uri_for(self, key: str) -> str: ...

    def put(self, local_path: str | Path, key: str, metadata: dict[str, str] | None = None) -> None: ...


class BackupOrchestrator:
    def __init__(
        self,
        settings: BackupSettings,
        dump_tool: DumpTool,
        storage: ObjectStorage,
        audit: AuditLog,
        *,
        credential_provider: Callable[[], SecretStr],
        guard_factory: Callable[[str], RunGuard] | None = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._dump_tool = dump_tool
        self._storage = storage
        self._audit = audit
        self._credential_provider = credential_provider
        self._guard_factory = guard_factory or (
            lambda key: RunGuard(settings.lock_dir, f"backup-{key}")
        )
        self._clock = clock
        self._sleep = sleep
        self._policy = BackoffPolicy(
            max_attempts=settings.max_attempts,
            base_seconds=settings.backoff_base_seconds,
            cap_seconds=settings.backoff_cap_seconds,
        )

    @property
    def staging_dir(self) -> Path:
        return Path(self._settings.backup_dir)

    def run(self) -> BackupRunResult:
        run_id = uuid4().hex
        guard = self._guard_factory(self._settings.database)
        with self._audit:
            try:
                guard.acquire()
            except ConcurrencyGuardSkip as exc:
                return self._skipped(run_id, exc)
            try:
                return self._run_guarded(run_id)
            finally:
                guard.release()

    def resume_uploads(self) -> list[BackupArtifact]:
        """Upload local dumps whose earlier upload never succeeded."""
        run_id = uuid4().hex
        guard = self._guard_factory(self._settings.database)
        results: list[BackupArtifact] = []
        with self._audit:
            try:
                guard.acquire()
            except ConcurrencyGuardSkip as exc:
                self._skipped(run_id, exc)
                return results
            try:
                try:
                    pending = [
                        local
                        for local in list_artifacts(self.staging_dir, self._settings.database)
                        if not local.is_durable
                    ]
                except OSError as exc:
                    raise UploadError(f"cannot list {self.staging_dir}: {exc}") from exc
                for local in pending:
                    results.append(self._resume_one(run_id, local.path, local.timestamp))
            finally:
                guard.release()
        return results

    def _resume_one(self, run_id: str, path: Path, timestamp: datetime) -> BackupArtifact:
        artifact = BackupArtifact(
            database=self._settings.database,
            timestamp=timestamp,
            local_path=str(path),
            remote_key=self._storage.key_for(path.name),
        )

        def _measure_and_upload() -> int:
            nonlocal artifact
            artifact = self._measured(artifact, UploadError)
            return self._upload(artifact)

        upload = run_phase("upload", _measure_and_upload)
        self._audit.append(
            phase_entry(
                OperationKind.BACKUP,
                run_id,
                upload,
                self._clock,
                {"remote_key": artifact.remote_key, **self._attempts(upload)},
            )
        )
        if upload.ok:
            return replace(artifact, outcome=Outcome.SUCCESS)
        return self._failed(artifact, upload)

    def _run_guarded(self, run_id: str) -> BackupRunResult:
        settings = self._settings
        now = self._clock()
        filename = artifact_filename(settings.database, now)
        local_path = self.staging_dir / filename
        artifact = BackupArtifact(
            database=settings.database,
            timestamp=now,
            local_path=str(local_path),
            remote_key=self._storage.key_for(filename),
        )
        phases: list[PhaseResult] = []
        finished = False
        try:
            dump = run_phase("dump", lambda: self._dump(artifact))
            phases.append(dump.result)
            self._audit.append(
                phase_entry(
                    OperationKind.BACKUP, run_id, dump, self._clock,
                    {"local_path": str(local_path)},
                )
            )
            if not dump.ok:
                artifact = self._failed(artifact, dump)
                finished = True
                return self._finish(run_id, artifact, phases, dump)

            assert dump.value is not None
            artifact = dump.value

            upload = run_phase("upload", lambda: self._upload(artifact))
            phases.append(upload.result)
            self._audit.append(
                phase_entry(
                    OperationKind.BACKUP, run_id, upload, self._clock,
                    {"remote_key": artifact.remote_key, **self._attempts(upload)},
                )
            )
            if not upload.ok:
                artifact = self._failed(artifact, upload)
                finished = True
                return self._finish(run_id, artifact, phases, upload)

            artifact = replace(artifact, outcome=Outcome.SUCCESS)

            prune = run_phase(
                "prune",
                lambda: prune_expired(
                    self.staging_dir,
                    settings.database,
                    settings.retention_days,
                    now,
                    exclude=(local_path,),
                ),
            )
            phases.append(prune.result)
            self._audit.append(
                phase_entry(
                    OperationKind.BACKUP, run_id, prune, self._clock,
                    {"removed": prune.value or [], "retention_days": settings.retention_days},
                )
            )
            finished = True
            return self._finish(run_id, artifact, phases, prune, pruned=tuple(prune.value or ()))
        finally:
            if not finished:
                self._finish(
                    run_id,
                    replace(artifact, outcome=Outcome.FAILURE),
                    phases,
                    None,
                    interrupted=True,
                )

    def _dump(self, artifact: BackupArtifact) -> BackupArtifact:
        settings = self._settings
        local_path = Path(artifact.local_path)
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DumpError(f"cannot create backup directory {self.staging_dir}: {exc}") from exc
        if local_path.exists():
            raise DumpError(f"artifact {local_path.name} already exists")
        credential = self._credential_provider()
        self._audit.redactor.add(credential.get_secret_value())
        self._dump_tool.dump(
            settings.database,
            settings.user,
            credential,
            local_path,
            host=settings.host,
            port=settings.port,
        )
        return self._measured(artifact, DumpError)

    @staticmethod
    def _measured(artifact: BackupArtifact, error: type[OpsError]) -> BackupArtifact:
        path = Path(artifact.local_path)
        try:
            return replace(artifact, size=path.stat().st_size, checksum=sha256_file(path))
        except OSError as exc:
            raise error(f"cannot read {path.name}: {exc}") from exc

    def _upload(self, artifact: BackupArtifact) -> int:
        metadata = {"sha256": artifact.checksum} if artifact.checksum else None
        attempts = 0

        def _put() -> None:
            nonlocal attempts
            attempts += 1
            self._storage.put(artifact.local_path, artifact.remote_key, metadata)

        try:
            retry_call(
                _put,
                operation_id=f"upload {artifact.remote_key}",
                policy=self._policy,
                retry_on=(UploadError,),
                sleep=self._sleep,
            )
        except RetryExhausted as exc:
            last = exc.last_exc
            raise UploadError(
                f"upload failed after {exc.state.attempts} attempt(s): {exc.state.last_error}",
                tool_output=getattr(last, "tool_output", None),
                attempts=exc.state.attempts,
            ) from last
        uri = self._storage.uri_for(artifact.remote_key)
        try:
            write_durable_marker(
                Path(artifact.local_path), uri, artifact.checksum, self._clock().isoformat()
            )
        except OSError as exc:
            raise UploadError(
                f"uploaded to {uri} but the durable marker could not be written: {exc}",
                attempts=attempts,
            ) from exc
        return attempts

    @staticmethod
    def _attempts(outcome: PhaseOutcome) -> dict[str, object]:
        if outcome.ok:
            return {"attempts": outcome.value}
        return {"attempts": getattr(outcome.error, "attempts", None)}

    @staticmethod
    def _failed(artifact: BackupArtifact, outcome: PhaseOutcome) -> BackupArtifact:
        assert outcome.error is not None
        return replace(artifact, outcome=Outcome.FAILURE, error_kind=phase_kind_of(outcome.error))

    def _skipped(self, run_id: str, exc: ConcurrencyGuardSkip) -> BackupRunResult:
        logger.info("Backup skipped: %s", exc.message)
        self._audit.append(
            AuditLogEntry(
                timestamp=self._clock().isoformat(),
                operation=OperationKind.BACKUP,
                outcome=Outcome.SKIPPED,
                message=exc.message,
                run_id=run_id,
                phase="guard",
                error_kind=ErrorKind.SKIPPED,
                details={"database": self._settings.database},
            )
        )
        return BackupRunResult(
            run_id=run_id,
            outcome=Outcome.SKIPPED,
            artifact=None,
            error_kind=ErrorKind.SKIPPED,
            message=exc.message,
        )

    def _finish(
        self,
        run_id: str,
        artifact: BackupArtifact,
        phases: list[PhaseResult],
        last: PhaseOutcome | None,
        *,
        pruned: tuple[str, ...] = (),
        interrupted: bool = False,
    ) -> BackupRunResult:
        if interrupted:
            outcome, error_kind, message = Outcome.FAILURE, None, "backup interrupted"
        elif last is not None and last.error is not None:
            error_kind = phase_kind_of(last.error)
            outcome = Outcome.FAILURE
            message = f"backup failed: {error_kind.value}: {last.error.message}"
        else:
            outcome, error_kind = Outcome.SUCCESS, None
            message = f"backup uploaded to {self._storage.uri_for(artifact.remote_key)}"
        self._audit.append(
            AuditLogEntry(
                timestamp=self._clock().isoformat(),
                operation=OperationKind.BACKUP,
                outcome=outcome,
                message=message,
                run_id=run_id,
                phase="run",
                duration_ms=sum(phase.duration_ms for phase in phases),
                error_kind=error_kind,
                details={"artifact": artifact.summary(), "pruned": list(pruned)},
            )
        )
        logger.info("Backup %s finished: %s", run_id, message)
        return BackupRunResult(
            run_id=run_id,
            outcome=outcome,
            artifact=artifact,
            phases=tuple(phases),
            pruned=pruned,
            error_kind=error_kind,
            message=message,
        )
