"""Data models for deploy runs, backup artifacts and audit entries."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum

from stackops.errors import ErrorKind


class Outcome(str, Enum):
    STARTED = "started"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class OperationKind(str, Enum):
    DEPLOY = "deploy"
    BACKUP = "backup"


@dataclass(frozen=True)
class PhaseResult:
    phase: str
    outcome: Outcome
    duration_ms: int
    error_kind: ErrorKind | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


@dataclass(frozen=True)
class AuditLogEntry:
    timestamp: str
    operation: OperationKind
    outcome: Outcome
    message: str
    run_id: str
    phase: str | None = None
    duration_ms: int | None = None
    error_kind: ErrorKind | None = None
    details: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["operation"] = self.operation.value
        data["outcome"] = self.outcome.value
        data["error_kind"] = self.error_kind.value if self.error_kind else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "AuditLogEntry":
        error_kind = data.get("error_kind")
        return cls(
            timestamp=str(data["timestamp"]),
            operation=OperationKind(data["operation"]),
            outcome=Outcome(data["outcome"]),
            message=str(data.get("message", "")),
            run_id=str(data.get("run_id", "")),
            phase=data.get("phase"),  # type: ignore[arg-type]
            duration_ms=data.get("duration_ms"),  # type: ignore[arg-type]
            error_kind=ErrorKind(error_kind) if error_kind else None,
            details=dict(data.get("details") or {}),  # type: ignore[call-overload]
        )


@dataclass(frozen=True)
class DeploymentRecord:
    run_id: str
    started_at: datetime
    finished_at: datetime
    outcome: Outcome
    commit: str | None
    log_excerpt: str
    error_kind: ErrorKind | None = None
    phases: tuple[PhaseResult, ...] = ()

    def summary(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "outcome": self.outcome.value,
            "commit": self.commit,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "phases": [phase.phase for phase in self.phases],
        }


@dataclass(frozen=True)
class BackupArtifact:
    database: str
    timestamp: datetime
    local_path: str
    remote_key: str
    size: int = 0
    checksum: str | None = None
    outcome: Outcome = Outcome.STARTED
    error_kind: ErrorKind | None = None

    def summary(self) -> dict[str, object]:
        return {
            "database": self.database,
            "timestamp": self.timestamp.isoformat(),
            "local_path": self.local_path,
            "remote_key": self.remote_key,
            "size": self.size,
            "checksum": self.checksum,
            "outcome": self.outcome.value,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }


@dataclass(frozen=True)
class BackupRunResult:
    run_id: str
    outcome: Outcome
    artifact: BackupArtifact | None
    phases: tuple[PhaseResult, ...] = ()
    pruned: tuple[str, ...] = ()
    error_kind: ErrorKind | None = None
    message: str = ""


@dataclass
class RetryState:
    """Transient bookkeeping for one retried operation."""

    operation_id: str
    attempts: int = 0
    last_error: str | None = None
    next_backoff: float | None = None
