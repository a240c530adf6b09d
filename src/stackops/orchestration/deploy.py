"""Deploy run: fetch the latest code, install dependencies, restart the app.

Every run writes exactly one start marker and one end marker to the audit
log; the per-phase entries (with tool output) sit between them. The first
failing phase stops the run, so a failed fetch or install never restarts the
process on stale or half-installed code.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from stackops.audit.log import AuditLog
from stackops.config import DeploySettings
from stackops.domain.models import (
    AuditLogEntry,
    DeploymentRecord,
    OperationKind,
    Outcome,
    PhaseResult,
)
from stackops.errors import ErrorKind, FetchError, ProcessControlError, phase_kind_of
from stackops.orchestration.phases import excerpt, phase_entry, run_phase
from stackops.utils.time import Clock, utc_now

logger = logging.getLogger(__name__)


class VersionControl(Protocol):
    def clone(self, url: str, branch: str, dest: str | Path) -> str: ...

    def pull(self, dest: str | Path, branch: str) -> str: ...

    def head_commit(self, dest: str | Path) -> str: ...


class Installer(Protocol):
    def install(self, dest: str | Path) -> str: ...


class ProcessManager(Protocol):
    def restart(self, name: str) -> str: ...

    def status(self, name: str) -> str | None: ...


class DeployOrchestrator:
    def __init__(
        self,
        settings: DeploySettings,
        vcs: VersionControl,
        installer: Installer,
        process_manager: ProcessManager,
        audit: AuditLog,
        *,
        clock: Clock = utc_now,
        excerpt_chars: int = 2_000,
    ) -> None:
        self._settings = settings
        self._vcs = vcs
        self._installer = installer
        self._process_manager = process_manager
        self._audit = audit
        self._clock = clock
        self._excerpt_chars = excerpt_chars

    def run(self) -> DeploymentRecord:
        run_id = uuid4().hex
        started_at = self._clock()
        settings = self._settings
        phases: list[PhaseResult] = []
        outputs: list[str] = []
        commit: str | None = None
        error_kind: ErrorKind | None = None
        process_status: str | None = None
        finished = False

        with self._audit:
            self._audit.append(
                AuditLogEntry(
                    timestamp=started_at.isoformat(),
                    operation=OperationKind.DEPLOY,
                    outcome=Outcome.STARTED,
                    message=(
                        f"deploy of {settings.repo_url}@{settings.branch} "
                        f"into {settings.app_dir} started"
                    ),
                    run_id=run_id,
                    phase="start",
                    details={"process": settings.process_name},
                )
            )
            try:
                steps: list[tuple[str, Callable[[], tuple[str, dict[str, object]]]]] = [
                    ("fetch", self._fetch),
                    ("install", self._install),
                    ("restart", self._restart),
                ]
                for name, action in steps:
                    outcome = run_phase(name, action)
                    phases.append(outcome.result)
                    details: dict[str, object] = {}
                    if outcome.ok:
                        assert outcome.value is not None
                        output, details = outcome.value
                        outputs.append(output)
                        commit = details.get("commit", commit)  # type: ignore[assignment]
                    else:
                        assert outcome.error is not None
                        outputs.append(outcome.error.tool_output or outcome.error.message)
                        error_kind = phase_kind_of(outcome.error)
                    self._audit.append(
                        phase_entry(OperationKind.DEPLOY, run_id, outcome, self._clock, details)
                    )
                    if not outcome.ok:
                        break
                else:
                    process_status = self._read_status()

                record = self._finish(
                    run_id, started_at, phases, outputs, commit, error_kind, process_status
                )
                finished = True
                return record
            finally:
                if not finished:
                    # Interrupted or crashed: still leave a terminal entry.
                    self._finish(
                        run_id, started_at, phases, outputs, commit, error_kind, None,
                        interrupted=True,
                    )

    def _fetch(self) -> tuple[str, dict[str, object]]:
        app_dir = Path(self._settings.app_dir)
        if not app_dir.exists():
            try:
                app_dir.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise FetchError(f"cannot create {app_dir.parent}: {exc}") from exc
            logger.info(
                "Cloning %s into %s", self._audit.redactor.text(self._settings.repo_url), app_dir
            )
            output = self._vcs.clone(self._settings.repo_url, self._settings.branch, app_dir)
        else:
            logger.info("Pulling %s in %s", self._settings.branch, app_dir)
            output = self._vcs.pull(app_dir, self._settings.branch)
        return output, {"commit": self._vcs.head_commit(app_dir)}

    def _install(self) -> tuple[str, dict[str, object]]:
        return self._installer.install(self._settings.app_dir), {}

    def _restart(self) -> tuple[str, dict[str, object]]:
        return self._process_manager.restart(self._settings.process_name), {}

    def _read_status(self) -> str | None:
        try:
            return self._process_manager.status(self._settings.process_name)
        except ProcessControlError as exc:
            logger.warning("Could not read status of %s: %s", self._settings.process_name, exc)
            return None

    def _finish(
        self,
        run_id: str,
        started_at: datetime,
        phases: list[PhaseResult],
        outputs: list[str],
        commit: str | None,
        error_kind: ErrorKind | None,
        process_status: str | None,
        *,
        interrupted: bool = False,
    ) -> DeploymentRecord:
        failed = interrupted or error_kind is not None
        record = DeploymentRecord(
            run_id=run_id,
            started_at=started_at,
            finished_at=self._clock(),
            outcome=Outcome.FAILURE if failed else Outcome.SUCCESS,
            commit=commit,
            log_excerpt=excerpt(outputs, self._excerpt_chars),
            error_kind=error_kind,
            phases=tuple(phases),
        )
        if interrupted:
            message = "deploy interrupted"
        elif failed:
            message = f"deploy failed: {error_kind.value}"
        else:
            message = f"deploy succeeded at {commit or 'unknown commit'}"
        details = record.summary()
        details["process_status"] = process_status
        details["log_excerpt"] = record.log_excerpt
        self._audit.append(
            AuditLogEntry(
                timestamp=record.finished_at.isoformat(),
                operation=OperationKind.DEPLOY,
                outcome=record.outcome,
                message=message,
                run_id=run_id,
                phase="end",
                duration_ms=int((record.finished_at - started_at).total_seconds() * 1000),
                error_kind=error_kind,
                details=details,
            )
        )
        logger.info("Deploy %s finished: %s", run_id, message)
        return record
