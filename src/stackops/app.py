"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import SecretStr

from stackops.audit.log import AuditLog
from stackops.clients.dump import MysqlDumpTool
from stackops.clients.installer import NpmInstaller
from stackops.clients.process_manager import Pm2ProcessManager
from stackops.clients.storage import S3StorageClient, create_s3_client
from stackops.clients.vcs import GitClient
from stackops.config import Settings, load_settings
from stackops.credentials import resolve_credential
from stackops.execution.runner import CommandRunner
from stackops.orchestration.backup import BackupOrchestrator
from stackops.orchestration.deploy import DeployOrchestrator
from stackops.utils.masking import Redactor


@dataclass
class AppContext:
    """Process-wide dependencies shared by the deploy and backup runs."""

    settings: Settings
    redactor: Redactor
    runner: CommandRunner
    audit: AuditLog


def build_context(settings: Settings | None = None) -> AppContext:
    settings = settings or load_settings()
    redactor = Redactor()
    return AppContext(
        settings=settings,
        redactor=redactor,
        runner=CommandRunner(redactor),
        audit=AuditLog(settings.audit.path, redactor),
    )


def build_deploy_orchestrator(ctx: AppContext) -> DeployOrchestrator:
    deploy = ctx.settings.deploy
    return DeployOrchestrator(
        deploy,
        GitClient(ctx.runner, deploy.fetch_timeout_seconds),
        NpmInstaller(ctx.runner, deploy.install_timeout_seconds, deploy.install_command),
        Pm2ProcessManager(ctx.runner, deploy.restart_timeout_seconds),
        ctx.audit,
        excerpt_chars=ctx.settings.audit.excerpt_chars,
    )


def build_backup_orchestrator(ctx: AppContext) -> BackupOrchestrator:
    settings = ctx.settings
    backup = settings.backup

    def credential_provider() -> SecretStr:
        return resolve_credential(backup.credential_ref, settings.aws)

    storage = S3StorageClient(
        create_s3_client(settings.aws, backup.upload_timeout_seconds),
        backup.bucket,
        backup.prefix,
    )
    return BackupOrchestrator(
        backup,
        MysqlDumpTool(ctx.runner, backup.dump_timeout_seconds),
        storage,
        ctx.audit,
        credential_provider=credential_provider,
    )
