"""Main CLI application for stackops.

``stackops deploy`` and ``stackops backup`` take no flags: everything comes
from static configuration. Both exit 0 on success and with a distinct code
per failure kind (see :class:`ExitCode`); the last printed line names the
failure kind.
"""

from __future__ import annotations

import signal
import sys
from typing import Annotated, NoReturn

import typer
from rich.console import Console

from stackops import __version__
from stackops.app import (
    AppContext,
    build_backup_orchestrator,
    build_context,
    build_deploy_orchestrator,
)
from stackops.audit.log import AuditLog
from stackops.cli.constants import DEFAULT_TAIL_ENTRIES, ExitCode
from stackops.config import load_settings
from stackops.domain.models import Outcome
from stackops.errors import ConfigurationError, OpsError
from stackops.logging_utils import configure_logging
from stackops.scheduler import Scheduler, backup_command, cron_entry, spawn_detached
from stackops.utils.time import utc_now

console = Console()

app = typer.Typer(
    name="stackops",
    help="Deploy the application and back up its database, with an audit trail.",
    rich_markup_mode="rich",
    add_completion=False,
    no_args_is_help=True,
)


def _fail(message: str, code: int) -> NoReturn:
    console.print(message, style="bold red", markup=False, highlight=False)
    raise typer.Exit(code=code)


def _context() -> AppContext:
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        _fail(f"config_error: {exc.message}", ExitCode.CONFIG_ERROR)
    configure_logging()
    return build_context(settings)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[bool, typer.Option("--version", help="Show version and exit")] = False,
) -> None:
    if version:
        console.print(f"stackops {__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()


@app.command()
def deploy() -> None:
    """Fetch the latest code, install dependencies and restart the app."""
    ctx = _context()
    record = build_deploy_orchestrator(ctx).run()
    if record.outcome is Outcome.SUCCESS:
        console.print(
            f"deploy succeeded at {record.commit or 'unknown commit'}",
            style="green",
            markup=False,
        )
        return
    failed = next((p for p in record.phases if not p.ok), None)
    kind = record.error_kind.value if record.error_kind else "failure"
    detail = f": {failed.message}" if failed and failed.message else ""
    _fail(f"deploy failed: {kind}{detail}", ExitCode.for_kind(record.error_kind))


@app.command()
def backup() -> None:
    """Dump the database, upload it to S3 and prune expired local dumps."""
    ctx = _context()
    try:
        orchestrator = build_backup_orchestrator(ctx)
    except OpsError as exc:
        _fail(f"{exc.kind.value}: {exc.message}", ExitCode.for_kind(exc.kind))
    result = orchestrator.run()
    if result.outcome is Outcome.SKIPPED:
        console.print(f"backup skipped: {result.message}", style="yellow", markup=False)
        return
    if result.outcome is Outcome.SUCCESS:
        console.print(result.message, style="green", markup=False)
        return
    _fail(result.message, ExitCode.for_kind(result.error_kind))


@app.command("resume-uploads")
def resume_uploads() -> None:
    """Upload local dumps whose earlier upload failed."""
    ctx = _context()
    try:
        orchestrator = build_backup_orchestrator(ctx)
    except OpsError as exc:
        _fail(f"{exc.kind.value}: {exc.message}", ExitCode.for_kind(exc.kind))
    try:
        artifacts = orchestrator.resume_uploads()
    except OpsError as exc:
        _fail(f"{exc.kind.value}: {exc.message}", ExitCode.for_kind(exc.kind))
    failed = [a for a in artifacts if a.outcome is not Outcome.SUCCESS]
    for artifact in artifacts:
        console.print(f"{artifact.outcome.value}: {artifact.remote_key}", markup=False)
    if failed:
        _fail(f"upload_failure: {len(failed)} dump(s) still pending", ExitCode.UPLOAD_FAILURE)
    if not artifacts:
        console.print("no pending uploads")


@app.command()
def schedule(
    once: Annotated[
        bool, typer.Option("--once", help="Trigger a single backup now and exit")
    ] = False,
) -> None:
    """Trigger the backup at the configured interval (default hourly)."""
    ctx = _context()
    interval_minutes = ctx.settings.schedule.interval_minutes
    try:
        scheduler = Scheduler(interval_minutes, lambda: spawn_detached(backup_command()))
    except ValueError as exc:
        _fail(f"config_error: {exc}", ExitCode.CONFIG_ERROR)
    if once:
        scheduler.tick()
        return
    console.print(
        f"triggering backups every {interval_minutes} minute(s), next at "
        f"{scheduler.next_fire_time(utc_now())}",
        markup=False,
    )
    scheduler.start()


@app.command("cron-line")
def cron_line() -> None:
    """Print the crontab entry equivalent to the configured schedule."""
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        _fail(f"config_error: {exc.message}", ExitCode.CONFIG_ERROR)
    try:
        line = cron_entry(settings.schedule.interval_minutes, backup_command())
    except ValueError as exc:
        _fail(f"config_error: {exc}", ExitCode.CONFIG_ERROR)
    console.print(line, markup=False, highlight=False, soft_wrap=True)


@app.command("audit-tail")
def audit_tail(
    count: Annotated[
        int, typer.Option("--count", "-n", min=1, help="Number of entries to show")
    ] = DEFAULT_TAIL_ENTRIES,
) -> None:
    """Show the most recent audit log entries."""
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        _fail(f"config_error: {exc.message}", ExitCode.CONFIG_ERROR)
    for entry in AuditLog(settings.audit.path).tail(count):
        kind = f" [{entry.error_kind.value}]" if entry.error_kind else ""
        console.print(
            f"{entry.timestamp} {entry.operation.value} {entry.phase or '-'} "
            f"{entry.outcome.value}{kind} {entry.message}",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt(f"signal {signum}")


def cli_main(args: list[str] | None = None) -> None:
    """Entry point for the CLI application."""
    # SIGTERM unwinds like Ctrl-C so temp files and child processes are cleaned up.
    signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        app(args=args)
    except KeyboardInterrupt:
        console.print("interrupted: operation cancelled", style="yellow")
        sys.exit(ExitCode.FAILURE)
    except Exception as exc:
        console.print(f"unexpected error: {exc}", style="bold red", markup=False)
        sys.exit(ExitCode.FAILURE)


def deploy_main() -> None:
    cli_main(["deploy", *sys.argv[1:]])


def backup_main() -> None:
    cli_main(["backup", *sys.argv[1:]])


if __name__ == "__main__":
    cli_main()
