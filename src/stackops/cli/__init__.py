"""Command-line interface for stackops."""

from stackops.cli.app import app, backup_main, cli_main, deploy_main

__all__ = ["app", "backup_main", "cli_main", "deploy_main"]
