"""Adapters for the external tools the orchestrators drive."""

from stackops.clients.dump import MysqlDumpTool
from stackops.clients.installer import NpmInstaller
from stackops.clients.process_manager import Pm2ProcessManager
from stackops.clients.storage import S3StorageClient
from stackops.clients.vcs import GitClient

__all__ = [
    "GitClient",
    "MysqlDumpTool",
    "NpmInstaller",
    "Pm2ProcessManager",
    "S3StorageClient",
]
