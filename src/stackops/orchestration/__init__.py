"""Deploy and backup runs."""

from stackops.orchestration.backup import BackupOrchestrator
from stackops.orchestration.deploy import DeployOrchestrator

__all__ = ["BackupOrchestrator", "DeployOrchestrator"]
