"""Local artifact naming, durability markers and retention pruning."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from stackops.errors import PruneError
from stackops.utils.time import format_artifact_timestamp, parse_artifact_timestamp

logger = logging.getLogger(__name__)

DUMP_SUFFIX = ".sql"
DURABLE_SUFFIX = ".durable"


@dataclass(frozen=True)
class LocalArtifact:
    path: Path
    timestamp: datetime

    @property
    def marker(self) -> Path:
        return marker_path(self.path)

    @property
    def is_durable(self) -> bool:
        return self.marker.exists()


def artifact_filename(database: str, moment: datetime) -> str:
    return f"{database}_{format_artifact_timestamp(moment)}{DUMP_SUFFIX}"


def marker_path(local_path: Path) -> Path:
    return local_path.with_name(local_path.name + DURABLE_SUFFIX)


def _artifact_pattern(database: str) -> re.Pattern:
    return re.compile(
        rf"^{re.escape(database)}_(\d{{4}}-\d{{2}}-\d{{2}}-\d{{2}}-\d{{2}}-\d{{2}}){re.escape(DUMP_SUFFIX)}$"
    )


def list_artifacts(staging_dir: Path, database: str) -> list[LocalArtifact]:
    """Local dumps of ``database``, oldest first."""
    if not staging_dir.is_dir():
        return []
    pattern = _artifact_pattern(database)
    found: list[LocalArtifact] = []
    for path in staging_dir.iterdir():
        match = pattern.match(path.name)
        if match is None or not path.is_file():
            continue
        found.append(LocalArtifact(path=path, timestamp=parse_artifact_timestamp(match.group(1))))
    return sorted(found, key=lambda artifact: artifact.path.name)


def write_durable_marker(local_path: Path, remote_uri: str, checksum: str | None, uploaded_at: str) -> None:
    marker = marker_path(local_path)
    tmp = marker.with_name(marker.name + ".tmp")
    tmp.write_text(
        json.dumps({"remote": remote_uri, "checksum": checksum, "uploaded_at": uploaded_at}),
        encoding="utf-8",
    )
    os.replace(tmp, marker)


def prune_expired(
    staging_dir: Path,
    database: str,
    retention_days: int,
    now: datetime,
    *,
    exclude: tuple[Path, ...] = (),
) -> list[str]:
    """Delete durable local dumps older than the retention window.

    Dumps without a durable marker (upload never succeeded) are kept whatever
    their age. Remote copies are not touched.
    """
    cutoff = now - timedelta(days=retention_days)
    excluded = {path.resolve() for path in exclude}
    removed: list[str] = []
    failures: list[str] = []
    try:
        artifacts = list_artifacts(staging_dir, database)
    except OSError as exc:
        raise PruneError(f"cannot list {staging_dir}: {exc}") from exc
    for artifact in artifacts:
        if artifact.path.resolve() in excluded or artifact.timestamp >= cutoff:
            continue
        if not artifact.is_durable:
            logger.warning("Keeping expired dump %s: upload never confirmed", artifact.path.name)
            continue
        try:
            artifact.path.unlink()
            artifact.marker.unlink(missing_ok=True)
        except OSError as exc:
            failures.append(f"{artifact.path.name}: {exc}")
            continue
        logger.info("Pruned local dump %s", artifact.path.name)
        removed.append(artifact.path.name)
    if failures:
        raise PruneError(f"could not prune {len(failures)} dump(s): " + "; ".join(failures))
    return removed
