"""Best-effort removal of staging leftovers and backups."""

from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path
from typing import List, NamedTuple, Optional

import structlog

from site_deployer.deploy.paths import ARTIFACT_NAME_RE, STAGING_SUFFIX, fs_path

logger = structlog.get_logger()


class StaleArtifact(NamedTuple):
    path: Path
    target: Path
    transaction_id: str
    kind: str  # "staging" or "backup"


def remove_path(path: str) -> None:
    """Remove a file or a directory tree.

    A path that is already gone counts as removed. Every other error is
    raised to the caller.
    """
    path = fs_path(path)
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return
    if stat.S_ISDIR(st.st_mode):
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
    else:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


def cleanup_path(path: str) -> bool:
    """Remove ``path`` without ever raising.

    Returns False when something was left behind; the failure is logged
    since cleanup never changes the outcome of the operation it follows.
    """
    try:
        remove_path(path)
        return True
    except OSError as e:
        logger.warning("Cleanup failed", path=path, error=str(e))
        return False


def find_stale_artifacts(directory: str | Path) -> List[StaleArtifact]:
    """List staging and backup artifacts directly inside ``directory``."""
    directory = Path(directory)
    artifacts: List[StaleArtifact] = []
    try:
        entries = sorted(directory.iterdir())
    except FileNotFoundError:
        return artifacts
    for entry in entries:
        match = ARTIFACT_NAME_RE.match(entry.name)
        if not match:
            continue
        kind = "staging" if match.group("suffix") == STAGING_SUFFIX else "backup"
        artifacts.append(
            StaleArtifact(
                path=entry,
                target=entry.with_name(match.group("name")),
                transaction_id=match.group("id"),
                kind=kind,
            )
        )
    return artifacts


def purge_stale_artifacts(
    directory: str | Path,
    include_backups: bool = False,
    target: Optional[Path] = None,
) -> List[Path]:
    """Remove everything in ``directory`` named like a staging or backup artifact.

    Matching is by name only, so deployed content that happens to follow
    the naming pattern is removed too. Meant for directories an operator
    points at; automatic recovery goes through the transaction journal.
    Must only run while no transaction is in flight. Backups are removed
    only when asked to and only while their target still exists: a backup
    without a target may be the last copy of the content after a failed
    rollback. With ``target``, only that target's artifacts are touched.
    """
    removed: List[Path] = []
    for artifact in find_stale_artifacts(directory):
        if target is not None and artifact.target != target:
            continue
        if purge_artifact(artifact, include_backups):
            removed.append(artifact.path)
    return removed


def purge_artifact(artifact: StaleArtifact, include_backups: bool = False) -> bool:
    """Remove one leftover. Returns True when it was removed."""
    if artifact.kind == "backup":
        if not include_backups:
            return False
        if not os.path.lexists(artifact.target):
            logger.error(
                "Keeping orphaned backup: its target is missing",
                backup_path=str(artifact.path),
                target=str(artifact.target),
            )
            return False
    if cleanup_path(str(artifact.path)):
        logger.info("Removed stale artifact", path=str(artifact.path), kind=artifact.kind)
        return True
    return False
