"""
Deployment primitives.

- DeploymentManager: serializes transactions under the global deploy lock
- DeployTransaction / DeleteTransaction: stage, back up, swap, commit or roll back
- extract_file / extract_directory: populate a staging path from a request body
- fetch_artifact: download an artifact before deploying it (CLI)
- Journal: on-disk record of in-flight transactions, read back by the stale purge
"""

from .cleanup import cleanup_path, find_stale_artifacts, purge_artifact, purge_stale_artifacts
from .extract import ARCHIVE_CONTENT_TYPES, extract_directory, extract_file
from .fetch import fetch_artifact
from .journal import Journal, JournalEntry, default_journal_dir
from .manager import DEPLOY_LOCK, DeploymentManager
from .paths import backup_path, new_transaction_id, staging_path
from .transaction import DeleteTransaction, DeployTransaction, Phase

__all__ = [
    "ARCHIVE_CONTENT_TYPES",
    "DEPLOY_LOCK",
    "DeleteTransaction",
    "DeployTransaction",
    "DeploymentManager",
    "Journal",
    "JournalEntry",
    "Phase",
    "backup_path",
    "cleanup_path",
    "default_journal_dir",
    "extract_directory",
    "extract_file",
    "fetch_artifact",
    "find_stale_artifacts",
    "new_transaction_id",
    "purge_artifact",
    "purge_stale_artifacts",
    "staging_path",
]
