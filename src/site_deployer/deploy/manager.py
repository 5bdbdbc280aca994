"""Serialized execution of deployment transactions.

Every transaction, whatever its target, runs under one process-wide lock
held from staging to commit or rollback. Deployments are therefore strictly
linearized: transaction N is committed or rolled back before N+1 starts
staging. Throughput is traded for never having two transactions race on
overlapping paths.
"""

from __future__ import annotations

import os
import threading
import time
from collections import deque
from pathlib import Path
from typing import BinaryIO, Callable, Deque, List, Optional

import structlog
from prometheus_client import Counter, Histogram

from site_deployer.core.exceptions import DeployError, InvalidArtifactError, RollbackError, SwapError
from site_deployer.core.models import DeploymentRecord, Operation, TransactionStatus
from site_deployer.deploy.cleanup import StaleArtifact, purge_artifact
from site_deployer.deploy.journal import Journal, JournalEntry, default_journal_dir
from site_deployer.deploy.paths import fs_path
from site_deployer.deploy.transaction import DeleteTransaction, DeployTransaction, _Transaction
from site_deployer.utils.logging import bind_deploy_context, clear_deploy_context

logger = structlog.get_logger()

DEPLOY_LOCK = threading.Lock()

TRANSACTIONS = Counter(
    "site_deployer_transactions_total",
    "Finished deployment transactions",
    ["operation", "status"],
)

TRANSACTION_DURATION = Histogram(
    "site_deployer_transaction_duration_seconds",
    "Time spent holding the deployment lock",
    ["operation"],
)


class DeploymentManager:
    """Runs deploy and delete transactions below a site root."""

    def __init__(self, root: Path | str, history_size: int = 100, journal_dir: Path | str | None = None):
        self.root = Path(os.path.abspath(root))
        self.journal = Journal(journal_dir or default_journal_dir(self.root))
        self.history: Deque[DeploymentRecord] = deque(maxlen=history_size)
        self.transactions_total = 0
        self.transactions_failed = 0

    @staticmethod
    def _rejected(error: DeployError, operation: Operation) -> DeployError:
        logger.info("Transaction rejected", operation=operation.value, **error.to_log_fields())
        return error

    def _check_inside_root(self, target: str, operation: Operation) -> None:
        path = fs_path(target)
        root = str(self.root)
        if path != root and not path.startswith(root + os.sep):
            raise self._rejected(
                InvalidArtifactError(
                    f"target {target} is outside of the site root {root}",
                    public_message="target is outside of the site root",
                    target=target,
                ),
                operation,
            )

    def deploy(
        self,
        target: str,
        reader: BinaryIO,
        content_type: Optional[str] = None,
        is_directory: Optional[bool] = None,
    ) -> DeploymentRecord:
        """Replace ``target`` with the content of ``reader``.

        ``reader`` is closed once staging is over, whatever the outcome.
        """
        try:
            self._check_inside_root(target, Operation.DEPLOY)
            tx = DeployTransaction(target, is_directory)
        except BaseException:
            reader.close()
            raise
        return self._run(tx, Operation.DEPLOY, lambda: tx.run(reader, content_type))

    def delete(self, target: str, is_directory: Optional[bool] = None) -> DeploymentRecord:
        """Remove ``target`` atomically."""
        self._check_inside_root(target, Operation.DELETE)
        if fs_path(target) == str(self.root):
            raise self._rejected(
                InvalidArtifactError(
                    "refusing to delete the site root",
                    public_message="the site root cannot be deleted",
                    target=target,
                ),
                Operation.DELETE,
            )
        tx = DeleteTransaction(target, is_directory)
        return self._run(tx, Operation.DELETE, tx.run)

    def _run(self, tx: _Transaction, operation: Operation, body: Callable[[], None]) -> DeploymentRecord:
        record = DeploymentRecord(
            transaction_id=tx.transaction_id,
            operation=operation,
            target=tx.target,
            is_directory=tx.is_directory,
        )
        entry = JournalEntry(
            transaction_id=tx.transaction_id,
            operation=operation.value,
            target=tx.target,
            staging_path=tx.staging_path,
            backup_path=tx.backup_path,
        )
        with DEPLOY_LOCK:
            bind_deploy_context(tx.transaction_id, tx.target)
            start = time.perf_counter()
            logger.info("Transaction started", operation=operation.value, is_directory=tx.is_directory)
            try:
                self.journal.record(entry)
                body()
            except DeployError as e:
                status = self._failure_status(e)
                record.finish(status, tx.phase.value, e.kind.value, str(e))
                if e.is_client_error:
                    logger.info("Transaction rejected", **e.to_log_fields())
                elif not isinstance(e, RollbackError):
                    # RollbackError is logged at critical level by the transaction itself
                    logger.error("Transaction failed", status=status.value, **e.to_log_fields())
                raise
            except Exception as e:
                record.finish(TransactionStatus.FAILED, tx.phase.value, "unexpected", str(e))
                logger.exception("Transaction failed unexpectedly", phase=tx.phase.value)
                raise
            else:
                record.finish(TransactionStatus.COMMITTED, tx.phase.value)
                logger.info("Transaction committed", operation=operation.value, backup_taken=tx.backup_taken)
            finally:
                record.backup_taken = tx.backup_taken
                self._release_journal(entry)
                self._record(record, time.perf_counter() - start)
                clear_deploy_context()
        return record

    @staticmethod
    def _failure_status(error: DeployError) -> TransactionStatus:
        if isinstance(error, RollbackError):
            return TransactionStatus.ROLLBACK_FAILED
        if isinstance(error, SwapError) and error.rolled_back:
            return TransactionStatus.ROLLED_BACK
        return TransactionStatus.FAILED

    def _record(self, record: DeploymentRecord, duration: float) -> None:
        self.history.append(record)
        self.transactions_total += 1
        if record.status != TransactionStatus.COMMITTED:
            self.transactions_failed += 1
        TRANSACTIONS.labels(operation=record.operation.value, status=record.status.value).inc()
        TRANSACTION_DURATION.labels(operation=record.operation.value).observe(duration)

    def list(self) -> List[DeploymentRecord]:
        """Finished transactions, most recent first."""
        return list(reversed(self.history))

    def get(self, transaction_id: str) -> Optional[DeploymentRecord]:
        for record in self.history:
            if record.transaction_id == transaction_id:
                return record
        return None

    @property
    def last(self) -> Optional[DeploymentRecord]:
        return self.history[-1] if self.history else None

    def _release_journal(self, entry: JournalEntry) -> None:
        try:
            self.journal.release(entry)
        except OSError as e:
            logger.warning("Could not release journal entry", journal=str(self.journal.directory), error=str(e))

    def purge_stale(self, include_backups: bool = False) -> List[Path]:
        """Remove staging (and optionally backup) leftovers of unfinished transactions.

        Only paths recorded in the journal are considered, so deployed
        content is never mistaken for a leftover. Takes the deployment lock
        so that no live transaction loses its staging path.
        """
        removed: List[Path] = []
        with DEPLOY_LOCK:
            for entry in self.journal.entries():
                target = Path(fs_path(entry.target))
                for path in entry.leftovers():
                    kind = "backup" if path == entry.backup_path else "staging"
                    artifact = StaleArtifact(Path(fs_path(path)), target, entry.transaction_id, kind)
                    if purge_artifact(artifact, include_backups):
                        removed.append(artifact.path)
                self._release_journal(entry)
        if removed:
            logger.info("Purged stale artifacts", count=len(removed))
        return removed
