"""Deployment transactions: stage, back up, swap, then commit or roll back.

A transaction walks through explicit phases::

    init -> staged -> backed_up | no_backup_needed -> swapped -> committed
                  \\______________________________________/
                                    |
                                  failed -> rolled_back

Until the swap, the target is never touched, so failures before it only
need the staging path removed. After the backup rename, the previous
content lives at the backup path until commit removes it or rollback moves
it back.

Transactions are not thread-safe and must be run under the manager's lock.
"""

from __future__ import annotations

import errno
import os
import shutil
from enum import Enum
from typing import BinaryIO, NoReturn, Optional

import structlog

from site_deployer.core.exceptions import (
    BackupError,
    DeployError,
    RollbackError,
    StagingError,
    SwapError,
    TargetNotFoundError,
)
from site_deployer.deploy.cleanup import cleanup_path, remove_path
from site_deployer.deploy.extract import extract_directory, extract_file
from site_deployer.deploy.paths import (
    backup_path,
    fs_path,
    is_directory_target,
    new_transaction_id,
    parent_directory,
    staging_path,
)

logger = structlog.get_logger()

DIR_PERM = 0o750


class Phase(str, Enum):
    INIT = "init"
    STAGED = "staged"
    BACKED_UP = "backed_up"
    NO_BACKUP_NEEDED = "no_backup_needed"
    SWAPPED = "swapped"
    COMMITTED = "committed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class _Transaction:
    """Bookkeeping shared by deploy and delete transactions."""

    def __init__(self, target: str, is_directory: Optional[bool] = None, transaction_id: Optional[str] = None):
        if not os.path.isabs(target):
            raise ValueError(f"target must be an absolute path: {target!r}")
        if is_directory is None:
            is_directory = is_directory_target(target)
        if is_directory and not is_directory_target(target):
            target += "/"

        self.transaction_id = transaction_id or new_transaction_id()
        self.target = target
        self.is_directory = is_directory
        self.staging_path = staging_path(self.transaction_id, target)
        self.backup_path = backup_path(self.transaction_id, target)
        self.backup_taken = False
        self.phase = Phase.INIT

    def _paths(self) -> dict:
        return {
            "target": self.target,
            "staging_path": self.staging_path,
            "backup_path": self.backup_path,
        }

    def _enter(self, phase: Phase) -> None:
        logger.debug("Transaction phase", transaction_id=self.transaction_id, phase=phase.value)
        self.phase = phase

    def _take_backup(self) -> bool:
        """Move the current target aside. Returns False if there was nothing to move."""
        target = fs_path(self.target)
        try:
            os.lstat(target)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise BackupError(
                f"could not stat target {target}: {e}",
                cause=e,
                **self._paths(),
            ) from e

        try:
            os.rename(target, fs_path(self.backup_path))
        except OSError as e:
            raise BackupError(
                f"failed to back up target {target} to {self.backup_path}: {e}",
                cause=e,
                **self._paths(),
            ) from e
        self.backup_taken = True
        return True

    def rollback(self) -> bool:
        """Put the backup back in place of the target.

        Returns False when no backup was taken (nothing to restore). Raises
        RollbackError if the previous content could not be restored, a taken
        backup that has since disappeared included; the backup path is then
        the only copy left and is logged for operators.
        """
        if not self.backup_taken:
            logger.info("Nothing to roll back, no backup was taken", **self._paths())
            return False

        target = fs_path(self.target)
        backup = fs_path(self.backup_path)
        if not os.path.lexists(backup):
            self._raise_rollback_failed(f"backup {backup} vanished before rollback", None)

        try:
            remove_path(target)
        except OSError as e:
            self._raise_rollback_failed(f"could not clean target {target} during rollback: {e}", e)

        try:
            os.rename(backup, target)
        except OSError as e:
            self._raise_rollback_failed(f"could not restore backup {backup} to {target}: {e}", e)

        self._enter(Phase.ROLLED_BACK)
        logger.warning("Rolled back to previous content", **self._paths())
        return True

    def _raise_rollback_failed(self, message: str, cause: Optional[BaseException]) -> NoReturn:
        logger.critical(
            "Rollback failed, manual intervention required",
            transaction_id=self.transaction_id,
            error=message,
            **self._paths(),
        )
        raise RollbackError(message, cause=cause, **self._paths()) from cause


class DeployTransaction(_Transaction):
    """Atomically replace a target with the content of a stream."""

    def run(self, reader: BinaryIO, content_type: Optional[str] = None) -> None:
        self._stage(reader, content_type)
        self._backup()
        self._swap()
        self._commit()

    def _stage(self, reader: BinaryIO, content_type: Optional[str]) -> None:
        try:
            try:
                os.makedirs(parent_directory(self.target), DIR_PERM, exist_ok=True)
            except OSError as e:
                raise StagingError(
                    f"failed to create parent directories of {self.target}: {e}",
                    cause=e,
                ) from e

            if self.is_directory:
                extract_directory(self.staging_path, reader, content_type)
            else:
                extract_file(self.staging_path, reader)
        except DeployError as e:
            self._enter(Phase.FAILED)
            e.with_paths(**self._paths())
            cleanup_path(self.staging_path)
            raise
        except Exception:
            self._enter(Phase.FAILED)
            cleanup_path(self.staging_path)
            raise
        finally:
            reader.close()
        self._enter(Phase.STAGED)

    def _backup(self) -> None:
        try:
            taken = self._take_backup()
        except BackupError:
            self._enter(Phase.FAILED)
            cleanup_path(self.staging_path)
            raise

        if taken:
            self._enter(Phase.BACKED_UP)
            return

        # The parent may have been removed by something outside our control
        # between staging and now.
        try:
            os.makedirs(parent_directory(self.target), DIR_PERM, exist_ok=True)
        except OSError as e:
            self._enter(Phase.FAILED)
            cleanup_path(self.staging_path)
            raise BackupError(
                f"failed to create parent directories of {self.target}: {e}",
                cause=e,
                **self._paths(),
            ) from e
        self._enter(Phase.NO_BACKUP_NEEDED)

    def _swap(self) -> None:
        staging = fs_path(self.staging_path)
        target = fs_path(self.target)
        try:
            os.rename(staging, target)
        except OSError as e:
            if e.errno != errno.EXDEV:
                self._fail_swap(f"failed to swap staging {staging} with target {target}: {e}", e)
            logger.warning(
                "Staging and target are on different filesystems, copying instead of renaming",
                **self._paths(),
            )
            try:
                if self.is_directory:
                    shutil.copytree(staging, target, symlinks=True)
                else:
                    shutil.copy2(staging, target)
            except (OSError, shutil.Error) as copy_err:
                if not self.backup_taken:
                    cleanup_path(self.target)
                self._fail_swap(f"failed to copy staging {staging} to target {target}: {copy_err}", copy_err)
            cleanup_path(self.staging_path)
        self._enter(Phase.SWAPPED)

    def _fail_swap(self, message: str, cause: BaseException) -> NoReturn:
        self._enter(Phase.FAILED)
        cleanup_path(self.staging_path)
        rolled_back = self.rollback()
        raise SwapError(message, rolled_back=rolled_back, cause=cause, **self._paths()) from cause

    def _commit(self) -> None:
        if self.backup_taken and not cleanup_path(self.backup_path):
            logger.error(
                "Deployment committed but the backup could not be removed",
                **self._paths(),
            )
        self._enter(Phase.COMMITTED)


class DeleteTransaction(_Transaction):
    """Atomically remove a target.

    The target is renamed to its backup path in one step, so readers see
    either the old content or nothing. The backup is purged afterwards.
    """

    def run(self) -> None:
        try:
            taken = self._take_backup()
        except BackupError:
            self._enter(Phase.FAILED)
            raise
        if not taken:
            self._enter(Phase.FAILED)
            raise TargetNotFoundError(
                f"nothing to delete at {self.target}",
                public_message="target does not exist",
                **self._paths(),
            )
        self._enter(Phase.BACKED_UP)

        if not cleanup_path(self.backup_path):
            logger.error("Target deleted but its backup could not be removed", **self._paths())
        self._enter(Phase.COMMITTED)
