"""Custom exceptions for Site Deployer."""

from enum import Enum
from typing import Any, Dict, Optional


class SiteDeployerError(Exception):
    """Base exception for all deployer errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class FetchError(SiteDeployerError):
    """Artifact could not be downloaded."""
    pass


class DeployErrorKind(str, Enum):
    """Failure classes of a deployment transaction."""

    INVALID_ARTIFACT = "invalid_artifact"
    TARGET_NOT_FOUND = "target_not_found"
    STAGING_FAILED = "staging_failed"
    BACKUP_FAILED = "backup_failed"
    SWAP_FAILED = "swap_failed"
    ROLLBACK_FAILED = "rollback_failed"


class DeployError(SiteDeployerError):
    """A deployment transaction failed.

    The exception message is the private diagnostic (always logged). The
    ``public_message`` is only handed back to HTTP clients for client-class
    errors, so that internal paths never leak through server errors.
    """

    kind: DeployErrorKind = DeployErrorKind.STAGING_FAILED
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        public_message: Optional[str] = None,
        status_code: Optional[int] = None,
        target: Optional[str] = None,
        staging_path: Optional[str] = None,
        backup_path: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, code=self.kind.value)
        if status_code is not None:
            self.status_code = status_code
        self.public_message = public_message
        self.target = target
        self.staging_path = staging_path
        self.backup_path = backup_path
        self.cause = cause

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    @property
    def public_detail(self) -> Optional[str]:
        """Message safe to return to the caller, if any."""
        if self.is_client_error:
            return self.public_message
        return None

    def with_paths(
        self,
        target: Optional[str] = None,
        staging_path: Optional[str] = None,
        backup_path: Optional[str] = None,
    ) -> "DeployError":
        """Fill in transaction paths that the raising code did not know."""
        self.target = self.target or target
        self.staging_path = self.staging_path or staging_path
        self.backup_path = self.backup_path or backup_path
        return self

    def to_log_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "error_kind": self.kind.value,
            "status_code": self.status_code,
            "error": str(self),
        }
        if self.target:
            fields["target"] = self.target
        if self.staging_path:
            fields["staging_path"] = self.staging_path
        if self.backup_path:
            fields["backup_path"] = self.backup_path
        if self.cause is not None:
            fields["cause"] = repr(self.cause)
        return fields


class InvalidArtifactError(DeployError):
    """Uploaded content is unusable: bad content-type, malformed or unsafe archive."""

    kind = DeployErrorKind.INVALID_ARTIFACT
    status_code = 400


class TargetNotFoundError(DeployError):
    """Nothing to delete at the requested target."""

    kind = DeployErrorKind.TARGET_NOT_FOUND
    status_code = 404


class StagingError(DeployError):
    """New content could not be written to the staging path."""

    kind = DeployErrorKind.STAGING_FAILED


class BackupError(DeployError):
    """The existing target could not be moved aside."""

    kind = DeployErrorKind.BACKUP_FAILED


class SwapError(DeployError):
    """Staged content could not be moved into place.

    ``rolled_back`` tells whether a backup was restored afterwards; it is
    False when there was no previous content to restore.
    """

    kind = DeployErrorKind.SWAP_FAILED

    def __init__(self, message: str, *, rolled_back: bool = False, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.rolled_back = rolled_back

    def to_log_fields(self) -> Dict[str, Any]:
        fields = super().to_log_fields()
        fields["rolled_back"] = self.rolled_back
        return fields


class RollbackError(DeployError):
    """The previous content could not be restored. Needs an operator."""

    kind = DeployErrorKind.ROLLBACK_FAILED
