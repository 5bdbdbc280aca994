"""Core data models for Site Deployer."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Operation(str, Enum):
    """What a transaction does to its target."""

    DEPLOY = "deploy"
    DELETE = "delete"


class TransactionStatus(str, Enum):
    """Final outcome of a transaction."""

    RUNNING = "running"
    COMMITTED = "committed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


class DeploymentRecord(BaseModel):
    """Outcome of one transaction, kept in the manager's history."""

    transaction_id: str = Field(..., description="Random identifier used in staging/backup names")
    operation: Operation = Field(Operation.DEPLOY, description="Deploy or delete")
    target: str = Field(..., description="Absolute target path")
    is_directory: bool = Field(False, description="Whether the target is a directory")
    status: TransactionStatus = TransactionStatus.RUNNING
    phase: str = Field("init", description="Last phase reached")
    backup_taken: bool = Field(False, description="Whether previous content was moved aside")
    error_kind: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None

    def finish(self, status: TransactionStatus, phase: str, error_kind: Optional[str] = None, error: Optional[str] = None):
        self.status = status
        self.phase = phase
        self.error_kind = error_kind
        self.error = error
        self.finished_at = _utcnow()

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


class DeployResponse(BaseModel):
    """Body returned by a successful PUT or DELETE."""

    status: str
    transactionId: str
    target: str


class RuntimeInfo(BaseModel):
    """Runtime information."""

    version: str
    start_time: datetime
    root: str
    transactions_total: int
    transactions_failed: int
    last_transaction: Optional[DeploymentRecord] = None
    status: str = "healthy"
