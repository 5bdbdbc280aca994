"""Health check and transaction history endpoints."""

from datetime import datetime, timezone
from typing import Dict, List

from fastapi import APIRouter, HTTPException, Request

from site_deployer import __version__
from site_deployer.core.models import DeploymentRecord, RuntimeInfo
from site_deployer.api.deploy import manager_for

router = APIRouter()

# Track start time
START_TIME = datetime.now(timezone.utc)


@router.get("/health", response_model=Dict[str, str])
async def health_check() -> Dict[str, str]:
    """Simple health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/info", response_model=RuntimeInfo)
async def runtime_info(req: Request) -> RuntimeInfo:
    """Get deployer information and transaction counters."""
    manager = manager_for(req)
    return RuntimeInfo(
        version=__version__,
        start_time=START_TIME,
        root=str(manager.root),
        transactions_total=manager.transactions_total,
        transactions_failed=manager.transactions_failed,
        last_transaction=manager.last,
        status="healthy",
    )


@router.get("/deployments", response_model=List[DeploymentRecord])
async def list_deployments(req: Request) -> List[DeploymentRecord]:
    """Most recent transactions first."""
    return manager_for(req).list()


@router.get("/deployments/{transaction_id}", response_model=DeploymentRecord)
async def get_deployment(transaction_id: str, req: Request) -> DeploymentRecord:
    record = manager_for(req).get(transaction_id)
    if not record:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return record
