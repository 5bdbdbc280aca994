"""Deploy API: PUT replaces a path below the site root, DELETE removes it."""

from __future__ import annotations

import tempfile
from typing import BinaryIO, Optional, Tuple

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from site_deployer.core.config import Settings
from site_deployer.core.models import DeployResponse
from site_deployer.deploy.manager import DeploymentManager
from site_deployer.utils.paths import UnsafePathError, check_windows_path, sanitized_path_join


router = APIRouter()
logger = structlog.get_logger()

ARTIFACT_FIELD = "artifact"
SPOOL_MEMORY_BYTES = 1024 * 1024
REJECTED_METHODS = ["GET", "HEAD", "POST", "PATCH", "OPTIONS"]


_deployment_manager: DeploymentManager | None = None


def init_deploy_manager(manager: DeploymentManager) -> DeploymentManager:
    global _deployment_manager
    _deployment_manager = manager
    return _deployment_manager


def get_deploy_manager() -> DeploymentManager:
    if _deployment_manager is None:
        raise RuntimeError("DeploymentManager not initialized")
    return _deployment_manager


def manager_for(req: Request) -> DeploymentManager:
    manager = getattr(req.app.state, "deployment_manager", None)
    if manager is None:
        manager = get_deploy_manager()
    return manager


def _settings_for(req: Request) -> Settings:
    return getattr(req.app.state, "settings", None) or Settings()


def _resolve_target(req: Request, path: str) -> Tuple[str, str, bool]:
    """Return (url_path, absolute target, is_directory) for the request."""
    url_path = req.url.path
    try:
        check_windows_path(url_path)
    except UnsafePathError as e:
        raise HTTPException(status_code=400, detail=str(e))
    manager = manager_for(req)
    target = sanitized_path_join(str(manager.root), path)
    is_directory = url_path.endswith("/")
    logger.debug("sanitized path join", site_root=str(manager.root), request_path=url_path, result=target)
    return url_path, target, is_directory


def _too_large(max_size_mb: int) -> HTTPException:
    return HTTPException(status_code=413, detail=f"artifact exceeds the maximum size of {max_size_mb} MB")


async def _spool_body(req: Request, settings: Settings) -> BinaryIO:
    """Buffer the raw body so the transaction never waits on the network."""
    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MEMORY_BYTES)
    size = 0
    try:
        async for chunk in req.stream():
            size += len(chunk)
            if size > settings.max_size_bytes:
                raise _too_large(settings.max_size_mb)
            spool.write(chunk)
    except BaseException:
        spool.close()
        raise
    spool.seek(0)
    return spool


async def _read_artifact(req: Request, settings: Settings) -> Tuple[BinaryIO, Optional[str]]:
    """Return the payload stream and its content-type.

    The payload is either the raw body, or the ``artifact`` field of a
    multipart form.
    """
    content_length = req.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > settings.max_size_bytes:
        raise _too_large(settings.max_size_mb)

    content_type = req.headers.get("content-type")
    if content_type and content_type.lower().startswith("multipart/form-data"):
        form = await req.form(max_files=1)
        artifact = form.get(ARTIFACT_FIELD)
        if not isinstance(artifact, UploadFile):
            await form.close()
            raise HTTPException(status_code=422, detail="Could not retrieve artifact from body")
        if artifact.size is not None and artifact.size > settings.max_size_bytes:
            await form.close()
            raise _too_large(settings.max_size_mb)
        artifact.file.seek(0)
        return artifact.file, artifact.content_type

    return await _spool_body(req, settings), content_type


@router.put("/{path:path}", response_model=DeployResponse)
async def deploy_endpoint(path: str, req: Request) -> DeployResponse:
    url_path, target, is_directory = _resolve_target(req, path)
    settings = _settings_for(req)
    manager = manager_for(req)

    reader, content_type = await _read_artifact(req, settings)
    record = await run_in_threadpool(manager.deploy, target, reader, content_type, is_directory)
    return DeployResponse(status=record.status.value, transactionId=record.transaction_id, target=url_path)


@router.delete("/{path:path}", response_model=DeployResponse)
async def delete_endpoint(path: str, req: Request) -> DeployResponse:
    url_path, target, is_directory = _resolve_target(req, path)
    manager = manager_for(req)

    record = await run_in_threadpool(manager.delete, target, is_directory)
    return DeployResponse(status=record.status.value, transactionId=record.transaction_id, target=url_path)


@router.api_route("/{path:path}", methods=REJECTED_METHODS, include_in_schema=False)
async def method_not_allowed(path: str, req: Request) -> PlainTextResponse:
    return PlainTextResponse(
        "Only PUT and DELETE methods are allowed\n",
        status_code=405,
        headers={"Allow": "PUT, DELETE"},
    )
