"""Error mapping, request logging and HTTP metrics for the deploy API."""

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from starlette.exceptions import HTTPException as StarletteHTTPException

from site_deployer.core.exceptions import DeployError, SiteDeployerError

logger = structlog.get_logger()

HTTP_REQUESTS = Counter(
    "site_deployer_http_requests_total",
    "HTTP requests by deploy operation and status",
    ["operation", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "site_deployer_http_request_duration_seconds",
    "HTTP request duration, body upload included",
    ["operation"],
)

HTTP_REQUEST_BYTES = Histogram(
    "site_deployer_http_request_bytes",
    "Announced request body size of deploy requests",
    buckets=(1024, 16 * 1024, 256 * 1024, 1024 * 1024, 4 * 1024 * 1024, 16 * 1024 * 1024),
)

GENERIC_DEPLOY_FAILURE = "deployment failed, see server logs"

_OPERATIONS = {"PUT": "deploy", "DELETE": "delete"}


def request_operation(request: Request) -> str:
    """Metric label for a request; site paths are unbounded so never used."""
    if request.url.path.startswith(("/runtime/", "/health", "/metrics")):
        return "runtime"
    return _OPERATIONS.get(request.method, "rejected")


def _error_body(error: str, message: str, **extra) -> dict:
    return {"error": error, "message": message, **extra}


def setup_error_handling(app: FastAPI) -> None:
    """Map exceptions to JSON bodies.

    Deployment errors carry their own status. Only client errors (4xx) hand
    their public message back; everything else gets a generic message, the
    private diagnostic having been logged by the manager.
    """

    @app.exception_handler(DeployError)
    async def deploy_error_handler(request: Request, exc: DeployError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(
                exc.__class__.__name__,
                exc.public_detail or GENERIC_DEPLOY_FAILURE,
                kind=exc.kind.value,
            ),
        )

    @app.exception_handler(SiteDeployerError)
    async def deployer_error_handler(request: Request, exc: SiteDeployerError) -> JSONResponse:
        logger.error("Deployer error outside of a transaction", error=str(exc), code=exc.code)
        return JSONResponse(
            status_code=500,
            content=_error_body(exc.__class__.__name__, "An internal error occurred", code=exc.code),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=_error_body("ValidationError", "Invalid request data", details=exc.errors()),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # 405/413/422 raised by the deploy routes keep their headers (Allow)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body("HTTPException", exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unexpected error", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=_error_body("InternalServerError", "An unexpected error occurred"),
        )


def setup_logging_middleware(app: FastAPI) -> None:
    """Log one line per request, correlated by a request id."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Request crashed", duration_seconds=time.perf_counter() - start)
            raise
        else:
            fields = {
                "status_code": response.status_code,
                "duration_seconds": time.perf_counter() - start,
                "content_type": request.headers.get("content-type"),
                "content_length": request.headers.get("content-length"),
                "client": request.client.host if request.client else None,
            }
            if response.status_code >= 500:
                logger.warning("Request failed", **fields)
            else:
                logger.info("Request completed", **fields)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "method", "path")


def setup_metrics_middleware(app: FastAPI) -> None:
    """Count requests per deploy operation and record upload sizes."""

    @app.middleware("http")
    async def collect_metrics(request: Request, call_next: Callable) -> Response:
        operation = request_operation(request)
        content_length = request.headers.get("content-length")
        if operation == "deploy" and content_length and content_length.isdigit():
            HTTP_REQUEST_BYTES.observe(int(content_length))

        start = time.perf_counter()
        response = await call_next(request)

        HTTP_REQUESTS.labels(operation=operation, status=response.status_code).inc()
        HTTP_REQUEST_DURATION.labels(operation=operation).observe(time.perf_counter() - start)
        return response
