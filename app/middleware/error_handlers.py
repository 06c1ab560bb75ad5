"""
Exception handling and request logging middleware for the Recruitment Agent API
"""
import time
import traceback
import uuid
from datetime import datetime
from typing import Any

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from pydantic import ValidationError

from app.utils.exceptions import RecruitAgentError, map_to_http_exception
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key"}


def _safe_headers(request: Request) -> dict:
    return {k: ("***" if k.lower() in SENSITIVE_HEADERS else v) for k, v in request.headers.items()}


async def create_error_response(request_id: str, status_code: int, detail: Any) -> JSONResponse:
    """Standard error body: {success: false, timestamp, request_id, status_code, ...detail}"""
    if isinstance(detail, str):
        detail = {"message": detail}
    elif not isinstance(detail, dict):
        detail = {"message": str(detail)}

    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "timestamp": datetime.utcnow().isoformat(),
            "request_id": request_id,
            "status_code": status_code,
            **detail
        },
        headers={"X-Request-ID": request_id}
    )


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """Outermost middleware: request id plus JSON bodies for every failure"""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        log_extra = {"request_id": request_id, "method": request.method, "path": request.url.path}

        logger.info(f"Request started: {request.method} {request.url.path}", extra=log_extra)

        try:
            response = await call_next(request)
        except RecruitAgentError as exc:
            logger.error(
                f"{exc.__class__.__name__} in {request.method} {request.url.path}: {exc.message}",
                extra={**log_extra, "error_code": exc.error_code, "details": exc.details}
            )
            http_exc = map_to_http_exception(exc)
            return await create_error_response(request_id, http_exc.status_code, http_exc.detail)

        except RequestValidationError as exc:
            logger.error(f"Validation error in {request.method} {request.url.path}: {exc}", extra=log_extra)
            return await create_error_response(request_id, 422, {
                "error": "Validation failed",
                "message": "Request data validation failed",
                "validation_errors": exc.errors(),
            })

        except ValidationError as exc:
            logger.error(f"Pydantic validation error in {request.method} {request.url.path}: {exc}", extra=log_extra)
            return await create_error_response(request_id, 400, {
                "error": "Data validation failed",
                "message": "Invalid data format or values",
                "validation_errors": exc.errors(),
            })

        except HTTPException as exc:
            logger.warning(f"HTTP {exc.status_code} in {request.method} {request.url.path}: {exc.detail}", extra=log_extra)
            return await create_error_response(request_id, exc.status_code, exc.detail)

        except Exception as exc:
            logger.error(
                f"Unhandled exception in {request.method} {request.url.path}: {exc}",
                extra={**log_extra, "exception_type": exc.__class__.__name__, "traceback": traceback.format_exc()},
                exc_info=True
            )
            return await create_error_response(request_id, 500, {
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            })

        logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={**log_extra, "status_code": response.status_code}
        )
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Debug-level request details; credentials are masked"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        request_id = getattr(request.state, 'request_id', str(uuid.uuid4()))

        logger.debug(
            f"Request details: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "headers": _safe_headers(request),
                "client_ip": request.client.host if request.client else "unknown"
            }
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                f"Request failed: {request.method} {request.url.path} after {time.time() - start_time:.3f}s",
                extra={"request_id": request_id, "exception": str(exc)}
            )
            raise

        logger.info(
            f"Response: {request.method} {request.url.path} - {response.status_code} "
            f"in {time.time() - start_time:.3f}s",
            extra={"request_id": request_id, "status_code": response.status_code}
        )
        return response


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Slow-request warnings and the X-Processing-Time header"""

    def __init__(self, app, slow_request_threshold: float = 2.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        request_id = getattr(request.state, 'request_id', str(uuid.uuid4()))

        response = await call_next(request)
        processing_time = time.time() - start_time

        if processing_time > self.slow_request_threshold:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path} took {processing_time:.3f}s",
                extra={"request_id": request_id, "threshold": self.slow_request_threshold}
            )

        response.headers["X-Processing-Time"] = f"{processing_time:.3f}"
        return response


class HealthCheckMiddleware(BaseHTTPMiddleware):
    """Answers HEAD probes on health paths without touching the app"""

    HEALTH_PATHS = ("/health", "/healthz", "/ping")

    async def dispatch(self, request: Request, call_next):
        if request.method == "HEAD" and request.url.path in self.HEALTH_PATHS:
            return JSONResponse(status_code=200, content=None)
        return await call_next(request)
