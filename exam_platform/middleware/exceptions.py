from fastapi import Request
from starlette.exceptions import HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from exam_platform.core.exceptions import (
    AlreadyTerminalError,
    ContentionError,
    ExamPlatformError,
    NotFoundError,
    TransientInfraError,
)
from exam_platform.schemas.response import ErrorResponse, ErrorDetail
from datetime import datetime, timezone
import logging
import uuid

logger = logging.getLogger(__name__)

CONTENTION_RETRY_AFTER_SECONDS = 1

def _get_error_code(status_code: int) -> str:
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_SERVER_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    return code_map.get(status_code, f"HTTP_{status_code}")

def _domain_status_code(exc: ExamPlatformError) -> int:
    if isinstance(exc, (ContentionError, TransientInfraError)):
        return 503
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, AlreadyTerminalError):
        return 409
    return 500

def _error_response(request: Request, request_id: str, detail: ErrorDetail) -> dict:
    return ErrorResponse(
        error=detail,
        timestamp=datetime.now(timezone.utc).isoformat(),
        path=str(request.url),
        request_id=request_id
    ).model_dump()

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    content = _error_response(request, request_id, ErrorDetail(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details={"validation_errors": jsonable_encoder(exc.errors())}
    ))
    logger.warning(f"[{request_id}] Validation error: {exc.errors()}", extra={"request_id": request_id})
    return JSONResponse(status_code=422, content=content)

async def exam_platform_exception_handler(request: Request, exc: ExamPlatformError):
    request_id = str(uuid.uuid4())
    status_code = _domain_status_code(exc)
    content = _error_response(request, request_id, ErrorDetail(
        code=exc.code,
        message=exc.message,
        retryable=exc.retryable,
        details={"attempt_id": exc.attempt_id} if exc.attempt_id is not None else None
    ))
    headers = {"Retry-After": str(CONTENTION_RETRY_AFTER_SECONDS)} if exc.retryable else None
    log_level = logging.ERROR if status_code >= 500 and not exc.retryable else logging.WARNING
    logger.log(log_level, f"[{request_id}] {exc.code}: {exc.message}", extra={"request_id": request_id})
    return JSONResponse(status_code=status_code, content=content, headers=headers)

async def global_exception_handler(request: Request, exc: Exception):
    request_id = str(uuid.uuid4())

    if isinstance(exc, HTTPException):
        content = _error_response(request, request_id, ErrorDetail(
            code=_get_error_code(exc.status_code),
            message=exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        ))
        logger.warning(f"[{request_id}] HTTP {exc.status_code}: {exc.detail}", extra={"request_id": request_id})
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    content = _error_response(request, request_id, ErrorDetail(
        code="INTERNAL_SERVER_ERROR",
        message="An unexpected error occurred",
        details={"error_type": type(exc).__name__}
    ))
    logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True, extra={"request_id": request_id})
    return JSONResponse(status_code=500, content=content)
