"""Global exception handlers for standardized error responses."""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.exceptions import BaseAPIException
from app.schemas.response import (
    ErrorResponse,
    ValidationErrorDetail,
    ValidationErrorResponse,
)

logger = logging.getLogger(__name__)


async def base_api_exception_handler(
    request: Request, exc: BaseAPIException
) -> JSONResponse:
    """Render domain exceptions. Client errors log at warning, server errors at error."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"API Exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "details": exc.details,
            "request_path": request.url.path,
        },
    )

    error_response = ErrorResponse(
        message=exc.message, error_code=exc.error_code, details=exc.details
    )
    return JSONResponse(
        status_code=exc.status_code, content=error_response.model_dump(mode="json")
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning(
        "Request validation failed",
        extra={"request_path": request.url.path, "error_count": len(exc.errors())},
    )

    validation_errors = [
        ValidationErrorDetail(
            field=".".join(str(loc) for loc in error["loc"]),
            message=error["msg"],
            value=error.get("input"),
        )
        for error in exc.errors()
    ]
    error_response = ValidationErrorResponse(
        message="Validation failed",
        validation_errors=validation_errors,
        details={"error_count": len(validation_errors)},
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response.model_dump(mode="json"),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning(
        f"HTTP Exception: {exc.status_code} - {exc.detail}",
        extra={"status_code": exc.status_code, "request_path": request.url.path},
    )

    error_response = ErrorResponse(
        message=str(exc.detail),
        error_code="HTTP_ERROR",
        details={"status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code, content=error_response.model_dump(mode="json")
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unexpected error: {str(exc)}",
        exc_info=True,
        extra={"request_path": request.url.path, "exception_type": type(exc).__name__},
    )

    error_response = ErrorResponse(
        message="An unexpected error occurred",
        error_code="INTERNAL_SERVER_ERROR",
        details={"exception_type": type(exc).__name__},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response.model_dump(mode="json"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAPIException, base_api_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
