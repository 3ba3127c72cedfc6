"""Exception handlers that keep every error response in ``{"error": ...}`` form."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ratekeeper.schemas.common import ErrorResponse
from ratekeeper.services.errors import QuotaValidationError, StoreError

logger = logging.getLogger(__name__)


def _error(status_code: int, error: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.model_dump(exclude_none=True))


async def quota_validation_handler(request: Request, exc: QuotaValidationError) -> JSONResponse:
    return _error(
        status.HTTP_400_BAD_REQUEST, ErrorResponse(error=str(exc), field=exc.field)
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    field = "body"
    for error in exc.errors():
        names = [part for part in error.get("loc", ()) if isinstance(part, str) and part != "body"]
        if names:
            field = names[-1]
            break
    return _error(
        status.HTTP_400_BAD_REQUEST,
        ErrorResponse(error=f"Invalid or missing {field}", field=field),
    )


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Decision failed on %s: %s", request.url.path, exc)
    return _error(
        status.HTTP_503_SERVICE_UNAVAILABLE, ErrorResponse(error="store unavailable")
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return _error(exc.status_code, ErrorResponse(error="Endpoint not found"))
    return _error(exc.status_code, ErrorResponse(error=str(exc.detail)))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    message = (
        str(exc)
        if request.app.state.settings.app_env.lower() == "development"
        else "Something went wrong"
    )
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorResponse(error="Internal server error", message=message),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(QuotaValidationError, quota_validation_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
