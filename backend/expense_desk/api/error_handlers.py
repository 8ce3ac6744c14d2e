"""
Custom exception handlers for FastAPI.
Provides clear, actionable error messages for validation and server errors.
"""

import logging

from fastapi import Request
from fastapi.exception_handlers import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from expense_desk.core.config import is_development
from expense_desk.core.observability import capture_exception
from expense_desk.models.tables import ImmutableRecordError
from expense_desk.services.extraction_service import ReceiptAnalysisError
from expense_desk.services.rate_limiter import RateLimitExceeded

logger = logging.getLogger(__name__)


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=HTTP_429_TOO_MANY_REQUESTS,
        content=exc.result.body(),
        headers=exc.result.headers(),
    )


def receipt_analysis_exception_handler(request: Request, exc: ReceiptAnalysisError):
    logger.error("receipt analysis failed path=%s err=%s", request.url.path, exc)
    capture_exception(exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Receipt analysis failed"},
    )


def immutable_record_exception_handler(request: Request, exc: ImmutableRecordError):
    return JSONResponse(status_code=HTTP_409_CONFLICT, content={"detail": exc.reason})


def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error path=%s", request.url.path)
    capture_exception(exc)
    content = {"error": "Internal server error"}
    if is_development():
        content["details"] = str(exc)
    return JSONResponse(status_code=HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def register_exception_handlers(app) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(ReceiptAnalysisError, receipt_analysis_exception_handler)
    app.add_exception_handler(ImmutableRecordError, immutable_record_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
