"""Map the IAM error taxonomy onto HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from iam_core.domain.exceptions import ErrorCode, IamError

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    ErrorCode.VALIDATION: 422,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.INTERNAL: 500,
}

NOT_FOUND_DETAIL = "Resource not found"
INTERNAL_DETAIL = "Internal server error"


def error_body(code: ErrorCode, detail: str) -> dict:
    return {"detail": detail, "code": code.value}


async def iam_error_handler(request: Request, exc: IamError) -> JSONResponse:
    code = exc.external_code
    if code == ErrorCode.INTERNAL:
        logger.error(
            "internal_error",
            extra={"path": request.url.path, "method": request.method, "error": exc.message},
        )
        return JSONResponse(status_code=500, content=error_body(code, INTERNAL_DETAIL))
    if code == ErrorCode.NOT_FOUND:
        # Cross-tenant denials and genuine misses render identically.
        return JSONResponse(status_code=404, content=error_body(code, NOT_FOUND_DETAIL))
    return JSONResponse(status_code=STATUS_BY_CODE[code], content=error_body(code, exc.message))


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    errors = exc.errors() if hasattr(exc, "errors") else []
    detail = "; ".join(str(e.get("msg", "")) for e in errors) or "Invalid request"
    return JSONResponse(status_code=422, content=error_body(ErrorCode.VALIDATION, detail))


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unexpected_error",
        extra={"path": request.url.path, "method": request.method, "error": str(exc)},
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content=error_body(ErrorCode.INTERNAL, INTERNAL_DETAIL))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IamError, iam_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
