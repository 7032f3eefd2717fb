"""
Exception handlers mapping business errors onto HTTP responses
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..exceptions import BankingError


logger = logging.getLogger(__name__)


async def banking_error_handler(request: Request, exc: BankingError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("Request failed: %s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("Request rejected: %s %s -> %d %s",
                    request.method, request.url.path, exc.http_status, exc.error_code)
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body, query and path validation failures: 400 with a field -> message map"""
    errors = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors[".".join(loc) or "request"] = error.get("msg", "invalid")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation failed",
            "errorCode": "VALIDATION_ERROR",
            "messageCn": "验证失败",
            "errors": errors,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BankingError, banking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
