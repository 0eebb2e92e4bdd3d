"""
Exception handlers that render domain errors as JSON.

Every error body has the same shape:
    {"error": {"kind": "NotFound", "message": "Script 'abc' not found."}}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from errors import ScriptForgeError, ValidationError

logger = logging.getLogger(__name__)


def _error_response(status_code: int, kind: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"kind": kind, "message": message}},
    )


async def scriptforge_error_handler(request: Request, exc: ScriptForgeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    return _error_response(exc.status_code, exc.kind, exc.message)


async def request_validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Report malformed request bodies and parameters as ValidationError (400)."""
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    message = "; ".join(problems) or "Invalid request."
    return _error_response(ValidationError.status_code, ValidationError.kind, message)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ScriptForgeError, scriptforge_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
