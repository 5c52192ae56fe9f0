"""Render every error as ``{"error": message, "kind": kind}``."""
from __future__ import annotations

from typing import Any, Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from artomart.config import Config
from artomart.core.errors import ErrorKind, OrchestrationError, RateLimited

log = structlog.get_logger(__name__)

_HTTP_MESSAGES = {
    404: "Not found",
    405: "Method not allowed",
}


def error_body(message: str, kind: ErrorKind, details: Dict[str, Any] | None = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": message, "kind": kind.value}
    if details:
        body["details"] = details
    return body


def error_response(exc: OrchestrationError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(max(1, int(exc.retry_after + 0.999)))
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.kind, exc.details),
        headers=headers,
    )


def install_error_handlers(app: FastAPI, config: Config) -> None:
    @app.exception_handler(OrchestrationError)
    async def orchestration_error(_request: Request, exc: OrchestrationError) -> JSONResponse:
        return error_response(exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = _HTTP_MESSAGES.get(exc.status_code, str(exc.detail))
        kind = ErrorKind.INTERNAL if exc.status_code >= 500 else ErrorKind.VALIDATION
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(message, kind),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = [f"{'.'.join(str(p) for p in error['loc'])}: {error['msg']}" for error in exc.errors()]
        return JSONResponse(
            status_code=400,
            content=error_body("Invalid request", ErrorKind.VALIDATION, {"problems": problems}),
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        log.error("gateway.request.crashed", path=request.url.path, exc_info=exc)
        message = f"Internal server error: {exc}" if config.is_development else "Internal server error"
        return JSONResponse(status_code=500, content=error_body(message, ErrorKind.INTERNAL))
