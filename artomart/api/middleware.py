"""HTTP gateway pipeline applied before any router runs."""
from __future__ import annotations

import json
import time
import uuid
from typing import Awaitable, Callable, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from artomart.api.errors import error_response
from artomart.core.errors import Forbidden, OrchestrationError, PayloadTooLarge, RateLimited, Unauthorized
from artomart.observability import bind_context, clear_context, redact
from artomart.runtime import Runtime

log = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"
EXCERPT_LIMIT = 200

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

_UNLIMITED_PATHS = frozenset({"/api/health"})
_PUBLIC_PATHS = frozenset({"/api/health", "/api/health/agents"})

CallNext = Callable[[Request], Awaitable[Response]]


def origin_allowed(origin: Optional[str], allowed: tuple) -> bool:
    """Requests without an Origin header come from non-browser clients and pass."""
    if not origin:
        return True
    return "*" in allowed or origin in allowed


def bearer_token(authorization: str) -> str:
    """The token of an ``Authorization: Bearer`` header, or an empty string."""
    scheme, _, token = authorization.partition(" ")
    return token.strip() if scheme.lower() == "bearer" else ""


def body_excerpt(raw: bytes) -> Optional[str]:
    if not raw:
        return None
    try:
        text = json.dumps(redact(json.loads(raw)), ensure_ascii=False)
    except ValueError:
        text = raw.decode("utf-8", errors="replace")
    return text[:EXCERPT_LIMIT]


def install_gateway(app: FastAPI, runtime: Runtime) -> None:
    """Register the gateway middleware, then CORS so that CORS wraps everything."""
    gateway = runtime.config.gateway
    security_logging = runtime.config.security_logging

    def security_event(event: str, request: Request, **fields: object) -> None:
        if security_logging:
            client = request.client.host if request.client else None
            log.warning(event, path=request.url.path, client=client, **fields)

    def check_origin(request: Request) -> None:
        if not origin_allowed(request.headers.get("origin"), gateway.allowed_origins):
            security_event("gateway.origin.rejected", request, origin=request.headers.get("origin"))
            raise Forbidden("Origin not allowed")

    async def admit(request: Request) -> Optional[bytes]:
        """Run the checks that follow request id injection; raise to reject."""
        path = request.url.path
        if path not in _UNLIMITED_PATHS:
            client_key = request.client.host if request.client else "unknown"
            allowed, retry_after = runtime.limiter.check(client_key)
            if not allowed:
                security_event("gateway.rate_limit.exceeded", request, retry_after=round(retry_after, 2))
                raise RateLimited(retry_after)

        if gateway.auth_required and path not in _PUBLIC_PATHS and request.method != "OPTIONS":
            if not runtime.token_verifier(bearer_token(request.headers.get("authorization", ""))):
                security_event("gateway.auth.rejected", request)
                raise Unauthorized("A valid bearer token is required")

        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > gateway.max_body_bytes:
            raise PayloadTooLarge(f"Request body exceeds {gateway.max_body_bytes} bytes")
        if request.method in ("POST", "PUT", "PATCH"):
            raw = await request.body()
            if len(raw) > gateway.max_body_bytes:
                raise PayloadTooLarge(f"Request body exceeds {gateway.max_body_bytes} bytes")
            return raw
        return None

    @app.middleware("http")
    async def gateway_pipeline(request: Request, call_next: CallNext) -> Response:
        started = time.perf_counter()
        clear_context()
        request_id: Optional[str] = None
        raw: Optional[bytes] = None
        try:
            check_origin(request)
            request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
            bind_context(request_id=request_id)
            request.state.request_id = request_id
            raw = await admit(request)
        except OrchestrationError as exc:
            response: Response = error_response(exc)
        else:
            response = await call_next(request)

        if request_id is not None:
            response.headers[REQUEST_ID_HEADER] = request_id
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)

        log.info(
            "gateway.request.completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
            response_bytes=int(response.headers.get("content-length", 0)),
            body=body_excerpt(raw) if raw else None,
        )
        clear_context()
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(gateway.allowed_origins),
        allow_credentials="*" not in gateway.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", REQUEST_ID_HEADER, "X-Session-Id"],
        expose_headers=[REQUEST_ID_HEADER],
    )
