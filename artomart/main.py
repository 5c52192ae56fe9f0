"""FastAPI entry-point for the marketplace agent service."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
import uvicorn
from fastapi import FastAPI

from artomart.api.chat import router as chat_router
from artomart.api.errors import install_error_handlers
from artomart.api.health import router as health_router
from artomart.api.middleware import install_gateway
from artomart.api.routes import router as agents_router
from artomart.api.tasks import router as tasks_router
from artomart.api.websocket import router as realtime_router
from artomart.config import Config
from artomart.observability import configure_logging
from artomart.runtime import Runtime

log = structlog.get_logger(__name__)


def create_app(config: Optional[Config] = None, runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the application around one Runtime. Nothing lives at module level."""
    if config is None:
        config = runtime.config if runtime is not None else Config.from_env()
    configure_logging(config.log_level, config.log_format)
    if runtime is None:
        runtime = Runtime.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Start every archetype on startup; stop agents and drain channels on shutdown."""
        await runtime.start()
        log.info("service.started", service=config.service_name, version=config.version, environment=config.environment)
        try:
            yield
        finally:
            await runtime.shutdown()
            log.info("service.stopped")

    app = FastAPI(title=config.service_name, version=config.version, lifespan=lifespan)
    app.state.runtime = runtime
    install_error_handlers(app, config)
    install_gateway(app, runtime)
    app.include_router(chat_router)
    app.include_router(tasks_router)
    app.include_router(agents_router)
    app.include_router(health_router)
    app.include_router(realtime_router)
    return app


def run() -> None:
    """Console entry point: serve until interrupted."""
    config = Config.from_env()
    try:
        app = create_app(config)
    except Exception as exc:  # noqa: BLE001
        log.error("service.startup.failed", error=str(exc), exc_info=exc)
        raise SystemExit(1) from exc
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    run()
