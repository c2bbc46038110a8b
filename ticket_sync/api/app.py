"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config import Settings
from ..services import open_services

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: database, HTTP client, store and runner.  Shutdown: drain and close."""
    settings: Settings = app.state.settings
    async with open_services(settings) as services:
        app.state.services = services
        yield
    logger.info("shutdown_complete")


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    body: dict[str, object] = {"success": False}
    if isinstance(exc.detail, dict):
        body.update(exc.detail)
    else:
        body["error"] = exc.detail
    return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
    message = f"Invalid {field}: {first.get('msg', 'invalid value')}"
    return JSONResponse(
        {"success": False, "error": message},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build and return the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Ticket Inbox Sync",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    from .routers.sync import router as sync_router

    app.include_router(sync_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "ticket-sync"}

    return app
