"""
Main FastAPI application for fileclaim.
Serves claim, download, health, diagnostics and metrics.

Run with the app factory:
    uvicorn fileclaim.main:create_app --factory
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from fileclaim.api.deps import wants_json
from fileclaim.api.routes import claim, diag, download, health
from fileclaim.claims.errors import ClaimError
from fileclaim.core.config import Settings
from fileclaim.core.context import ServiceContext, build_context
from fileclaim.core.logging import configure_logging
from fileclaim.utils.metrics import router as metrics_router
from fileclaim.web.pages import message_page

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, context: ServiceContext | None = None) -> FastAPI:
    """Build the app. Tests pass a ready ServiceContext; production builds one from Settings."""
    if context is None:
        settings = settings or Settings()
        configure_logging(settings)
        context = build_context(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        context.close()

    app = FastAPI(
        title="fileclaim",
        description="One-time download links for purchased files",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_exception_handler(ClaimError, claim_error_handler)

    app.include_router(health.router, tags=["health"])
    app.include_router(claim.router)
    app.include_router(download.router)
    app.include_router(diag.router)
    app.include_router(metrics_router)
    return app


async def claim_error_handler(request: Request, exc: ClaimError) -> Response:
    """Only public_message reaches the client; the detail stays in the logs."""
    logger.info(
        "claim_error",
        extra={"path": request.url.path, "status_code": exc.status_code, "reason": exc.code},
    )
    if wants_json(request):
        return JSONResponse(
            {"ok": False, "error": exc.code, "message": exc.public_message},
            status_code=exc.status_code,
            headers={"Cache-Control": "no-store"},
        )
    return message_page(request, exc.title, exc.public_message, status_code=exc.status_code)
