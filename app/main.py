"""
FastAPI application entrypoint for the QuickBooks connector.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.errors import IntegrationError
from app.core.logging import configure_logging


async def integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
    """Render connector errors with their mapped status and a stable body."""
    return JSONResponse(status_code=int(exc.status_code), content=exc.to_dict())


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Landscaping QuickBooks Connector",
        version="0.1.0",
        description="Multi-tenant QuickBooks Online connection and estimate pipeline.",
    )
    app.add_exception_handler(IntegrationError, integration_error_handler)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
