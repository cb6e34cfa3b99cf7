"""
FastAPI application entry point for the vignette backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.config import get_settings
from backend.routes import router
from backend.schemas import ErrorResponse
from shared.errors import ConfigurationError, VignetteError

logger = logging.getLogger(__name__)


def _error_body(error: str, details=None) -> dict:
    return ErrorResponse(error=error, details=details).model_dump(
        by_alias=True, exclude_none=True
    )


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(VignetteError)
    async def handle_vignette_error(request: Request, exc: VignetteError):
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed at %s: %s",
                request.method,
                request.url.path,
                exc.stage,
                exc,
            )
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400, content=_error_body("Invalid request", details)
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=_error_body("Internal server error"))


def create_app() -> FastAPI:
    settings = get_settings()
    if not settings.use_in_memory_backends:
        missing = settings.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required settings: {', '.join(missing)}"
            )
    app = FastAPI(title="Vignette Splicer Backend", version="0.1.0")
    install_exception_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
