"""
FastAPI application entry point for the Nodebook API.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nodebook.config import get_settings
from nodebook.db import ConflictError, InvalidPayloadError
from nodebook.routes import router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Nodebook API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "Accept",
            "Origin",
        ],
        max_age=86400,
    )
    app.include_router(router, prefix=settings.api_prefix)
    if not (settings.auth0_domain or settings.jwt_secret_key):
        logger.warning("No AUTH0_DOMAIN or JWT_SECRET_KEY set; tokens are rejected")

    @app.exception_handler(InvalidPayloadError)
    def handle_invalid_payload(request: Request, exc: InvalidPayloadError):
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    def handle_conflict(request: Request, exc: ConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    return app


app = create_app()
