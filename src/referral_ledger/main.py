# src/referral_ledger/main.py
"""Main entry point for the referral ledger API."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from referral_ledger import __version__
from referral_ledger.api.v1 import (
    claims_router,
    identity_router,
    referrals_router,
    rewards_router,
)
from referral_ledger.api.v1.errors import ERROR_RESPONSES, register_error_handlers
from referral_ledger.core.logging import configure_logging
from referral_ledger.core.settings import Settings, get_settings
from referral_ledger.services.ledger import RewardsLedger, build_ledger

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, ledger: RewardsLedger | None = None) -> FastAPI:
    """Build the FastAPI application.

    A prebuilt ``ledger`` is used as is and left open on shutdown; otherwise
    one is built from ``settings`` at startup and closed on shutdown.
    """
    settings = settings or (ledger.settings if ledger else get_settings())

    app = FastAPI(
        title=settings.app_name,
        description="Referral validation, tiered rewards and claim ledger",
        version=settings.app_version,
    )
    app.state.settings = settings
    app.state.ledger = ledger
    app.state.owns_ledger = ledger is None

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    # Add GZip middleware for compression
    app.add_middleware(GZipMiddleware)

    register_error_handlers(app)

    # Include API routers
    app.include_router(identity_router, prefix="/api/v1", responses=ERROR_RESPONSES)
    app.include_router(referrals_router, prefix="/api/v1", responses=ERROR_RESPONSES)
    app.include_router(rewards_router, prefix="/api/v1", responses=ERROR_RESPONSES)
    app.include_router(claims_router, prefix="/api/v1", responses=ERROR_RESPONSES)

    @app.on_event("startup")
    def on_startup() -> None:
        configure_logging(settings.log_level)
        if app.state.ledger is None:
            app.state.ledger = build_ledger(settings)
        logger.info("%s %s started", settings.app_name, settings.app_version)

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        ledger_: RewardsLedger | None = app.state.ledger
        if ledger_ is not None and app.state.owns_ledger:
            ledger_.close()

    @app.get("/health")
    def health_check() -> dict[str, str]:
        """Health check endpoint to verify the service is running."""
        return {"status": "ok"}

    @app.get("/")
    def root() -> dict[str, str]:
        """Root endpoint with basic information about the API."""
        return {
            "name": settings.app_name,
            "version": __version__,
            "docs": "/docs",
            "redoc": "/redoc",
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("referral_ledger.main:app", host="0.0.0.0", port=8000)
