# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI Application Factory.

This module provides the main application factory for the compliance
export API.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from compliance_export import __version__
from compliance_export.api.dependencies import (
    close_compliance_service,
    init_compliance_service,
)
from compliance_export.api.routes import health
from compliance_export.api.v1 import router as v1_router
from compliance_export.core.config import get_settings
from compliance_export.domains.compliance.service import ComplianceExportService
from compliance_export.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def create_app(service: ComplianceExportService | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Prebuilt export service. When omitted, one is built at
            startup from the application settings.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Initialize the export service on startup and stop it on shutdown."""
        setup_logging(settings)
        logger.info(
            "Starting compliance export API: environment=%s, debug=%s",
            settings.environment,
            settings.debug,
        )

        # =====================================================================
        # Startup
        # =====================================================================
        await init_compliance_service(settings, service=service)

        yield

        # =====================================================================
        # Shutdown
        # =====================================================================
        try:
            await close_compliance_service()
            logger.info("Compliance export service stopped")
        except Exception as e:
            logger.warning("Error stopping compliance export service: %s", str(e))

        logger.info("Shutting down compliance export API")

    app = FastAPI(
        title=settings.api.title,
        description="EMIS compliance export for school administration",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    # =========================================================================
    # Routes
    # =========================================================================
    app.include_router(health.router, tags=["Health"])
    app.include_router(v1_router)

    return app
