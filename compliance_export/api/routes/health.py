# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Health check endpoints.

This module provides the health endpoint for the API.
"""

import logging
import time
from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel, Field

from compliance_export import __version__
from compliance_export.api import dependencies
from compliance_export.core.config import get_settings
from compliance_export.infrastructure.database.connection import (
    check_history_database_connection,
)
from compliance_export.utils.datetime import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()


class ComponentHealth(BaseModel):
    """Individual component health status."""
    status: str = Field(description="Component status")
    latency_ms: float | None = Field(None, description="Response latency in ms")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(description="Overall health status")
    timestamp: datetime = Field(description="Current server timestamp")
    version: str = Field(description="API version")
    environment: str = Field(description="Deployment environment")
    uptime_seconds: int = Field(description="Server uptime in seconds")
    active_exports: int = Field(description="Schools with a running export")
    history_database: ComponentHealth | None = Field(
        None, description="Export history database, when history is stored in SQL"
    )


async def check_history_database() -> ComponentHealth:
    """Check the export history database connection."""
    start = time.time()
    reachable = await check_history_database_connection()
    latency = (time.time() - start) * 1000

    if not reachable:
        logger.error("History database health check failed")
        return ComponentHealth(status="unhealthy")
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report service status, running exports and history database reachability."""
    settings = get_settings()
    service = dependencies._compliance_service

    overall = "healthy" if service is not None else "starting"
    database = None
    if dependencies._history_db_initialized:
        database = await check_history_database()
        if database.status != "healthy" and service is not None:
            overall = "degraded"

    return HealthResponse(
        status=overall,
        timestamp=utc_now(),
        version=__version__,
        environment=settings.environment,
        uptime_seconds=int(time.time() - _server_start_time),
        active_exports=service.active_job_count if service is not None else 0,
        history_database=database,
    )
