# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

The compliance export service is a process-wide singleton: export jobs
live in its memory, so every request must reach the same instance.

Example:
    @router.get("/exports/{job_id}")
    async def get_export(
        job_id: str,
        service: ComplianceExportService = Depends(get_compliance_service),
    ):
        ...
"""

import logging

from fastapi import HTTPException, status

from compliance_export.core.config.settings import Settings
from compliance_export.domains.compliance.ports import (
    ComplianceProfileStore,
    ExportHistoryStore,
    RecordSource,
)
from compliance_export.domains.compliance.service import ComplianceExportService
from compliance_export.infrastructure.database.connection import (
    close_history_database,
    init_history_database,
)
from compliance_export.infrastructure.database.history_store import SqlExportHistoryStore
from compliance_export.infrastructure.records.client import RecordStoreClient
from compliance_export.infrastructure.records.memory import (
    InMemoryExportHistoryStore,
    InMemoryRecordStore,
)

logger = logging.getLogger(__name__)

# Compliance export service singleton
_compliance_service: ComplianceExportService | None = None
_history_db_initialized = False


def build_compliance_service(settings: Settings) -> ComplianceExportService:
    """Construct the service with the collaborators the settings select.

    Args:
        settings: Application settings.

    Returns:
        A new ComplianceExportService.
    """
    records: RecordSource
    profiles: ComplianceProfileStore
    if settings.record_store.backend == "memory":
        memory_store = InMemoryRecordStore()
        records = profiles = memory_store
    else:
        client = RecordStoreClient.from_settings(settings.record_store)
        records = profiles = client

    history: ExportHistoryStore
    if settings.history_db.backend == "sql":
        history = SqlExportHistoryStore()
    elif settings.history_db.backend == "http":
        history = RecordStoreClient.from_settings(settings.record_store)
    else:
        history = InMemoryExportHistoryStore()

    logger.info(
        "Compliance export service configured: record_store=%s, history=%s",
        settings.record_store.backend,
        settings.history_db.backend,
    )

    return ComplianceExportService(
        profile_store=profiles,
        record_source=records,
        history_store=history,
        settings=settings.export,
    )


async def init_compliance_service(
    settings: Settings,
    service: ComplianceExportService | None = None,
) -> ComplianceExportService:
    """Initialize the service singleton and its history database.

    Args:
        settings: Application settings.
        service: Prebuilt service to install instead of building one.

    Returns:
        The installed service.
    """
    global _compliance_service, _history_db_initialized

    if service is None and settings.history_db.backend == "sql":
        await init_history_database(settings)
        _history_db_initialized = True

    _compliance_service = service or build_compliance_service(settings)
    return _compliance_service


async def close_compliance_service() -> None:
    """Stop running jobs and close the history database."""
    global _compliance_service, _history_db_initialized

    if _compliance_service is not None:
        await _compliance_service.shutdown()
        _compliance_service = None

    if _history_db_initialized:
        await close_history_database()
        _history_db_initialized = False


def get_compliance_service() -> ComplianceExportService:
    """Get the compliance export service.

    Raises:
        HTTPException: If the service has not been initialized.
    """
    if _compliance_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Compliance export service not initialized",
        )
    return _compliance_service
