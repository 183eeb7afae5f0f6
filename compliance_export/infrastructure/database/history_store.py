# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Export history store backed by PostgreSQL.

Example:
    >>> store = SqlExportHistoryStore()
    >>> await store.append_export_history(entry)
    >>> entries = await store.list_export_history("SCH-001", limit=10)
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_export.domains.compliance.models import ExportHistoryEntry
from compliance_export.domains.compliance.ports import ExportHistoryStore
from compliance_export.infrastructure.database.connection import get_history_session
from compliance_export.infrastructure.database.models import ExportHistoryRecord

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class SqlExportHistoryStore(ExportHistoryStore):
    """Export history persisted in the compliance_export_history table.

    Attributes:
        _session_factory: Returns a committing session context manager.
    """

    def __init__(self, session_factory: SessionFactory = get_history_session) -> None:
        """Initialize the store.

        Args:
            session_factory: Session context manager factory. Defaults to
                the module-level history database session.
        """
        self._session_factory = session_factory

    async def append_export_history(self, entry: ExportHistoryEntry) -> None:
        """Insert one history row.

        Raises:
            DatabaseError: If the insert fails.
        """
        async with self._session_factory() as session:
            session.add(ExportHistoryRecord.from_entry(entry))
            await session.flush()

        logger.debug(
            "Recorded export history: export=%s, school=%s, status=%s",
            entry.export_id,
            entry.school_id,
            entry.status.value,
        )

    async def list_export_history(
        self,
        school_id: str,
        limit: int = 20,
    ) -> list[ExportHistoryEntry]:
        """Return the school's most recent entries, newest first."""
        stmt = (
            select(ExportHistoryRecord)
            .where(ExportHistoryRecord.school_id == school_id)
            .order_by(ExportHistoryRecord.created_at.desc())
            .limit(limit)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()

        return [record.to_entry() for record in records]
