# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for the export history.

Example:
    from compliance_export.infrastructure.database import (
        init_history_database,
        SqlExportHistoryStore,
    )

    await init_history_database(settings)
    store = SqlExportHistoryStore()
"""

from compliance_export.infrastructure.database.connection import (
    DatabaseError,
    check_history_database_connection,
    close_history_database,
    get_history_session,
    get_history_sessionmaker,
    init_history_database,
)
from compliance_export.infrastructure.database.history_store import SqlExportHistoryStore
from compliance_export.infrastructure.database.models import Base, ExportHistoryRecord

__all__ = [
    # Connection
    "DatabaseError",
    "init_history_database",
    "close_history_database",
    "get_history_session",
    "get_history_sessionmaker",
    "check_history_database_connection",
    # Models
    "Base",
    "ExportHistoryRecord",
    # Store
    "SqlExportHistoryStore",
]
