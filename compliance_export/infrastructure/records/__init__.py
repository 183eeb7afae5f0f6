# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""School record store integrations.

- RecordStoreClient: HTTP client for the school administration API
- InMemoryRecordStore, InMemoryExportHistoryStore: process-local stores
"""

from compliance_export.infrastructure.records.client import RecordStoreClient
from compliance_export.infrastructure.records.memory import (
    InMemoryExportHistoryStore,
    InMemoryRecordStore,
)

__all__ = [
    "RecordStoreClient",
    "InMemoryRecordStore",
    "InMemoryExportHistoryStore",
]
