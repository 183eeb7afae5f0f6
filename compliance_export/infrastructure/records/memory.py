# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-memory record and history stores.

Used by tests and local development (RECORD_STORE_BACKEND=memory,
HISTORY_DB_BACKEND=memory). Data lives for the lifetime of the process.

Example:
    >>> store = InMemoryRecordStore()
    >>> store.add_school("SCH-001", profile, students=[{"id": "s1", ...}])
    >>> await store.list_students("SCH-001")
    [{'id': 's1', ...}]
"""

import asyncio
from collections import defaultdict
from copy import deepcopy
from typing import Any

from compliance_export.domains.compliance.exceptions import ProfileNotFoundError
from compliance_export.domains.compliance.models import (
    ComplianceProfile,
    ExportHistoryEntry,
    ExportPeriod,
)
from compliance_export.domains.compliance.ports import (
    ComplianceProfileStore,
    ExportHistoryStore,
    RawRecords,
    RecordSource,
)

COLLECTIONS = ("students", "staff", "classes", "subjects", "attendance", "assessments")


class InMemoryRecordStore(RecordSource, ComplianceProfileStore):
    """Record source and profile store backed by dictionaries.

    Attendance and assessments are stored per school, not per period;
    every period returns the same records.

    Attributes:
        latency: Optional delay in seconds added to every listing, to make
            concurrency observable in tests.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self._profiles: dict[str, ComplianceProfile] = {}
        self._records: dict[str, dict[str, RawRecords]] = defaultdict(
            lambda: {name: [] for name in COLLECTIONS}
        )

    def add_school(
        self,
        school_id: str,
        profile: ComplianceProfile | None = None,
        **collections: RawRecords,
    ) -> None:
        """Register a school with its profile and records.

        Args:
            school_id: School identifier.
            profile: Compliance profile; omitted schools have none.
            **collections: Records keyed by collection name
                (students, staff, classes, subjects, attendance, assessments).

        Raises:
            ValueError: If an unknown collection name is given.
        """
        unknown = set(collections) - set(COLLECTIONS)
        if unknown:
            raise ValueError(f"Unknown collections: {', '.join(sorted(unknown))}")

        if profile is not None:
            self._profiles[school_id] = profile
        for name, records in collections.items():
            self._records[school_id][name] = list(records)

    async def list_students(self, school_id: str) -> RawRecords:
        return await self._list(school_id, "students")

    async def list_staff(self, school_id: str) -> RawRecords:
        return await self._list(school_id, "staff")

    async def list_classes(self, school_id: str) -> RawRecords:
        return await self._list(school_id, "classes")

    async def list_subjects(self, school_id: str) -> RawRecords:
        return await self._list(school_id, "subjects")

    async def list_attendance_for_period(
        self,
        school_id: str,
        period: ExportPeriod,
    ) -> RawRecords:
        return await self._list(school_id, "attendance")

    async def list_assessments_for_period(
        self,
        school_id: str,
        period: ExportPeriod,
    ) -> RawRecords:
        return await self._list(school_id, "assessments")

    async def get_compliance_profile(self, school_id: str) -> ComplianceProfile:
        profile = self._profiles.get(school_id)
        if profile is None:
            raise ProfileNotFoundError(school_id)
        return profile.model_copy()

    async def save_compliance_profile(
        self,
        school_id: str,
        profile: ComplianceProfile,
    ) -> ComplianceProfile:
        self._profiles[school_id] = profile.model_copy()
        return profile

    async def _list(self, school_id: str, name: str) -> RawRecords:
        if self.latency:
            await asyncio.sleep(self.latency)
        records: list[dict[str, Any]] = self._records[school_id][name]
        return deepcopy(records)


class InMemoryExportHistoryStore(ExportHistoryStore):
    """Append-only export history kept in a list."""

    def __init__(self) -> None:
        self.entries: list[ExportHistoryEntry] = []

    async def append_export_history(self, entry: ExportHistoryEntry) -> None:
        self.entries.append(entry)

    async def list_export_history(
        self,
        school_id: str,
        limit: int = 20,
    ) -> list[ExportHistoryEntry]:
        entries = [entry for entry in self.entries if entry.school_id == school_id]
        entries.sort(key=lambda entry: entry.timestamp, reverse=True)
        return entries[:limit]
