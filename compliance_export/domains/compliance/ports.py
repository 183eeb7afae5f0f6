# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Collaborator interfaces consumed by the compliance export pipeline.

The pipeline never talks to a concrete store directly. Implementations
are chosen once, at construction time:
- RecordStoreClient: the school administration REST API
- InMemoryRecordStore: tests and local development
- SqlExportHistoryStore: durable export history in PostgreSQL

Record listings return plain dictionaries exactly as the store sends
them; SourceFetcher coerces them into record models.
"""

from abc import ABC, abstractmethod
from typing import Any

from compliance_export.domains.compliance.models import (
    ComplianceProfile,
    ExportHistoryEntry,
    ExportPeriod,
)

RawRecords = list[dict[str, Any]]


class ComplianceProfileStore(ABC):
    """Reads and writes a school's compliance profile."""

    @abstractmethod
    async def get_compliance_profile(self, school_id: str) -> ComplianceProfile:
        """Load the school's profile.

        Raises:
            ProfileNotFoundError: If the school has no profile.
        """
        ...

    @abstractmethod
    async def save_compliance_profile(
        self,
        school_id: str,
        profile: ComplianceProfile,
    ) -> ComplianceProfile:
        """Store the school's profile and return what was stored."""
        ...


class RecordSource(ABC):
    """Lists the record collections an export is built from."""

    @abstractmethod
    async def list_students(self, school_id: str) -> RawRecords:
        ...

    @abstractmethod
    async def list_staff(self, school_id: str) -> RawRecords:
        ...

    @abstractmethod
    async def list_classes(self, school_id: str) -> RawRecords:
        ...

    @abstractmethod
    async def list_subjects(self, school_id: str) -> RawRecords:
        ...

    @abstractmethod
    async def list_attendance_for_period(
        self,
        school_id: str,
        period: ExportPeriod,
    ) -> RawRecords:
        ...

    @abstractmethod
    async def list_assessments_for_period(
        self,
        school_id: str,
        period: ExportPeriod,
    ) -> RawRecords:
        ...


class ExportHistoryStore(ABC):
    """Append-only log of finished export jobs."""

    @abstractmethod
    async def append_export_history(self, entry: ExportHistoryEntry) -> None:
        """Persist one history entry."""
        ...

    @abstractmethod
    async def list_export_history(
        self,
        school_id: str,
        limit: int = 20,
    ) -> list[ExportHistoryEntry]:
        """Return the school's most recent entries, newest first."""
        ...
