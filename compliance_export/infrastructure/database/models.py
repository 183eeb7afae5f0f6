# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for the export history database.

One row per finished export job. Rows are only ever inserted.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from compliance_export.domains.compliance.models import (
    ExportHistoryEntry,
    ExportPeriod,
    HistoryStatus,
)
from compliance_export.utils.datetime import ensure_utc, utc_now

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base for export history models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class ExportHistoryRecord(Base):
    """Export history row.

    Attributes:
        export_id: Job ID of the export.
        school_id: Exported school.
        export_type: Export type, "EMIS".
        period: Reporting period value.
        record_count: Records exported (0 for failed jobs).
        status: "completed" or "failed".
        error_kind: Error kind for failed jobs.
        filename: Artifact filename for completed jobs.
        created_at: When the job finished.
    """

    __tablename__ = "compliance_export_history"
    __table_args__ = (Index("ix_compliance_export_history_school_created", "school_id", "created_at"),)

    export_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    school_id: Mapped[str] = mapped_column(String(64), nullable=False)
    export_type: Mapped[str] = mapped_column(String(20), nullable=False, default="EMIS")
    period: Mapped[str] = mapped_column(String(20), nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_kind: Mapped[str | None] = mapped_column(String(40), nullable=True)
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    @classmethod
    def from_entry(cls, entry: ExportHistoryEntry) -> "ExportHistoryRecord":
        """Build a row from a history entry."""
        return cls(
            export_id=entry.export_id,
            school_id=entry.school_id,
            export_type=entry.export_type,
            period=entry.period.value,
            record_count=entry.record_count,
            status=entry.status.value,
            error_kind=entry.error_kind,
            filename=entry.filename,
            created_at=entry.timestamp,
        )

    def to_entry(self) -> ExportHistoryEntry:
        """Convert the row back to a history entry."""
        return ExportHistoryEntry(
            export_id=self.export_id,
            school_id=self.school_id,
            export_type=self.export_type,
            period=ExportPeriod(self.period),
            record_count=self.record_count,
            status=HistoryStatus(self.status),
            timestamp=ensure_utc(self.created_at),
            error_kind=self.error_kind,
            filename=self.filename,
        )

    def __repr__(self) -> str:
        return f"<ExportHistoryRecord(export_id={self.export_id}, school={self.school_id}, status={self.status})>"
