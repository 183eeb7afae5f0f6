# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Compliance export domain.

This package builds EMIS submissions for a school: it validates the
compliance profile, fetches and aggregates the school's records, and
generates the export file, tracking each attempt as an ExportJob.
"""

from compliance_export.domains.compliance.aggregator import AggregationEngine, GradingScale
from compliance_export.domains.compliance.artifact import ArtifactGenerator, build_filename, fingerprint
from compliance_export.domains.compliance.exceptions import (
    AlreadyInProgressError,
    ComplianceExportError,
    ExportValidationError,
    FetchError,
    IllegalStateError,
    JobCancelledError,
    JobNotFoundError,
    JobTimeoutError,
    ProfileNotFoundError,
    RecordSourceError,
    SerializationError,
)
from compliance_export.domains.compliance.fetcher import SOURCE_NAMES, SourceFetcher
from compliance_export.domains.compliance.job import ExportJob
from compliance_export.domains.compliance.models import (
    AggregatedSnapshot,
    ComplianceProfile,
    ExportArtifact,
    ExportHistoryEntry,
    ExportPeriod,
    HistoryStatus,
    JobState,
    JobStatus,
    SourceRecordSet,
)
from compliance_export.domains.compliance.ports import (
    ComplianceProfileStore,
    ExportHistoryStore,
    RecordSource,
)
from compliance_export.domains.compliance.service import ComplianceExportService
from compliance_export.domains.compliance.validator import (
    ComplianceProfileValidator,
    ValidationResult,
)

__all__ = [
    # Service
    "ComplianceExportService",
    # Pipeline
    "ComplianceProfileValidator",
    "ValidationResult",
    "SourceFetcher",
    "SOURCE_NAMES",
    "AggregationEngine",
    "GradingScale",
    "ArtifactGenerator",
    "ExportJob",
    "build_filename",
    "fingerprint",
    # Ports
    "ComplianceProfileStore",
    "RecordSource",
    "ExportHistoryStore",
    # Models
    "ComplianceProfile",
    "ExportPeriod",
    "SourceRecordSet",
    "AggregatedSnapshot",
    "ExportArtifact",
    "ExportHistoryEntry",
    "HistoryStatus",
    "JobState",
    "JobStatus",
    # Exceptions
    "ComplianceExportError",
    "ExportValidationError",
    "FetchError",
    "AlreadyInProgressError",
    "JobTimeoutError",
    "JobCancelledError",
    "SerializationError",
    "IllegalStateError",
    "JobNotFoundError",
    "ProfileNotFoundError",
    "RecordSourceError",
]
