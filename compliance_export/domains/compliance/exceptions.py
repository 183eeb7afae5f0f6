# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Custom exceptions for the compliance export pipeline.

This module defines the exception hierarchy for export operations:
- ComplianceExportError: Base exception for all export errors
- ExportValidationError: Required compliance profile fields are missing
- FetchError: A record source failed after exhausting its retries
- AlreadyInProgressError: Another export is running for the school
- JobTimeoutError: The job exceeded its overall time budget
- JobCancelledError: The caller cancelled the job
- SerializationError: A value cannot be represented in the EMIS document
- IllegalStateError: Operation not allowed in the job's current state
- JobNotFoundError: Unknown export job
- ProfileNotFoundError: The school has no compliance profile
- RecordSourceError: Transport failure talking to a collaborator

Every exception carries a stable `kind` so callers can tell "fix your
profile", "retry later" and "system problem" apart without parsing text.
"""

from typing import Any


class ComplianceExportError(Exception):
    """Base exception for all compliance export errors.

    Attributes:
        message: Human-readable error description.
        details: Additional error context.
    """

    kind = "export_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize the export error.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional error context.
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation with details if available."""
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for status responses."""
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ExportValidationError(ComplianceExportError):
    """One or more required compliance profile fields are missing.

    Attributes:
        field_errors: List of {"field", "reason"} dictionaries.
    """

    kind = "validation"

    def __init__(self, field_errors: list[dict[str, str]]):
        self.field_errors = field_errors
        fields = ", ".join(error["field"] for error in field_errors)
        super().__init__(
            f"Compliance profile is incomplete: {fields}",
            details={"field_errors": field_errors},
        )


class FetchError(ComplianceExportError):
    """A record source failed after exhausting its retries.

    Attributes:
        source: Name of the failing source (e.g. "assessments").
        attempts: Number of attempts made.
    """

    kind = "fetch"

    def __init__(self, source: str, reason: str, attempts: int = 1):
        self.source = source
        self.attempts = attempts
        super().__init__(
            f"Failed to fetch {source}: {reason}",
            details={"source": source, "attempts": attempts},
        )


class AlreadyInProgressError(ComplianceExportError):
    """An export for the school is already running."""

    kind = "already_in_progress"

    def __init__(self, school_id: str, job_id: str):
        self.school_id = school_id
        self.job_id = job_id
        super().__init__(
            f"An export for school {school_id} is already in progress",
            details={"school_id": school_id, "job_id": job_id},
        )


class JobTimeoutError(ComplianceExportError):
    """The job exceeded its overall time budget."""

    kind = "timeout"

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Export job exceeded its time limit of {timeout:g}s",
            details={"timeout_seconds": timeout},
        )


class JobCancelledError(ComplianceExportError):
    """The caller cancelled the job."""

    kind = "cancelled"

    def __init__(self, message: str = "Export cancelled by user"):
        super().__init__(message)


class SerializationError(ComplianceExportError):
    """A value cannot be represented in the EMIS document.

    Attributes:
        field_path: Path of the offending value, e.g. "assessmentSummary[3].score".
    """

    kind = "serialization"

    def __init__(self, field_path: str, reason: str):
        self.field_path = field_path
        super().__init__(
            f"Cannot serialize {field_path}: {reason}",
            details={"field_path": field_path},
        )


class IllegalStateError(ComplianceExportError):
    """Operation not allowed in the job's current state."""

    kind = "illegal_state"

    def __init__(self, job_id: str, state: str, operation: str):
        self.job_id = job_id
        self.state = state
        super().__init__(
            f"Cannot {operation} export job {job_id} in state '{state}'",
            details={"job_id": job_id, "state": state, "operation": operation},
        )


class JobNotFoundError(ComplianceExportError):
    """Raised when an export job is not found."""

    kind = "not_found"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Export job {job_id} not found", details={"job_id": job_id})


class ProfileNotFoundError(ComplianceExportError):
    """Raised when a school has no compliance profile."""

    kind = "profile_not_found"

    def __init__(self, school_id: str):
        self.school_id = school_id
        super().__init__(
            f"No compliance profile for school {school_id}",
            details={"school_id": school_id},
        )


class RecordSourceError(ComplianceExportError):
    """Transport or protocol failure talking to a record store.

    Attributes:
        status_code: HTTP status code if the store answered.
    """

    kind = "record_source"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, details)

    def __str__(self) -> str:
        """Return string representation with status code."""
        base = self.message
        if self.status_code:
            base = f"[{self.status_code}] {base}"
        if self.details:
            base = f"{base} - Details: {self.details}"
        return base
