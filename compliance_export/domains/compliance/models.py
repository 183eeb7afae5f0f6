# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Data models for the compliance export domain.

This module defines Pydantic models and enums for:
- The school's compliance (EMIS) profile
- Source records as returned by the school record store
- Derived attendance and assessment summaries
- The aggregated snapshot, the generated artifact and history entries
- Job states and the status view returned to callers

Record models use camelCase aliases because both the record store and
the EMIS document use camelCase field names; snake_case names are
accepted too so Python callers can construct them directly.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from compliance_export.utils.datetime import utc_now


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SchoolCategory(str, Enum):
    """School categories recognized by EMIS."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    COMBINED = "combined"


class ExportPeriod(str, Enum):
    """Reporting periods an export can cover."""

    CURRENT_TERM = "current_term"
    TERM_1 = "term_1"
    TERM_2 = "term_2"
    TERM_3 = "term_3"
    ACADEMIC_YEAR = "academic_year"


class AttendanceStatus(str, Enum):
    """Attendance marks accepted by the record store."""

    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


class JobState(str, Enum):
    """Export job lifecycle states."""

    IDLE = "idle"
    VALIDATING = "validating"
    PREPARING = "preparing"
    PREPARED = "prepared"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are possible."""
        return self in (JobState.COMPLETED, JobState.ERROR)


class HistoryStatus(str, Enum):
    """Outcome recorded in the export history."""

    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Compliance profile
# =============================================================================


class ComplianceProfile(CamelModel):
    """School-level metadata required for EMIS submission.

    Fields may be blank while the school is still filling in its profile;
    the validator decides whether an export can proceed.

    Attributes:
        institution_code: EMIS school code.
        institution_name: Official school name.
        district: Administrative district.
        region: Administrative region (province).
        school_category: Primary, secondary or combined.
        contact_person: Designated contact, usually the head teacher.
        phone: Optional contact phone.
        email: Optional contact email.
    """

    institution_code: str = Field(
        default="",
        validation_alias=AliasChoices("institutionCode", "schoolCode", "school_code", "institution_code"),
        serialization_alias="institutionCode",
    )
    institution_name: str = Field(
        default="",
        validation_alias=AliasChoices("institutionName", "schoolName", "school_name", "institution_name"),
        serialization_alias="institutionName",
    )
    district: str = ""
    region: str = Field(
        default="",
        validation_alias=AliasChoices("region", "province"),
        serialization_alias="region",
    )
    school_category: SchoolCategory = Field(
        default=SchoolCategory.PRIMARY,
        validation_alias=AliasChoices("schoolCategory", "schoolType", "school_type", "school_category"),
        serialization_alias="schoolCategory",
    )
    contact_person: str = ""
    phone: str | None = None
    email: str | None = None


# =============================================================================
# Source records
# =============================================================================


class StudentRecord(CamelModel):
    """Student as returned by the record store."""

    id: str
    student_number: str = ""
    emis_id: str | None = None
    first_name: str = ""
    last_name: str = ""
    date_of_birth: str | None = None
    gender: str | None = None
    grade_level: str | None = Field(
        default=None,
        validation_alias=AliasChoices("gradeLevel", "currentGrade", "grade_level"),
        serialization_alias="gradeLevel",
    )
    enrollment_date: str | None = None
    guardian_name: str | None = None
    guardian_phone: str | None = None
    address: str | None = None
    special_needs: bool = False


class StaffRecord(CamelModel):
    """Teacher or staff member as returned by the record store."""

    id: str
    employee_number: str = Field(
        default="",
        validation_alias=AliasChoices("employeeNumber", "employeeId", "employee_number"),
        serialization_alias="employeeNumber",
    )
    first_name: str = ""
    last_name: str = ""
    qualification: str | None = None
    subjects_taught: list[str] = Field(default_factory=list)
    employment_date: str | None = None
    phone: str | None = None
    email: str | None = None


class ClassRecord(CamelModel):
    """Class (section) as returned by the record store."""

    id: str
    name: str
    grade_level: str | None = None
    section: str | None = None
    teacher_id: str | None = None
    room: str | None = None
    capacity: int | None = None
    academic_year: str | None = None


class SubjectRecord(CamelModel):
    """Subject as returned by the record store."""

    id: str
    name: str
    code: str | None = None
    grade_level: str | None = None
    department: str | None = None


class AttendanceEvent(CamelModel):
    """One attendance mark; corrections arrive as later events."""

    student_id: str
    date: date
    status: AttendanceStatus
    class_id: str | None = None
    recorded_at: datetime | None = None


class AssessmentRecord(CamelModel):
    """One graded assessment for a student in a subject."""

    student_id: str
    subject_id: str
    assessment_type: str = Field(
        default="term",
        validation_alias=AliasChoices("assessmentType", "type", "assessment_type"),
        serialization_alias="assessmentType",
    )
    score: float = Field(
        validation_alias=AliasChoices("score", "marks"),
        serialization_alias="score",
    )
    max_score: float = Field(
        default=100.0,
        validation_alias=AliasChoices("maxScore", "totalMarks", "max_score"),
        serialization_alias="maxScore",
    )
    letter_grade: str | None = Field(
        default=None,
        validation_alias=AliasChoices("letterGrade", "grade", "letter_grade"),
        serialization_alias="letterGrade",
    )
    term: str | None = None
    academic_year: str | None = None


class SourceRecordSet(BaseModel):
    """Per-job snapshot of the six fetched collections."""

    students: list[StudentRecord] = Field(default_factory=list)
    staff: list[StaffRecord] = Field(default_factory=list)
    classes: list[ClassRecord] = Field(default_factory=list)
    subjects: list[SubjectRecord] = Field(default_factory=list)
    attendance: list[AttendanceEvent] = Field(default_factory=list)
    assessments: list[AssessmentRecord] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Export schema
# =============================================================================


class ExportStudent(CamelModel):
    """Student row in the EMIS document."""

    emis_id: str | None = None
    student_number: str
    first_name: str
    last_name: str
    date_of_birth: str | None = None
    gender: str | None = None
    grade_level: str | None = None
    enrollment_date: str | None = None
    guardian_name: str | None = None
    guardian_phone: str | None = None
    address: str | None = None
    special_needs: bool = False


class ExportStaff(CamelModel):
    """Teacher row in the EMIS document."""

    teacher_number: str
    first_name: str
    last_name: str
    qualification: str | None = None
    subjects_taught: list[str] = Field(default_factory=list)
    employment_date: str | None = None
    phone: str | None = None
    email: str | None = None


class AttendanceSummaryRecord(CamelModel):
    """Final attendance state of one student on one day."""

    student_id: str
    date: date
    status: AttendanceStatus
    class_id: str | None = None


class AssessmentSummaryRecord(CamelModel):
    """Flattened assessment score with its letter grade."""

    student_id: str
    subject_id: str
    assessment_type: str
    score: float
    max_score: float
    letter_grade: str
    term: str | None = None
    academic_year: str | None = None


class AggregatedSnapshot(BaseModel):
    """Aggregated, export-ready view of a school's records."""

    students: list[ExportStudent] = Field(default_factory=list)
    staff: list[ExportStaff] = Field(default_factory=list)
    classes: list[ClassRecord] = Field(default_factory=list)
    subjects: list[SubjectRecord] = Field(default_factory=list)
    attendance_summary: list[AttendanceSummaryRecord] = Field(default_factory=list)
    assessment_summary: list[AssessmentSummaryRecord] = Field(default_factory=list)

    @property
    def record_counts(self) -> dict[str, int]:
        """Size of each exported collection."""
        return {
            "students": len(self.students),
            "staff": len(self.staff),
            "classes": len(self.classes),
            "subjects": len(self.subjects),
            "attendanceSummary": len(self.attendance_summary),
            "assessmentSummary": len(self.assessment_summary),
        }

    @property
    def record_count(self) -> int:
        """Total number of exported records."""
        return sum(self.record_counts.values())


class ExportArtifact(BaseModel):
    """Generated EMIS file. Immutable once created.

    Attributes:
        payload: Serialized document bytes.
        media_type: MIME type of the payload.
        filename: Suggested download filename.
        fingerprint: "sha256:<hex>" digest of the payload.
        generated_at: Generation timestamp embedded in the document.
    """

    model_config = ConfigDict(frozen=True)

    payload: bytes
    media_type: str = "application/json"
    filename: str
    fingerprint: str
    generated_at: datetime

    @property
    def size_bytes(self) -> int:
        """Payload size in bytes."""
        return len(self.payload)


class ExportHistoryEntry(BaseModel):
    """Durable record of one finished export job. Never mutated."""

    model_config = ConfigDict(frozen=True)

    export_id: str
    school_id: str
    export_type: str = "EMIS"
    period: ExportPeriod
    record_count: int = 0
    status: HistoryStatus
    timestamp: datetime = Field(default_factory=utc_now)
    error_kind: str | None = None
    filename: str | None = None


# =============================================================================
# Status views
# =============================================================================


class FieldError(BaseModel):
    """A single compliance profile field problem."""

    model_config = ConfigDict(frozen=True)

    field: str
    reason: str


class JobStatus(BaseModel):
    """Live view of an export job returned to callers."""

    job_id: str
    school_id: str
    period: ExportPeriod
    state: JobState
    progress: int
    message: str
    record_counts: dict[str, int] | None = None
    record_count: int | None = None
    error: dict[str, Any] | None = None
    fingerprint: str | None = None
    history_recorded: bool = False
    created_at: datetime
    updated_at: datetime
