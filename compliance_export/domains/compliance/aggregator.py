# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Aggregation of fetched records into the EMIS export snapshot.

AggregationEngine turns a SourceRecordSet into an AggregatedSnapshot:
- Attendance summary: one record per (student, date). Record stores keep
  corrections as later entries (an "absent" fixed to "present"), so the
  last entry in fetched order wins.
- Assessment summary: one record per assessment. Missing letter grades
  are derived from the score percentage using a GradingScale.
- Students and staff are re-shaped to the EMIS row layout; classes and
  subjects pass through unchanged.

Aggregation is synchronous and does no I/O, so a job's snapshot is
never observed half-built.

Usage:
    from compliance_export.domains.compliance import AggregationEngine, GradingScale

    engine = AggregationEngine(GradingScale.default())
    snapshot = engine.aggregate(source_set)
    print(snapshot.record_count)
"""

import logging
import math
from datetime import date
from pathlib import Path
from typing import Any

from compliance_export.core.config.settings import ExportSettings
from compliance_export.core.config.yaml_loader import YAMLLoadError, deep_merge, load_yaml
from compliance_export.domains.compliance.models import (
    AggregatedSnapshot,
    AssessmentRecord,
    AssessmentSummaryRecord,
    AttendanceEvent,
    AttendanceSummaryRecord,
    ExportStaff,
    ExportStudent,
    SourceRecordSet,
    StaffRecord,
    StudentRecord,
)

logger = logging.getLogger(__name__)


class GradingScale:
    """Percentage bands mapped to letter grades.

    Attributes:
        bands: (minimum percentage, letter) pairs, highest minimum first.
        fallback: Letter for percentages below every band.
    """

    def __init__(self, bands: list[tuple[float, str]], fallback: str = "F") -> None:
        """Initialize the grading scale.

        Args:
            bands: (minimum percentage, letter) pairs in any order.
            fallback: Letter for percentages below every band.

        Raises:
            ValueError: If a letter is blank or a minimum is repeated.
        """
        minimums = [minimum for minimum, _ in bands]
        if len(set(minimums)) != len(minimums):
            raise ValueError("Grade band minimums must be unique")
        if any(not letter.strip() for _, letter in bands) or not fallback.strip():
            raise ValueError("Grade letters must not be blank")

        self.bands = sorted(((float(m), letter) for m, letter in bands), reverse=True)
        self.fallback = fallback

    @classmethod
    def default(cls) -> "GradingScale":
        """Scale used when a school configures nothing."""
        return cls([(80.0, "A"), (60.0, "B"), (50.0, "C"), (40.0, "D")], fallback="F")

    @classmethod
    def from_settings(cls, settings: ExportSettings, school_id: str | None = None) -> "GradingScale":
        """Build the scale from export settings.

        When settings name a grading scale file it takes precedence over
        the inline bands, including any per-school override.
        """
        if settings.grading_scale_file is not None:
            return cls.from_yaml(settings.grading_scale_file, school_id)
        return cls(list(settings.grade_bands), fallback=settings.fallback_grade)

    @classmethod
    def from_yaml(cls, path: Path, school_id: str | None = None) -> "GradingScale":
        """Load a scale from a grading scale YAML file.

        Args:
            path: YAML file with a `default` section and optional
                `schools.<school_id>` overrides.
            school_id: School whose override to apply.

        Raises:
            YAMLLoadError: If the file is missing or malformed.
        """
        document = load_yaml(path)
        config: dict[str, Any] = document.get("default", {})
        overrides = document.get("schools") or {}
        if school_id is not None and school_id in overrides:
            config = deep_merge(config, overrides[school_id])

        try:
            bands = [(float(band["min"]), str(band["grade"])) for band in config.get("bands", [])]
            return cls(bands, fallback=str(config.get("fallback", "F")))
        except (KeyError, TypeError, ValueError) as e:
            raise YAMLLoadError(path, f"Invalid grading scale: {e}") from e

    def letter_for(self, score: float, max_score: float) -> str:
        """Band a score into a letter grade.

        Args:
            score: Points obtained.
            max_score: Points available.

        Returns:
            Letter of the highest band the percentage reaches.
        """
        if max_score <= 0 or not math.isfinite(score) or not math.isfinite(max_score):
            return self.fallback

        percentage = score / max_score * 100
        for minimum, letter in self.bands:
            if percentage >= minimum:
                return letter
        return self.fallback


class AggregationEngine:
    """Builds the aggregated EMIS snapshot from fetched records."""

    def __init__(self, grading_scale: GradingScale | None = None) -> None:
        """Initialize the engine.

        Args:
            grading_scale: Scale for deriving missing letter grades.
        """
        self.grading_scale = grading_scale or GradingScale.default()

    def aggregate(self, source_set: SourceRecordSet) -> AggregatedSnapshot:
        """Aggregate a fetched record set.

        Args:
            source_set: The six fetched collections.

        Returns:
            Snapshot with normalized records and both summaries.
        """
        snapshot = AggregatedSnapshot(
            students=[self._normalize_student(s) for s in source_set.students],
            staff=[self._normalize_staff(s) for s in source_set.staff],
            classes=list(source_set.classes),
            subjects=list(source_set.subjects),
            attendance_summary=self.summarize_attendance(source_set.attendance),
            assessment_summary=self.summarize_assessments(source_set.assessments),
        )

        logger.debug(
            "Aggregated snapshot: %d attendance events -> %d summary records, %d assessments",
            len(source_set.attendance),
            len(snapshot.attendance_summary),
            len(snapshot.assessment_summary),
        )

        return snapshot

    def summarize_attendance(
        self,
        events: list[AttendanceEvent],
    ) -> list[AttendanceSummaryRecord]:
        """Keep the last event per (student, date).

        Output keeps the order in which each key was first seen.
        """
        latest: dict[tuple[str, date], AttendanceSummaryRecord] = {}
        for event in events:
            latest[(event.student_id, event.date)] = AttendanceSummaryRecord(
                student_id=event.student_id,
                date=event.date,
                status=event.status,
                class_id=event.class_id,
            )
        return list(latest.values())

    def summarize_assessments(
        self,
        records: list[AssessmentRecord],
    ) -> list[AssessmentSummaryRecord]:
        """Project each assessment 1:1, deriving missing letter grades."""
        return [
            AssessmentSummaryRecord(
                student_id=record.student_id,
                subject_id=record.subject_id,
                assessment_type=record.assessment_type,
                score=record.score,
                max_score=record.max_score,
                letter_grade=(
                    record.letter_grade
                    if record.letter_grade and record.letter_grade.strip()
                    else self.grading_scale.letter_for(record.score, record.max_score)
                ),
                term=record.term,
                academic_year=record.academic_year,
            )
            for record in records
        ]

    @staticmethod
    def _normalize_student(student: StudentRecord) -> ExportStudent:
        return ExportStudent(
            emis_id=student.emis_id or None,
            student_number=student.student_number,
            first_name=student.first_name,
            last_name=student.last_name,
            date_of_birth=student.date_of_birth or None,
            gender=student.gender or None,
            grade_level=student.grade_level or None,
            enrollment_date=student.enrollment_date or None,
            guardian_name=student.guardian_name or None,
            guardian_phone=student.guardian_phone or None,
            address=student.address or None,
            special_needs=student.special_needs,
        )

    @staticmethod
    def _normalize_staff(staff: StaffRecord) -> ExportStaff:
        return ExportStaff(
            teacher_number=staff.employee_number,
            first_name=staff.first_name,
            last_name=staff.last_name,
            qualification=staff.qualification or None,
            subjects_taught=list(staff.subjects_taught),
            employment_date=staff.employment_date or None,
            phone=staff.phone or None,
            email=staff.email or None,
        )
