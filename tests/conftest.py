# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests
- Integration tests
"""

from typing import Any

import pytest

from compliance_export.core.config.settings import ExportSettings
from compliance_export.domains.compliance.models import ComplianceProfile, SchoolCategory
from compliance_export.infrastructure.records.memory import (
    InMemoryExportHistoryStore,
    InMemoryRecordStore,
)


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def export_settings() -> ExportSettings:
    """Export settings with short timeouts so failure paths run quickly."""
    return ExportSettings(
        fetch_timeout=0.5,
        max_retries=2,
        retry_backoff=0.01,
        job_timeout=5.0,
    )


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_school_id() -> str:
    """Provide a sample school ID for testing."""
    return "SCH-001"


@pytest.fixture
def valid_profile() -> ComplianceProfile:
    """Provide a complete compliance profile."""
    return ComplianceProfile(
        institution_code="12345678",
        institution_name="Lusaka Primary School",
        district="Lusaka",
        region="Lusaka Province",
        school_category=SchoolCategory.PRIMARY,
        contact_person="Grace Banda",
        phone="+260971234567",
        email="head@lusakaprimary.edu.zm",
    )


@pytest.fixture
def sample_records() -> dict[str, list[dict[str, Any]]]:
    """Provide raw record store payloads for one school.

    Counts: 3 students, 2 staff, 2 classes, 2 subjects, 4 attendance events
    (one of them a correction), 2 assessments.
    """
    return {
        "students": [
            {
                "id": "stu-1",
                "studentNumber": "S001",
                "emisId": "EMIS-001",
                "firstName": "Chanda",
                "lastName": "Mwale",
                "dateOfBirth": "2014-02-11",
                "gender": "female",
                "currentGrade": "Grade 4",
                "enrollmentDate": "2020-01-13",
            },
            {
                "id": "stu-2",
                "studentNumber": "S002",
                "firstName": "Mutale",
                "lastName": "Phiri",
                "gradeLevel": "Grade 4",
            },
            {
                "id": "stu-3",
                "studentNumber": "S003",
                "firstName": "Bwalya",
                "lastName": "Tembo",
                "gradeLevel": "Grade 5",
                "specialNeeds": True,
            },
        ],
        "staff": [
            {
                "id": "tch-1",
                "employeeId": "T100",
                "firstName": "Grace",
                "lastName": "Banda",
                "qualification": "B.Ed",
                "subjectsTaught": ["Mathematics"],
            },
            {
                "id": "tch-2",
                "employeeNumber": "T101",
                "firstName": "Joseph",
                "lastName": "Zulu",
            },
        ],
        "classes": [
            {"id": "cls-1", "name": "4A", "gradeLevel": "Grade 4", "teacherId": "tch-1"},
            {"id": "cls-2", "name": "5A", "gradeLevel": "Grade 5", "teacherId": "tch-2"},
        ],
        "subjects": [
            {"id": "sub-1", "name": "Mathematics", "code": "MATH"},
            {"id": "sub-2", "name": "English", "code": "ENG"},
        ],
        "attendance": [
            {"studentId": "stu-1", "date": "2024-03-04", "status": "absent", "classId": "cls-1"},
            {"studentId": "stu-2", "date": "2024-03-04", "status": "present", "classId": "cls-1"},
            {"studentId": "stu-1", "date": "2024-03-04", "status": "present", "classId": "cls-1"},
            {"studentId": "stu-1", "date": "2024-03-05", "status": "late", "classId": "cls-1"},
        ],
        "assessments": [
            {
                "studentId": "stu-1",
                "subjectId": "sub-1",
                "assessmentType": "exam",
                "score": 72,
                "maxScore": 100,
                "term": "Term 1",
                "academicYear": "2024",
            },
            {
                "studentId": "stu-2",
                "subjectId": "sub-2",
                "assessmentType": "test",
                "score": 18,
                "maxScore": 20,
                "letterGrade": "A",
                "term": "Term 1",
                "academicYear": "2024",
            },
        ],
    }


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def record_store(
    sample_school_id: str,
    valid_profile: ComplianceProfile,
    sample_records: dict[str, list[dict[str, Any]]],
) -> InMemoryRecordStore:
    """In-memory record store seeded with one complete school."""
    store = InMemoryRecordStore()
    store.add_school(sample_school_id, valid_profile, **sample_records)
    return store


@pytest.fixture
def history_store() -> InMemoryExportHistoryStore:
    """Empty in-memory export history."""
    return InMemoryExportHistoryStore()
