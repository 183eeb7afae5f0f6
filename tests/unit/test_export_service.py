# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the compliance export service."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import structlog

from compliance_export.domains.compliance.aggregator import GradingScale
from compliance_export.domains.compliance.exceptions import (
    AlreadyInProgressError,
    IllegalStateError,
    JobNotFoundError,
    ProfileNotFoundError,
    RecordSourceError,
)
from compliance_export.domains.compliance.models import (
    ComplianceProfile,
    ExportPeriod,
    HistoryStatus,
    JobState,
)
from compliance_export.domains.compliance.service import ComplianceExportService
from compliance_export.infrastructure.records.memory import InMemoryRecordStore

FIXED_NOW = datetime(2024, 3, 4, 9, 15, tzinfo=timezone.utc)


@pytest.fixture
def service(record_store, history_store, export_settings) -> ComplianceExportService:
    """Create a service over the seeded in-memory stores."""
    return ComplianceExportService(
        profile_store=record_store,
        record_source=record_store,
        history_store=history_store,
        settings=export_settings,
    )


@pytest.fixture
def slow_service(valid_profile, sample_records, history_store, export_settings) -> ComplianceExportService:
    """Create a service whose record store answers every listing after 200ms."""
    store = InMemoryRecordStore(latency=0.2)
    store.add_school("SCH-001", valid_profile, **sample_records)
    store.add_school("SCH-002", valid_profile, **sample_records)
    return ComplianceExportService(store, store, history_store, settings=export_settings)


class TestHappyPath:
    """Scenario: complete profile and healthy sources."""

    @pytest.mark.asyncio
    async def test_export_end_to_end(self, service, history_store) -> None:
        """Test request, preparation, generation and history."""
        job_id = await service.request_export("SCH-001", ExportPeriod.CURRENT_TERM)

        status = await service.wait_for_job(job_id)

        assert status.state == JobState.PREPARED
        assert status.progress == 100
        assert status.record_counts == {
            "students": 3,
            "staff": 2,
            "classes": 2,
            "subjects": 2,
            "attendanceSummary": 3,
            "assessmentSummary": 2,
        }

        artifact = await service.generate_artifact(job_id)
        status = await service.get_job_status(job_id)

        assert status.state == JobState.COMPLETED
        assert status.fingerprint == artifact.fingerprint
        assert service.active_job_count == 0

        document = json.loads(artifact.payload)
        exported = sum(len(document[name]) for name in status.record_counts)
        [entry] = await service.list_history("SCH-001")
        assert entry.status == HistoryStatus.COMPLETED
        assert entry.record_count == exported == 14
        assert len(history_store.entries) == 1

    @pytest.mark.asyncio
    async def test_artifact_can_be_downloaded_again(self, service) -> None:
        """Test that a completed artifact is kept for re-download."""
        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)
        artifact = await service.generate_artifact(job_id)

        again = await service.get_artifact(job_id)

        assert again.payload == artifact.payload

    @pytest.mark.asyncio
    async def test_identical_data_gives_identical_files(self, service) -> None:
        """Test that exports of unchanged data are byte-identical."""
        payloads = []
        with patch("compliance_export.domains.compliance.job.utc_now", return_value=FIXED_NOW):
            for _ in range(2):
                job_id = await service.request_export("SCH-001")
                await service.wait_for_job(job_id)
                payloads.append((await service.generate_artifact(job_id)).payload)

        assert payloads[0] == payloads[1]


class TestValidationFailure:
    """Scenario: incomplete compliance profile."""

    @pytest.mark.asyncio
    async def test_incomplete_profile_fails_job(self, service, record_store, history_store) -> None:
        """Test that the job fails validation and nothing is fetched."""
        record_store.add_school("SCH-003", ComplianceProfile(institution_code="87654321"))
        record_store.list_students = AsyncMock(return_value=[])

        job_id = await service.request_export("SCH-003")
        status = await service.wait_for_job(job_id)

        assert status.state == JobState.ERROR
        assert status.error["kind"] == "validation"
        field_errors = status.error["details"]["field_errors"]
        assert {"field": "region", "reason": "Province is required"} in field_errors
        record_store.list_students.assert_not_awaited()

        [entry] = history_store.entries
        assert entry.status == HistoryStatus.FAILED
        assert entry.record_count == 0

    @pytest.mark.asyncio
    async def test_missing_district_and_contact(self, service, record_store, valid_profile) -> None:
        """Test that both missing fields are reported together."""
        profile = valid_profile.model_copy(update={"district": "", "contact_person": "  "})
        record_store.add_school("SCH-004", profile)

        job_id = await service.request_export("SCH-004")
        status = await service.wait_for_job(job_id)

        fields = [e["field"] for e in status.error["details"]["field_errors"]]
        assert fields == ["district", "contact_person"]

    @pytest.mark.asyncio
    async def test_failed_job_releases_school(self, service, record_store) -> None:
        """Test that a new export can start after a failed one."""
        record_store.add_school("SCH-003", ComplianceProfile())
        job_id = await service.request_export("SCH-003")
        await service.wait_for_job(job_id)

        second = await service.request_export("SCH-003")

        assert second != job_id


class TestFetchFailure:
    """Scenario: a record source stays down."""

    @pytest.mark.asyncio
    async def test_failing_source_fails_job(self, service, record_store, history_store) -> None:
        """Test that the failing source is named and history records the failure."""
        record_store.list_assessments_for_period = AsyncMock(
            side_effect=RecordSourceError("Failed to connect to record store")
        )

        job_id = await service.request_export("SCH-001")
        status = await service.wait_for_job(job_id)

        assert status.state == JobState.ERROR
        assert status.error["kind"] == "fetch"
        assert status.error["details"]["source"] == "assessments"
        assert record_store.list_assessments_for_period.await_count == 3

        [entry] = history_store.entries
        assert entry.status == HistoryStatus.FAILED
        assert entry.record_count == 0
        assert entry.error_kind == "fetch"

    @pytest.mark.asyncio
    async def test_timing_out_source_fails_job(
        self, record_store, history_store, export_settings
    ) -> None:
        """Test that a source timing out on every attempt fails the job."""
        async def hang(*args):
            await asyncio.sleep(5)
            return []

        record_store.list_assessments_for_period = AsyncMock(side_effect=hang)
        settings = export_settings.model_copy(update={"fetch_timeout": 0.05})
        service = ComplianceExportService(record_store, record_store, history_store, settings=settings)

        job_id = await service.request_export("SCH-001")
        status = await service.wait_for_job(job_id)

        assert status.error["kind"] == "fetch"
        assert status.error["details"] == {"source": "assessments", "attempts": 3}
        assert history_store.entries[0].record_count == 0
        with pytest.raises(IllegalStateError):
            await service.get_artifact(job_id)

    @pytest.mark.asyncio
    async def test_generate_after_failure_is_illegal(self, service, record_store) -> None:
        """Test that a failed job cannot produce a file."""
        record_store.list_staff = AsyncMock(side_effect=OSError("network unreachable"))
        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)

        with pytest.raises(IllegalStateError):
            await service.generate_artifact(job_id)


class TestCancellation:
    """Scenario: the user cancels mid-fetch."""

    @pytest.mark.asyncio
    async def test_cancel_during_fetch(self, slow_service, history_store) -> None:
        """Test that a cancelled job ends promptly as cancelled."""
        job_id = await slow_service.request_export("SCH-001")
        await asyncio.sleep(0.05)

        await slow_service.cancel_job(job_id)
        status = await asyncio.wait_for(slow_service.wait_for_job(job_id), timeout=1.0)

        assert status.state == JobState.ERROR
        assert status.error["kind"] == "cancelled"
        assert slow_service.active_job_count == 0
        assert history_store.entries[0].error_kind == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_prepared_job_releases_school(self, service) -> None:
        """Test that cancelling a prepared job frees the school."""
        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)

        await service.cancel_job(job_id)

        assert (await service.get_job_status(job_id)).state == JobState.ERROR
        assert service.active_job_count == 0

    @pytest.mark.asyncio
    async def test_cancel_completed_job_is_noop(self, service, history_store) -> None:
        """Test that cancelling a finished job changes nothing."""
        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)
        await service.generate_artifact(job_id)

        await service.cancel_job(job_id)

        assert (await service.get_job_status(job_id)).state == JobState.COMPLETED
        assert len(history_store.entries) == 1

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_jobs(self, slow_service) -> None:
        """Test that shutdown stops every running job."""
        job_id = await slow_service.request_export("SCH-001")

        await slow_service.shutdown()

        assert (await slow_service.get_job_status(job_id)).state == JobState.ERROR
        assert slow_service.active_job_count == 0


class TestSingleFlight:
    """Tests for one active export per school."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_start_one_job(self, slow_service) -> None:
        """Test that simultaneous requests for one school start exactly one job."""
        results = await asyncio.gather(
            *(slow_service.request_export("SCH-001") for _ in range(5)),
            return_exceptions=True,
        )

        job_ids = [r for r in results if isinstance(r, str)]
        rejected = [r for r in results if isinstance(r, AlreadyInProgressError)]
        assert len(job_ids) == 1
        assert len(rejected) == 4
        assert all(error.job_id == job_ids[0] for error in rejected)

        await slow_service.shutdown()

    @pytest.mark.asyncio
    async def test_different_schools_run_concurrently(self, slow_service) -> None:
        """Test that the limit is per school."""
        first = await slow_service.request_export("SCH-001")
        second = await slow_service.request_export("SCH-002")

        assert first != second
        assert slow_service.active_job_count == 2

        await slow_service.shutdown()

    @pytest.mark.asyncio
    async def test_prepared_job_still_holds_school(self, service) -> None:
        """Test that a prepared but not generated export blocks a second one."""
        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)

        with pytest.raises(AlreadyInProgressError):
            await service.request_export("SCH-001")

    @pytest.mark.asyncio
    async def test_missing_profile_releases_school(self, service) -> None:
        """Test that an unknown school leaves no active job behind."""
        with pytest.raises(ProfileNotFoundError):
            await service.request_export("SCH-404")

        assert service.active_job_count == 0


class TestJobLookup:
    """Tests for job lookup and acknowledgement."""

    @pytest.mark.asyncio
    async def test_unknown_job(self, service) -> None:
        """Test that unknown job IDs are reported."""
        with pytest.raises(JobNotFoundError):
            await service.get_job_status("missing")

    @pytest.mark.asyncio
    async def test_artifact_before_completion_is_illegal(self, service) -> None:
        """Test that there is nothing to download before generation."""
        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)

        with pytest.raises(IllegalStateError):
            await service.get_artifact(job_id)

    @pytest.mark.asyncio
    async def test_acknowledge_running_job_is_illegal(self, service) -> None:
        """Test that only finished jobs can be acknowledged."""
        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)

        with pytest.raises(IllegalStateError):
            await service.acknowledge_job(job_id)

    @pytest.mark.asyncio
    async def test_acknowledge_forgets_finished_job(self, service) -> None:
        """Test that an acknowledged job is no longer known."""
        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)
        await service.generate_artifact(job_id)

        await service.acknowledge_job(job_id)

        with pytest.raises(JobNotFoundError):
            await service.get_job_status(job_id)


class TestJobRetention:
    """Tests for forgetting old finished jobs."""

    @pytest.mark.asyncio
    async def test_old_finished_jobs_are_evicted(self, service, record_store, valid_profile) -> None:
        """Test that finished jobs past their retention are forgotten."""
        record_store.add_school("SCH-002", valid_profile)
        finished_id = await service.request_export("SCH-001")
        await service.wait_for_job(finished_id)
        await service.generate_artifact(finished_id)
        later = datetime.now(timezone.utc) + timedelta(seconds=service.settings.job_retention + 60)

        with patch("compliance_export.domains.compliance.service.utc_now", return_value=later):
            await service.request_export("SCH-002")

        with pytest.raises(JobNotFoundError):
            await service.get_job_status(finished_id)

    @pytest.mark.asyncio
    async def test_unfinished_jobs_are_kept(self, service, record_store, valid_profile) -> None:
        """Test that prepared jobs are never evicted."""
        record_store.add_school("SCH-002", valid_profile)
        prepared_id = await service.request_export("SCH-001")
        await service.wait_for_job(prepared_id)
        later = datetime.now(timezone.utc) + timedelta(seconds=service.settings.job_retention + 60)

        with patch("compliance_export.domains.compliance.service.utc_now", return_value=later):
            await service.request_export("SCH-002")

        status = await service.get_job_status(prepared_id)
        assert status.state == JobState.PREPARED

    @pytest.mark.asyncio
    async def test_recent_finished_jobs_are_kept(self, service, record_store, valid_profile) -> None:
        """Test that a job finished within the retention stays available."""
        record_store.add_school("SCH-002", valid_profile)
        finished_id = await service.request_export("SCH-001")
        await service.wait_for_job(finished_id)
        await service.generate_artifact(finished_id)

        await service.request_export("SCH-002")

        assert (await service.get_artifact(finished_id)).payload


class TestProfiles:
    """Tests for compliance profile operations."""

    @pytest.mark.asyncio
    async def test_update_and_get_profile(self, service) -> None:
        """Test saving a profile and reading it back."""
        profile = ComplianceProfile(institution_code="11112222", institution_name="Kitwe Secondary")

        await service.update_profile("SCH-010", profile)
        loaded = await service.get_profile("SCH-010")

        assert loaded.institution_name == "Kitwe Secondary"

    @pytest.mark.asyncio
    async def test_validate_profile(self, service) -> None:
        """Test validating a stored profile without starting an export."""
        await service.update_profile("SCH-010", ComplianceProfile(institution_code="11112222"))

        result = await service.validate_profile("SCH-010")

        assert result.is_valid is False
        assert service.active_job_count == 0


class TestGradingScaleConfiguration:
    """Tests for per-school grading scales."""

    @pytest.mark.asyncio
    async def test_school_override_changes_derived_grades(
        self, record_store, history_store, export_settings, tmp_path: Path
    ) -> None:
        """Test that the school's grading scale derives missing letters."""
        scale_file = tmp_path / "grading.yaml"
        scale_file.write_text(
            "default:\n"
            "  bands:\n"
            "    - {min: 80, grade: A}\n"
            "    - {min: 60, grade: B}\n"
            "schools:\n"
            "  SCH-001:\n"
            "    bands:\n"
            "      - {min: 70, grade: A}\n"
        )
        settings = export_settings.model_copy(update={"grading_scale_file": scale_file})
        service = ComplianceExportService(record_store, record_store, history_store, settings=settings)

        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)
        artifact = await service.generate_artifact(job_id)

        rows = json.loads(artifact.payload)["assessmentSummary"]
        assert rows[0]["score"] == 72
        assert rows[0]["letterGrade"] == "A"

    @pytest.mark.asyncio
    async def test_scale_is_loaded_once_per_school(
        self, record_store, history_store, export_settings, tmp_path: Path
    ) -> None:
        """Test that repeated exports reuse the school's loaded grading scale."""
        scale_file = tmp_path / "grading.yaml"
        scale_file.write_text("default:\n  bands:\n    - {min: 80, grade: A}\n")
        settings = export_settings.model_copy(update={"grading_scale_file": scale_file})
        service = ComplianceExportService(record_store, record_store, history_store, settings=settings)

        with patch(
            "compliance_export.domains.compliance.service.GradingScale.from_settings",
            wraps=GradingScale.from_settings,
        ) as load_scale:
            for _ in range(2):
                job_id = await service.request_export("SCH-001")
                await service.wait_for_job(job_id)
                await service.cancel_job(job_id)

        load_scale.assert_called_once_with(settings, "SCH-001")


class TestLoggingContext:
    """Tests for log context handling."""

    @pytest.mark.asyncio
    async def test_request_does_not_bind_caller_context(self, service) -> None:
        """Test that job and school IDs stay in the job's own log context."""
        structlog.contextvars.clear_contextvars()

        job_id = await service.request_export("SCH-001")
        await service.wait_for_job(job_id)

        assert "school_id" not in structlog.contextvars.get_contextvars()
        assert "job_id" not in structlog.contextvars.get_contextvars()
