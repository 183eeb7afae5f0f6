# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for concurrent source fetching."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from compliance_export.domains.compliance.exceptions import (
    FetchError,
    JobCancelledError,
    RecordSourceError,
)
from compliance_export.domains.compliance.fetcher import SOURCE_NAMES, SourceFetcher
from compliance_export.domains.compliance.models import ExportPeriod
from compliance_export.domains.compliance.ports import RecordSource


@pytest.fixture
def mock_source(sample_records):
    """Create a record source mock returning the sample records."""
    source = MagicMock(spec=RecordSource)
    source.list_students = AsyncMock(return_value=sample_records["students"])
    source.list_staff = AsyncMock(return_value=sample_records["staff"])
    source.list_classes = AsyncMock(return_value=sample_records["classes"])
    source.list_subjects = AsyncMock(return_value=sample_records["subjects"])
    source.list_attendance_for_period = AsyncMock(return_value=sample_records["attendance"])
    source.list_assessments_for_period = AsyncMock(return_value=sample_records["assessments"])
    return source


def make_fetcher(source, **kwargs) -> SourceFetcher:
    """Create a fetcher with fast test timings."""
    options = {"fetch_timeout": 0.5, "max_retries": 2, "retry_backoff": 0.01}
    options.update(kwargs)
    return SourceFetcher(source, **options)


class TestFetchAll:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_fetches_all_sources(self, mock_source) -> None:
        """Test that every collection is fetched and coerced."""
        fetcher = make_fetcher(mock_source)

        records = await fetcher.fetch_all("SCH-001", ExportPeriod.TERM_1)

        assert len(records.students) == 3
        assert len(records.staff) == 2
        assert len(records.classes) == 2
        assert len(records.subjects) == 2
        assert len(records.attendance) == 4
        assert len(records.assessments) == 2
        mock_source.list_attendance_for_period.assert_awaited_once_with("SCH-001", ExportPeriod.TERM_1)
        mock_source.list_assessments_for_period.assert_awaited_once_with("SCH-001", ExportPeriod.TERM_1)

    @pytest.mark.asyncio
    async def test_reports_each_completed_source(self, mock_source) -> None:
        """Test that progress is reported once per source."""
        fetcher = make_fetcher(mock_source)
        reports: list[tuple[str, int, int]] = []

        await fetcher.fetch_all(
            "SCH-001",
            ExportPeriod.CURRENT_TERM,
            on_source_fetched=lambda name, done, total: reports.append((name, done, total)),
        )

        assert sorted(name for name, _, _ in reports) == sorted(SOURCE_NAMES)
        assert [done for _, done, _ in reports] == [1, 2, 3, 4, 5, 6]
        assert all(total == 6 for _, _, total in reports)

    @pytest.mark.asyncio
    async def test_sources_are_fetched_concurrently(self, mock_source) -> None:
        """Test that slow sources overlap instead of running in sequence."""
        async def slow(*args):
            await asyncio.sleep(0.1)
            return []

        for name in (
            "list_students",
            "list_staff",
            "list_classes",
            "list_subjects",
            "list_attendance_for_period",
            "list_assessments_for_period",
        ):
            getattr(mock_source, name).side_effect = slow

        fetcher = make_fetcher(mock_source)
        loop = asyncio.get_running_loop()
        started = loop.time()

        await fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM)

        assert loop.time() - started < 0.45


class TestRetries:
    """Tests for timeout and retry handling."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, mock_source, sample_records) -> None:
        """Test that a source recovering within its retries succeeds."""
        mock_source.list_students.side_effect = [
            RecordSourceError("connection reset"),
            sample_records["students"],
        ]
        fetcher = make_fetcher(mock_source)

        records = await fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM)

        assert len(records.students) == 3
        assert mock_source.list_students.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_fetch_error(self, mock_source) -> None:
        """Test that a persistently failing source names itself."""
        mock_source.list_assessments_for_period.side_effect = RecordSourceError("service unavailable", 503)
        fetcher = make_fetcher(mock_source, max_retries=2)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM)

        assert exc_info.value.source == "assessments"
        assert exc_info.value.attempts == 3
        assert mock_source.list_assessments_for_period.await_count == 3

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_a_failure(self, mock_source) -> None:
        """Test that an attempt exceeding fetch_timeout counts as failed."""
        async def hang(*args):
            await asyncio.sleep(5)
            return []

        mock_source.list_staff.side_effect = hang
        fetcher = make_fetcher(mock_source, fetch_timeout=0.05, max_retries=1)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM)

        assert exc_info.value.source == "staff"
        assert "timed out" in exc_info.value.message
        assert mock_source.list_staff.await_count == 2

    @pytest.mark.asyncio
    async def test_malformed_records_are_not_retried(self, mock_source) -> None:
        """Test that invalid payloads fail the source immediately."""
        mock_source.list_subjects.return_value = [{"id": "sub-1"}]
        fetcher = make_fetcher(mock_source)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM)

        assert exc_info.value.source == "subjects"
        assert "malformed record at index 0" in exc_info.value.message
        assert mock_source.list_subjects.await_count == 1

    @pytest.mark.asyncio
    async def test_any_collaborator_error_is_retried(self, mock_source, sample_records) -> None:
        """Test that errors of any type from the store are retried."""
        mock_source.list_classes.side_effect = [RuntimeError("upstream 503"), sample_records["classes"]]
        fetcher = make_fetcher(mock_source, max_retries=2)

        records = await fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM)

        assert len(records.classes) == 2
        assert mock_source.list_classes.await_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_errors_exhaust_retries(self, mock_source) -> None:
        """Test that a store raising the same error every time fails the source."""
        mock_source.list_classes.side_effect = KeyError("schoolId")
        fetcher = make_fetcher(mock_source, max_retries=2)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM)

        assert exc_info.value.source == "classes"
        assert exc_info.value.details["attempts"] == 3
        assert mock_source.list_classes.await_count == 3


class TestFailFast:
    """Tests for the fail-fast join."""

    @pytest.mark.asyncio
    async def test_failure_cancels_remaining_fetches(self, mock_source) -> None:
        """Test that a failed source cancels slower sibling fetches."""
        cancelled = asyncio.Event()

        async def slow_students(*args):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return []

        mock_source.list_students.side_effect = slow_students
        mock_source.list_assessments_for_period.side_effect = RecordSourceError("down")
        fetcher = make_fetcher(mock_source, fetch_timeout=20, max_retries=0)

        with pytest.raises(FetchError):
            await asyncio.wait_for(fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM), timeout=2)

        assert cancelled.is_set()


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, mock_source) -> None:
        """Test that no attempt is made once cancellation was requested."""
        cancel_event = asyncio.Event()
        cancel_event.set()
        fetcher = make_fetcher(mock_source)

        with pytest.raises(JobCancelledError):
            await fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM, cancel_event=cancel_event)

        mock_source.list_students.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_wakes_retry_backoff(self, mock_source) -> None:
        """Test that cancellation during a long backoff ends the fetch promptly."""
        mock_source.list_staff.side_effect = RecordSourceError("timeout")
        cancel_event = asyncio.Event()
        fetcher = make_fetcher(mock_source, retry_backoff=30, max_retries=3)

        async def cancel_soon():
            await asyncio.sleep(0.05)
            cancel_event.set()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(JobCancelledError):
            await asyncio.wait_for(
                fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM, cancel_event=cancel_event),
                timeout=2,
            )
        await canceller

        assert mock_source.list_staff.await_count == 1
