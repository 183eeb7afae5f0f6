# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Concurrent fetching of the record collections an export needs.

SourceFetcher fans out one task per source, bounds every attempt with
its own timeout, and retries failed attempts after a fixed backoff. The
join is fail-fast: as soon as one source exhausts its retries the
remaining fetches are cancelled and FetchError names the failing source.
A partially fetched record set is never returned, because an EMIS
submission built on partial data would misreport the school.

Example:
    >>> fetcher = SourceFetcher(record_source, fetch_timeout=5, max_retries=2)
    >>> records = await fetcher.fetch_all("SCH-001", ExportPeriod.CURRENT_TERM)
    >>> len(records.students)
    412
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from compliance_export.core.config.settings import ExportSettings
from compliance_export.domains.compliance.exceptions import (
    FetchError,
    JobCancelledError,
)
from compliance_export.domains.compliance.models import (
    AssessmentRecord,
    AttendanceEvent,
    ClassRecord,
    ExportPeriod,
    SourceRecordSet,
    StaffRecord,
    StudentRecord,
    SubjectRecord,
)
from compliance_export.domains.compliance.ports import RawRecords, RecordSource

logger = logging.getLogger(__name__)

SOURCE_NAMES: tuple[str, ...] = (
    "students",
    "staff",
    "classes",
    "subjects",
    "attendance",
    "assessments",
)

ProgressCallback = Callable[[str, int, int], None]


class SourceFetcher:
    """Fetches all export source collections concurrently.

    Attributes:
        fetch_timeout: Seconds allowed for one attempt at one source.
        max_retries: Additional attempts after the first failure.
        retry_backoff: Fixed delay in seconds between attempts.
    """

    def __init__(
        self,
        source: RecordSource,
        fetch_timeout: float = 10.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
    ) -> None:
        """Initialize the fetcher.

        Args:
            source: Record source collaborator.
            fetch_timeout: Per-attempt timeout in seconds.
            max_retries: Additional attempts after a failure.
            retry_backoff: Delay between attempts in seconds.
        """
        self._source = source
        self.fetch_timeout = fetch_timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    @classmethod
    def from_settings(cls, source: RecordSource, settings: ExportSettings) -> "SourceFetcher":
        """Create a fetcher configured from export settings."""
        return cls(
            source,
            fetch_timeout=settings.fetch_timeout,
            max_retries=settings.max_retries,
            retry_backoff=settings.retry_backoff,
        )

    async def fetch_all(
        self,
        school_id: str,
        period: ExportPeriod,
        on_source_fetched: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SourceRecordSet:
        """Fetch all six collections for a school and period.

        Args:
            school_id: School identifier.
            period: Reporting period for attendance and assessments.
            on_source_fetched: Called as (source, completed, total) each
                time a source finishes, in completion order.
            cancel_event: When set, no further attempts are started.

        Returns:
            SourceRecordSet holding every collection.

        Raises:
            FetchError: If any source exhausts its retries.
            JobCancelledError: If cancel_event was set mid-fetch.
        """
        calls: dict[str, tuple[Callable[[], Awaitable[RawRecords]], type[BaseModel]]] = {
            "students": (lambda: self._source.list_students(school_id), StudentRecord),
            "staff": (lambda: self._source.list_staff(school_id), StaffRecord),
            "classes": (lambda: self._source.list_classes(school_id), ClassRecord),
            "subjects": (lambda: self._source.list_subjects(school_id), SubjectRecord),
            "attendance": (
                lambda: self._source.list_attendance_for_period(school_id, period),
                AttendanceEvent,
            ),
            "assessments": (
                lambda: self._source.list_assessments_for_period(school_id, period),
                AssessmentRecord,
            ),
        }

        logger.debug("Fetching %d sources: school=%s, period=%s", len(calls), school_id, period.value)

        tasks: dict[asyncio.Task[list[Any]], str] = {
            asyncio.create_task(
                self._fetch_source(name, call, model, cancel_event),
                name=f"fetch-{name}",
            ): name
            for name, (call, model) in calls.items()
        }

        results: dict[str, list[Any]] = {}
        pending: set[asyncio.Task[list[Any]]] = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # Stable order when several finish together
                for task in sorted(done, key=lambda t: SOURCE_NAMES.index(tasks[t])):
                    name = tasks[task]
                    results[name] = task.result()
                    if on_source_fetched is not None:
                        on_source_fetched(name, len(results), len(tasks))
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info(
            "Fetched all sources: school=%s, counts=%s",
            school_id,
            {name: len(records) for name, records in results.items()},
        )

        return SourceRecordSet(**results)

    async def _fetch_source(
        self,
        name: str,
        call: Callable[[], Awaitable[RawRecords]],
        model: type[BaseModel],
        cancel_event: asyncio.Event | None,
    ) -> list[Any]:
        """Fetch one source with timeout and retries."""
        attempts = self.max_retries + 1
        reason = "no attempt made"

        for attempt in range(1, attempts + 1):
            _raise_if_cancelled(cancel_event)
            try:
                raw = await asyncio.wait_for(call(), timeout=self.fetch_timeout)
            except asyncio.TimeoutError:
                reason = f"timed out after {self.fetch_timeout:g}s"
            except Exception as e:
                # Collaborator failures of any type count as a failed attempt
                reason = str(e) or type(e).__name__
            else:
                return _coerce_records(name, raw, model, attempt)

            logger.warning(
                "Fetch of %s failed (attempt %d/%d): %s",
                name,
                attempt,
                attempts,
                reason,
            )
            if attempt < attempts:
                await self._backoff(cancel_event)

        raise FetchError(name, reason, attempts=attempts)

    async def _backoff(self, cancel_event: asyncio.Event | None) -> None:
        """Wait out the retry delay, waking early on cancellation."""
        if cancel_event is None:
            await asyncio.sleep(self.retry_backoff)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.retry_backoff)
        except asyncio.TimeoutError:
            pass


def _raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelledError()


def _coerce_records(
    name: str,
    raw: Any,
    model: type[BaseModel],
    attempt: int,
) -> list[Any]:
    """Validate raw store payloads into record models.

    Malformed data is not transient, so it fails the source without retry.
    """
    if not isinstance(raw, list):
        raise FetchError(
            name,
            f"expected a list of records, got {type(raw).__name__}",
            attempts=attempt,
        )

    records = []
    for index, item in enumerate(raw):
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            raise FetchError(
                name,
                f"malformed record at index {index}: {e.error_count()} validation error(s)",
                attempts=attempt,
            ) from e
    return records
