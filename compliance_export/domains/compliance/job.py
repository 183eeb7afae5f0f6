# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Export job state machine.

An ExportJob owns one export attempt for one school:

    idle -> validating -> preparing -> prepared -> generating -> completed
                 \\            \\           \\            \\
                  +------------+-----------+------------+--> error

- validating: the compliance profile is checked; an incomplete profile
  fails the job before anything is fetched.
- preparing: the six sources are fetched concurrently, then aggregated.
  Progress climbs as sources complete but stays below 90% until
  aggregation is done.
- prepared: record counts are available; nothing runs until the caller
  asks for the file.
- generating: the EMIS file is serialized off the event loop.

Every terminal state writes exactly one export history entry. Progress
never decreases. Cancellation is cooperative: it is checked between
stages and before each fetch attempt, never inside one.

Example:
    >>> job = ExportJob("SCH-001", ExportPeriod.CURRENT_TERM, validator=..., ...)
    >>> await job.prepare(profile)
    >>> job.state
    <JobState.PREPARED: 'prepared'>
    >>> artifact = await job.generate()
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

from compliance_export.domains.compliance.aggregator import AggregationEngine
from compliance_export.domains.compliance.artifact import ArtifactGenerator
from compliance_export.domains.compliance.exceptions import (
    ComplianceExportError,
    ExportValidationError,
    IllegalStateError,
    JobCancelledError,
    JobTimeoutError,
)
from compliance_export.domains.compliance.fetcher import SourceFetcher
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
from compliance_export.domains.compliance.ports import ExportHistoryStore
from compliance_export.domains.compliance.validator import ComplianceProfileValidator
from compliance_export.utils.datetime import utc_now
from compliance_export.utils.logging import bind_context

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.IDLE: frozenset({JobState.VALIDATING}),
    JobState.VALIDATING: frozenset({JobState.PREPARING, JobState.ERROR}),
    JobState.PREPARING: frozenset({JobState.PREPARED, JobState.ERROR}),
    JobState.PREPARED: frozenset({JobState.GENERATING, JobState.ERROR}),
    JobState.GENERATING: frozenset({JobState.COMPLETED, JobState.ERROR}),
    JobState.COMPLETED: frozenset(),
    JobState.ERROR: frozenset(),
}

# Progress milestones (percent)
VALIDATING_PROGRESS = 5
FETCH_START_PROGRESS = 10
FETCH_SPAN_PROGRESS = 75
PREPARED_PROGRESS = 100

SOURCE_LABELS = {
    "students": "student",
    "staff": "teacher",
    "classes": "class",
    "subjects": "subject",
    "attendance": "attendance",
    "assessments": "assessment",
}

StatusListener = Callable[[JobStatus], None]


class ExportJob:
    """Lifecycle of one EMIS export attempt for one school.

    Attributes:
        job_id: Unique job identifier, also the history export_id.
        school_id: School being exported.
        period: Reporting period.
        state: Current lifecycle state.
        progress: Percentage complete (0-100), never decreasing.
        message: Human-readable status line.
        source_set: Fetched records; dropped on terminal states.
        snapshot: Aggregated records; dropped on terminal states.
        artifact: Generated file once completed.
        error: Typed error once failed.
        record_counts: Per-collection counts once prepared.
    """

    def __init__(
        self,
        school_id: str,
        period: ExportPeriod,
        *,
        validator: ComplianceProfileValidator,
        fetcher: SourceFetcher,
        aggregator: AggregationEngine,
        generator: ArtifactGenerator,
        history_store: ExportHistoryStore,
        export_type: str = "EMIS",
        job_timeout: float = 300.0,
        job_id: str | None = None,
        on_update: StatusListener | None = None,
    ) -> None:
        self.job_id = job_id or str(uuid4())
        self.school_id = school_id
        self.period = period
        self.export_type = export_type
        self.job_timeout = job_timeout

        self._validator = validator
        self._fetcher = fetcher
        self._aggregator = aggregator
        self._generator = generator
        self._history = history_store
        self._on_update = on_update

        self.state = JobState.IDLE
        self.progress = 0
        self.message = "Waiting to start"
        self.profile: ComplianceProfile | None = None
        self.source_set: SourceRecordSet | None = None
        self.snapshot: AggregatedSnapshot | None = None
        self.artifact: ExportArtifact | None = None
        self.error: ComplianceExportError | None = None
        self.record_counts: dict[str, int] | None = None
        self.record_count: int | None = None
        self.prepared_at: datetime | None = None
        self.history_recorded = False

        self.created_at = utc_now()
        self.updated_at = self.created_at

        self._cancel_event = asyncio.Event()
        self._history_written = False
        self._active_seconds = 0.0

    # =========================================================================
    # Public operations
    # =========================================================================

    @property
    def is_terminal(self) -> bool:
        """Whether the job has completed or failed."""
        return self.state.is_terminal

    async def prepare(self, profile: ComplianceProfile) -> None:
        """Validate the profile, fetch and aggregate the school's records.

        Failures do not raise; they move the job to `error` and are
        observable through status().

        Args:
            profile: The school's compliance profile.

        Raises:
            IllegalStateError: If the job was already started.
        """
        bind_context(job_id=self.job_id, school_id=self.school_id)
        self._transition(
            JobState.VALIDATING,
            progress=VALIDATING_PROGRESS,
            message="Validating school information...",
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            await asyncio.wait_for(self._prepare(profile), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            await self._fail(JobTimeoutError(self.job_timeout))
        except ComplianceExportError as e:
            await self._fail(e)
        except asyncio.CancelledError:
            await self._fail(JobCancelledError("Export interrupted"))
            raise
        finally:
            self._active_seconds += loop.time() - started

    async def generate(self) -> ExportArtifact:
        """Generate the EMIS file from the prepared snapshot.

        Returns:
            The generated artifact.

        Raises:
            IllegalStateError: If the job is not `prepared`.
            ComplianceExportError: The error that failed the job.
        """
        if self.state != JobState.PREPARED:
            raise IllegalStateError(self.job_id, self.state.value, "generate")

        bind_context(job_id=self.job_id, school_id=self.school_id)
        self._transition(JobState.GENERATING, message="Generating EMIS export file...")

        loop = asyncio.get_running_loop()
        started = loop.time()
        remaining = self.job_timeout - self._active_seconds
        try:
            if remaining <= 0:
                raise JobTimeoutError(self.job_timeout)
            artifact = await asyncio.wait_for(self._generate(), timeout=remaining)
        except asyncio.TimeoutError:
            error: ComplianceExportError = JobTimeoutError(self.job_timeout)
            await self._fail(error)
            raise error
        except ComplianceExportError as e:
            await self._fail(e)
            raise
        finally:
            self._active_seconds += loop.time() - started

        self.artifact = artifact
        record_count = self.record_count or 0
        self._transition(
            JobState.COMPLETED,
            message="EMIS export completed successfully!",
        )
        self._discard_working_data()
        await self._record_history(
            HistoryStatus.COMPLETED,
            record_count=record_count,
            filename=artifact.filename,
        )

        logger.info(
            "Export completed: job=%s, school=%s, records=%d, file=%s",
            self.job_id,
            self.school_id,
            record_count,
            artifact.filename,
        )

        return artifact

    async def cancel(self) -> None:
        """Request cancellation.

        Running stages notice the request at their next checkpoint. A job
        with nothing running (prepared) fails immediately. Cancelling a
        finished job does nothing.
        """
        if self.is_terminal:
            return

        logger.info("Cancellation requested: job=%s, state=%s", self.job_id, self.state.value)
        self._cancel_event.set()

        if self.state == JobState.PREPARED:
            await self._fail(JobCancelledError())

    def status(self) -> JobStatus:
        """Snapshot of the job for callers."""
        return JobStatus(
            job_id=self.job_id,
            school_id=self.school_id,
            period=self.period,
            state=self.state,
            progress=self.progress,
            message=self.message,
            record_counts=dict(self.record_counts) if self.record_counts else None,
            record_count=self.record_count,
            error=self.error.to_dict() if self.error else None,
            fingerprint=self.artifact.fingerprint if self.artifact else None,
            history_recorded=self.history_recorded,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    # =========================================================================
    # Stages
    # =========================================================================

    async def _prepare(self, profile: ComplianceProfile) -> None:
        self._check_cancelled()
        self.profile = profile

        result = self._validator.validate(profile)
        if not result.is_valid:
            raise ExportValidationError(result.to_list())

        self._check_cancelled()
        self._transition(
            JobState.PREPARING,
            progress=FETCH_START_PROGRESS,
            message="Fetching school records...",
        )

        source_set = await self._fetcher.fetch_all(
            self.school_id,
            self.period,
            on_source_fetched=self._on_source_fetched,
            cancel_event=self._cancel_event,
        )
        self._check_cancelled()
        self.source_set = source_set

        self._set_progress(self.progress, "Aggregating records...")
        snapshot = self._aggregator.aggregate(source_set)
        self._check_cancelled()

        self.snapshot = snapshot
        self.record_counts = snapshot.record_counts
        self.record_count = snapshot.record_count
        self.prepared_at = utc_now()
        self._transition(
            JobState.PREPARED,
            progress=PREPARED_PROGRESS,
            message=f"Data prepared successfully. {snapshot.record_count} records ready for export.",
        )

        logger.info(
            "Export prepared: job=%s, school=%s, counts=%s",
            self.job_id,
            self.school_id,
            self.record_counts,
        )

    async def _generate(self) -> ExportArtifact:
        self._check_cancelled()
        if self.snapshot is None or self.profile is None:
            raise IllegalStateError(self.job_id, self.state.value, "generate without a snapshot")

        # Prepared-at keeps regeneration of the same snapshot byte-identical
        artifact = await asyncio.to_thread(
            self._generator.generate,
            self.snapshot,
            self.profile,
            self.period,
            self.prepared_at,
        )
        self._check_cancelled()
        return artifact

    def _on_source_fetched(self, source: str, completed: int, total: int) -> None:
        progress = FETCH_START_PROGRESS + (FETCH_SPAN_PROGRESS * completed) // total
        label = SOURCE_LABELS.get(source, source)
        self._set_progress(progress, f"Fetched {label} data ({completed}/{total})")

    # =========================================================================
    # State helpers
    # =========================================================================

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise JobCancelledError()

    def _transition(
        self,
        new_state: JobState,
        progress: int | None = None,
        message: str | None = None,
    ) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise IllegalStateError(self.job_id, self.state.value, f"move to '{new_state.value}'")

        logger.debug(
            "Export job transition: job=%s, %s -> %s",
            self.job_id,
            self.state.value,
            new_state.value,
        )
        self.state = new_state
        self._set_progress(self.progress if progress is None else progress, message)

    def _set_progress(self, progress: int, message: str | None = None) -> None:
        self.progress = max(self.progress, min(progress, 100))
        if message is not None:
            self.message = message
        self.updated_at = utc_now()
        if self._on_update is not None:
            self._on_update(self.status())

    async def _fail(self, error: ComplianceExportError) -> None:
        if self.is_terminal:
            return

        self.error = error
        self._transition(JobState.ERROR, message=error.message)
        self._discard_working_data()

        logger.warning(
            "Export failed: job=%s, school=%s, kind=%s, error=%s",
            self.job_id,
            self.school_id,
            error.kind,
            error,
        )

        await self._record_history(HistoryStatus.FAILED, record_count=0, error_kind=error.kind)

    def _discard_working_data(self) -> None:
        self.source_set = None
        self.snapshot = None

    async def _record_history(
        self,
        status: HistoryStatus,
        record_count: int,
        error_kind: str | None = None,
        filename: str | None = None,
    ) -> None:
        if self._history_written:
            return
        self._history_written = True

        entry = ExportHistoryEntry(
            export_id=self.job_id,
            school_id=self.school_id,
            export_type=self.export_type,
            period=self.period,
            record_count=record_count,
            status=status,
            error_kind=error_kind,
            filename=filename,
        )
        try:
            await self._history.append_export_history(entry)
        except Exception:
            # The job outcome stands; history_recorded tells the caller
            logger.exception("Failed to record export history: job=%s", self.job_id)
            return

        self.history_recorded = True
        if self._on_update is not None:
            self._on_update(self.status())
