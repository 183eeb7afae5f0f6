# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Compliance export service.

This module provides the ComplianceExportService that handles:
- Starting export jobs, at most one active job per school
- Job status, artifact generation and re-download
- Cancellation and clean-up of finished jobs
- Export history and compliance profile access

Jobs live in memory until acknowledged, or until they have been finished
for longer than the configured retention. Preparation runs in a background
asyncio task per job; generation runs when the caller asks for the file.

Example:
    >>> service = ComplianceExportService(profiles, records, history)
    >>> job_id = await service.request_export("SCH-001", ExportPeriod.CURRENT_TERM)
    >>> status = await service.wait_for_job(job_id)
    >>> artifact = await service.generate_artifact(job_id)
"""

import asyncio
import logging
from datetime import timedelta

from compliance_export.core.config.settings import ExportSettings
from compliance_export.domains.compliance.aggregator import AggregationEngine, GradingScale
from compliance_export.domains.compliance.artifact import ArtifactGenerator
from compliance_export.domains.compliance.exceptions import (
    AlreadyInProgressError,
    IllegalStateError,
    JobNotFoundError,
)
from compliance_export.domains.compliance.fetcher import SourceFetcher
from compliance_export.domains.compliance.job import ExportJob
from compliance_export.domains.compliance.models import (
    ComplianceProfile,
    ExportArtifact,
    ExportHistoryEntry,
    ExportPeriod,
    JobState,
    JobStatus,
)
from compliance_export.domains.compliance.ports import (
    ComplianceProfileStore,
    ExportHistoryStore,
    RecordSource,
)
from compliance_export.domains.compliance.validator import (
    ComplianceProfileValidator,
    ValidationResult,
)
from compliance_export.utils.datetime import utc_now
from compliance_export.utils.logging import clear_context

logger = logging.getLogger(__name__)


class ComplianceExportService:
    """Service coordinating EMIS export jobs.

    Attributes:
        settings: Export pipeline settings.

    Example:
        >>> service = ComplianceExportService(store, store, history, settings)
        >>> job_id = await service.request_export("SCH-001")
        >>> await service.cancel_job(job_id)
    """

    def __init__(
        self,
        profile_store: ComplianceProfileStore,
        record_source: RecordSource,
        history_store: ExportHistoryStore,
        settings: ExportSettings | None = None,
        validator: ComplianceProfileValidator | None = None,
        fetcher: SourceFetcher | None = None,
        engine: AggregationEngine | None = None,
        generator: ArtifactGenerator | None = None,
    ) -> None:
        """Initialize the export service.

        Args:
            profile_store: Compliance profile collaborator.
            record_source: Record store collaborator.
            history_store: Export history collaborator.
            settings: Export settings; loaded from the environment if omitted.
            validator: Profile validator override.
            fetcher: Source fetcher override.
            engine: Aggregation engine override. When omitted, each job gets
                an engine with the school's configured grading scale.
            generator: Artifact generator override.
        """
        self.settings = settings or ExportSettings()
        self._profiles = profile_store
        self._records = record_source
        self._history = history_store

        self._validator = validator or ComplianceProfileValidator()
        self._fetcher = fetcher or SourceFetcher.from_settings(record_source, self.settings)
        self._engine = engine
        self._engines: dict[str, AggregationEngine] = {}
        self._generator = generator or ArtifactGenerator(self.settings.schema_version)

        self._jobs: dict[str, ExportJob] = {}
        self._active: dict[str, str] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()

    @property
    def active_job_count(self) -> int:
        """Number of schools with a non-terminal export."""
        return len(self._active)

    # =========================================================================
    # Export jobs
    # =========================================================================

    async def request_export(
        self,
        school_id: str,
        period: ExportPeriod = ExportPeriod.CURRENT_TERM,
    ) -> str:
        """Start an export job for a school.

        An incomplete profile does not raise: the job is created and fails
        validation, which is visible through get_job_status().

        Args:
            school_id: School to export.
            period: Reporting period.

        Returns:
            The new job's ID.

        Raises:
            AlreadyInProgressError: If the school already has an active job.
            ProfileNotFoundError: If the school has no compliance profile.
        """
        aggregator = await self._engine_for(school_id)
        job = ExportJob(
            school_id,
            period,
            validator=self._validator,
            fetcher=self._fetcher,
            aggregator=aggregator,
            generator=self._generator,
            history_store=self._history,
            export_type=self.settings.export_type,
            job_timeout=self.settings.job_timeout,
        )

        async with self._lock:
            self._evict_expired()
            active_id = self._active.get(school_id)
            if active_id is not None:
                raise AlreadyInProgressError(school_id, active_id)
            self._active[school_id] = job.job_id
            self._jobs[job.job_id] = job

        try:
            profile = await self._profiles.get_compliance_profile(school_id)
        except BaseException:
            self._jobs.pop(job.job_id, None)
            await self._release(job)
            raise

        task = asyncio.create_task(
            self._run_preparation(job, profile),
            name=f"export-prepare-{job.job_id}",
        )
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))

        logger.info(
            "Export requested: job=%s, school=%s, period=%s",
            job.job_id,
            school_id,
            period.value,
        )

        return job.job_id

    async def get_job_status(self, job_id: str) -> JobStatus:
        """Get the current status of a job.

        Raises:
            JobNotFoundError: If the job is unknown.
        """
        return self._get_job(job_id).status()

    async def wait_for_job(self, job_id: str) -> JobStatus:
        """Wait until the job's preparation stage has finished.

        Returns once the job is prepared or has failed.

        Raises:
            JobNotFoundError: If the job is unknown.
        """
        job = self._get_job(job_id)
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            await asyncio.shield(task)
        return job.status()

    async def generate_artifact(self, job_id: str) -> ExportArtifact:
        """Generate the export file for a prepared job.

        Args:
            job_id: The job ID.

        Returns:
            The generated artifact.

        Raises:
            JobNotFoundError: If the job is unknown.
            IllegalStateError: If the job is not prepared.
            ComplianceExportError: If generation failed; the job is then
                in `error`.
        """
        job = self._get_job(job_id)
        try:
            return await job.generate()
        finally:
            if job.is_terminal:
                await self._release(job)
            clear_context()

    async def get_artifact(self, job_id: str) -> ExportArtifact:
        """Return the artifact of a completed job for re-download.

        Raises:
            JobNotFoundError: If the job is unknown.
            IllegalStateError: If the job has not completed.
        """
        job = self._get_job(job_id)
        if job.state != JobState.COMPLETED or job.artifact is None:
            raise IllegalStateError(job_id, job.state.value, "download the artifact of")
        return job.artifact

    async def cancel_job(self, job_id: str) -> None:
        """Cancel a job. Finished jobs are left untouched.

        Raises:
            JobNotFoundError: If the job is unknown.
        """
        job = self._get_job(job_id)
        await job.cancel()
        if job.is_terminal:
            await self._release(job)

    async def acknowledge_job(self, job_id: str) -> None:
        """Forget a finished job.

        Raises:
            JobNotFoundError: If the job is unknown.
            IllegalStateError: If the job is still running.
        """
        job = self._get_job(job_id)
        if not job.is_terminal:
            raise IllegalStateError(job_id, job.state.value, "acknowledge")
        del self._jobs[job_id]
        logger.debug("Export job acknowledged: job=%s", job_id)

    async def shutdown(self) -> None:
        """Cancel every running job and wait for their tasks to end.

        Jobs stop at their next cancellation checkpoint, so this returns
        once in-flight fetch attempts have finished.
        """
        for job in list(self._jobs.values()):
            await job.cancel()

        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._active.clear()
        logger.info("Compliance export service stopped: %d jobs cancelled", len(tasks))

    # =========================================================================
    # History and profiles
    # =========================================================================

    async def list_history(self, school_id: str, limit: int = 20) -> list[ExportHistoryEntry]:
        """Most recent export history entries for a school, newest first."""
        return await self._history.list_export_history(school_id, limit=limit)

    async def get_profile(self, school_id: str) -> ComplianceProfile:
        """Load a school's compliance profile.

        Raises:
            ProfileNotFoundError: If the school has no profile.
        """
        return await self._profiles.get_compliance_profile(school_id)

    async def update_profile(
        self,
        school_id: str,
        profile: ComplianceProfile,
    ) -> ComplianceProfile:
        """Save a school's compliance profile.

        Incomplete profiles are accepted; they only block exports.
        """
        saved = await self._profiles.save_compliance_profile(school_id, profile)
        logger.info("Compliance profile saved: school=%s", school_id)
        return saved

    async def validate_profile(self, school_id: str) -> ValidationResult:
        """Check whether a school's profile would pass export validation.

        Raises:
            ProfileNotFoundError: If the school has no profile.
        """
        profile = await self._profiles.get_compliance_profile(school_id)
        return self._validator.validate(profile)

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _get_job(self, job_id: str) -> ExportJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def _engine_for(self, school_id: str) -> AggregationEngine:
        """Aggregation engine with the school's grading scale, loaded once per school."""
        if self._engine is not None:
            return self._engine

        engine = self._engines.get(school_id)
        if engine is None:
            scale = await asyncio.to_thread(GradingScale.from_settings, self.settings, school_id)
            engine = self._engines.setdefault(school_id, AggregationEngine(scale))
        return engine

    def _evict_expired(self) -> None:
        cutoff = utc_now() - timedelta(seconds=self.settings.job_retention)
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_terminal and job.updated_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.debug("Evicted %d finished export jobs", len(expired))

    async def _run_preparation(self, job: ExportJob, profile: ComplianceProfile) -> None:
        try:
            await job.prepare(profile)
        finally:
            if job.is_terminal:
                await self._release(job)
            clear_context()

    async def _release(self, job: ExportJob) -> None:
        async with self._lock:
            if self._active.get(job.school_id) == job.job_id:
                del self._active[job.school_id]
