# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Compliance (EMIS) export API endpoints.

This module provides endpoints for EMIS exports:
- GET /schools/{school_id}/profile - Get the compliance profile
- PUT /schools/{school_id}/profile - Save the compliance profile
- GET /schools/{school_id}/profile/validation - Check the profile
- POST /schools/{school_id}/exports - Start an export job
- GET /schools/{school_id}/exports/history - Export history
- GET /exports/{job_id} - Job status
- POST /exports/{job_id}/artifact - Generate and download the file
- GET /exports/{job_id}/artifact - Download the file again
- DELETE /exports/{job_id} - Cancel the job
- POST /exports/{job_id}/acknowledge - Forget a finished job

Example:
    POST /api/v1/compliance/schools/SCH-001/exports
    {
        "period": "current_term"
    }
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from compliance_export.api.dependencies import get_compliance_service
from compliance_export.domains.compliance.exceptions import (
    AlreadyInProgressError,
    ComplianceExportError,
    IllegalStateError,
    JobNotFoundError,
    ProfileNotFoundError,
)
from compliance_export.domains.compliance.models import (
    ComplianceProfile,
    ExportArtifact,
    ExportHistoryEntry,
    ExportPeriod,
    JobStatus,
)
from compliance_export.domains.compliance.service import ComplianceExportService

logger = logging.getLogger(__name__)

router = APIRouter()

ServiceDep = Annotated[ComplianceExportService, Depends(get_compliance_service)]


# =============================================================================
# Request/Response Models
# =============================================================================


class ExportRequest(BaseModel):
    """Export job request."""
    period: ExportPeriod = Field(
        default=ExportPeriod.CURRENT_TERM,
        description="Reporting period to export",
    )


class FieldErrorResponse(BaseModel):
    """Single profile field problem."""
    field: str
    reason: str


class ProfileValidationResponse(BaseModel):
    """Result of validating a compliance profile."""
    valid: bool
    errors: list[FieldErrorResponse] = Field(default_factory=list)


class ExportHistoryResponse(BaseModel):
    """Export history listing."""
    school_id: str
    entries: list[ExportHistoryEntry]


# =============================================================================
# Helpers
# =============================================================================


def _artifact_response(artifact: ExportArtifact) -> Response:
    return Response(
        content=artifact.payload,
        media_type=artifact.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{artifact.filename}"',
            "X-Content-Fingerprint": artifact.fingerprint,
        },
    )


def _server_error(e: ComplianceExportError) -> HTTPException:
    logger.error("Compliance export operation failed: %s", str(e))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=e.to_dict(),
    )


# =============================================================================
# Compliance profile
# =============================================================================


@router.get(
    "/schools/{school_id}/profile",
    response_model=ComplianceProfile,
    summary="Get compliance profile",
)
async def get_profile(school_id: str, service: ServiceDep) -> ComplianceProfile:
    """Get the school's EMIS compliance profile.

    Raises:
        HTTPException: 404 if the school has no profile.
    """
    try:
        return await service.get_profile(school_id)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ComplianceExportError as e:
        raise _server_error(e)


@router.put(
    "/schools/{school_id}/profile",
    response_model=ComplianceProfile,
    summary="Save compliance profile",
)
async def update_profile(
    school_id: str,
    data: ComplianceProfile,
    service: ServiceDep,
) -> ComplianceProfile:
    """Save the school's EMIS compliance profile.

    Incomplete profiles are stored; they only block exports.
    """
    try:
        return await service.update_profile(school_id, data)
    except ComplianceExportError as e:
        raise _server_error(e)


@router.get(
    "/schools/{school_id}/profile/validation",
    response_model=ProfileValidationResponse,
    summary="Validate compliance profile",
    responses={422: {"description": "Profile is incomplete"}},
)
async def validate_profile(school_id: str, service: ServiceDep) -> ProfileValidationResponse:
    """Check whether the profile would pass export validation.

    Raises:
        HTTPException: 404 if the school has no profile, 422 listing the
            missing fields if it is incomplete.
    """
    try:
        result = await service.validate_profile(school_id)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ComplianceExportError as e:
        raise _server_error(e)

    if not result.is_valid:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": "Compliance profile is incomplete",
                "field_errors": result.to_list(),
            },
        )

    return ProfileValidationResponse(valid=True)


# =============================================================================
# Export jobs
# =============================================================================


@router.post(
    "/schools/{school_id}/exports",
    response_model=JobStatus,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start export",
    description="Start preparing an EMIS export. Poll the job until it is prepared.",
)
async def request_export(
    school_id: str,
    service: ServiceDep,
    data: ExportRequest | None = None,
) -> JobStatus:
    """Start an export job for a school.

    Raises:
        HTTPException: 409 if an export is already running for the school,
            404 if the school has no profile.
    """
    period = data.period if data else ExportPeriod.CURRENT_TERM
    logger.info("Export requested: school=%s, period=%s", school_id, period.value)

    try:
        job_id = await service.request_export(school_id, period)
        return await service.get_job_status(job_id)
    except AlreadyInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_dict())
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ComplianceExportError as e:
        raise _server_error(e)


@router.get(
    "/schools/{school_id}/exports/history",
    response_model=ExportHistoryResponse,
    summary="Export history",
)
async def list_history(
    school_id: str,
    service: ServiceDep,
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum entries")] = 20,
) -> ExportHistoryResponse:
    """List the school's most recent exports, newest first."""
    try:
        entries = await service.list_history(school_id, limit=limit)
    except ComplianceExportError as e:
        raise _server_error(e)
    return ExportHistoryResponse(school_id=school_id, entries=entries)


@router.get(
    "/exports/{job_id}",
    response_model=JobStatus,
    summary="Export status",
)
async def get_export(job_id: str, service: ServiceDep) -> JobStatus:
    """Get the status of an export job.

    Raises:
        HTTPException: 404 if the job is unknown.
    """
    try:
        return await service.get_job_status(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post(
    "/exports/{job_id}/artifact",
    summary="Generate export file",
    response_class=Response,
    responses={200: {"content": {"application/json": {}}, "description": "EMIS export file"}},
)
async def generate_artifact(job_id: str, service: ServiceDep) -> Response:
    """Generate the EMIS file for a prepared job and return it.

    Raises:
        HTTPException: 404 if the job is unknown, 409 if it is not
            prepared, 500 if generation failed.
    """
    try:
        artifact = await service.generate_artifact(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except IllegalStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_dict())
    except ComplianceExportError as e:
        raise _server_error(e)

    return _artifact_response(artifact)


@router.get(
    "/exports/{job_id}/artifact",
    summary="Download export file",
    response_class=Response,
    responses={200: {"content": {"application/json": {}}, "description": "EMIS export file"}},
)
async def download_artifact(job_id: str, service: ServiceDep) -> Response:
    """Download the file of a completed job again.

    Raises:
        HTTPException: 404 if the job is unknown, 409 if it has not completed.
    """
    try:
        artifact = await service.get_artifact(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except IllegalStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_dict())

    return _artifact_response(artifact)


@router.delete(
    "/exports/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel export",
)
async def cancel_export(job_id: str, service: ServiceDep) -> None:
    """Cancel an export job. Finished jobs are left untouched.

    Raises:
        HTTPException: 404 if the job is unknown.
    """
    try:
        await service.cancel_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post(
    "/exports/{job_id}/acknowledge",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Acknowledge export",
)
async def acknowledge_export(job_id: str, service: ServiceDep) -> None:
    """Forget a finished job.

    Raises:
        HTTPException: 404 if the job is unknown, 409 if it is still running.
    """
    try:
        await service.acknowledge_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except IllegalStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_dict())
