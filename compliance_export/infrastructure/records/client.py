# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Record store API client.

This module provides an async HTTP client for the school administration
API, which owns the records an EMIS export is built from.

The client handles:
- Listing students, teachers, classes and subjects for a school
- Listing attendance and term grades for a reporting period
- Reading and saving the school's compliance (EMIS) profile
- Reading and appending export history entries

The store is not consistent about response envelopes: some listings
return a bare JSON array, others wrap it as {"students": [...]} or
{"items": [...]}. All of these are accepted.

Example:
    client = RecordStoreClient(
        base_url="https://school.edusynapse.com/api",
        api_key="your-api-key",
    )

    students = await client.list_students("SCH-001")
    profile = await client.get_compliance_profile("SCH-001")
"""

import logging
from typing import Any

import aiohttp
from pydantic import ValidationError

from compliance_export.core.config.settings import RecordStoreSettings
from compliance_export.domains.compliance.exceptions import (
    ProfileNotFoundError,
    RecordSourceError,
)
from compliance_export.domains.compliance.models import (
    ComplianceProfile,
    ExportHistoryEntry,
    ExportPeriod,
)
from compliance_export.domains.compliance.ports import (
    ComplianceProfileStore,
    ExportHistoryStore,
    RawRecords,
    RecordSource,
)
from compliance_export.utils.datetime import utc_now

logger = logging.getLogger(__name__)

# Rolling window the store's attendance period endpoint uses for a term
ATTENDANCE_TERM_WINDOW = "term"
ATTENDANCE_PAGE_SIZE = 500

TERM_LABELS = {
    ExportPeriod.TERM_1: "Term 1",
    ExportPeriod.TERM_2: "Term 2",
    ExportPeriod.TERM_3: "Term 3",
}


class RecordStoreClient(RecordSource, ComplianceProfileStore, ExportHistoryStore):
    """Async HTTP client for the school record store API.

    Attributes:
        base_url: Base URL of the record store API.
        api_key: API key for authentication.
        timeout: Request timeout.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
    ):
        """Initialize the record store client.

        Args:
            base_url: Base URL of the record store API.
            api_key: API key for authentication.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    @classmethod
    def from_settings(cls, settings: RecordStoreSettings) -> "RecordStoreClient":
        """Create a client from record store settings."""
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key.get_secret_value(),
            timeout=settings.timeout,
        )

    def _get_headers(self) -> dict[str, str]:
        """Get headers for API requests."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    # =========================================================================
    # Record listings
    # =========================================================================

    async def list_students(self, school_id: str) -> RawRecords:
        return await self._list("/students", "students", {"schoolId": school_id})

    async def list_staff(self, school_id: str) -> RawRecords:
        return await self._list("/teachers", "teachers", {"schoolId": school_id})

    async def list_classes(self, school_id: str) -> RawRecords:
        return await self._list("/classes", "classes", {"schoolId": school_id})

    async def list_subjects(self, school_id: str) -> RawRecords:
        return await self._list("/subjects", "subjects", {"schoolId": school_id})

    async def list_attendance_for_period(
        self,
        school_id: str,
        period: ExportPeriod,
    ) -> RawRecords:
        """List attendance events for a reporting period.

        The store's period endpoint only knows rolling windows, the longest
        being its 90-day "term" window, which serves every term selector.
        A full academic year is read page by page from the dated listing.
        """
        if period == ExportPeriod.ACADEMIC_YEAR:
            today = utc_now().date()
            return await self._list_pages(
                "/attendance",
                "attendance",
                {
                    "schoolId": school_id,
                    "dateFrom": f"{today.year}-01-01",
                    "dateTo": today.isoformat(),
                },
            )
        return await self._list(
            "/attendance/period",
            "attendance",
            {"schoolId": school_id, "period": ATTENDANCE_TERM_WINDOW},
        )

    async def list_assessments_for_period(
        self,
        school_id: str,
        period: ExportPeriod,
    ) -> RawRecords:
        """List term grades for a reporting period of the current year."""
        return await self._list(
            "/grades/term",
            "grades",
            {"schoolId": school_id, **_grade_filters(period, utc_now().year)},
        )

    # =========================================================================
    # Compliance profile
    # =========================================================================

    async def get_compliance_profile(self, school_id: str) -> ComplianceProfile:
        """Get the school's compliance profile.

        Raises:
            ProfileNotFoundError: If the store has no profile for the school.
            RecordSourceError: If the API returns an error.
        """
        status, data = await self._request("GET", f"/schools/{school_id}/emis-profile")

        if status == 404:
            raise ProfileNotFoundError(school_id)
        if status != 200:
            raise RecordSourceError(
                _error_message(data, "Failed to get compliance profile"),
                status_code=status,
            )

        try:
            return ComplianceProfile.model_validate(_unwrap_object(data))
        except ValidationError as e:
            raise RecordSourceError(
                "Record store returned an invalid compliance profile",
                details={"school_id": school_id, "errors": e.error_count()},
            ) from e

    async def save_compliance_profile(
        self,
        school_id: str,
        profile: ComplianceProfile,
    ) -> ComplianceProfile:
        """Save the school's compliance profile.

        Raises:
            RecordSourceError: If the API returns an error.
        """
        status, data = await self._request(
            "PUT",
            f"/schools/{school_id}/emis-profile",
            payload=profile.model_dump(mode="json", by_alias=True),
        )

        if status not in (200, 201, 204):
            raise RecordSourceError(
                _error_message(data, "Failed to save compliance profile"),
                status_code=status,
            )

        logger.info("Saved compliance profile: school=%s", school_id)

        if not data:
            return profile
        return ComplianceProfile.model_validate(_unwrap_object(data))

    # =========================================================================
    # Export history
    # =========================================================================

    async def append_export_history(self, entry: ExportHistoryEntry) -> None:
        """Append an export history entry.

        Raises:
            RecordSourceError: If the API returns an error.
        """
        status, data = await self._request(
            "POST",
            f"/schools/{entry.school_id}/emis-exports",
            payload=_history_to_wire(entry),
        )

        if status not in (200, 201, 204):
            raise RecordSourceError(
                _error_message(data, "Failed to record export history"),
                status_code=status,
            )

    async def list_export_history(
        self,
        school_id: str,
        limit: int = 20,
    ) -> list[ExportHistoryEntry]:
        """List the school's export history, newest first.

        Raises:
            RecordSourceError: If the API returns an error.
        """
        records = await self._list(
            f"/schools/{school_id}/emis-exports",
            "exports",
            {"limit": str(limit)},
        )
        entries = [_history_from_wire(school_id, record) for record in records]
        entries.sort(key=lambda entry: entry.timestamp, reverse=True)
        return entries[:limit]

    # =========================================================================
    # Helper Methods
    # =========================================================================

    async def _list(
        self,
        path: str,
        collection_key: str,
        params: dict[str, str],
    ) -> RawRecords:
        status, data = await self._request("GET", path, params=params)

        if status != 200:
            raise RecordSourceError(
                _error_message(data, f"Failed to list {collection_key}"),
                status_code=status,
            )

        return _unwrap_list(data, collection_key)

    async def _list_pages(
        self,
        path: str,
        collection_key: str,
        params: dict[str, str],
    ) -> RawRecords:
        """Read every page of a limit/offset listing."""
        records: RawRecords = []
        while True:
            page = await self._list(
                path,
                collection_key,
                {**params, "limit": str(ATTENDANCE_PAGE_SIZE), "offset": str(len(records))},
            )
            records.extend(page)
            if len(page) < ATTENDANCE_PAGE_SIZE:
                return records

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> tuple[int, Any]:
        """Send a request and decode the JSON body.

        Returns:
            (status code, decoded body or None for empty responses).

        Raises:
            RecordSourceError: On connection failure or a non-JSON body.
        """
        url = f"{self.base_url}{path}"
        logger.debug("Record store request: %s %s", method, url)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=self._get_headers(),
                ) as response:
                    if response.status == 204:
                        return response.status, None
                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        raise RecordSourceError(
                            "Record store returned a non-JSON response",
                            status_code=response.status,
                            details={"path": path},
                        ) from e
                    return response.status, data

        except aiohttp.ClientError as e:
            logger.error("Record store connection error: %s", str(e))
            raise RecordSourceError(
                f"Failed to connect to record store: {str(e)}",
                details={"error_type": type(e).__name__, "path": path},
            ) from e


def _unwrap_list(data: Any, collection_key: str) -> RawRecords:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in (collection_key, "items", "data"):
            value = data.get(key)
            if isinstance(value, list):
                return value
    raise RecordSourceError(
        f"Unexpected response shape for {collection_key}",
        details={"type": type(data).__name__},
    )


def _unwrap_object(data: Any) -> dict[str, Any]:
    if isinstance(data, dict):
        inner = data.get("data")
        return inner if isinstance(inner, dict) else data
    raise RecordSourceError(
        "Unexpected response shape",
        details={"type": type(data).__name__},
    )


def _error_message(data: Any, default: str) -> str:
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or default)
    return default


def _history_to_wire(entry: ExportHistoryEntry) -> dict[str, Any]:
    """Export history entry in the store's EMIS export record shape."""
    return {
        "id": entry.export_id,
        "schoolId": entry.school_id,
        "exportType": entry.export_type,
        "exportDate": entry.timestamp.isoformat(),
        "period": entry.period.value,
        "recordCount": entry.record_count,
        "status": entry.status.value,
        "filePath": entry.filename,
        "errorKind": entry.error_kind,
    }


def _history_from_wire(school_id: str, record: dict[str, Any]) -> ExportHistoryEntry:
    try:
        return ExportHistoryEntry(
            export_id=str(record["id"]),
            school_id=str(record.get("schoolId") or school_id),
            export_type=record.get("exportType") or "EMIS",
            period=record["period"],
            record_count=record.get("recordCount") or 0,
            status=record["status"],
            timestamp=record.get("exportDate") or record["createdAt"],
            error_kind=record.get("errorKind"),
            filename=record.get("filePath"),
        )
    except (KeyError, ValidationError) as e:
        raise RecordSourceError(
            "Record store returned an invalid export history record",
            details={"school_id": school_id},
        ) from e


def _grade_filters(period: ExportPeriod, year: int) -> dict[str, str]:
    """Term grade query filters for an export period.

    The store does not know which term is current, so `current_term`
    reads the whole year like `academic_year`.
    """
    filters = {"academicYear": str(year)}
    term = TERM_LABELS.get(period)
    if term is not None:
        filters["term"] = term
    return filters
