# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for the compliance export service.

All timestamps are timezone-aware UTC. The EMIS document carries its
export date as an ISO 8601 string, and artifact filenames carry the
generation date, so both are produced here.

Usage:
    from compliance_export.utils.datetime import utc_now, format_iso

    exported_at = format_iso(utc_now())
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.

    Note:
        Naive datetimes are assumed to already be in UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 string.

    Args:
        dt: Datetime to format.

    Returns:
        ISO 8601 formatted string or None.
    """
    if dt is None:
        return None

    return ensure_utc(dt).isoformat()


def date_stamp(dt: datetime) -> str:
    """Format the UTC calendar date of a datetime as YYYY-MM-DD.

    Args:
        dt: Datetime to format.

    Returns:
        Date string, e.g. "2024-03-01".
    """
    return ensure_utc(dt).date().isoformat()
