# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""EMIS export file generation.

ArtifactGenerator serializes an AggregatedSnapshot together with the
school's ComplianceProfile into the EMIS JSON document and fingerprints
the bytes. Output is deterministic: the same snapshot, profile, period
and generation time always produce the same bytes, so a downloaded file
can later be checked against the fingerprint recorded at generation.

Document layout (field names are fixed per schema version because the
Ministry's ingestion matches on them):

    {
      "schemaVersion": "1.0",
      "exportDate": "2024-03-04T09:15:00+00:00",
      "schoolInfo": {...},
      "academicYear": 2024,
      "period": "current_term",
      "students": [...],
      "staff": [...],
      "classes": [...],
      "subjects": [...],
      "attendanceSummary": [...],
      "assessmentSummary": [...]
    }
"""

import hashlib
import json
import logging
import math
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from compliance_export.domains.compliance.exceptions import SerializationError
from compliance_export.domains.compliance.models import (
    AggregatedSnapshot,
    ComplianceProfile,
    ExportArtifact,
    ExportPeriod,
)
from compliance_export.utils.datetime import date_stamp, ensure_utc, format_iso, utc_now

logger = logging.getLogger(__name__)

MEDIA_TYPE = "application/json"
FINGERPRINT_PREFIX = "sha256:"


class ArtifactGenerator:
    """Serializes aggregated snapshots into EMIS export files.

    Attributes:
        schema_version: Version stamped into every document.
    """

    def __init__(self, schema_version: str = "1.0") -> None:
        self.schema_version = schema_version

    def generate(
        self,
        snapshot: AggregatedSnapshot,
        profile: ComplianceProfile,
        period: ExportPeriod,
        generated_at: datetime | None = None,
    ) -> ExportArtifact:
        """Generate the export file.

        Args:
            snapshot: Aggregated records to export.
            profile: School compliance profile, embedded as schoolInfo.
            period: Reporting period the snapshot covers.
            generated_at: Export timestamp; defaults to now.

        Returns:
            Immutable ExportArtifact with payload and fingerprint.

        Raises:
            SerializationError: If a value cannot be represented in JSON.
        """
        generated_at = ensure_utc(generated_at or utc_now())

        sections: list[tuple[str, list[BaseModel]]] = [
            ("students", snapshot.students),
            ("staff", snapshot.staff),
            ("classes", snapshot.classes),
            ("subjects", snapshot.subjects),
            ("attendanceSummary", snapshot.attendance_summary),
            ("assessmentSummary", snapshot.assessment_summary),
        ]

        _check_representable(profile.model_dump(by_alias=True), "schoolInfo")
        for name, records in sections:
            for index, record in enumerate(records):
                _check_representable(record.model_dump(by_alias=True), f"{name}[{index}]")

        document: dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "exportDate": format_iso(generated_at),
            "schoolInfo": profile.model_dump(mode="json", by_alias=True),
            "academicYear": generated_at.year,
            "period": period.value,
        }
        for name, records in sections:
            document[name] = [record.model_dump(mode="json", by_alias=True) for record in records]

        try:
            payload = json.dumps(
                document,
                indent=2,
                ensure_ascii=False,
                allow_nan=False,
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError("document", str(e)) from e

        artifact = ExportArtifact(
            payload=payload,
            media_type=MEDIA_TYPE,
            filename=build_filename(profile.institution_code, generated_at),
            fingerprint=fingerprint(payload),
            generated_at=generated_at,
        )

        logger.info(
            "Generated export artifact: file=%s, bytes=%d, fingerprint=%s",
            artifact.filename,
            artifact.size_bytes,
            artifact.fingerprint,
        )

        return artifact

    @staticmethod
    def verify(payload: bytes, expected_fingerprint: str) -> bool:
        """Check downloaded bytes against a recorded fingerprint."""
        return fingerprint(payload) == expected_fingerprint


def fingerprint(payload: bytes) -> str:
    """Content fingerprint of a payload."""
    return FINGERPRINT_PREFIX + hashlib.sha256(payload).hexdigest()


def build_filename(institution_code: str, generated_at: datetime) -> str:
    """Build the download filename, e.g. EMIS_Export_12345678_2024-03-04.json."""
    code = re.sub(r"[^A-Za-z0-9_-]+", "_", institution_code.strip()) or "unknown"
    return f"EMIS_Export_{code}_{date_stamp(generated_at)}.json"


def _check_representable(value: Any, path: str) -> None:
    """Reject values JSON cannot carry, naming where they are."""
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(path, f"non-finite number {value!r}")
    elif isinstance(value, dict):
        for key, item in value.items():
            _check_representable(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _check_representable(item, f"{path}[{index}]")
