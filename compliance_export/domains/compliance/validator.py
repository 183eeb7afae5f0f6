# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Compliance profile validation.

Checks a school's EMIS profile against the fields the Ministry requires
before any data is fetched. Every rule is evaluated, so the caller gets
the complete list of problems in one pass.

Example:
    >>> validator = ComplianceProfileValidator()
    >>> result = validator.validate(ComplianceProfile(institution_code="123"))
    >>> result.is_valid
    False
    >>> [error.field for error in result.errors]
    ['institution_name', 'district', 'region', 'contact_person']
"""

from dataclasses import dataclass, field

from compliance_export.domains.compliance.models import ComplianceProfile, FieldError

# (field, reason) in reporting order
REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("institution_code", "School EMIS code is required"),
    ("institution_name", "School name is required"),
    ("district", "District is required"),
    ("region", "Province is required"),
    ("contact_person", "Contact person is required"),
)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a compliance profile.

    Attributes:
        errors: Field-level problems; empty when the profile is valid.
    """

    errors: tuple[FieldError, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        """Whether the profile can be exported."""
        return not self.errors

    def to_list(self) -> list[dict[str, str]]:
        """Convert errors to plain dictionaries."""
        return [{"field": e.field, "reason": e.reason} for e in self.errors]


class ComplianceProfileValidator:
    """Validates compliance profiles against the EMIS required-field rules.

    Pure and deterministic: no I/O, and the same profile always yields the
    same result.
    """

    def validate(self, profile: ComplianceProfile) -> ValidationResult:
        """Validate a compliance profile.

        Args:
            profile: Profile to check; blank fields are allowed as input.

        Returns:
            ValidationResult listing every violated rule.
        """
        errors: list[FieldError] = []

        for name, reason in REQUIRED_FIELDS:
            if _is_blank(getattr(profile, name, None)):
                errors.append(FieldError(field=name, reason=reason))

        # Optional, but must look like an address when given
        if not _is_blank(profile.email) and "@" not in str(profile.email):
            errors.append(FieldError(field="email", reason="Email address is not valid"))

        return ValidationResult(errors=tuple(errors))


def _is_blank(value: object) -> bool:
    return value is None or not str(value).strip()
