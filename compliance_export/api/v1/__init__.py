# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

Modules:
    compliance: EMIS compliance profile and export endpoints.
"""

from fastapi import APIRouter

from compliance_export.api.v1 import compliance

# Create the main v1 router
router = APIRouter(prefix="/api/v1")

# Include domain routers
router.include_router(compliance.router, prefix="/compliance", tags=["Compliance Export"])

__all__ = ["router"]
