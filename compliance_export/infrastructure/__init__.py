# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Infrastructure layer for external service integrations.

This package contains clients and stores for:
- School record store (REST API and in-memory)
- Export history database (SQLAlchemy async)
"""
