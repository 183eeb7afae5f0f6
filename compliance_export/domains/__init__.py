# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer for the compliance export service.

Domains:
    compliance: EMIS compliance export pipeline (validation, fetching,
        aggregation, artifact generation, job lifecycle).
"""
