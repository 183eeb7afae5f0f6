"""EduSynapse Compliance Export.

Assembles a school's enrollment, staffing, scheduling, attendance and
assessment records into a validated EMIS snapshot for Ministry of
Education submission.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
