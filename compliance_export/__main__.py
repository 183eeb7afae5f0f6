# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Run the compliance export API with uvicorn.

Usage:
    python -m compliance_export
"""

import uvicorn

from compliance_export.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "compliance_export.api.app:create_app",
        factory=True,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
