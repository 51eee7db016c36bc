"""Run the kiosk controller with uvicorn: ``python -m attendance_kiosk``."""
from __future__ import annotations

import uvicorn

from .config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "attendance_kiosk.main:create_app",
        factory=True,
        host=settings.controller_host,
        port=settings.controller_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
