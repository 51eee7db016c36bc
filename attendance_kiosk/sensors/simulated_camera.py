"""Headless camera driver for kiosks without hardware and for demos."""
from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Dict, Optional

from .camera import CameraDriver, CaptureConstraints, DeviceError, DeviceErrorKind

logger = logging.getLogger(__name__)

# 1x1 JPEG
PLACEHOLDER_JPEG = base64.b64decode(
    b"/9j/4AAQSkZJRgABAQAAAQABAAD/2wBDAAgGBgcGBQgHBwcJCQgKDBQNDAsLDBkSEw8UHRofHh0aHBwgJC4nICIsIxwcKDcpLDAxNDQ0Hyc5PTgyPC4zNDL/2wBDAQkJCQwLDBgNDRgyIRwhMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjL/wAARCAABAAEDASIAAhEBAxEB/8QAHwAAAQUBAQEBAQEAAAAAAAAAAAECAwQFBgcICQoL/8QAtRAAAgEDAwIEAwUFBAQAAAF9AQIDAAQRBRIhMUEGE1FhByJxFDKBkaEII0KxwRVS0fAkM2JyggkKFhcYGRolJicoKSo0NTY3ODk6Q0RFRkdISUpTVFVWV1hZWmNkZWZnaGlqc3R1dnd4eXqDhIWGh4iJipKTlJWWl5iZmqKjpKWmp6ipqrKztLW2t7i5usLDxMXGx8jJytLT1NXW19jZ2uHi4+Tl5ufo6erx8vP09fb3+Pn6/8QAHwEAAwEBAQEBAQEBAQAAAAAAAAECAwQFBgcICQoL/8QAtREAAgECBAQDBAcFBAQAAQJ3AAECAxEEBSExBhJBUQdhcRMiMoEIFEKRobHBCSMzUvAVYnLRChYkNOEl8RcYGRomJygpKjU2Nzg5OkNERUZHSElKU1RVVldYWVpjZGVmZ2hpanN0dXZ3eHl6goOEhYaHiImKkpOUlZaXmJmaoqOkpaanqKmqsrO0tba3uLm6wsPExcbHyMnK0tPU1dbX2Nna4uPk5ebn6Onq8vP09fb3+Pn6/9oADAMBAAIRAxEAPwD5/ooooA//2Q=="
)


class SimulatedCameraDriver(CameraDriver):
    """Always-available camera that returns a placeholder JPEG.

    ``fail_with`` makes every ``open`` raise the given error kind, which is
    how the permission / missing-camera screens are exercised without
    hardware.
    """

    def __init__(self, *, warmup_seconds: float = 0.0, fail_with: Optional[DeviceErrorKind] = None) -> None:
        self.warmup_seconds = warmup_seconds
        self.fail_with = fail_with
        self._open = False

    async def open(self, constraints: CaptureConstraints) -> Dict[str, Any]:
        if self.warmup_seconds > 0:
            await asyncio.sleep(self.warmup_seconds)
        if self.fail_with is not None:
            raise DeviceError(self.fail_with, log_message="simulated camera failure")
        self._open = True
        logger.debug("Simulated camera opened (%dx%d)", constraints.width, constraints.height)
        return {"width": constraints.width, "height": constraints.height, "fps": 30.0}

    async def close(self) -> None:
        self._open = False

    def read_frame(self, constraints: CaptureConstraints) -> bytes:
        if not self._open:
            raise DeviceError(DeviceErrorKind.OTHER, log_message="simulated camera is not open")
        return PLACEHOLDER_JPEG


__all__ = ["PLACEHOLDER_JPEG", "SimulatedCameraDriver"]
