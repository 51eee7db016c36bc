"""Capture device ownership: exclusive handles, scoped release, frame grabs."""
from __future__ import annotations

import abc
import asyncio
import enum
import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

from ..models import CaptureFrame

logger = logging.getLogger(__name__)


class DeviceErrorKind(str, enum.Enum):
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    OTHER = "other"


# Enrollment screen wording.
DEVICE_ERROR_MESSAGES: Dict[DeviceErrorKind, str] = {
    DeviceErrorKind.PERMISSION_DENIED: "Camera access denied. Please allow camera permissions to continue.",
    DeviceErrorKind.NOT_FOUND: "No camera found. Please connect a camera and try again.",
    DeviceErrorKind.OTHER: "Failed to access camera. Please check your device settings.",
}

# Scanner screen wording.
SCANNER_ERROR_LABELS: Dict[DeviceErrorKind, str] = {
    DeviceErrorKind.PERMISSION_DENIED: "CAMERA ACCESS DENIED",
    DeviceErrorKind.NOT_FOUND: "NO CAMERA DETECTED",
    DeviceErrorKind.OTHER: "CAMERA INITIALIZATION FAILED",
}


class DeviceError(RuntimeError):
    """Raised when the capture device cannot be acquired or read."""

    def __init__(self, kind: DeviceErrorKind, *, log_message: Optional[str] = None) -> None:
        super().__init__(log_message or kind.value)
        self.kind = kind

    @property
    def user_message(self) -> str:
        return DEVICE_ERROR_MESSAGES[self.kind]

    @property
    def scanner_label(self) -> str:
        return SCANNER_ERROR_LABELS[self.kind]


@dataclass(frozen=True)
class CaptureConstraints:
    width: int = 640
    height: int = 480
    facing_mode: str = "user"
    jpeg_quality: int = 90


@dataclass
class DeviceHandle:
    """Ownership token for the capture device; invalid once released."""

    handle_id: int
    owner: str
    constraints: CaptureConstraints
    metadata: Dict[str, Any] = field(default_factory=dict)
    released: bool = False

    @property
    def live(self) -> bool:
        return not self.released

    @property
    def ready(self) -> bool:
        """Acquired and stream metadata (frame size) known."""
        return self.live and "width" in self.metadata and "height" in self.metadata


class CameraDriver(abc.ABC):
    """Hardware boundary used by :class:`DeviceManager`."""

    @abc.abstractmethod
    async def open(self, constraints: CaptureConstraints) -> Dict[str, Any]:
        """Open the device and return stream metadata; raise DeviceError on failure."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Close the device. Must tolerate being called when already closed."""

    @abc.abstractmethod
    def read_frame(self, constraints: CaptureConstraints) -> bytes:
        """Return the current frame as encoded image bytes."""


class DeviceManager:
    """Hands out at most one live :class:`DeviceHandle` at a time.

    Shared by every controller that uses the same physical camera, so a
    second owner is refused while a handle is live. Acquire and release are
    serialised on one lock; an acquire that overlaps another waits for it
    and then sees the winner's handle.
    """

    def __init__(self, driver: CameraDriver) -> None:
        self._driver = driver
        self._ids = itertools.count(1)
        self._current: Optional[DeviceHandle] = None
        self._lock = asyncio.Lock()
        self.acquire_count = 0
        self.release_count = 0

    @property
    def current(self) -> Optional[DeviceHandle]:
        return self._current

    async def acquire(self, constraints: CaptureConstraints, *, owner: str) -> DeviceHandle:
        async with self._lock:
            return await self._acquire_locked(constraints, owner)

    async def _acquire_locked(self, constraints: CaptureConstraints, owner: str) -> DeviceHandle:
        if self._current is not None and self._current.live:
            holder = self._current.owner
            raise DeviceError(
                DeviceErrorKind.OTHER,
                log_message=f"camera already held by {holder!r}, refused for {owner!r}",
            )

        logger.info("📷 [DEVICE] %s acquiring camera (%dx%d)", owner, constraints.width, constraints.height)
        try:
            metadata = await self._driver.open(constraints)
        except DeviceError as exc:
            logger.warning("📷 [DEVICE] acquisition failed for %s: %s (%s)", owner, exc.kind.value, exc)
            raise
        except Exception as exc:
            logger.exception("📷 [DEVICE] unexpected driver error for %s", owner)
            raise DeviceError(DeviceErrorKind.OTHER, log_message=str(exc)) from exc

        handle = DeviceHandle(
            handle_id=next(self._ids),
            owner=owner,
            constraints=constraints,
            metadata=dict(metadata or {}),
        )
        self._current = handle
        self.acquire_count += 1
        logger.info("📷 [DEVICE] handle #%d granted to %s", handle.handle_id, owner)
        return handle

    async def release(self, handle: Optional[DeviceHandle]) -> None:
        """Release ``handle``; a no-op for None or already released handles."""
        if handle is None or handle.released:
            return
        async with self._lock:
            await self._release_locked(handle)

    async def _release_locked(self, handle: DeviceHandle) -> None:
        if handle.released:
            return
        handle.released = True
        self.release_count += 1
        if self._current is not handle:
            # Stale token: the driver now belongs to someone else.
            logger.warning("📷 [DEVICE] handle #%d released by %s was not current", handle.handle_id, handle.owner)
            return
        self._current = None
        try:
            await self._driver.close()
        except Exception as exc:
            logger.warning("📷 [DEVICE] error closing camera for %s: %s", handle.owner, exc)
        logger.info("📷 [DEVICE] handle #%d released by %s", handle.handle_id, handle.owner)

    def capture_frame(self, handle: DeviceHandle) -> CaptureFrame:
        if not handle.live or self._current is not handle:
            raise DeviceError(DeviceErrorKind.OTHER, log_message=f"handle #{handle.handle_id} is not live")
        data = self._driver.read_frame(handle.constraints)
        return CaptureFrame(
            data=data,
            width=int(handle.metadata.get("width", handle.constraints.width)),
            height=int(handle.metadata.get("height", handle.constraints.height)),
        )

    @asynccontextmanager
    async def hold(self, constraints: CaptureConstraints, *, owner: str) -> AsyncIterator[DeviceHandle]:
        """Acquire for the duration of the ``async with`` block; always released."""
        handle = await self.acquire(constraints, owner=owner)
        try:
            yield handle
        finally:
            await self.release(handle)


__all__ = [
    "CameraDriver",
    "CaptureConstraints",
    "DEVICE_ERROR_MESSAGES",
    "DeviceError",
    "DeviceErrorKind",
    "DeviceHandle",
    "DeviceManager",
    "SCANNER_ERROR_LABELS",
]
