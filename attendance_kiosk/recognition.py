"""Attendance verification session: idle -> scanning -> detected -> verifying -> outcome."""
from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import datetime
from typing import Any, Dict, Optional

from .backend.client import RecognitionServiceClient
from .config import Settings
from .models import IdentifyResult
from .sensors.camera import CaptureConstraints, DeviceError, DeviceErrorKind, DeviceHandle, DeviceManager
from .session import EventHub, SessionContext, SessionController
from .state import (
    InvalidTransitionError,
    RecognitionEvent,
    RecognitionPhase,
    recognition_transition,
)
from .timers import TimerGroup

logger = logging.getLogger(__name__)

SYSTEM_ERROR_MESSAGE = "RECOGNITION SYSTEM ERROR"


class RecognitionController(SessionController):
    """
    Drives the scanner screen.

    Unlike enrollment, the camera is held for the whole time the screen is
    open: ``reset`` starts a new scan session but keeps the handle, and only
    ``close`` releases it. The wall clock ticks on a screen-lifetime timer
    group, independent of scan sessions.
    """

    screen = "recognition"

    def __init__(
        self,
        *,
        devices: DeviceManager,
        service: RecognitionServiceClient,
        settings: Optional[Settings] = None,
        hub: Optional[EventHub] = None,
    ) -> None:
        super().__init__(devices=devices, service=service, settings=settings, hub=hub)
        self._phase = RecognitionPhase.IDLE
        self._screen_timers = TimerGroup(f"{self.screen}-screen")
        self._screen_scope = AsyncExitStack()
        self._handle: Optional[DeviceHandle] = None
        self._opened = False
        self.device_error: Optional[DeviceError] = None
        self.now: datetime = datetime.now()
        self._clear_result()

    def _clear_result(self) -> None:
        self.result: Optional[IdentifyResult] = None
        self.scan_error: Optional[str] = None

    @property
    def phase(self) -> RecognitionPhase:
        return self._phase

    @property
    def constraints(self) -> CaptureConstraints:
        camera = self.settings.camera
        return CaptureConstraints(
            width=camera.recognition_width,
            height=camera.recognition_height,
            facing_mode=camera.facing_mode,
            jpeg_quality=camera.jpeg_quality,
        )

    @property
    def device_ready(self) -> bool:
        return self._handle is not None and self._handle.ready

    def snapshot(self) -> Dict[str, Any]:
        result = self.result
        return {
            "phase": self._phase.value,
            "session_id": self.session_id,
            "device_ready": self.device_ready,
            "device_error": self.device_error.scanner_label if self.device_error else None,
            "profile": result.profile.to_dict() if result and result.profile else None,
            "confidence": result.confidence if result else None,
            "timestamp": result.timestamp if result else None,
            "scan_error": self.scan_error,
            "now": self.now.isoformat(timespec="seconds"),
        }

    async def _transition(self, event: RecognitionEvent) -> None:
        previous = self._phase
        self._phase = recognition_transition(previous, event)
        logger.info(
            "🔍 [RECOGNITION] session %d: %s -> %s (%s)",
            self.session_id,
            previous.value,
            self._phase.value,
            event.value,
        )
        await self._broadcast()

    # ============================================================
    # SCREEN LIFETIME
    # ============================================================

    async def open(self) -> bool:
        """Screen entered: start the clock and acquire the camera for the screen's lifetime."""
        if not self._opened:
            self._opened = True
            self._screen_timers.every(self.settings.recognition.clock_interval_s, self._tick_clock, name="scanner-clock")
        return await self._acquire_device()

    async def retry_camera(self) -> bool:
        """RETRY CONNECTION after a camera error."""
        if not self._opened:
            raise RuntimeError("recognition screen is not open")
        return await self._acquire_device()

    async def close(self) -> None:
        """Screen left: stop the clock, drop the scan session, release the camera."""
        self._opened = False
        self._screen_timers.cancel_all()
        await self._begin_new_session("screen closed")
        self._clear_result()
        self._phase = recognition_transition(self._phase, RecognitionEvent.RESET)
        try:
            await self._screen_scope.aclose()
        finally:
            self._handle = None
        logger.info("🔍 [RECOGNITION] screen closed")

    async def _tick_clock(self) -> None:
        self.now = datetime.now()
        await self._broadcast("clock", now=self.now.isoformat(timespec="seconds"))

    async def _acquire_device(self) -> bool:
        if self._handle is not None and self._handle.live:
            return True
        self.device_error = None
        try:
            handle = await self._screen_scope.enter_async_context(
                self.devices.hold(self.constraints, owner=self.screen)
            )
        except DeviceError as exc:
            self.device_error = exc
            logger.warning("📷 [RECOGNITION] camera unavailable: %s", exc.kind.value)
            await self._broadcast("device_error", error=exc.scanner_label, kind=exc.kind.value)
            return False

        if not self._opened:
            # Screen closed while the camera was opening.
            await self._screen_scope.aclose()
            return False

        self._handle = handle
        await self._broadcast()
        return True

    # ============================================================
    # SCAN SESSION
    # ============================================================

    async def scan(self) -> bool:
        """INITIATE SCAN. Refused (returns False) until the camera is ready."""
        if self._phase is not RecognitionPhase.IDLE:
            raise InvalidTransitionError(self._phase, RecognitionEvent.SCAN_REQUESTED)
        if not self.device_ready:
            logger.info("🔍 [RECOGNITION] scan requested before camera ready; ignoring")
            return False

        self._clear_result()
        await self._transition(RecognitionEvent.SCAN_REQUESTED)
        self._spawn(self._run_scan(self._session), name="scan")
        return True

    async def reset(self) -> None:
        """SCAN AGAIN: new session at IDLE; the camera stays held."""
        await self._begin_new_session("reset")
        self._clear_result()
        self._phase = recognition_transition(self._phase, RecognitionEvent.RESET)
        await self._broadcast()

    async def _run_scan(self, ctx: SessionContext) -> None:
        session_id = ctx.session_id
        timings = self.settings.recognition
        try:
            await ctx.timers.sleep(timings.detection_delay_s)
            if not self._is_current(session_id):
                return
            await self._transition(RecognitionEvent.FACE_DETECTED)
            await ctx.timers.sleep(timings.verification_delay_s)
        except asyncio.CancelledError:
            logger.info("⚠️ [RECOGNITION] scan session %d cancelled", session_id)
            return
        if not self._is_current(session_id):
            return
        await self._transition(RecognitionEvent.VERIFICATION_STARTED)

        result: Optional[IdentifyResult] = None
        try:
            if self._handle is None:
                raise DeviceError(DeviceErrorKind.OTHER, log_message="camera released before capture")
            frame = ctx.take_frame(self.devices, self._handle)
            ctx.claim_service_call()
            logger.info("🚀 [RECOGNITION] identifying %d byte frame", frame.size)
            result = await self.service.identify(frame)
        except Exception as exc:
            logger.exception("❌ [RECOGNITION] identify failed: %s", exc)

        if not self._is_current(session_id):
            logger.info("🔍 [RECOGNITION] discarding stale identify result for session %d", session_id)
            return

        if result is not None and result.success:
            self.result = result
            await self._transition(RecognitionEvent.IDENTIFY_SUCCEEDED)
            name = result.profile.name if result.profile else "unknown"
            logger.info("✅ [RECOGNITION] matched %s (confidence=%s)", name, result.confidence)
            return

        if result is None:
            self.scan_error = SYSTEM_ERROR_MESSAGE
        else:
            self.scan_error = result.message or "NOT RECOGNIZED"
        await self._transition(RecognitionEvent.IDENTIFY_FAILED)
        logger.warning("❌ [RECOGNITION] not recognized: %s", self.scan_error)


__all__ = ["RecognitionController", "SYSTEM_ERROR_MESSAGE"]
