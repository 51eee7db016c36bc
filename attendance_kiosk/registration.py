"""Enrollment session: form -> capture -> processing -> outcome."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional

from .backend.client import RecognitionServiceClient
from .config import Settings
from .models import CaptureFrame, EnrolledProfile, EnrollResult, FormData
from .sensors.camera import CaptureConstraints, DeviceError, DeviceErrorKind, DeviceManager
from .session import EventHub, SessionContext, SessionController
from .state import (
    CaptureStage,
    InvalidTransitionError,
    RegistrationEvent,
    RegistrationPhase,
    registration_transition,
)

logger = logging.getLogger(__name__)

EnrollmentHandoff = Callable[[EnrolledProfile], Awaitable[None]]

PROCESSING_MESSAGES = (
    "Capturing facial features...",
    "Analyzing biometric data...",
    "Extracting face embedding...",
    "Generating secure profile...",
    "Finalizing registration...",
)

DEFAULT_FAILURE_MESSAGE = (
    "No gesture detected. Please wave clearly in front of the camera and ensure proper lighting."
)


class RegistrationController(SessionController):
    """
    Drives one enrollment screen.

    The camera is acquired when the form is accepted and released as soon as
    the single frame is captured, so it is never held while processing or on
    the outcome screens. Leaving the screen or resetting tears the session
    down and releases the camera regardless of phase.
    """

    screen = "registration"

    def __init__(
        self,
        *,
        devices: DeviceManager,
        service: RecognitionServiceClient,
        settings: Optional[Settings] = None,
        hub: Optional[EventHub] = None,
        on_enrolled: Optional[EnrollmentHandoff] = None,
    ) -> None:
        super().__init__(devices=devices, service=service, settings=settings, hub=hub)
        self.on_enrolled = on_enrolled
        self._phase = RegistrationPhase.FORM
        self._clear_payload()

    def _clear_payload(self) -> None:
        self.form: Optional[FormData] = None
        self.form_errors: Dict[str, str] = {}
        self.stage: Optional[CaptureStage] = None
        self.device_error: Optional[DeviceError] = None
        self.countdown: Optional[int] = None
        self.progress: float = 0.0
        self.processing_message: Optional[str] = None
        self.profile: Optional[EnrolledProfile] = None
        self.failure_message: Optional[str] = None

    @property
    def phase(self) -> RegistrationPhase:
        return self._phase

    @property
    def constraints(self) -> CaptureConstraints:
        camera = self.settings.camera
        return CaptureConstraints(
            width=camera.registration_width,
            height=camera.registration_height,
            facing_mode=camera.facing_mode,
            jpeg_quality=camera.jpeg_quality,
        )

    @property
    def device_ready(self) -> bool:
        handle = self._session.handle
        return handle is not None and handle.ready

    def snapshot(self) -> Dict[str, Any]:
        return {
            "phase": self._phase.value,
            "session_id": self.session_id,
            "form": self.form.to_dict() if self.form else None,
            "form_errors": dict(self.form_errors),
            "stage": self.stage.value if self.stage else None,
            "device_ready": self.device_ready,
            "device_error": self.device_error.user_message if self.device_error else None,
            "countdown": self.countdown,
            "progress": self.progress,
            "processing_message": self.processing_message,
            "profile": self.profile.to_dict() if self.profile else None,
            "failure_message": self.failure_message,
        }

    async def _transition(self, event: RegistrationEvent) -> None:
        previous = self._phase
        self._phase = registration_transition(previous, event)
        logger.info(
            "📝 [REGISTRATION] session %d: %s -> %s (%s)",
            self.session_id,
            previous.value,
            self._phase.value,
            event.value,
        )
        await self._broadcast()

    # ============================================================
    # USER INTENTS
    # ============================================================

    async def open(self) -> None:
        """Screen entered: start from an empty form in a fresh session."""
        await self.reset()

    async def submit(self, form: FormData) -> bool:
        """Validate the form; on success move to CAPTURING and acquire the camera.

        Returns False when validation fails (phase stays FORM). Camera
        failures do not make this return False: the phase is CAPTURING and
        ``device_error`` describes the problem.
        """
        if self._phase is not RegistrationPhase.FORM:
            raise InvalidTransitionError(self._phase, RegistrationEvent.FORM_ACCEPTED)

        errors = form.validate()
        self.form_errors = errors
        if errors:
            logger.info("📝 [REGISTRATION] form rejected: %s", ", ".join(sorted(errors)))
            await self._broadcast()
            return False

        self.form = form.normalised()
        self.stage = CaptureStage.AWAITING_GESTURE
        await self._transition(RegistrationEvent.FORM_ACCEPTED)
        await self._acquire_device()
        return True

    async def retry_camera(self) -> bool:
        """Re-attempt camera acquisition after a device error."""
        if self._phase is not RegistrationPhase.CAPTURING or self.stage is not CaptureStage.AWAITING_GESTURE:
            raise InvalidTransitionError(self._phase, RegistrationEvent.FORM_ACCEPTED)
        if self._session.handle is not None:
            return True
        return await self._acquire_device()

    async def start_capture(self) -> bool:
        """User gesture: countdown, record, capture and enroll in the background.

        Returns False (no error) while the camera is not ready.
        """
        if self._phase is not RegistrationPhase.CAPTURING or self.stage is not CaptureStage.AWAITING_GESTURE:
            raise InvalidTransitionError(self._phase, RegistrationEvent.RECORDING_COMPLETE)
        if not self.device_ready:
            logger.info("📝 [REGISTRATION] capture requested before camera ready; ignoring")
            return False

        self.stage = CaptureStage.COUNTDOWN
        self._spawn(self._run_capture(self._session), name="capture")
        return True

    async def retry(self) -> None:
        """From FAILURE (or a camera error) go back to an empty form."""
        if self._phase is not RegistrationPhase.FAILURE and self.device_error is None:
            raise InvalidTransitionError(self._phase, RegistrationEvent.RESET)
        await self.reset()

    async def reset(self) -> None:
        """Discard the current session, whatever its phase, and start over at FORM."""
        await self._begin_new_session("reset")
        self._clear_payload()
        self._phase = registration_transition(self._phase, RegistrationEvent.RESET)
        await self._broadcast()

    async def close(self) -> None:
        """Screen left: cancel timers, release the camera, drop pending completions."""
        await self._begin_new_session("screen closed")
        self._clear_payload()
        self._phase = registration_transition(self._phase, RegistrationEvent.RESET)

    # ============================================================
    # SESSION FLOW
    # ============================================================

    async def _acquire_device(self) -> bool:
        ctx = self._session
        self.device_error = None
        try:
            await ctx.hold_device(self.devices, self.constraints, owner=f"{self.screen}-{ctx.session_id}")
        except DeviceError as exc:
            if not self._is_current(ctx.session_id):
                return False
            self.device_error = exc
            logger.warning("📷 [REGISTRATION] camera unavailable: %s", exc.kind.value)
            await self._broadcast("device_error", error=exc.user_message, kind=exc.kind.value)
            return False

        if not self._is_current(ctx.session_id):
            # Screen left while the camera was opening.
            await ctx.release_device()
            return False

        await self._broadcast()
        return True

    async def _run_capture(self, ctx: SessionContext) -> None:
        session_id = ctx.session_id
        timings = self.settings.registration
        frame: Optional[CaptureFrame] = None
        try:
            self.countdown = timings.countdown_start
            async for value in ctx.timers.countdown(timings.countdown_start, timings.countdown_interval_s):
                self.countdown = value
                await self._broadcast("countdown", countdown=value)

            self.stage = CaptureStage.RECORDING
            self.progress = 0.0
            await self._broadcast()
            logger.info("🎥 [REGISTRATION] recording %dms", timings.recording_duration_ms)
            async for percent in ctx.timers.progress(timings.recording_duration_ms, timings.recording_tick_ms):
                self.progress = max(self.progress, percent)
                await self._broadcast("progress", progress=self.progress)

            if ctx.handle is None:
                raise DeviceError(DeviceErrorKind.OTHER, log_message="camera released during recording")
            frame = ctx.take_frame(self.devices, ctx.handle)
        except asyncio.CancelledError:
            logger.info("⚠️ [REGISTRATION] capture for session %d cancelled", session_id)
            return
        except DeviceError as exc:
            if self._is_current(session_id):
                logger.error("❌ [REGISTRATION] frame capture failed: %s", exc)
                self.device_error = exc
                self.stage = CaptureStage.AWAITING_GESTURE
                self.countdown = None
                self.progress = 0.0
                await self._broadcast("device_error", error=exc.user_message, kind=exc.kind.value)
            return
        finally:
            await ctx.release_device()

        if not self._is_current(session_id):
            logger.info("📝 [REGISTRATION] discarding capture of stale session %d", session_id)
            return

        self.stage = None
        await self._transition(RegistrationEvent.RECORDING_COMPLETE)
        await self._process(ctx, frame)

    async def _process(self, ctx: SessionContext, frame: CaptureFrame) -> None:
        session_id = ctx.session_id
        interval = self.settings.registration.processing_message_interval_s
        try:
            for message in PROCESSING_MESSAGES:
                self.processing_message = message
                await self._broadcast("processing", message=message)
                await ctx.timers.sleep(interval)
        except asyncio.CancelledError:
            logger.info("⚠️ [REGISTRATION] processing for session %d cancelled", session_id)
            return

        if not self._is_current(session_id):
            return

        form = self.form
        result: Optional[EnrollResult] = None
        try:
            if form is None:
                raise RuntimeError(f"session {session_id} reached processing without a form")
            ctx.claim_service_call()
            logger.info("🚀 [REGISTRATION] enrolling %s (%s)", form.employee_id, form.department)
            result = await self.service.enroll(form, frame)
        except Exception as exc:
            logger.exception("❌ [REGISTRATION] enroll call failed: %s", exc)
            result = None

        if not self._is_current(session_id):
            logger.info("📝 [REGISTRATION] discarding stale enroll result for session %d", session_id)
            return

        self.processing_message = None
        if result is not None and result.success and result.profile is not None:
            self.profile = result.profile
            await self._transition(RegistrationEvent.ENROLL_SUCCEEDED)
            logger.info("✅ [REGISTRATION] enrolled %s as %s", result.profile.name, result.profile.id)
            await self._hand_off(result.profile)
            return

        self.failure_message = (result.message if result is not None else None) or DEFAULT_FAILURE_MESSAGE
        await self._transition(RegistrationEvent.ENROLL_FAILED)
        logger.warning("❌ [REGISTRATION] enrollment failed: %s", self.failure_message)

    async def _hand_off(self, profile: EnrolledProfile) -> None:
        if self.on_enrolled is None:
            return
        try:
            await self.on_enrolled(profile)
        except Exception:
            logger.exception("Enrollment handoff failed for %s", profile.id)


__all__ = ["DEFAULT_FAILURE_MESSAGE", "PROCESSING_MESSAGES", "RegistrationController"]
