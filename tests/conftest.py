from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from attendance_kiosk.backend.client import RecognitionServiceClient
from attendance_kiosk.config import RecognitionTimings, RegistrationTimings, Settings
from attendance_kiosk.models import (
    CaptureFrame,
    EnrolledProfile,
    EnrollResult,
    FormData,
    IdentifyResult,
    MatchedProfile,
)
from attendance_kiosk.recognition import RecognitionController
from attendance_kiosk.registration import RegistrationController
from attendance_kiosk.sensors.camera import (
    CameraDriver,
    CaptureConstraints,
    DeviceError,
    DeviceErrorKind,
    DeviceManager,
)
from attendance_kiosk.session import EventHub


class FakeCameraDriver(CameraDriver):
    def __init__(self, fail_with: Optional[DeviceErrorKind] = None, *, open_delay: float = 0.0) -> None:
        self.fail_with = fail_with
        self.open_delay = open_delay
        self.fail_reads = 0
        self.opens = 0
        self.closes = 0
        self.frames_read = 0
        self.is_open = False

    async def open(self, constraints: CaptureConstraints) -> Dict[str, Any]:
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.fail_with is not None:
            raise DeviceError(self.fail_with)
        self.opens += 1
        self.is_open = True
        return {"width": constraints.width, "height": constraints.height}

    async def close(self) -> None:
        if self.is_open:
            self.closes += 1
        self.is_open = False

    def read_frame(self, constraints: CaptureConstraints) -> bytes:
        assert self.is_open, "frame read from a closed camera"
        if self.fail_reads:
            self.fail_reads -= 1
            raise DeviceError(DeviceErrorKind.OTHER, log_message="frame read failed")
        self.frames_read += 1
        return b"\xff\xd8fake-jpeg\xff\xd9"


class FakeService(RecognitionServiceClient):
    """Deterministic service; ``gate`` holds calls until set."""

    def __init__(
        self,
        *,
        enroll_result: Optional[EnrollResult] = None,
        identify_result: Optional[IdentifyResult] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.enroll_result = enroll_result
        self.identify_result = identify_result
        self.error = error
        self.gate = gate
        self.called = asyncio.Event()
        self.enroll_calls: List[FormData] = []
        self.enroll_frames: List[Optional[CaptureFrame]] = []
        self.identify_calls: List[CaptureFrame] = []

    async def _wait(self) -> None:
        self.called.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def enroll(self, form: FormData, frame: Optional[CaptureFrame] = None) -> EnrollResult:
        self.enroll_calls.append(form)
        self.enroll_frames.append(frame)
        await self._wait()
        if self.enroll_result is not None:
            return self.enroll_result
        return EnrollResult(
            success=True,
            profile=EnrolledProfile(
                id="USR-TEST",
                name=form.name,
                employee_id=form.employee_id,
                department=form.department,
                registered_at="2026-01-01T00:00:00+00:00",
            ),
        )

    async def identify(self, frame: CaptureFrame) -> IdentifyResult:
        self.identify_calls.append(frame)
        await self._wait()
        if self.identify_result is not None:
            return self.identify_result
        return IdentifyResult(
            success=True,
            profile=MatchedProfile(id="USR-0001", name="Alex Chen", department="Engineering"),
            confidence=0.93,
        )

    @property
    def total_calls(self) -> int:
        return len(self.enroll_calls) + len(self.identify_calls)


VALID_FORM = FormData(name="Al", employee_id="E-1", department="Engineering")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        log_directory=tmp_path / "logs",
        registration=RegistrationTimings(
            countdown_start=3,
            countdown_interval_s=0.0,
            recording_duration_ms=50,
            recording_tick_ms=10,
            processing_message_interval_s=0.0,
        ),
        recognition=RecognitionTimings(
            detection_delay_s=0.0,
            verification_delay_s=0.0,
            clock_interval_s=0.01,
        ),
    )


@pytest.fixture
def driver() -> FakeCameraDriver:
    return FakeCameraDriver()


@pytest.fixture
def devices(driver) -> DeviceManager:
    return DeviceManager(driver)


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def hub() -> EventHub:
    return EventHub(queue_size=256)


@pytest.fixture
def handoffs() -> List[EnrolledProfile]:
    return []


@pytest.fixture
def registration(settings, devices, service, hub, handoffs) -> RegistrationController:
    async def persist_and_navigate(profile: EnrolledProfile) -> None:
        handoffs.append(profile)

    return RegistrationController(
        devices=devices,
        service=service,
        settings=settings,
        hub=hub,
        on_enrolled=persist_and_navigate,
    )


@pytest.fixture
def recognition(settings, devices, service, hub) -> RecognitionController:
    return RecognitionController(devices=devices, service=service, settings=settings, hub=hub)
