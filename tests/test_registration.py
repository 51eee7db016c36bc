import asyncio

import pytest

from attendance_kiosk.models import EnrollResult, FormData
from attendance_kiosk.registration import DEFAULT_FAILURE_MESSAGE, PROCESSING_MESSAGES, RegistrationController
from attendance_kiosk.sensors.camera import CaptureConstraints, DeviceErrorKind, DeviceManager
from attendance_kiosk.state import CaptureStage, InvalidTransitionError, RegistrationPhase

from .conftest import VALID_FORM, FakeCameraDriver, FakeService

pytestmark = pytest.mark.asyncio


def collect(hub):
    queue = hub.register_ui()

    def drain():
        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        return events

    return drain


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


async def test_valid_submit_enters_capturing_and_acquires(registration, devices):
    assert await registration.submit(VALID_FORM) is True
    assert registration.phase is RegistrationPhase.CAPTURING
    assert registration.stage is CaptureStage.AWAITING_GESTURE
    assert registration.device_ready
    assert devices.acquire_count == 1
    assert registration.form == VALID_FORM


async def test_invalid_submit_stays_on_form(registration, devices, service):
    form = FormData(name="", employee_id="E-1", department="Engineering")
    assert await registration.submit(form) is False
    assert registration.phase is RegistrationPhase.FORM
    assert registration.form_errors == {"name": "Full name is required"}
    assert devices.acquire_count == 0
    assert service.total_calls == 0


async def test_permission_denied_shows_device_error_without_timers(settings, service, hub):
    devices = DeviceManager(FakeCameraDriver(fail_with=DeviceErrorKind.PERMISSION_DENIED))
    controller = RegistrationController(devices=devices, service=service, settings=settings, hub=hub)

    assert await controller.submit(VALID_FORM) is True
    assert controller.phase is RegistrationPhase.CAPTURING
    assert controller.device_error is not None
    assert controller.device_error.kind is DeviceErrorKind.PERMISSION_DENIED
    assert controller.snapshot()["device_error"].startswith("Camera access denied")
    assert controller.timers.active == 0
    assert controller.countdown is None

    assert await controller.start_capture() is False
    assert controller.timers.active == 0
    assert service.total_calls == 0


async def test_retry_camera_after_device_error(settings, service, hub):
    driver = FakeCameraDriver(fail_with=DeviceErrorKind.NOT_FOUND)
    devices = DeviceManager(driver)
    controller = RegistrationController(devices=devices, service=service, settings=settings, hub=hub)
    await controller.submit(VALID_FORM)
    assert controller.device_error.kind is DeviceErrorKind.NOT_FOUND

    driver.fail_with = None
    assert await controller.retry_camera() is True
    assert controller.device_error is None
    assert controller.device_ready


async def test_full_enrollment_success(registration, devices, driver, service, handoffs, hub):
    drain = collect(hub)
    await registration.submit(VALID_FORM)
    assert await registration.start_capture() is True
    await registration.join()

    assert registration.phase is RegistrationPhase.SUCCESS
    assert registration.profile is not None
    assert registration.profile.employee_id == "E-1"
    assert handoffs == [registration.profile]
    assert len(service.enroll_calls) == 1
    assert service.enroll_frames[0] is not None
    assert driver.frames_read == 1
    assert devices.acquire_count == devices.release_count == 1
    assert devices.current is None

    events = drain()
    countdowns = [e.data["countdown"] for e in events if e.type == "countdown"]
    assert countdowns == [3, 2, 1, 0]
    progress = [e.data["progress"] for e in events if e.type == "progress"]
    assert progress == sorted(progress)
    assert progress.count(100.0) == 1
    messages = [e.data["message"] for e in events if e.type == "processing"]
    assert messages == list(PROCESSING_MESSAGES)


async def test_enroll_rejection_lands_in_failure_with_message(settings, devices, hub):
    service = FakeService(enroll_result=EnrollResult(success=False, message="no gesture"))
    controller = RegistrationController(devices=devices, service=service, settings=settings, hub=hub)
    await controller.submit(VALID_FORM)
    await controller.start_capture()
    await controller.join()

    assert controller.phase is RegistrationPhase.FAILURE
    assert controller.failure_message == "no gesture"
    assert devices.current is None
    assert devices.acquire_count == devices.release_count == 1


async def test_enroll_transport_error_lands_in_failure(settings, devices, hub, handoffs):
    service = FakeService(error=ConnectionError("backend down"))
    controller = RegistrationController(devices=devices, service=service, settings=settings, hub=hub)
    await controller.submit(VALID_FORM)
    await controller.start_capture()
    await controller.join()

    assert controller.phase is RegistrationPhase.FAILURE
    assert controller.failure_message == DEFAULT_FAILURE_MESSAGE
    assert handoffs == []


async def test_device_released_before_processing(settings, devices, hub):
    gate = asyncio.Event()
    service = FakeService(gate=gate)
    controller = RegistrationController(devices=devices, service=service, settings=settings, hub=hub)
    await controller.submit(VALID_FORM)
    await controller.start_capture()
    await asyncio.wait_for(service.called.wait(), timeout=2)

    assert controller.phase is RegistrationPhase.PROCESSING
    assert devices.current is None
    assert devices.release_count == 1

    gate.set()
    await controller.join()
    assert controller.phase is RegistrationPhase.SUCCESS


async def test_retry_from_failure_starts_new_session(settings, devices, hub):
    service = FakeService(enroll_result=EnrollResult(success=False))
    controller = RegistrationController(devices=devices, service=service, settings=settings, hub=hub)
    first_session = controller.session_id
    await controller.submit(VALID_FORM)
    await controller.start_capture()
    await controller.join()
    assert controller.phase is RegistrationPhase.FAILURE

    await controller.retry()
    assert controller.phase is RegistrationPhase.FORM
    assert controller.session_id > first_session
    assert controller.form is None and controller.failure_message is None


async def test_retry_is_rejected_outside_failure(registration):
    with pytest.raises(InvalidTransitionError):
        await registration.retry()


async def test_reset_during_pending_enroll_discards_result(settings, devices, hub, handoffs):
    gate = asyncio.Event()
    service = FakeService(gate=gate)

    async def persist(profile):
        handoffs.append(profile)

    controller = RegistrationController(
        devices=devices, service=service, settings=settings, hub=hub, on_enrolled=persist
    )
    await controller.submit(VALID_FORM)
    await controller.start_capture()
    await asyncio.wait_for(service.called.wait(), timeout=2)
    pending = controller._session_task

    await controller.reset()
    assert controller.phase is RegistrationPhase.FORM
    drain = collect(hub)

    gate.set()
    await pending
    assert controller.phase is RegistrationPhase.FORM
    assert controller.profile is None
    assert handoffs == []
    assert drain() == []


async def test_close_during_countdown_releases_and_never_calls_service(tmp_path, devices, service, hub):
    from attendance_kiosk.config import RegistrationTimings, Settings

    slow = Settings(
        log_directory=tmp_path,
        registration=RegistrationTimings(countdown_interval_s=10.0, processing_message_interval_s=0.0),
    )
    controller = RegistrationController(devices=devices, service=service, settings=slow, hub=hub)
    await controller.submit(VALID_FORM)
    await controller.start_capture()
    await wait_for(lambda: controller.countdown == 3 and controller.timers.active == 1)
    old_timers = controller.timers
    task = controller._session_task

    await controller.close()
    await task
    assert old_timers.active == 0
    assert devices.current is None
    assert devices.acquire_count == devices.release_count == 1
    assert service.total_calls == 0


async def test_close_during_recording_releases_device(tmp_path, devices, service, hub):
    from attendance_kiosk.config import RegistrationTimings, Settings

    slow = Settings(
        log_directory=tmp_path,
        registration=RegistrationTimings(
            countdown_interval_s=0.0, recording_duration_ms=60_000, recording_tick_ms=100
        ),
    )
    controller = RegistrationController(devices=devices, service=service, settings=slow, hub=hub)
    await controller.submit(VALID_FORM)
    await controller.start_capture()
    await wait_for(lambda: controller.stage is CaptureStage.RECORDING)
    task = controller._session_task

    await controller.close()
    await task
    assert devices.current is None
    assert devices.acquire_count == devices.release_count
    assert service.total_calls == 0


async def test_submit_outside_form_is_rejected(registration):
    await registration.submit(VALID_FORM)
    with pytest.raises(InvalidTransitionError):
        await registration.submit(VALID_FORM)


async def test_start_capture_twice_is_rejected(registration):
    await registration.submit(VALID_FORM)
    assert await registration.start_capture() is True
    with pytest.raises(InvalidTransitionError):
        await registration.start_capture()
    await registration.join()


async def test_camera_held_by_scanner_blocks_enrollment(registration, devices):
    scanner = await devices.acquire(CaptureConstraints(), owner="recognition")
    await registration.submit(VALID_FORM)
    assert registration.device_error is not None
    assert registration.device_error.kind is DeviceErrorKind.OTHER
    await devices.release(scanner)


async def test_frame_read_failure_then_retry_completes_enrollment(settings, driver, devices, service, hub):
    driver.fail_reads = 1
    controller = RegistrationController(devices=devices, service=service, settings=settings, hub=hub)
    await controller.submit(VALID_FORM)
    assert await controller.start_capture() is True
    await controller.join()

    assert controller.phase is RegistrationPhase.CAPTURING
    assert controller.stage is CaptureStage.AWAITING_GESTURE
    assert controller.device_error.kind is DeviceErrorKind.OTHER
    assert devices.current is None
    assert service.total_calls == 0

    assert await controller.retry_camera() is True
    assert await controller.start_capture() is True
    await controller.join()

    assert controller.phase is RegistrationPhase.SUCCESS
    assert len(service.enroll_calls) == 1
    assert controller._session.frames_taken == 1
    assert controller._session.service_calls == 1
    assert devices.acquire_count == devices.release_count == 2


async def test_overlapping_screens_never_share_the_camera(settings, service, hub):
    from attendance_kiosk.recognition import RecognitionController

    devices = DeviceManager(FakeCameraDriver(open_delay=0.01))
    registration = RegistrationController(devices=devices, service=service, settings=settings, hub=hub)
    recognition = RecognitionController(devices=devices, service=service, settings=settings, hub=hub)

    await asyncio.gather(registration.submit(VALID_FORM), recognition.open())

    assert [registration.device_ready, recognition.device_ready].count(True) == 1
    assert [registration.device_error, recognition.device_error].count(None) == 1
    assert devices.acquire_count == 1

    await recognition.close()
    await registration.close()
    assert devices.current is None
    assert devices.acquire_count == devices.release_count == 1


async def test_reset_during_recording_emits_nothing_from_old_session(tmp_path, devices, service, hub):
    from attendance_kiosk.config import RegistrationTimings, Settings

    slow = Settings(
        log_directory=tmp_path,
        registration=RegistrationTimings(
            countdown_interval_s=0.0, recording_duration_ms=60_000, recording_tick_ms=100
        ),
    )
    controller = RegistrationController(devices=devices, service=service, settings=slow, hub=hub)
    await controller.submit(VALID_FORM)
    await controller.start_capture()
    await wait_for(lambda: controller.stage is CaptureStage.RECORDING)
    old_task = controller._session_task

    await controller.reset()
    drain = collect(hub)
    await old_task

    assert drain() == []
    assert controller.phase is RegistrationPhase.FORM
    assert controller.stage is None
    assert devices.current is None
    assert devices.acquire_count == devices.release_count == 1
    assert service.total_calls == 0
