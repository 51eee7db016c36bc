import pytest

from attendance_kiosk.state import (
    InvalidTransitionError,
    RecognitionEvent,
    RecognitionPhase,
    RegistrationEvent,
    RegistrationPhase,
    recognition_transition,
    registration_transition,
)


def test_registration_happy_path_edges():
    phase = RegistrationPhase.FORM
    phase = registration_transition(phase, RegistrationEvent.FORM_ACCEPTED)
    assert phase is RegistrationPhase.CAPTURING
    phase = registration_transition(phase, RegistrationEvent.RECORDING_COMPLETE)
    assert phase is RegistrationPhase.PROCESSING
    assert registration_transition(phase, RegistrationEvent.ENROLL_SUCCEEDED) is RegistrationPhase.SUCCESS
    assert registration_transition(phase, RegistrationEvent.ENROLL_FAILED) is RegistrationPhase.FAILURE


@pytest.mark.parametrize(
    "phase,event",
    [
        (RegistrationPhase.FORM, RegistrationEvent.RECORDING_COMPLETE),
        (RegistrationPhase.FORM, RegistrationEvent.ENROLL_SUCCEEDED),
        (RegistrationPhase.CAPTURING, RegistrationEvent.ENROLL_FAILED),
        (RegistrationPhase.CAPTURING, RegistrationEvent.FORM_ACCEPTED),
        (RegistrationPhase.SUCCESS, RegistrationEvent.ENROLL_FAILED),
        (RegistrationPhase.FAILURE, RegistrationEvent.RECORDING_COMPLETE),
    ],
)
def test_registration_rejects_non_adjacent_edges(phase, event):
    with pytest.raises(InvalidTransitionError) as excinfo:
        registration_transition(phase, event)
    assert excinfo.value.phase is phase
    assert excinfo.value.event is event


@pytest.mark.parametrize("phase", list(RegistrationPhase))
def test_registration_reset_from_any_phase(phase):
    assert registration_transition(phase, RegistrationEvent.RESET) is RegistrationPhase.FORM


def test_recognition_happy_path_edges():
    phase = RecognitionPhase.IDLE
    for event, expected in [
        (RecognitionEvent.SCAN_REQUESTED, RecognitionPhase.SCANNING),
        (RecognitionEvent.FACE_DETECTED, RecognitionPhase.DETECTED),
        (RecognitionEvent.VERIFICATION_STARTED, RecognitionPhase.VERIFYING),
        (RecognitionEvent.IDENTIFY_SUCCEEDED, RecognitionPhase.MATCHED),
    ]:
        phase = recognition_transition(phase, event)
        assert phase is expected
    assert recognition_transition(RecognitionPhase.VERIFYING, RecognitionEvent.IDENTIFY_FAILED) is (
        RecognitionPhase.MISMATCH
    )


def test_recognition_cannot_skip_detection():
    with pytest.raises(InvalidTransitionError):
        recognition_transition(RecognitionPhase.SCANNING, RecognitionEvent.VERIFICATION_STARTED)
    with pytest.raises(InvalidTransitionError):
        recognition_transition(RecognitionPhase.MATCHED, RecognitionEvent.SCAN_REQUESTED)


def test_recognition_reset_returns_to_idle():
    for phase in RecognitionPhase:
        assert recognition_transition(phase, RecognitionEvent.RESET) is RecognitionPhase.IDLE
