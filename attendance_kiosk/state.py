"""Phase definitions and transition tables for the kiosk state machines."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, TypeVar


class RegistrationPhase(str, enum.Enum):
    """
    Enrollment phases in chronological order:

    1. FORM        - Collect name / employee id / department
    2. CAPTURING   - Camera held: awaiting gesture, countdown, recording
    3. PROCESSING  - Status messages, then the single enroll call
    4. SUCCESS     - Profile stored and handed off
    5. FAILURE     - Enroll rejected or errored; retry starts a new session
    """
    FORM = "form"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILURE = "failure"


class CaptureStage(str, enum.Enum):
    """Sub-stages of RegistrationPhase.CAPTURING."""
    AWAITING_GESTURE = "awaiting_gesture"
    COUNTDOWN = "countdown"
    RECORDING = "recording"


class RegistrationEvent(str, enum.Enum):
    FORM_ACCEPTED = "form_accepted"
    RECORDING_COMPLETE = "recording_complete"
    ENROLL_SUCCEEDED = "enroll_succeeded"
    ENROLL_FAILED = "enroll_failed"
    RESET = "reset"


class RecognitionPhase(str, enum.Enum):
    """
    Verification phases in chronological order:

    1. IDLE       - Awaiting scan (button enabled once the camera is ready)
    2. SCANNING   - Looking for a face
    3. DETECTED   - Face found, preparing the frame
    4. VERIFYING  - Frame captured, identify call pending
    5. MATCHED    - Identity verified
    6. MISMATCH   - Not recognized or recognition error
    """
    IDLE = "idle"
    SCANNING = "scanning"
    DETECTED = "detected"
    VERIFYING = "verifying"
    MATCHED = "matched"
    MISMATCH = "mismatch"


class RecognitionEvent(str, enum.Enum):
    SCAN_REQUESTED = "scan_requested"
    FACE_DETECTED = "face_detected"
    VERIFICATION_STARTED = "verification_started"
    IDENTIFY_SUCCEEDED = "identify_succeeded"
    IDENTIFY_FAILED = "identify_failed"
    RESET = "reset"


REGISTRATION_TRANSITIONS: Dict[Tuple[RegistrationPhase, RegistrationEvent], RegistrationPhase] = {
    (RegistrationPhase.FORM, RegistrationEvent.FORM_ACCEPTED): RegistrationPhase.CAPTURING,
    (RegistrationPhase.CAPTURING, RegistrationEvent.RECORDING_COMPLETE): RegistrationPhase.PROCESSING,
    (RegistrationPhase.PROCESSING, RegistrationEvent.ENROLL_SUCCEEDED): RegistrationPhase.SUCCESS,
    (RegistrationPhase.PROCESSING, RegistrationEvent.ENROLL_FAILED): RegistrationPhase.FAILURE,
}

RECOGNITION_TRANSITIONS: Dict[Tuple[RecognitionPhase, RecognitionEvent], RecognitionPhase] = {
    (RecognitionPhase.IDLE, RecognitionEvent.SCAN_REQUESTED): RecognitionPhase.SCANNING,
    (RecognitionPhase.SCANNING, RecognitionEvent.FACE_DETECTED): RecognitionPhase.DETECTED,
    (RecognitionPhase.DETECTED, RecognitionEvent.VERIFICATION_STARTED): RecognitionPhase.VERIFYING,
    (RecognitionPhase.VERIFYING, RecognitionEvent.IDENTIFY_SUCCEEDED): RecognitionPhase.MATCHED,
    (RecognitionPhase.VERIFYING, RecognitionEvent.IDENTIFY_FAILED): RecognitionPhase.MISMATCH,
}


class InvalidTransitionError(RuntimeError):
    """Raised when an event has no edge out of the current phase."""

    def __init__(self, phase: enum.Enum, event: enum.Enum) -> None:
        super().__init__(f"no transition from {phase.value!r} on {event.value!r}")
        self.phase = phase
        self.event = event


P = TypeVar("P", RegistrationPhase, RecognitionPhase)


def _apply(table: Mapping[Tuple[Any, Any], P], initial: P, phase: P, event: enum.Enum) -> P:
    # RESET is a user-initiated new session and is legal from every phase.
    if event.value == "reset":
        return initial
    try:
        return table[(phase, event)]
    except KeyError:
        raise InvalidTransitionError(phase, event) from None


def registration_transition(phase: RegistrationPhase, event: RegistrationEvent) -> RegistrationPhase:
    return _apply(REGISTRATION_TRANSITIONS, RegistrationPhase.FORM, phase, event)


def recognition_transition(phase: RecognitionPhase, event: RecognitionEvent) -> RecognitionPhase:
    return _apply(RECOGNITION_TRANSITIONS, RecognitionPhase.IDLE, phase, event)


@dataclass
class ControllerEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    screen: str
    phase: str
    data: Dict[str, Any]
    session_id: int = 0
    error: Optional[str] = None

    def as_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.type,
            "screen": self.screen,
            "phase": self.phase,
            "session_id": self.session_id,
            "data": self.data,
        }
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = [
    "CaptureStage",
    "ControllerEvent",
    "InvalidTransitionError",
    "RECOGNITION_TRANSITIONS",
    "REGISTRATION_TRANSITIONS",
    "RecognitionEvent",
    "RecognitionPhase",
    "RegistrationEvent",
    "RegistrationPhase",
    "recognition_transition",
    "registration_transition",
]
