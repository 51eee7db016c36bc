"""Randomised stand-in for the recognition backend (demo / kiosk without server)."""
from __future__ import annotations

import asyncio
import logging
import random
import string
from datetime import datetime, timezone
from typing import Optional

from ..config import ServiceSettings
from ..models import (
    DEPARTMENTS,
    CaptureFrame,
    EnrolledProfile,
    EnrollResult,
    FormData,
    IdentifyResult,
    MatchedProfile,
)
from .client import RecognitionServiceClient

logger = logging.getLogger(__name__)

SAMPLE_NAMES = (
    "Alex Chen",
    "Sarah Johnson",
    "Michael Park",
    "Emily Davis",
    "James Wilson",
    "Maria Garcia",
    "David Kim",
    "Lisa Thompson",
    "Robert Martinez",
    "Jennifer Lee",
    "William Brown",
    "Amanda Taylor",
    "Christopher Moore",
    "Jessica Anderson",
    "Daniel White",
)

NOT_RECOGNIZED_MESSAGE = "Face not recognized. Please ensure proper lighting and face the camera directly."

_ID_ALPHABET = string.ascii_uppercase + string.digits


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SimulatedRecognitionService(RecognitionServiceClient):
    def __init__(self, settings: ServiceSettings, *, rng: Optional[random.Random] = None) -> None:
        self.settings = settings
        self._rng = rng or random.Random(settings.seed)

    def _user_id(self) -> str:
        return "USR-" + "".join(self._rng.choice(_ID_ALPHABET) for _ in range(4))

    async def enroll(self, form: FormData, frame: Optional[CaptureFrame] = None) -> EnrollResult:
        await asyncio.sleep(self.settings.enroll_delay_s)
        user_id = self._user_id()
        logger.info("Simulated enroll of %s -> %s", form.employee_id, user_id)
        return EnrollResult(
            success=True,
            profile=EnrolledProfile(
                id=user_id,
                name=form.name,
                employee_id=form.employee_id,
                department=form.department,
                registered_at=_utcnow_iso(),
            ),
            message=f"User {form.name} successfully registered with biometric data.",
        )

    async def identify(self, frame: CaptureFrame) -> IdentifyResult:
        await asyncio.sleep(self.settings.identify_delay_s)
        logger.debug("Simulated identify on %d byte frame", frame.size)

        if self._rng.random() < self.settings.identify_failure_rate:
            return IdentifyResult(success=False, message=NOT_RECOGNIZED_MESSAGE)

        name = self._rng.choice(SAMPLE_NAMES)
        department = self._rng.choice(DEPARTMENTS)
        confidence = round(self._rng.random() * 0.15 + 0.85, 2)
        return IdentifyResult(
            success=True,
            profile=MatchedProfile(
                id=self._user_id(),
                name=name,
                department=department,
                photo_placeholder="".join(part[0] for part in name.split()),
            ),
            confidence=confidence,
            timestamp=_utcnow_iso(),
        )


__all__ = ["NOT_RECOGNIZED_MESSAGE", "SAMPLE_NAMES", "SimulatedRecognitionService"]
