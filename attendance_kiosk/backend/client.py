"""Contract for the external enrollment / recognition service."""
from __future__ import annotations

import abc
from typing import Optional

from ..models import CaptureFrame, EnrollResult, FormData, IdentifyResult


class ServiceClientError(RuntimeError):
    """Transport or protocol failure talking to the recognition service."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RecognitionServiceClient(abc.ABC):
    """One-shot, non-retrying enroll / identify calls."""

    @abc.abstractmethod
    async def enroll(self, form: FormData, frame: Optional[CaptureFrame] = None) -> EnrollResult:
        """Register ``form``; ``frame`` is the still captured during recording, if any."""

    @abc.abstractmethod
    async def identify(self, frame: CaptureFrame) -> IdentifyResult:
        ...

    async def aclose(self) -> None:
        return None


__all__ = ["RecognitionServiceClient", "ServiceClientError"]
