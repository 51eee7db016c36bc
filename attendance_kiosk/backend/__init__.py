"""Recognition / enrollment service clients."""
from __future__ import annotations

from ..config import Settings
from .client import RecognitionServiceClient


def create_service_client(settings: Settings) -> RecognitionServiceClient:
    if settings.service.mode == "http":
        from .http_client import HttpRecognitionService

        return HttpRecognitionService(settings)

    from .simulated import SimulatedRecognitionService

    return SimulatedRecognitionService(settings.service)


__all__ = ["create_service_client"]
