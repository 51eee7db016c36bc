"""HTTP client for a remote recognition backend."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings
from ..models import CaptureFrame, EnrolledProfile, EnrollResult, FormData, IdentifyResult, MatchedProfile
from .client import RecognitionServiceClient, ServiceClientError

logger = logging.getLogger(__name__)


class HttpRecognitionService(RecognitionServiceClient):
    """Thin wrapper around the recognition backend REST API."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        headers = {}
        if settings.service.api_key:
            headers["X-API-Key"] = settings.service.api_key
        self._client = httpx.AsyncClient(
            base_url=settings.service.base_url,
            timeout=settings.service.timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def enroll(self, form: FormData, frame: Optional[CaptureFrame] = None) -> EnrollResult:
        """Submit the enrollment form, with the captured still as multipart when present."""
        if frame is None:
            data = await self._post("enroll", "/enroll", json=form.to_dict())
        else:
            files = {"frame": ("frame.jpg", frame.data, frame.content_type)}
            data = await self._post("enroll", "/enroll", data=form.to_dict(), files=files)
        if not data.get("success"):
            return EnrollResult(success=False, message=data.get("message"))

        user = data.get("user") or data.get("profile")
        if not isinstance(user, dict):
            raise ServiceClientError("enroll response missing user profile")
        try:
            profile = EnrolledProfile(
                id=str(user["id"]),
                name=user["name"],
                employee_id=user.get("employee_id") or user["employeeId"],
                department=user["department"],
                registered_at=user.get("registered_at") or user["registeredAt"],
            )
        except KeyError as exc:
            raise ServiceClientError(f"enroll response missing field {exc}") from exc
        return EnrollResult(success=True, profile=profile, message=data.get("message"))

    async def identify(self, frame: CaptureFrame) -> IdentifyResult:
        files = {"frame": ("frame.jpg", frame.data, frame.content_type)}
        data = await self._post("identify", "/identify", files=files)
        if not data.get("success"):
            return IdentifyResult(success=False, message=data.get("message"))

        user = data.get("user") or {}
        try:
            profile = MatchedProfile(
                id=str(user["id"]),
                name=user["name"],
                department=user.get("department"),
                employee_id=user.get("employee_id") or user.get("employeeId"),
                photo_placeholder=user.get("photo_placeholder"),
            )
            confidence = float(data["confidence"])
            return IdentifyResult(
                success=True,
                profile=profile,
                confidence=confidence,
                timestamp=data.get("timestamp"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ServiceClientError(f"malformed identify response: {exc}") from exc

    async def _post(self, op: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            logger.info("service.%s: POST %s", op, path)
            response = await self._client.post(path, **kwargs)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            logger.error("service.%s: request timeout", op)
            raise ServiceClientError(f"{op} timed out") from exc
        except httpx.NetworkError as exc:
            logger.error("service.%s: network error - %s", op, exc)
            raise ServiceClientError(f"{op} network error") from exc
        except httpx.HTTPStatusError as exc:
            logger.error("service.%s: HTTP %d - %s", op, exc.response.status_code, exc.response.text)
            raise ServiceClientError(
                f"{op} failed with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.TransportError as exc:
            logger.error("service.%s: transport error - %s", op, exc)
            raise ServiceClientError(f"{op} transport error") from exc
        except ValueError as exc:
            logger.error("service.%s: response is not JSON", op)
            raise ServiceClientError(f"{op} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ServiceClientError(f"{op} returned {type(data).__name__}, expected object")
        return data

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)


__all__ = ["HttpRecognitionService"]
