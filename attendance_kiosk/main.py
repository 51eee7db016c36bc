"""FastAPI entry-point for the attendance kiosk controller."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .backend import create_service_client
from .backend.client import RecognitionServiceClient
from .config import Settings, get_settings
from .logging_config import configure_logging
from .models import EnrolledProfile, FormData
from .recognition import RecognitionController
from .registration import RegistrationController
from .sensors import create_camera_driver
from .sensors.camera import CameraDriver, DeviceManager
from .session import EventHub
from .state import ControllerEvent, InvalidTransitionError

logger = logging.getLogger(__name__)


class RegistrationForm(BaseModel):
    name: str = ""
    employee_id: str = Field("", alias="employeeId")
    department: str = ""

    model_config = {"populate_by_name": True}


class Kiosk:
    """Wires one camera, one service client and both screen controllers together."""

    def __init__(
        self,
        settings: Settings,
        *,
        driver: Optional[CameraDriver] = None,
        service: Optional[RecognitionServiceClient] = None,
    ) -> None:
        self.settings = settings
        self.hub = EventHub(settings.ui_event_queue_size)
        self.devices = DeviceManager(driver or create_camera_driver(settings.camera))
        self.service = service or create_service_client(settings)
        self.registered_profiles: List[EnrolledProfile] = []
        self.registration = RegistrationController(
            devices=self.devices,
            service=self.service,
            settings=settings,
            hub=self.hub,
            on_enrolled=self.persist_and_navigate,
        )
        self.recognition = RecognitionController(
            devices=self.devices,
            service=self.service,
            settings=settings,
            hub=self.hub,
        )

    async def persist_and_navigate(self, profile: EnrolledProfile) -> None:
        """Keep the newest enrollment and tell the UI to show the success page."""
        self.registered_profiles.append(profile)
        logger.info("💾 Stored profile %s (%s)", profile.id, profile.employee_id)
        await self.hub.broadcast(
            ControllerEvent(
                type="navigate",
                screen="registration",
                phase="success",
                data={"route": "/success", "user": profile.to_dict()},
            )
        )

    async def shutdown(self) -> None:
        for controller in (self.registration, self.recognition):
            try:
                await controller.close()
                await controller._drain_background()
            except Exception as e:
                logger.warning("Error closing %s controller: %s", controller.screen, e)
        await self.service.aclose()


def create_app(
    settings: Optional[Settings] = None,
    *,
    driver: Optional[CameraDriver] = None,
    service: Optional[RecognitionServiceClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)

    app = FastAPI(title="attendance-kiosk", version="0.1.0")
    kiosk = Kiosk(settings, driver=driver, service=service)
    app.state.kiosk = kiosk

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        logger.info("Rejected %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc), "phase": exc.phase.value},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors gracefully."""
        logger.warning(f"Validation error in {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await kiosk.shutdown()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "registration": kiosk.registration.phase.value,
                "recognition": kiosk.recognition.phase.value,
                "camera_owner": kiosk.devices.current.owner if kiosk.devices.current else None,
                "ui_subscribers": kiosk.hub.subscriber_count,
            }
        )

    # ============================================================
    # Registration screen
    # ============================================================

    @app.post("/registration/open")
    async def registration_open() -> Dict[str, Any]:
        await kiosk.registration.open()
        return kiosk.registration.snapshot()

    @app.post("/registration/submit")
    async def registration_submit(payload: RegistrationForm) -> JSONResponse:
        form = FormData(name=payload.name, employee_id=payload.employee_id, department=payload.department)
        accepted = await kiosk.registration.submit(form)
        return JSONResponse(
            {"accepted": accepted, **kiosk.registration.snapshot()},
            status_code=status.HTTP_200_OK if accepted else status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.post("/registration/start-capture")
    async def registration_start_capture() -> Dict[str, Any]:
        started = await kiosk.registration.start_capture()
        return {"started": started, **kiosk.registration.snapshot()}

    @app.post("/registration/retry-camera")
    async def registration_retry_camera() -> Dict[str, Any]:
        ready = await kiosk.registration.retry_camera()
        return {"ready": ready, **kiosk.registration.snapshot()}

    @app.post("/registration/retry")
    async def registration_retry() -> Dict[str, Any]:
        await kiosk.registration.retry()
        return kiosk.registration.snapshot()

    @app.post("/registration/close")
    async def registration_close() -> Dict[str, Any]:
        await kiosk.registration.close()
        return kiosk.registration.snapshot()

    @app.get("/registration/state")
    async def registration_state() -> Dict[str, Any]:
        return kiosk.registration.snapshot()

    # ============================================================
    # Recognition screen
    # ============================================================

    @app.post("/recognition/open")
    async def recognition_open() -> Dict[str, Any]:
        ready = await kiosk.recognition.open()
        return {"ready": ready, **kiosk.recognition.snapshot()}

    @app.post("/recognition/scan")
    async def recognition_scan() -> Dict[str, Any]:
        started = await kiosk.recognition.scan()
        return {"started": started, **kiosk.recognition.snapshot()}

    @app.post("/recognition/reset")
    async def recognition_reset() -> Dict[str, Any]:
        await kiosk.recognition.reset()
        return kiosk.recognition.snapshot()

    @app.post("/recognition/retry-camera")
    async def recognition_retry_camera() -> Dict[str, Any]:
        ready = await kiosk.recognition.retry_camera()
        return {"ready": ready, **kiosk.recognition.snapshot()}

    @app.post("/recognition/close")
    async def recognition_close() -> Dict[str, Any]:
        await kiosk.recognition.close()
        return kiosk.recognition.snapshot()

    @app.get("/recognition/state")
    async def recognition_state() -> Dict[str, Any]:
        return kiosk.recognition.snapshot()

    # ============================================================
    # UI event stream
    # ============================================================

    @app.websocket("/ws/ui")
    async def ui_socket(ws: WebSocket) -> None:
        await ws.accept()
        queue = kiosk.hub.register_ui()
        try:
            while True:
                try:
                    event = await queue.get()
                except asyncio.CancelledError:
                    break  # Clean shutdown

                try:
                    await ws.send_json(event.as_payload())
                except Exception as e:
                    # WebSocket closed, break out of loop
                    logger.debug(f"WebSocket send failed (client disconnected): {e}")
                    break
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"Unexpected error in UI websocket: {e}")
        finally:
            kiosk.hub.unregister_ui(queue)
            try:
                await ws.close()
            except Exception as e:
                logger.debug("UI websocket already closed: %s", e)

    return app


__all__ = ["Kiosk", "RegistrationForm", "create_app"]
