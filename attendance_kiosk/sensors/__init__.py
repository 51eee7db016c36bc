"""Camera drivers and the device manager."""
from __future__ import annotations

from ..config import CameraSettings
from .camera import CameraDriver


def create_camera_driver(settings: CameraSettings) -> CameraDriver:
    if settings.driver == "opencv":
        from .opencv_camera import OpenCVCameraDriver

        return OpenCVCameraDriver(camera_id=settings.device_index)

    from .simulated_camera import SimulatedCameraDriver

    return SimulatedCameraDriver()


__all__ = ["create_camera_driver"]
