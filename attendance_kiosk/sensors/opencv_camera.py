"""
OpenCV camera driver.
Opens a local /dev/videoN (or platform equivalent) through cv2.VideoCapture.
"""

from __future__ import annotations

import asyncio
import os
import sys
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

# Optional deps
try:
    import cv2  # type: ignore
except Exception:
    cv2 = None

from .camera import CameraDriver, CaptureConstraints, DeviceError, DeviceErrorKind

logger = logging.getLogger(__name__)


class OpenCVCameraDriver(CameraDriver):
    """Webcam driver backed by cv2.VideoCapture."""

    def __init__(self, camera_id: int = 0):
        self.camera_id = camera_id
        self._cap: Optional["cv2.VideoCapture"] = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def _check_device_node(self) -> None:
        """Map missing/unreadable device nodes to specific errors (Linux only)."""
        if not sys.platform.startswith("linux"):
            return
        node = Path(f"/dev/video{self.camera_id}")
        if not node.exists():
            raise DeviceError(DeviceErrorKind.NOT_FOUND, log_message=f"{node} does not exist")
        if not os.access(node, os.R_OK | os.W_OK):
            raise DeviceError(DeviceErrorKind.PERMISSION_DENIED, log_message=f"no read/write access to {node}")

    async def open(self, constraints: CaptureConstraints) -> Dict[str, Any]:
        if cv2 is None:
            raise DeviceError(DeviceErrorKind.OTHER, log_message="OpenCV is not installed")

        async with self._lock:
            if self._cap is not None:
                raise DeviceError(DeviceErrorKind.OTHER, log_message="webcam already open")

            self._check_device_node()
            logger.info(f"Opening webcam (camera_id={self.camera_id})")

            loop = asyncio.get_running_loop()
            cap = await loop.run_in_executor(None, cv2.VideoCapture, self.camera_id)
            if not cap.isOpened():
                cap.release()
                raise DeviceError(DeviceErrorKind.OTHER, log_message=f"cv2 could not open camera {self.camera_id}")

            cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)

            # First read doubles as "metadata loaded"
            ok, image = await loop.run_in_executor(None, cap.read)
            if not ok or image is None:
                cap.release()
                raise DeviceError(DeviceErrorKind.OTHER, log_message="camera opened but produced no frame")

            self._cap = cap
            height, width = image.shape[:2]
            logger.info("Webcam activated (%dx%d)", width, height)
            return {"width": int(width), "height": int(height), "fps": float(cap.get(cv2.CAP_PROP_FPS) or 0.0)}

    async def close(self) -> None:
        async with self._lock:
            if self._cap is None:
                return
            logger.info("Closing webcam")
            cap, self._cap = self._cap, None
            cap.release()

    def read_frame(self, constraints: CaptureConstraints) -> bytes:
        if self._cap is None:
            raise DeviceError(DeviceErrorKind.OTHER, log_message="webcam is not open")
        ok, image = self._cap.read()
        if not ok or image is None:
            raise DeviceError(DeviceErrorKind.OTHER, log_message="failed to read frame from webcam")
        encoded = self._encode_jpeg(image, constraints.jpeg_quality)
        if encoded is None:
            raise DeviceError(DeviceErrorKind.OTHER, log_message="failed to encode frame")
        return encoded

    @staticmethod
    def _encode_jpeg(image: np.ndarray, quality: int) -> Optional[bytes]:
        try:
            success, encoded = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
            if not success:
                return None
            return encoded.tobytes()
        except Exception:
            logger.exception("Failed to encode JPEG frame")
            return None


__all__ = ["OpenCVCameraDriver"]
