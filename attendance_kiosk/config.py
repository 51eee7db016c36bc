"""Central configuration for the attendance kiosk controller."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class RegistrationTimings(BaseModel):
    """Enrollment capture timing configuration."""
    countdown_start: int = Field(3, description="First countdown value shown before recording")
    countdown_interval_s: float = Field(1.0, description="Seconds between countdown ticks")
    recording_duration_ms: int = Field(5000, description="Total recording duration (ms)")
    recording_tick_ms: int = Field(100, description="Recording progress tick size (ms)")
    processing_message_interval_s: float = Field(0.4, description="Delay between processing status messages")

    @field_validator("recording_duration_ms", "recording_tick_ms")
    @classmethod
    def _positive_ms(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("recording durations must be positive")
        return value


class RecognitionTimings(BaseModel):
    """Verification screen timing configuration."""
    detection_delay_s: float = Field(0.8, description="Simulated face detection delay")
    verification_delay_s: float = Field(0.6, description="Delay between detection and frame capture")
    clock_interval_s: float = Field(1.0, description="Wall clock refresh interval")


class CameraSettings(BaseModel):
    """Capture device configuration."""
    driver: Literal["simulated", "opencv"] = Field("simulated", description="Camera driver backend")
    device_index: int = Field(0, description="OpenCV camera index (/dev/videoN)")
    registration_width: int = Field(640, description="Enrollment capture width (pixels)")
    registration_height: int = Field(480, description="Enrollment capture height (pixels)")
    recognition_width: int = Field(1280, description="Verification capture width (pixels)")
    recognition_height: int = Field(720, description="Verification capture height (pixels)")
    facing_mode: str = Field("user", description="Preferred camera facing")
    jpeg_quality: int = Field(90, description="JPEG quality for captured frames (0-100)")


class ServiceSettings(BaseModel):
    """Recognition/enrollment service configuration."""
    mode: Literal["simulated", "http"] = Field("simulated", description="Service client implementation")
    base_url: str = Field("http://127.0.0.1:8800", description="Recognition backend REST base URL")
    api_key: Optional[str] = Field(None, description="API key sent as X-API-Key")
    timeout_seconds: float = Field(15.0, description="HTTP transport timeout")
    enroll_delay_s: float = Field(2.0, description="Simulated enroll latency")
    identify_delay_s: float = Field(1.5, description="Simulated identify latency")
    identify_failure_rate: float = Field(0.1, description="Simulated probability of a non-match (0-1)")
    seed: Optional[int] = Field(None, description="Seed for the simulated service RNG")


class Settings(BaseSettings):
    """Environment-driven settings for kiosk subsystems."""

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # UI event fan-out
    ui_event_queue_size: int = Field(16, description="Max buffered UI events per subscriber")

    # Nested Configuration Objects
    registration: RegistrationTimings = Field(default_factory=RegistrationTimings, description="Enrollment timings")
    recognition: RecognitionTimings = Field(default_factory=RecognitionTimings, description="Verification timings")
    camera: CameraSettings = Field(default_factory=CameraSettings, description="Camera settings")
    service: ServiceSettings = Field(default_factory=ServiceSettings, description="Service client settings")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
