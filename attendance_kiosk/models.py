"""Domain payloads exchanged between the controllers and their collaborators."""
from __future__ import annotations

import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

DEPARTMENTS = (
    "Engineering",
    "Human Resources",
    "Marketing",
    "Finance",
    "Operations",
    "Research & Development",
    "Sales",
    "Customer Support",
    "Legal",
    "IT Security",
)

_EMPLOYEE_ID_RE = re.compile(r"^[A-Za-z0-9-]+$")


@dataclass(frozen=True)
class FormData:
    """Enrollment form; frozen so it cannot change once capture begins."""

    name: str
    employee_id: str
    department: str

    def validate(self) -> Dict[str, str]:
        """Return field -> message for every invalid field (empty when valid)."""
        errors: Dict[str, str] = {}

        name = self.name.strip()
        if not name:
            errors["name"] = "Full name is required"
        elif len(name) < 2:
            errors["name"] = "Name must be at least 2 characters"

        employee_id = self.employee_id.strip()
        if not employee_id:
            errors["employee_id"] = "Employee ID is required"
        elif not _EMPLOYEE_ID_RE.match(employee_id):
            errors["employee_id"] = "Employee ID can only contain letters, numbers, and hyphens"

        if self.department not in DEPARTMENTS:
            errors["department"] = "Please select a department"

        return errors

    def normalised(self) -> "FormData":
        return FormData(
            name=self.name.strip(),
            employee_id=self.employee_id.strip(),
            department=self.department,
        )

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class CaptureFrame:
    """Single still image grabbed from the device; never persisted."""

    data: bytes = field(repr=False)
    width: int
    height: int
    content_type: str = "image/jpeg"
    captured_at: float = field(default_factory=time.time)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class EnrolledProfile:
    id: str
    name: str
    employee_id: str
    department: str
    registered_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MatchedProfile:
    id: str
    name: str
    department: Optional[str] = None
    employee_id: Optional[str] = None
    photo_placeholder: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EnrollResult:
    success: bool
    profile: Optional[EnrolledProfile] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class IdentifyResult:
    success: bool
    profile: Optional[MatchedProfile] = None
    confidence: Optional[float] = None
    message: Optional[str] = None
    timestamp: Optional[str] = None

    def __post_init__(self) -> None:
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")


__all__ = [
    "CaptureFrame",
    "DEPARTMENTS",
    "EnrollResult",
    "EnrolledProfile",
    "FormData",
    "IdentifyResult",
    "MatchedProfile",
]
