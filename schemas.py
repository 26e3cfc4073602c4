"""Pydantic schemas for stored entities, request bodies and API responses."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StrictInt, StrictStr

__all__ = [
    "StudentStatus",
    "InterventionStatus",
    "DailyLogStatus",
    "CHECKIN_REVIEW_STATUS",
    "Student",
    "Intervention",
    "DailyLog",
    "CheckInBody",
    "AssignInterventionBody",
    "MarkCompleteBody",
    "StudentStatusResponse",
    "CheckInResponse",
    "AssignInterventionResponse",
    "MarkCompleteResponse",
    "NotificationEvent",
]

# Integer ids and scores must fit a signed 64-bit store column.
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def _json_number(value: Any) -> Union[int, float]:
    """Accept finite JSON numbers only; strings, booleans, NaN and Infinity are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a JSON number")
    if isinstance(value, int) and not INT64_MIN <= value <= INT64_MAX:
        raise ValueError("integer out of range")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("must be a finite number")
    return value


Number = Annotated[Union[int, float], BeforeValidator(_json_number)]


class StudentStatus(str, Enum):
    ON_TRACK = "On Track"
    NEEDS_INTERVENTION = "Needs Intervention"
    REMEDIAL = "Remedial"


class InterventionStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    COMPLETED = "completed"

    @classmethod
    def active(cls) -> tuple["InterventionStatus", ...]:
        return (cls.PENDING, cls.ASSIGNED)


class DailyLogStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


# What a failing check-in reports to the caller while the stored status is
# ``Needs Intervention``.
CHECKIN_REVIEW_STATUS = "Pending Mentor Review"


# ---------- Stored entities ----------
class Student(BaseModel):
    id: str
    status: StudentStatus = StudentStatus.ON_TRACK
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Intervention(BaseModel):
    id: int
    student_id: str
    task: Optional[str] = None
    status: InterventionStatus = InterventionStatus.PENDING
    created_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in InterventionStatus.active()


class DailyLog(BaseModel):
    id: int
    student_id: str
    quiz_score: float
    focus_minutes: float
    status: DailyLogStatus
    created_at: datetime


# ---------- Request bodies ----------
class CheckInBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    student_id: StrictStr = Field(min_length=1)
    quiz_score: Number
    focus_minutes: Number


class AssignInterventionBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    student_id: StrictStr = Field(min_length=1)
    task: StrictStr = Field(min_length=1, description="Remedial task chosen by the mentor.")
    intervention_id: Optional[Union[StrictInt, StrictStr]] = Field(
        default=None,
        description="Specific intervention to assign; the student's active one is used when omitted.",
    )


class MarkCompleteBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    student_id: StrictStr = Field(min_length=1)


# ---------- Responses ----------
class StudentStatusResponse(BaseModel):
    student_id: str
    status: StudentStatus
    task: Optional[str] = None


class CheckInResponse(BaseModel):
    status: str


class AssignInterventionResponse(BaseModel):
    ok: bool = True
    intervention: Intervention


class MarkCompleteResponse(BaseModel):
    ok: bool = True
    status: StudentStatus = StudentStatus.ON_TRACK


class NotificationEvent(BaseModel):
    """Payload posted to the external workflow when a check-in fails."""

    student_id: str
    quiz_score: Union[int, float]
    focus_minutes: Union[int, float]
    intervention_id: int

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump()
