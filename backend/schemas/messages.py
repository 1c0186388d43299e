from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel


class Severity(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class Verdict(str, Enum):
    VERIFIED = "VERIFIED"
    FAKE = "FAKE"
    TIMEOUT = "TIMEOUT"


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    message: str
    severity: Severity = Severity.INFO


class ChallengeEntry(BaseModel):
    key: str
    label: str
    done: bool
    active: bool
    progress: int  # percent, 0-100


class ChallengeListEvent(BaseModel):
    type: Literal["challenges"] = "challenges"
    entries: list[ChallengeEntry]


class VerdictEvent(BaseModel):
    type: Literal["verdict"] = "verdict"
    verdict: Verdict
    reason: str | None = None


SessionEvent = Union[StatusEvent, ChallengeListEvent, VerdictEvent]


class FrameResponse(BaseModel):
    type: str = "frame_result"
    phase: str
    face_detected: bool
    events: list[SessionEvent] = []


class ErrorResponse(BaseModel):
    type: str = "error"
    message: str
