from __future__ import annotations
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class Phase(str, Enum):
    DOWN = "down"
    UP = "up"


class Status(str, Enum):
    VALID = "valid"
    INVALID = "invalid"


class SampleKind(str, Enum):
    INTENSITY = "intensity"
    ORIENTATION = "orientation"
    POSE = "pose"


class AssessmentType(str, Enum):
    SITUP = "situp"
    JUMP = "jump"


class EventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_STOPPED = "session_stopped"
    SNAPSHOT = "snapshot"
    REP = "rep"
    TERMINATED = "terminated"


@dataclass
class SessionEvent:
    type: EventType
    session_id: str
    ts: float = field(default_factory=time.time)
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "session_id": self.session_id, "ts": self.ts, **self.payload}
