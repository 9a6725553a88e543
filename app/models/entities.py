from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def to_aware(value: datetime) -> datetime:
    """Read naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ConflictStatus(str, Enum):
    PENDING = "pending"
    CLEAR = "clear"
    CONFLICTED = "conflicted"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CandidateAssignment:
    class_id: str
    start_time: datetime
    duration_minutes: int
    tutor_id: Optional[str] = None
    branch_id: Optional[str] = None

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def with_tutor(self, tutor_id: str) -> "CandidateAssignment":
        return CandidateAssignment(
            class_id=self.class_id,
            start_time=self.start_time,
            duration_minutes=self.duration_minutes,
            tutor_id=tutor_id,
            branch_id=self.branch_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class_id": self.class_id,
            "start_time": self.start_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "tutor_id": self.tutor_id,
            "branch_id": self.branch_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateAssignment":
        return cls(
            class_id=data["class_id"],
            start_time=to_aware(datetime.fromisoformat(data["start_time"])),
            duration_minutes=data["duration_minutes"],
            tutor_id=data.get("tutor_id"),
            branch_id=data.get("branch_id"),
        )


@dataclass(frozen=True)
class BookedClass:
    class_id: str
    subject: str
    start_time: datetime
    duration_minutes: int = 0
    end_time: Optional[datetime] = None
    level: Optional[str] = None
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None

    @property
    def effective_end(self) -> datetime:
        if self.end_time is not None:
            return self.end_time
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class_id": self.class_id,
            "subject": self.subject,
            "start_time": self.start_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "level": self.level,
            "branch_id": self.branch_id,
            "branch_name": self.branch_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookedClass":
        end_time = data.get("end_time")
        return cls(
            class_id=data["class_id"],
            subject=data["subject"],
            start_time=to_aware(datetime.fromisoformat(data["start_time"])),
            duration_minutes=data.get("duration_minutes", 0),
            end_time=to_aware(datetime.fromisoformat(end_time)) if end_time else None,
            level=data.get("level"),
            branch_id=data.get("branch_id"),
            branch_name=data.get("branch_name"),
        )


@dataclass(frozen=True)
class ConflictResult:
    direct: Tuple[BookedClass, ...] = ()
    travel: Tuple[BookedClass, ...] = ()

    @property
    def has_conflicts(self) -> bool:
        return bool(self.direct or self.travel)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direct": [b.to_dict() for b in self.direct],
            "travel": [b.to_dict() for b in self.travel],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConflictResult":
        return cls(
            direct=tuple(BookedClass.from_dict(b) for b in data.get("direct", [])),
            travel=tuple(BookedClass.from_dict(b) for b in data.get("travel", [])),
        )


@dataclass(frozen=True)
class TutorCheck:
    sequence: int
    tutor_id: str
    tutor_name: str
    status: ConflictStatus
    result: Optional[ConflictResult] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "tutor_id": self.tutor_id,
            "tutor_name": self.tutor_name,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TutorCheck":
        result = data.get("result")
        return cls(
            sequence=data["sequence"],
            tutor_id=data["tutor_id"],
            tutor_name=data["tutor_name"],
            status=ConflictStatus(data["status"]),
            result=ConflictResult.from_dict(result) if result else None,
            message=data.get("message"),
        )


@dataclass
class AssignmentSession:
    session_id: str
    candidate: CandidateAssignment
    sequence: int = 0
    check: Optional[TutorCheck] = field(default=None)

    @property
    def class_id(self) -> str:
        return self.candidate.class_id
