"""Payloads returned by the tuition center backend."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from app.models.entities import BookedClass, CandidateAssignment, to_aware


class ClassRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    subject: str
    description: Optional[str] = None
    level: Optional[str] = None
    tutor_id: Optional[str] = None
    tutor_first_name: Optional[str] = None
    tutor_last_name: Optional[str] = None
    classroom_id: Optional[str] = None
    classroom_name: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: int
    capacity: Optional[int] = None
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None
    branch_address: Optional[str] = None
    active: bool = True
    enrolled_count: int = 0

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]):
        return to_aware(v) if v is not None else v

    def to_booked_class(self) -> BookedClass:
        return BookedClass(
            class_id=self.id,
            subject=self.subject,
            start_time=self.start_time,
            duration_minutes=self.duration_minutes,
            end_time=self.end_time,
            level=self.level,
            branch_id=self.branch_id,
            branch_name=self.branch_name,
        )

    def to_candidate(self, tutor_id: Optional[str] = None) -> CandidateAssignment:
        return CandidateAssignment(
            class_id=self.id,
            start_time=self.start_time,
            duration_minutes=self.duration_minutes,
            tutor_id=tutor_id,
            branch_id=self.branch_id,
        )


class UnassignedClassRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    subject: str
    description: Optional[str] = None
    level: Optional[str] = None
    start_time: datetime
    duration_minutes: int
    capacity: int
    branch_name: Optional[str] = None
    branch_address: Optional[str] = None
    classroom_name: Optional[str] = None
    # postgres COUNT() arrives as a string
    enrolled_count: int = 0

    @field_validator("start_time")
    @classmethod
    def ensure_aware(cls, v: datetime):
        return to_aware(v)


class StaffRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    active: bool = True
    class_count: Optional[int] = None
    future_class_count: Optional[int] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
