from datetime import datetime, timedelta
from typing import List, NoReturn, Optional
from zoneinfo import ZoneInfo
import logging

from fastapi import APIRouter, HTTPException, Depends, Response
from pydantic import BaseModel, Field, field_validator, model_validator

from app.config.settings import get_settings
from app.engine.assignment_session import booking_date_range, evaluate_tutor, submission_blocker, unknown_check
from app.engine.conflict_checker import check_schedule_conflicts
from app.engine.messages import format_conflict_message, no_conflict_message
from app.models.entities import (
    AssignmentSession,
    BookedClass,
    CandidateAssignment,
    ConflictStatus,
    TutorCheck,
    to_aware,
)
from app.models.records import StaffRecord, UnassignedClassRecord
from app.storage.backend import BackendClient, BackendError, get_backend
from app.storage.repositories import ClassRepository, StaffRepository
from app.storage.session_store import SessionStore, get_session_store

router = APIRouter()
logger = logging.getLogger(__name__)


def _schedule_tz() -> ZoneInfo:
    return ZoneInfo(get_settings().schedule_timezone)


def _travel_buffer() -> timedelta:
    return timedelta(minutes=get_settings().travel_buffer_minutes)


def _raise_backend_error(exc: BackendError) -> NoReturn:
    status_code = exc.status_code if exc.status_code in (401, 403, 404) else 502
    raise HTTPException(status_code=status_code, detail=exc.message) from exc


class BookingDTO(BaseModel):
    class_id: str
    subject: str
    level: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: int = Field(0, ge=0)
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None

    @field_validator("start_time", "end_time")
    def ensure_aware(cls, v: Optional[datetime]):
        return to_aware(v) if v is not None else v

    @model_validator(mode="after")
    def validate_window(self):
        """End time, when given, must not precede the start."""
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self

    def to_domain(self) -> BookedClass:
        return BookedClass(
            class_id=self.class_id,
            subject=self.subject,
            start_time=self.start_time,
            duration_minutes=self.duration_minutes,
            end_time=self.end_time,
            level=self.level,
            branch_id=self.branch_id,
            branch_name=self.branch_name,
        )

    @classmethod
    def from_domain(cls, b: BookedClass) -> "BookingDTO":
        return cls(
            class_id=b.class_id,
            subject=b.subject,
            level=b.level,
            start_time=b.start_time,
            end_time=b.effective_end,
            duration_minutes=b.duration_minutes,
            branch_id=b.branch_id,
            branch_name=b.branch_name,
        )


class CandidateDTO(BaseModel):
    class_id: str
    tutor_id: Optional[str] = None
    start_time: datetime
    duration_minutes: int = Field(..., ge=0)
    branch_id: Optional[str] = None

    @field_validator("start_time")
    def ensure_aware(cls, v: datetime):
        return to_aware(v)

    def to_domain(self) -> CandidateAssignment:
        return CandidateAssignment(
            class_id=self.class_id,
            start_time=self.start_time,
            duration_minutes=self.duration_minutes,
            tutor_id=self.tutor_id,
            branch_id=self.branch_id,
        )


class ConflictCheckRequest(BaseModel):
    candidate: CandidateDTO
    bookings: List[BookingDTO] = []
    tutor_name: str = "The tutor"


class ConflictCheckResponse(BaseModel):
    direct: List[BookingDTO]
    travel: List[BookingDTO]
    has_conflicts: bool
    message: str


class TutorCheckDTO(BaseModel):
    sequence: int
    tutor_id: str
    tutor_name: str
    status: ConflictStatus
    direct: List[BookingDTO] = []
    travel: List[BookingDTO] = []
    message: Optional[str] = None

    @classmethod
    def from_domain(cls, check: TutorCheck) -> "TutorCheckDTO":
        result = check.result
        return cls(
            sequence=check.sequence,
            tutor_id=check.tutor_id,
            tutor_name=check.tutor_name,
            status=check.status,
            direct=[BookingDTO.from_domain(b) for b in result.direct] if result else [],
            travel=[BookingDTO.from_domain(b) for b in result.travel] if result else [],
            message=check.message,
        )


class SessionResponse(BaseModel):
    session_id: str
    class_id: str
    sequence: int
    check: Optional[TutorCheckDTO] = None
    can_submit: bool
    requires_acknowledgement: bool = False
    blocked_reason: Optional[str] = None
    stale: bool = False

    @classmethod
    def from_domain(cls, session: AssignmentSession, stale: bool = False) -> "SessionResponse":
        # acknowledging conflicts is the caller's call; only hard blocks count here
        reason = submission_blocker(session, acknowledge_conflicts=True)
        conflicted = reason is None and session.check.status == ConflictStatus.CONFLICTED
        return cls(
            session_id=session.session_id,
            class_id=session.class_id,
            sequence=session.sequence,
            check=TutorCheckDTO.from_domain(session.check) if session.check else None,
            can_submit=reason is None,
            requires_acknowledgement=conflicted,
            blocked_reason=reason,
            stale=stale,
        )


class OpenSessionRequest(BaseModel):
    class_id: str = Field(..., min_length=1)


class SelectTutorRequest(BaseModel):
    tutor_id: str = Field(..., min_length=1)


class SubmitRequest(BaseModel):
    acknowledge_conflicts: bool = False


class SubmitResponse(BaseModel):
    class_id: str
    tutor_id: str
    message: str


@router.post("/conflicts/check", response_model=ConflictCheckResponse, summary="Check a tutor assignment")
def check_conflicts(req: ConflictCheckRequest):
    """
    Classify a tutor's bookings against a candidate class assignment.

    Bookings are expected to be the tutor's other classes on the candidate's
    day; they are checked as given, in order.

    **Returns:**
    - `direct`: bookings overlapping the candidate's time window
    - `travel`: bookings at another branch within the travel buffer
    - `message`: conflict explanation, or the "no conflicts" notice
    """
    candidate = req.candidate.to_domain()
    buffer = _travel_buffer()
    result = check_schedule_conflicts(candidate, [b.to_domain() for b in req.bookings], buffer)

    if result.has_conflicts:
        message = format_conflict_message(result, req.tutor_name, _schedule_tz(), buffer)
    else:
        message = no_conflict_message(req.tutor_name)

    logger.info(
        f"Conflict check for class {candidate.class_id}: "
        f"{len(result.direct)} direct, {len(result.travel)} travel"
    )
    return ConflictCheckResponse(
        direct=[BookingDTO.from_domain(b) for b in result.direct],
        travel=[BookingDTO.from_domain(b) for b in result.travel],
        has_conflicts=result.has_conflicts,
        message=message,
    )


@router.get("/assignments/unassigned-classes", response_model=List[UnassignedClassRecord], summary="Classes without a tutor")
def list_unassigned_classes(backend: BackendClient = Depends(get_backend)):
    try:
        return ClassRepository(backend).list_unassigned()
    except BackendError as exc:
        _raise_backend_error(exc)


@router.get("/assignments/tutors", response_model=List[StaffRecord], summary="Active tutors")
def list_tutors(backend: BackendClient = Depends(get_backend)):
    try:
        return StaffRepository(backend).list_active()
    except BackendError as exc:
        _raise_backend_error(exc)


@router.post("/assignments/sessions", response_model=SessionResponse, status_code=201, summary="Start assigning a tutor")
def open_session(
    req: OpenSessionRequest,
    backend: BackendClient = Depends(get_backend),
    store: SessionStore = Depends(get_session_store),
):
    try:
        class_record = ClassRepository(backend).get_by_id(req.class_id)
    except BackendError as exc:
        _raise_backend_error(exc)
    if class_record is None:
        raise HTTPException(status_code=404, detail=f"Class {req.class_id} not found")

    session = store.create(class_record.to_candidate())
    logger.info(f"Opened assignment session {session.session_id} for class {req.class_id}")
    return SessionResponse.from_domain(session)


@router.get("/assignments/sessions/{session_id}", response_model=SessionResponse, summary="Assignment session state")
def get_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Assignment session not found or expired")
    return SessionResponse.from_domain(session)


@router.post("/assignments/sessions/{session_id}/tutor", response_model=SessionResponse, summary="Select a tutor")
def select_tutor(
    session_id: str,
    req: SelectTutorRequest,
    backend: BackendClient = Depends(get_backend),
    store: SessionStore = Depends(get_session_store),
):
    """
    Select a tutor and check their schedule for conflicts.

    Each selection supersedes the previous one. If a newer selection was
    made while this one was being checked, its result is discarded and the
    response carries `stale: true` with the session's current state.

    If the tutor's classes cannot be loaded the status is `unknown` and
    submission stays blocked.
    """
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Assignment session not found or expired")

    try:
        tutor = StaffRepository(backend).get_by_id(req.tutor_id)
    except BackendError as exc:
        _raise_backend_error(exc)
    if tutor is None:
        raise HTTPException(status_code=404, detail="Staff member not found")
    if not tutor.active:
        raise HTTPException(status_code=422, detail=f"{tutor.full_name} is inactive")

    sequence = store.begin_selection(session_id, tutor.id, tutor.full_name)
    if sequence is None:
        raise HTTPException(status_code=404, detail="Assignment session not found or expired")

    tz = _schedule_tz()
    buffer = _travel_buffer()
    start_date, end_date = booking_date_range(session.candidate, buffer)
    try:
        classes = ClassRepository(backend).list_between(start_date, end_date)
    except BackendError as exc:
        logger.warning(f"Could not load schedule for tutor {tutor.id}: {exc.message}")
        check = unknown_check(sequence, tutor.id, tutor.full_name)
    else:
        check = evaluate_tutor(session.candidate, classes, sequence, tutor.id, tutor.full_name, tz, buffer)

    recorded = store.record(session_id, check)
    if not recorded:
        logger.info(f"Discarding stale check #{sequence} for session {session_id}")
    else:
        logger.info(f"Session {session_id} tutor {tutor.id}: {check.status.value}")

    current = store.get(session_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Assignment session not found or expired")
    return SessionResponse.from_domain(current, stale=not recorded)


@router.post("/assignments/sessions/{session_id}/submit", response_model=SubmitResponse, summary="Assign the selected tutor")
def submit_assignment(
    session_id: str,
    req: SubmitRequest,
    backend: BackendClient = Depends(get_backend),
    store: SessionStore = Depends(get_session_store),
):
    """
    Commit the selected tutor to the class.

    **Error Handling:**
    - 404: session not found or expired
    - 409: no tutor selected, check pending, conflict status unknown,
      conflicts present without `acknowledge_conflicts`, or a newer
      selection started while submitting
    - 502: backend failure (the session is kept for a retry)
    """
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Assignment session not found or expired")

    reason = submission_blocker(session, req.acknowledge_conflicts)
    if reason is not None:
        raise HTTPException(status_code=409, detail=reason)

    claimed = store.claim(session_id, session.sequence)
    if claimed is None:
        if store.get(session_id) is None:
            raise HTTPException(status_code=404, detail="Assignment session not found or expired")
        raise HTTPException(status_code=409, detail="A newer tutor selection is still being checked")

    check = claimed.check
    if check.status == ConflictStatus.CONFLICTED:
        logger.warning(f"Assigning tutor {check.tutor_id} to class {claimed.class_id} despite conflicts")

    try:
        message = ClassRepository(backend).assign_tutor(claimed.class_id, check.tutor_id)
    except BackendError as exc:
        store.restore(claimed)
        _raise_backend_error(exc)

    logger.info(f"Assigned tutor {check.tutor_id} to class {claimed.class_id}")
    return SubmitResponse(class_id=claimed.class_id, tutor_id=check.tutor_id, message=message)


@router.delete("/assignments/sessions/{session_id}", status_code=204, summary="Close an assignment session")
def close_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    store.delete(session_id)
    return Response(status_code=204)
