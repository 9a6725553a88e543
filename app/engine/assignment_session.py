"""
Assignment session logic.

An assignment session mirrors the tutor assignment dialog: the admin picks a
class, then tries tutors one after another until submitting. Every tutor
selection gets the next sequence number from the session store; a check is
only recorded while its sequence is still the latest, so a slow booking fetch
for an earlier selection can never overwrite the result shown for a newer one.

If the tutor's bookings cannot be fetched the check is recorded as UNKNOWN,
and submission stays blocked until a later selection succeeds.
"""

from datetime import date, timedelta, timezone, tzinfo
from typing import Iterable, Optional, Tuple

from app.engine.conflict_checker import TRAVEL_BUFFER, check_schedule_conflicts, tutor_bookings
from app.engine.messages import format_conflict_message, no_conflict_message, unknown_status_message
from app.models.entities import AssignmentSession, CandidateAssignment, ConflictStatus, TutorCheck
from app.models.records import ClassRecord


def booking_date_range(
    candidate: CandidateAssignment,
    travel_buffer: timedelta = TRAVEL_BUFFER,
) -> Tuple[date, date]:
    """UTC calendar dates to fetch bookings for.

    The backend filters classes on the UTC date of their start time, so the
    range is taken in UTC, widened by the travel buffer on both sides.
    """
    first = (candidate.start_time - travel_buffer).astimezone(timezone.utc).date()
    last = (candidate.end_time + travel_buffer).astimezone(timezone.utc).date()
    return first, last


def pending_check(sequence: int, tutor_id: str, tutor_name: str) -> TutorCheck:
    return TutorCheck(
        sequence=sequence,
        tutor_id=tutor_id,
        tutor_name=tutor_name,
        status=ConflictStatus.PENDING,
    )


def unknown_check(sequence: int, tutor_id: str, tutor_name: str) -> TutorCheck:
    return TutorCheck(
        sequence=sequence,
        tutor_id=tutor_id,
        tutor_name=tutor_name,
        status=ConflictStatus.UNKNOWN,
        message=unknown_status_message(tutor_name),
    )


def evaluate_tutor(
    candidate: CandidateAssignment,
    classes: Iterable[ClassRecord],
    sequence: int,
    tutor_id: str,
    tutor_name: str,
    tz: tzinfo,
    travel_buffer: timedelta = TRAVEL_BUFFER,
) -> TutorCheck:
    """Run the conflict check for one tutor selection."""
    bookings = tutor_bookings(classes, tutor_id, exclude_class_id=candidate.class_id)
    result = check_schedule_conflicts(candidate.with_tutor(tutor_id), bookings, travel_buffer)

    if result.has_conflicts:
        status = ConflictStatus.CONFLICTED
        message = format_conflict_message(result, tutor_name, tz, travel_buffer)
    else:
        status = ConflictStatus.CLEAR
        message = no_conflict_message(tutor_name)

    return TutorCheck(
        sequence=sequence,
        tutor_id=tutor_id,
        tutor_name=tutor_name,
        status=status,
        result=result,
        message=message,
    )


def submission_blocker(session: AssignmentSession, acknowledge_conflicts: bool = False) -> Optional[str]:
    """Reason the session cannot be submitted yet, or None when it can."""
    check = session.check
    if check is None:
        return "Select a tutor before assigning"
    if check.sequence != session.sequence:
        return "A newer tutor selection is still being checked"
    if check.status == ConflictStatus.PENDING:
        return "Schedule conflicts are still being checked"
    if check.status == ConflictStatus.UNKNOWN:
        return f"Conflict status for {check.tutor_name} is unknown"
    if check.status == ConflictStatus.CONFLICTED and not acknowledge_conflicts:
        return check.message or "Schedule conflicts detected"
    return None
