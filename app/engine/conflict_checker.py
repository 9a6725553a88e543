"""
Tutor Schedule Conflict Checker

Classifies a tutor's existing bookings against a candidate class assignment.

Conflict kinds:
- Direct: the booking's time window overlaps the candidate's window
- Travel: the booking is at another branch and ends within the travel buffer
  before the candidate starts, or starts within the buffer after it ends

Windows are half-open: [start, start + duration). Back-to-back classes at the
same minute never overlap, and exactly one buffer of slack is enough.

Time Complexity: O(n) for n bookings (one pass, two comparisons each).
"""

from datetime import timedelta
from typing import Iterable, List, Optional

from app.models.entities import BookedClass, CandidateAssignment, ConflictResult
from app.models.records import ClassRecord

TRAVEL_BUFFER = timedelta(hours=1)


def is_overlap(candidate: CandidateAssignment, booking: BookedClass) -> bool:
    """
    Check if a booking overlaps the candidate's time window.

    Args:
        candidate: Class being assigned
        booking: Existing class of the tutor

    Returns:
        True if the windows share any instant, False if they only touch

    Complexity: O(1)
    """
    return candidate.start_time < booking.effective_end and candidate.end_time > booking.start_time


def is_travel_conflict(
    candidate: CandidateAssignment,
    booking: BookedClass,
    travel_buffer: timedelta = TRAVEL_BUFFER,
) -> bool:
    """
    Check if a non-overlapping booking leaves too little time to change branch.

    Same-branch bookings never need travel time. Otherwise the booking
    conflicts when it ends inside (start - buffer, start] or starts inside
    [end, end + buffer).

    Args:
        candidate: Class being assigned
        booking: Existing class of the tutor, known not to overlap
        travel_buffer: Minimum gap between classes at different branches

    Returns:
        True if the tutor cannot make it between branches in time
    """
    if booking.branch_id == candidate.branch_id:
        return False

    buffer_start = candidate.start_time - travel_buffer
    buffer_end = candidate.end_time + travel_buffer

    ends_too_close = buffer_start < booking.effective_end <= candidate.start_time
    starts_too_close = candidate.end_time <= booking.start_time < buffer_end
    return ends_too_close or starts_too_close


def check_schedule_conflicts(
    candidate: CandidateAssignment,
    bookings: Iterable[BookedClass],
    travel_buffer: timedelta = TRAVEL_BUFFER,
) -> ConflictResult:
    """
    Classify a tutor's bookings against a candidate assignment.

    Algorithm:
    1. For each booking, in input order, test for a direct overlap
    2. Overlapping bookings go to `direct` and skip the travel test
    3. Remaining bookings at another branch are tested against the buffer

    Args:
        candidate: Class being assigned, with its start, duration and branch
        bookings: Tutor's other classes on that day, already filtered with
            tutor_bookings()
        travel_buffer: Minimum gap between classes at different branches

    Returns:
        ConflictResult; empty when there are no bookings

    Complexity: O(n) where n = bookings
    """
    direct: List[BookedClass] = []
    travel: List[BookedClass] = []

    for booking in bookings:
        if is_overlap(candidate, booking):
            direct.append(booking)
            continue
        if is_travel_conflict(candidate, booking, travel_buffer):
            travel.append(booking)

    return ConflictResult(direct=tuple(direct), travel=tuple(travel))


def tutor_bookings(
    classes: Iterable[ClassRecord],
    tutor_id: str,
    exclude_class_id: Optional[str] = None,
) -> List[BookedClass]:
    """Select the tutor's own classes, minus the class being (re)assigned."""
    return [
        c.to_booked_class()
        for c in classes
        if c.tutor_id is not None and c.tutor_id == tutor_id and c.id != exclude_class_id
    ]
