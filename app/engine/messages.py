from datetime import datetime, timedelta, tzinfo
from typing import Sequence

from app.engine.conflict_checker import TRAVEL_BUFFER
from app.models.entities import BookedClass, ConflictResult


def format_time(value: datetime, tz: tzinfo) -> str:
    """12-hour clock in the center's timezone, e.g. '02:00 PM'."""
    return value.astimezone(tz).strftime("%I:%M %p")


def format_buffer(buffer: timedelta) -> str:
    minutes = int(buffer.total_seconds() // 60)
    if minutes and minutes % 60 == 0:
        hours = minutes // 60
        return "1 hour" if hours == 1 else f"{hours} hours"
    return "1 minute" if minutes == 1 else f"{minutes} minutes"


def _class_word(count: int) -> str:
    return "class" if count == 1 else "classes"


def format_booking(booking: BookedClass, tz: tzinfo) -> str:
    level_text = f" ({booking.level})" if booking.level else ""
    branch_text = f" at {booking.branch_name}" if booking.branch_name else ""
    start = format_time(booking.start_time, tz)
    end = format_time(booking.effective_end, tz)
    return f'• "{booking.subject}"{level_text} from {start} to {end}{branch_text}'


def _details(bookings: Sequence[BookedClass], tz: tzinfo) -> str:
    return "\n".join(format_booking(b, tz) for b in bookings)


def format_conflict_message(
    result: ConflictResult,
    tutor_name: str,
    tz: tzinfo,
    travel_buffer: timedelta = TRAVEL_BUFFER,
) -> str:
    """
    Explain a non-empty ConflictResult.

    Direct conflicts come first, travel conflicts second, separated by a
    blank line when both are present.
    """
    sections = []

    if result.direct:
        count = len(result.direct)
        sections.append(
            f"{tutor_name} already has {count} {_class_word(count)} scheduled at the same time:"
            f"\n\n{_details(result.direct, tz)}"
        )

    if result.travel:
        count = len(result.travel)
        sections.append(
            f"{tutor_name} has {count} {_class_word(count)} at different branch(es) that require "
            f"at least {format_buffer(travel_buffer)} buffer time:"
            f"\n\n{_details(result.travel, tz)}"
        )

    return "\n\n".join(sections)


def no_conflict_message(tutor_name: str) -> str:
    return f"No schedule conflicts. {tutor_name} is available for this class."


def unknown_status_message(tutor_name: str) -> str:
    return (
        f"Could not load {tutor_name}'s schedule, so conflicts could not be checked. "
        "Select the tutor again to retry before assigning."
    )
