"""
Staff availability advisor

Labels staff and time slots as available or not from weekly working-hours
rules. Results only drive option grouping and warning banners; a booking is
never rejected because of them.
"""

import logging
from datetime import date
from typing import Iterable, Optional, TypeVar

from ...config import SLOT_END_HOUR, SLOT_START_HOUR, SLOT_STEP_MINUTES
from .schemas import Assignment, AvailabilityRule, AvailabilityWarning, TimeSlot, VisitInstance

logger = logging.getLogger(__name__)

StaffT = TypeVar("StaffT")


def day_of_week(value: date) -> int:
    """Weekday index with 0 = Sunday, matching team_availability.day_of_week"""
    return value.isoweekday() % 7


def find_rule(
    staff_id: str, value: date, rules: Iterable[AvailabilityRule]
) -> Optional[AvailabilityRule]:
    weekday = day_of_week(value)
    for rule in rules:
        if rule.member_id == staff_id and rule.day_of_week == weekday:
            return rule
    return None


def is_available(
    staff_id: str,
    value: Optional[date],
    time: Optional[str],
    rules: Iterable[AvailabilityRule],
) -> bool:
    """
    Check a staff member against their rule for that weekday.

    No rule for the day means unavailable. Times are zero-padded HH:MM so
    plain string comparison orders them correctly; the end time is
    exclusive. With no date or time chosen yet there is nothing to check.
    """
    if value is None or not time:
        return True

    rule = find_rule(staff_id, value, rules)
    if rule is None or not rule.is_available:
        return False

    return rule.start_time <= time < rule.end_time


def partition_staff(
    staff: Iterable[StaffT],
    value: Optional[date],
    time: Optional[str],
    rules: list[AvailabilityRule],
    key=lambda member: member.id,
) -> tuple[list[StaffT], list[StaffT]]:
    """Split staff into (available, unavailable) option groups"""
    available, unavailable = [], []
    for member in staff:
        if is_available(key(member), value, time, rules):
            available.append(member)
        else:
            unavailable.append(member)
    return available, unavailable


def slot_times(
    start_hour: int = SLOT_START_HOUR,
    end_hour: int = SLOT_END_HOUR,
    step_minutes: int = SLOT_STEP_MINUTES,
) -> list[str]:
    """HH:MM grid from start_hour:00 through the last step of end_hour"""
    return [
        f"{hour:02d}:{minute:02d}"
        for hour in range(start_hour, end_hour + 1)
        for minute in range(0, 60, step_minutes)
    ]


def generate_time_slots(
    staff_id: Optional[str], value: Optional[date], rules: list[AvailabilityRule]
) -> list[TimeSlot]:
    """Offer every slot; mark each against the selected staff member, if any"""
    return [
        TimeSlot(time=slot, available=is_available(staff_id, value, slot, rules) if staff_id else True)
        for slot in slot_times()
    ]


def availability_warnings(
    instances: list[VisitInstance],
    rules: list[AvailabilityRule],
    assignments: Optional[list[Assignment]] = None,
) -> list[AvailabilityWarning]:
    """
    List every (visit, assignee) pair that falls outside working hours.

    Uses each visit's own assignments unless an explicit list is given
    (the top-level list that will be cascaded at save time).
    """
    warnings = []
    for instance in instances:
        assignees = assignments if assignments is not None else instance.assignments
        for assignment in assignees:
            if not is_available(assignment.member_id, instance.date, instance.time, rules):
                warnings.append(
                    AvailabilityWarning(
                        instance_id=instance.id,
                        date=instance.date,
                        time=instance.time,
                        member_id=assignment.member_id,
                        display_name=assignment.display_name,
                    )
                )

    if warnings:
        logger.info(f"⚠️ {len(warnings)} visit assignment(s) fall outside staff availability")
    return warnings
