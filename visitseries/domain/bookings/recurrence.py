"""
Recurrence expansion

Turns a recurrence rule plus the visit template into concrete dated visits,
and converts between frequencies and the compact rule string stored on the
series anchor.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from ...config import PLACEHOLDER_ID_PREFIX
from .schemas import Frequency, RecurrenceSpec, ServiceDefaults, VisitInstance, VisitTemplate

logger = logging.getLogger(__name__)

PERIODS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
    "biweekly": timedelta(weeks=2),
    "monthly": relativedelta(months=1),
}

RULE_STRINGS = {
    "daily": "FREQ=DAILY",
    "weekly": "FREQ=WEEKLY",
    "biweekly": "FREQ=WEEKLY;INTERVAL=2",
    "monthly": "FREQ=MONTHLY",
}


def add_period(current: date, frequency: Frequency) -> date:
    """
    Advance a date by one period of the given frequency.

    Months are added calendar-wise and clamp to the last day of shorter
    months, so a series anchored on Jan 31 continues Feb 29, Mar 29, ...
    """
    period = PERIODS.get(frequency)
    if period is None:
        return current
    return current + period


def placeholder_id(index: int) -> str:
    return f"{PLACEHOLDER_ID_PREFIX}{index}"


def serialize_rule(frequency: Frequency) -> Optional[str]:
    """FREQ string written to bookings.recurrence_rule; None when not recurring"""
    return RULE_STRINGS.get(frequency)


def parse_rule(rule: Optional[str]) -> Frequency:
    """Inverse of serialize_rule; anything unrecognized reads as non-recurring"""
    if not rule:
        return "none"
    if "FREQ=DAILY" in rule:
        return "daily"
    if "FREQ=WEEKLY" in rule:
        if "INTERVAL=2" in rule:
            return "biweekly"
        return "weekly"
    if "FREQ=MONTHLY" in rule:
        return "monthly"
    return "none"


def expand_recurrence(
    spec: RecurrenceSpec,
    template: VisitTemplate,
    recurrence_service: Optional[ServiceDefaults] = None,
) -> list[VisitInstance]:
    """
    Expand a recurrence rule into ``occurrence_count`` unsaved visits.

    Each date is one period after the previous visit's date (not the
    anchor). When split-service is enabled, visits after the first use the
    recurrence service: the explicit recurrence price if given, otherwise
    that service's default price, and its duration.

    Returns an empty list when the rule is not recurring or the anchor date
    or time is missing.
    """
    if not spec.is_recurring:
        return []
    if spec.anchor_date is None or not spec.anchor_time:
        logger.debug("Recurrence anchor incomplete, projection cleared")
        return []

    split_active = bool(template.use_split_recurrence and template.recurrence_service_id)

    instances = []
    current = spec.anchor_date
    for index in range(spec.occurrence_count):
        service_id = template.service_id
        price = template.price
        duration = template.duration_minutes

        if index > 0 and split_active:
            service_id = template.recurrence_service_id
            default_price = recurrence_service.price_default if recurrence_service else 0
            price = template.recurrence_price or default_price or 0
            if recurrence_service and recurrence_service.duration_minutes:
                duration = recurrence_service.duration_minutes

        instances.append(
            VisitInstance(
                id=placeholder_id(index),
                date=current,
                time=spec.anchor_time,
                service_id=service_id,
                price=price,
                duration_minutes=duration,
                pay_rate=template.pay_rate,
                addon_ids=list(template.addon_ids),
                assignments=[a.model_copy() for a in template.assignments],
            )
        )
        current = add_period(current, spec.frequency)

    return instances
