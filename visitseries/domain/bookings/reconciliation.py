"""
Reconciliation of an edited series against what is already stored.

Produces a plan; nothing here touches the database. The first visit is the
series anchor (the row other visits point at through parent_booking_id).
Ids with the placeholder prefix are inserts, stored ids whose row values
changed are updates, and stored ids missing from the projection are deletes.
Add-on links are diffed per visit. A stored visit is priced with the
price_at_time of the links it already has, the same basis used to recover
its base price on load; only newly linked add-ons use the catalog price. Staff assignments follow the configured
sync mode:

* ``cascade``: the top-level assignment list is written to every visit of
  a recurring series, replacing per-visit assignments.
* ``per_instance``: each visit's own assignments are diffed against its
  stored assignments.

A non-recurring booking always uses its own (single) visit's assignments.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from .pricing import persisted_price
from .schemas import (
    Assignment,
    AssignmentSyncMode,
    BookingDetails,
    VisitInstance,
    is_placeholder_id,
)

logger = logging.getLogger(__name__)

# Columns owned by the series editor; anything else on the row is left alone
RECONCILED_COLUMNS = (
    "customer_id",
    "service_id",
    "parent_booking_id",
    "recurrence_rule",
    "recurrence_count",
    "start_date",
    "end_date",
    "duration_minutes",
    "price",
    "cleaner_pay_rate",
    "status",
    "color",
    "notes_internal",
    "notes_client",
    "notes_staff",
)

PRICE_TOLERANCE = 0.005


class PersistedVisit(BaseModel):
    """Stored state of one booking row plus its link rows"""

    id: str
    row: dict[str, Any]
    addon_ids: list[str] = Field(default_factory=list)
    # addon id -> price_at_time x quantity of the stored link
    addon_prices: dict[str, float] = Field(default_factory=dict)
    assignments: list[Assignment] = Field(default_factory=list)

    def price_basis(self, addon_catalog: Mapping[str, float]) -> dict[str, float]:
        """Stored links keep their snapshot price; only new links use the catalog"""
        return {**addon_catalog, **self.addon_prices}


class PersistedSeries(BaseModel):
    anchor_id: Optional[str] = None
    visits: dict[str, PersistedVisit] = Field(default_factory=dict)


class BookingWrite(BaseModel):
    """Row values keyed by the in-memory id (a placeholder for inserts)"""

    id: str
    values: dict[str, Any]


class AddonLinkWrite(BaseModel):
    addon_id: str
    price_at_time: float = 0
    quantity: int = 1


class LinkPlan(BaseModel):
    addons_to_insert: list[AddonLinkWrite] = Field(default_factory=list)
    addons_to_delete: list[str] = Field(default_factory=list)
    assignments_to_insert: list[Assignment] = Field(default_factory=list)
    assignments_to_update: list[Assignment] = Field(default_factory=list)
    assignments_to_delete: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.addons_to_insert
            or self.addons_to_delete
            or self.assignments_to_insert
            or self.assignments_to_update
            or self.assignments_to_delete
        )


class ReconciliationPlan(BaseModel):
    anchor_id: str
    to_insert: list[BookingWrite] = Field(default_factory=list)
    to_update: list[BookingWrite] = Field(default_factory=list)
    to_delete: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    # Keyed by in-memory id; placeholders resolve to new ids after insert
    links: dict[str, LinkPlan] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return (
            not self.to_insert
            and not self.to_update
            and not self.to_delete
            and all(link.is_empty for link in self.links.values())
        )

    def summary(self) -> str:
        link_writes = sum(not link.is_empty for link in self.links.values())
        return (
            f"insert={len(self.to_insert)} update={len(self.to_update)} "
            f"delete={len(self.to_delete)} unchanged={len(self.unchanged)} "
            f"link_changes={link_writes}"
        )


def visit_row(
    instance: VisitInstance,
    anchor_id: str,
    details: BookingDetails,
    recurrence_rule: Optional[str],
    addon_catalog: Mapping[str, float],
    is_anchor: bool,
    series_length: int,
) -> dict[str, Any]:
    """Column values a visit should have in the bookings table"""
    start = instance.start_datetime()
    return {
        "customer_id": details.customer_id,
        "service_id": instance.service_id,
        "parent_booking_id": None if is_anchor else anchor_id,
        "recurrence_rule": recurrence_rule if is_anchor else None,
        "recurrence_count": series_length if is_anchor and recurrence_rule else None,
        "start_date": start,
        "end_date": start + timedelta(minutes=instance.duration_minutes),
        "duration_minutes": instance.duration_minutes,
        "price": persisted_price(instance, addon_catalog),
        "cleaner_pay_rate": instance.pay_rate,
        "status": details.status,
        "color": details.color,
        "notes_internal": details.notes_internal,
        "notes_client": details.notes_client,
        "notes_staff": details.notes_staff,
    }


def _same_value(current: Any, stored: Any) -> bool:
    if isinstance(current, (int, float)) and isinstance(stored, (int, float)):
        return abs(current - stored) < PRICE_TOLERANCE
    if isinstance(current, datetime) and isinstance(stored, datetime):
        return current.replace(tzinfo=None, microsecond=0) == stored.replace(
            tzinfo=None, microsecond=0
        )
    return current == stored


def changed_columns(desired: Mapping[str, Any], stored: Mapping[str, Any]) -> dict[str, Any]:
    return {
        column: value
        for column, value in desired.items()
        if column not in stored or not _same_value(value, stored[column])
    }


def diff_addons(
    desired_ids: list[str], stored_ids: list[str], addon_catalog: Mapping[str, float]
) -> tuple[list[AddonLinkWrite], list[str]]:
    """
    Set difference of add-on ids. Links present on both sides are left
    untouched: their price_at_time snapshot is never corrected.
    """
    stored = set(stored_ids)
    desired = set(desired_ids)
    to_insert = [
        AddonLinkWrite(addon_id=addon_id, price_at_time=addon_catalog.get(addon_id, 0))
        for addon_id in desired_ids
        if addon_id not in stored
    ]
    to_delete = [addon_id for addon_id in stored_ids if addon_id not in desired]
    return to_insert, to_delete


def diff_assignments(
    desired: list[Assignment], stored: list[Assignment]
) -> tuple[list[Assignment], list[Assignment], list[str]]:
    """Diff by member; a changed pay rate is an update"""
    stored_by_member = {a.member_id: a for a in stored}
    desired_by_member = {}
    for assignment in desired:
        desired_by_member.setdefault(assignment.member_id, assignment)

    to_insert, to_update = [], []
    for member_id, assignment in desired_by_member.items():
        existing = stored_by_member.get(member_id)
        if existing is None:
            to_insert.append(assignment)
        elif not _same_value(assignment.pay_rate, existing.pay_rate):
            to_update.append(assignment)

    to_delete = [member_id for member_id in stored_by_member if member_id not in desired_by_member]
    return to_insert, to_update, to_delete


def reconcile(
    instances: list[VisitInstance],
    persisted: PersistedSeries,
    details: BookingDetails,
    recurrence_rule: Optional[str],
    addon_catalog: Mapping[str, float],
    assignments: Optional[list[Assignment]] = None,
    assignment_mode: AssignmentSyncMode = "cascade",
) -> ReconciliationPlan:
    """
    Diff the edited visits against the stored series.

    Args:
        instances: the projection, anchor first
        persisted: stored rows of the series (empty for a new booking)
        details: booking-level fields written to every visit
        recurrence_rule: FREQ string for the anchor, None when not recurring
        addon_catalog: addon id -> current catalog price
        assignments: top-level assignment list used by cascade mode
        assignment_mode: "cascade" or "per_instance"

    Raises:
        ValueError: empty projection, duplicate ids, a stored id that does
            not belong to the series, or the stored anchor not first
    """
    if not instances:
        raise ValueError("A booking needs at least one visit")

    ids = [instance.id for instance in instances]
    if len(set(ids)) != len(ids):
        raise ValueError("Duplicate visit ids in projection")

    for instance in instances:
        if not is_placeholder_id(instance.id) and instance.id not in persisted.visits:
            raise ValueError(f"Visit {instance.id} does not belong to this series")

    if persisted.anchor_id and instances[0].id != persisted.anchor_id:
        raise ValueError("The stored series anchor must remain the first visit")

    anchor_id = instances[0].id
    cascade = assignment_mode == "cascade" and recurrence_rule is not None
    plan = ReconciliationPlan(anchor_id=anchor_id)

    for index, instance in enumerate(instances):
        is_anchor = index == 0
        stored = persisted.visits.get(instance.id)
        desired_row = visit_row(
            instance,
            anchor_id,
            details,
            recurrence_rule,
            stored.price_basis(addon_catalog) if stored is not None else addon_catalog,
            is_anchor,
            len(instances),
        )

        if stored is None:
            plan.to_insert.append(BookingWrite(id=instance.id, values=desired_row))
            stored_addons: list[str] = []
            stored_assignments: list[Assignment] = []
        else:
            patch = changed_columns(desired_row, stored.row)
            if patch:
                plan.to_update.append(BookingWrite(id=instance.id, values=patch))
            else:
                plan.unchanged.append(instance.id)
            stored_addons = stored.addon_ids
            stored_assignments = stored.assignments

        desired_assignments = (
            assignments if cascade and assignments is not None else instance.assignments
        )
        addons_in, addons_out = diff_addons(instance.addon_ids, stored_addons, addon_catalog)
        assign_in, assign_update, assign_out = diff_assignments(
            desired_assignments, stored_assignments
        )
        plan.links[instance.id] = LinkPlan(
            addons_to_insert=addons_in,
            addons_to_delete=addons_out,
            assignments_to_insert=assign_in,
            assignments_to_update=assign_update,
            assignments_to_delete=assign_out,
        )

    surviving = set(ids)
    plan.to_delete = [visit_id for visit_id in persisted.visits if visit_id not in surviving]

    logger.info(f"🧮 Reconciliation plan for series {anchor_id}: {plan.summary()}")
    return plan
