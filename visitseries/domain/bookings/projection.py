"""
In-memory projection of an open booking series.

State machine:

    uninitialized --generate--> generated --edit--> user_edited
    uninitialized --load------> loaded    --edit--> user_edited

``generate`` on a loaded series only rebuilds when the recurrence
parameters changed; on a generated one, when the parameters or the template
changed. From user_edited it refuses unless forced, so an unrelated form
change never discards per-visit edits.
"""

import logging
from typing import Optional

from ...config import PROPAGATION_SUGGEST_MIN_INSTANCES
from .recurrence import expand_recurrence
from .schemas import (
    ProjectionState,
    RecurrenceSpec,
    ServiceDefaults,
    VisitInstance,
    VisitTemplate,
    is_placeholder_id,
)

logger = logging.getLogger(__name__)

# Fields copied forward by propagate(); the calendar date never is
PROPAGATED_FIELDS = (
    "service_id",
    "price",
    "duration_minutes",
    "time",
    "pay_rate",
    "addon_ids",
    "assignments",
)

EDITABLE_FIELDS = frozenset(PROPAGATED_FIELDS) | {"date"}


class ProjectionEditedError(ValueError):
    """Regeneration would discard per-visit edits the user has made"""


class InstanceProjection:
    """Editable list of visits for the series currently open in the form"""

    def __init__(self):
        self.state: ProjectionState = "uninitialized"
        self.instances: list[VisitInstance] = []
        self.spec: Optional[RecurrenceSpec] = None
        self.template: Optional[VisitTemplate] = None
        self.recurrence_service: Optional[ServiceDefaults] = None
        self.anchor_id: Optional[str] = None

    def __len__(self):
        return len(self.instances)

    @property
    def ids(self) -> list[str]:
        return [instance.id for instance in self.instances]

    @property
    def selected_addons(self) -> list[str]:
        """Display mirror of the first visit's add-ons, not a source of truth"""
        if not self.instances:
            return []
        return list(self.instances[0].addon_ids)

    def index_of(self, instance_id: str) -> int:
        for index, instance in enumerate(self.instances):
            if instance.id == instance_id:
                return index
        raise KeyError(f"Instance {instance_id} not found")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(
        self, instances: list[VisitInstance], spec: RecurrenceSpec, anchor_id: Optional[str] = None
    ) -> None:
        """Seed from persisted rows of an existing series"""
        self.instances = [instance.model_copy(deep=True) for instance in instances]
        self.spec = spec.model_copy()
        self.anchor_id = anchor_id or (self.instances[0].id if self.instances else None)
        self.state = "loaded"

    def generate(
        self,
        spec: RecurrenceSpec,
        template: VisitTemplate,
        recurrence_service: Optional[ServiceDefaults] = None,
        force: bool = False,
    ) -> bool:
        """
        (Re)build the projection from the recurrence rule.

        Returns True when the instance list was replaced.

        Raises:
            ProjectionEditedError: the user has edited visits and force is False
        """
        if self.state == "user_edited" and not force:
            raise ProjectionEditedError(
                "Visits were edited individually; confirm regeneration to discard those edits"
            )

        if not force and self.spec is not None:
            same_parameters = self.spec.parameters() == spec.parameters()
            if self.state == "loaded" and same_parameters:
                return False
            if (
                self.state == "generated"
                and same_parameters
                and self.template == template
                and self.recurrence_service == recurrence_service
            ):
                return False

        instances = expand_recurrence(spec, template, recurrence_service)
        # Keep the persisted anchor so the series row is updated, not replaced
        if instances and self.anchor_id:
            instances[0] = instances[0].model_copy(update={"id": self.anchor_id})

        self.instances = instances
        self.spec = spec.model_copy()
        self.template = template.model_copy(deep=True)
        self.recurrence_service = recurrence_service
        self.state = "generated"
        logger.debug(f"Projection regenerated with {len(instances)} visit(s)")
        return True

    def clear(self) -> None:
        self.instances = []
        self.spec = None
        self.template = None
        self.recurrence_service = None
        self.anchor_id = None
        self.state = "uninitialized"

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def update_instance(self, instance_id: str, **changes) -> VisitInstance:
        """Apply per-visit overrides; only day-of-visit fields are editable"""
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable per visit: {', '.join(sorted(unknown))}")

        index = self.index_of(instance_id)
        merged = self.instances[index].model_dump()
        merged.update(changes)
        merged.pop("is_persisted", None)
        updated = VisitInstance.model_validate(merged)

        self.instances[index] = updated
        self.state = "user_edited"
        return updated

    def remove_instance(self, instance_id: str) -> None:
        """Drop a visit; the list may now be shorter than the requested count"""
        if self.anchor_id and instance_id == self.anchor_id and not is_placeholder_id(instance_id):
            raise ValueError("The first visit anchors the saved series; delete the series instead")

        index = self.index_of(instance_id)
        del self.instances[index]
        self.state = "user_edited"

    def propagate(self, source_id: str) -> int:
        """
        Copy the source visit's day-of-visit fields onto every later visit.

        One-shot: later edits to any visit are not re-propagated. Returns
        the number of visits updated (0 for an unknown source id).
        """
        try:
            source_index = self.index_of(source_id)
        except KeyError:
            logger.warning(f"Propagation source {source_id} not in projection")
            return 0

        source = self.instances[source_index]
        updated = 0
        for index in range(source_index + 1, len(self.instances)):
            target = self.instances[index]
            self.instances[index] = target.model_copy(
                update={
                    "service_id": source.service_id,
                    "price": source.price,
                    "duration_minutes": source.duration_minutes,
                    "time": source.time,
                    "pay_rate": source.pay_rate,
                    "addon_ids": list(source.addon_ids),
                    "assignments": [a.model_copy() for a in source.assignments],
                }
            )
            updated += 1

        if updated:
            self.state = "user_edited"
        logger.info(f"🔁 Changes from visit {source_id} applied to {updated} following visit(s)")
        return updated

    def should_suggest_propagation(self, edited_id: str) -> bool:
        """
        Editing visit #2 of a longer series usually means "new normal",
        so the form offers to apply it to the following visits.
        """
        if len(self.instances) < PROPAGATION_SUGGEST_MIN_INSTANCES:
            return False
        try:
            return self.index_of(edited_id) == 1
        except KeyError:
            return False


def propagate_instances(instances: list[VisitInstance], source_id: str) -> tuple[list[VisitInstance], int]:
    """Stateless propagation over a submitted list (used by the API)"""
    projection = InstanceProjection()
    projection.load(instances, RecurrenceSpec())
    count = projection.propagate(source_id)
    return projection.instances, count
