"""Booking series service - Business logic for recurring bookings"""

import logging
from datetime import date
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import ASSIGNMENT_SYNC_MODE, DEFAULT_RECURRENCE_COUNT
from ...models import Booking
from .availability import availability_warnings, generate_time_slots, partition_staff
from .pricing import price_breakdown
from .projection import propagate_instances
from .reconciliation import (
    RECONCILED_COLUMNS,
    PersistedSeries,
    PersistedVisit,
    ReconciliationPlan,
    reconcile,
)
from .recurrence import expand_recurrence, parse_rule, placeholder_id, serialize_rule
from .repository import BookingRepository
from .schemas import (
    Assignment,
    AvailabilityResponse,
    AvailabilityRule,
    BookingDetails,
    DeleteCandidate,
    DeleteResult,
    PricingBreakdown,
    PricingRequest,
    PropagateRequest,
    PropagateResponse,
    RecurrenceSpec,
    SaveResult,
    SeriesPreviewRequest,
    SeriesPreviewResponse,
    SeriesResponse,
    SeriesSaveRequest,
    ServiceDefaults,
    StaffOption,
    VisitInstance,
    VisitTemplate,
    is_placeholder_id,
)

logger = logging.getLogger(__name__)


class BookingSeriesService:
    """Service layer for booking series business logic"""

    def __init__(self, db: Session, assignment_mode: str = ASSIGNMENT_SYNC_MODE):
        self.db = db
        self.repo = BookingRepository()
        self.assignment_mode = assignment_mode

    @staticmethod
    def require_tenant(tenant_id: Optional[str]) -> str:
        """Fail before any read or write when the tenant context is missing"""
        if not tenant_id:
            logger.warning("⚠️ Booking request rejected: tenant not identified")
            raise HTTPException(status_code=403, detail="Access denied: tenant not identified")
        return tenant_id

    # ========================================================================
    # Reads
    # ========================================================================

    def _resolve_series_rows(self, booking_id: str, tenant_id: str) -> list[Booking]:
        booking = self.repo.get_booking(self.db, booking_id, tenant_id)
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")

        parent_id = booking.parent_booking_id or booking.id
        return self.repo.get_series(self.db, parent_id, tenant_id)

    def _snapshot(self, rows: list[Booking]) -> tuple[PersistedSeries, list[VisitInstance]]:
        """Stored state for reconciliation plus the editable visits built from it"""
        booking_ids = [row.id for row in rows]
        addon_links = self.repo.get_addon_links(self.db, booking_ids)
        assignment_links = self.repo.get_assignment_links(self.db, booking_ids)

        addons_by_booking: dict[str, list] = {}
        for link in addon_links:
            addons_by_booking.setdefault(link.booking_id, []).append(link)

        assignments_by_booking: dict[str, list[Assignment]] = {}
        for link in assignment_links:
            assignments_by_booking.setdefault(link.booking_id, []).append(
                Assignment(
                    member_id=link.member_id,
                    pay_rate=link.pay_rate or 0,
                    display_name=link.member.name if link.member else "Unknown",
                )
            )

        persisted = PersistedSeries(anchor_id=rows[0].id if rows else None)
        instances = []
        for row in rows:
            links = addons_by_booking.get(row.id, [])
            addon_ids = [link.addon_id for link in links]
            addon_prices: dict[str, float] = {}
            for link in links:
                addon_prices[link.addon_id] = addon_prices.get(link.addon_id, 0) + (
                    (link.price_at_time or 0) * (link.quantity or 1)
                )
            assignments = assignments_by_booking.get(row.id, [])

            persisted.visits[row.id] = PersistedVisit(
                id=row.id,
                row={column: getattr(row, column) for column in RECONCILED_COLUMNS},
                addon_ids=addon_ids,
                addon_prices=addon_prices,
                assignments=assignments,
            )

            # Stored price embeds the add-ons; the editor works on the base price
            addon_snapshot = sum(addon_prices.values())
            instances.append(
                VisitInstance(
                    id=row.id,
                    date=row.start_date.date(),
                    time=row.start_date.strftime("%H:%M"),
                    service_id=row.service_id,
                    price=max(0, round((row.price or 0) - addon_snapshot, 2)),
                    duration_minutes=row.duration_minutes or 60,
                    pay_rate=row.cleaner_pay_rate or 0,
                    addon_ids=addon_ids,
                    assignments=[a.model_copy() for a in assignments],
                )
            )

        return persisted, instances

    def _availability_rules(self, tenant_id: str) -> list[AvailabilityRule]:
        return [
            AvailabilityRule.model_validate(rule)
            for rule in self.repo.get_availability_rules(self.db, tenant_id)
        ]

    def load_series(self, booking_id: str, tenant_id: Optional[str]) -> SeriesResponse:
        """Open an existing booking (anchor or any visit of its series) for editing"""
        tenant_id = self.require_tenant(tenant_id)
        rows = self._resolve_series_rows(booking_id, tenant_id)
        anchor = rows[0]
        _, instances = self._snapshot(rows)
        first = instances[0]

        frequency = parse_rule(anchor.recurrence_rule)
        spec = RecurrenceSpec(
            frequency=frequency,
            occurrence_count=anchor.recurrence_count or DEFAULT_RECURRENCE_COUNT,
            anchor_date=first.date,
            anchor_time=first.time,
        )
        template = VisitTemplate(
            service_id=first.service_id,
            price=first.price,
            duration_minutes=first.duration_minutes,
            pay_rate=first.pay_rate,
            start_time=first.time,
            addon_ids=list(first.addon_ids),
            assignments=[a.model_copy() for a in first.assignments],
        )
        details = BookingDetails(
            customer_id=anchor.customer_id,
            status=anchor.status or "pending",
            color=anchor.color or "#6366f1",
            notes_internal=anchor.notes_internal,
            notes_client=anchor.notes_client,
            notes_staff=anchor.notes_staff,
        )

        # A non-recurring booking has no projection, only the template
        projection = instances if spec.is_recurring else []
        catalog = self.repo.get_addon_prices(self.db, tenant_id)
        pricing = price_breakdown(
            projection, spec.is_recurring, first.addon_ids, catalog, template_price=first.price
        )
        # In cascade mode the top-level list is what a save writes to every visit
        cascaded = None
        if spec.is_recurring and self.assignment_mode == "cascade":
            cascaded = first.assignments
        warnings = availability_warnings(instances, self._availability_rules(tenant_id), cascaded)

        logger.info(f"📂 Loaded booking {anchor.id} with {len(instances)} visit(s)")
        return SeriesResponse(
            booking_id=anchor.id,
            details=details,
            recurrence=spec,
            recurrence_rule=anchor.recurrence_rule,
            template=template,
            instances=projection,
            selected_addons=list(first.addon_ids),
            assignments=[a.model_copy() for a in first.assignments],
            pricing=pricing,
            warnings=warnings,
        )

    def delete_candidates(self, booking_id: str, tenant_id: Optional[str]) -> list[DeleteCandidate]:
        """Every row of the series so the operator can pick which visits to delete"""
        tenant_id = self.require_tenant(tenant_id)
        rows = self._resolve_series_rows(booking_id, tenant_id)
        links = self.repo.get_assignment_links(self.db, [row.id for row in rows])

        names: dict[str, list[str]] = {}
        for link in links:
            names.setdefault(link.booking_id, []).append(
                link.member.name if link.member else "Unknown"
            )

        return [
            DeleteCandidate(
                id=row.id,
                start_date=row.start_date,
                price=row.price or 0,
                status=row.status or "pending",
                cleaner_name=", ".join(names.get(row.id, [])) or "Unassigned",
            )
            for row in sorted(rows, key=lambda r: r.start_date)
        ]

    # ========================================================================
    # Stateless helpers for the open form
    # ========================================================================

    def _recurrence_service(
        self, template: VisitTemplate, tenant_id: str
    ) -> Optional[ServiceDefaults]:
        if not (template.use_split_recurrence and template.recurrence_service_id):
            return None

        service = self.repo.get_service(self.db, template.recurrence_service_id, tenant_id)
        if not service:
            raise HTTPException(status_code=404, detail="Recurrence service not found")
        return ServiceDefaults(
            id=service.id,
            price_default=service.price_default or 0,
            duration_minutes=service.duration_minutes,
        )

    def preview(self, data: SeriesPreviewRequest, tenant_id: Optional[str]) -> SeriesPreviewResponse:
        tenant_id = self.require_tenant(tenant_id)
        recurrence_service = self._recurrence_service(data.template, tenant_id)
        instances = expand_recurrence(data.recurrence, data.template, recurrence_service)
        catalog = self.repo.get_addon_prices(self.db, tenant_id)

        return SeriesPreviewResponse(
            recurrence_rule=serialize_rule(data.recurrence.frequency),
            instances=instances,
            pricing=price_breakdown(
                instances,
                data.recurrence.is_recurring,
                data.template.addon_ids,
                catalog,
                data.discount,
                template_price=data.template.price,
            ),
        )

    def pricing(self, data: PricingRequest, tenant_id: Optional[str]) -> PricingBreakdown:
        tenant_id = self.require_tenant(tenant_id)
        catalog = self.repo.get_addon_prices(self.db, tenant_id)
        return price_breakdown(
            data.instances,
            data.recurrence_active,
            data.selected_addons,
            catalog,
            data.discount,
            template_price=data.template_price,
        )

    def propagate(self, data: PropagateRequest, tenant_id: Optional[str]) -> PropagateResponse:
        self.require_tenant(tenant_id)
        instances, count = propagate_instances(data.instances, data.source_id)
        if count == 0 and data.source_id not in {i.id for i in data.instances}:
            raise HTTPException(status_code=404, detail="Source visit not found")
        return PropagateResponse(
            instances=instances,
            updated_count=count,
            message=f"Changes applied to {count} following visit(s)",
        )

    def availability(
        self,
        tenant_id: Optional[str],
        on_date: Optional[date],
        at_time: Optional[str],
        staff_id: Optional[str] = None,
    ) -> AvailabilityResponse:
        tenant_id = self.require_tenant(tenant_id)
        members = self.repo.get_team_members(self.db, tenant_id)
        rules = self._availability_rules(tenant_id)

        available, unavailable = partition_staff(members, on_date, at_time, rules)
        return AvailabilityResponse(
            available=[StaffOption.model_validate(m) for m in available],
            unavailable=[StaffOption.model_validate(m) for m in unavailable],
            slots=generate_time_slots(staff_id, on_date, rules) if on_date else [],
        )

    # ========================================================================
    # Save
    # ========================================================================

    def _visits_for_save(
        self,
        data: SeriesSaveRequest,
        tenant_id: str,
        anchor_id: Optional[str],
        assignments: list[Assignment],
    ) -> list[VisitInstance]:
        spec = data.recurrence
        if spec.anchor_date is None:
            raise HTTPException(status_code=400, detail="Start date is required")

        if spec.is_recurring:
            instances = [i.model_copy(deep=True) for i in data.instances]
            if not instances:
                recurrence_service = self._recurrence_service(data.template, tenant_id)
                instances = expand_recurrence(spec, data.template, recurrence_service)
            if not instances:
                raise HTTPException(status_code=400, detail="Start date and time are required")
        else:
            template = data.template
            instances = [
                VisitInstance(
                    id=placeholder_id(0),
                    date=spec.anchor_date,
                    time=spec.anchor_time or template.start_time,
                    service_id=template.service_id,
                    price=template.price,
                    duration_minutes=template.duration_minutes,
                    pay_rate=template.pay_rate,
                    addon_ids=list(template.addon_ids),
                    assignments=[a.model_copy() for a in assignments],
                )
            ]

        # A client-side regeneration leaves the first visit unsaved; it is still the anchor
        if anchor_id and is_placeholder_id(instances[0].id) and anchor_id not in {
            i.id for i in instances
        }:
            instances[0] = instances[0].model_copy(update={"id": anchor_id})

        return instances

    def _apply_plan(self, plan: ReconciliationPlan, tenant_id: str) -> dict[str, str]:
        """Execute the plan in order; returns placeholder id -> new row id"""
        self.repo.delete_bookings(self.db, plan.to_delete, tenant_id)

        new_ids: dict[str, str] = {}
        for write in plan.to_insert:
            values = dict(write.values)
            parent = values.get("parent_booking_id")
            if parent in new_ids:
                values["parent_booking_id"] = new_ids[parent]
            booking = self.repo.insert_booking(self.db, tenant_id, **values)
            new_ids[write.id] = booking.id

        for write in plan.to_update:
            self.repo.update_booking(self.db, write.id, write.values)

        # Link rows only once every booking id is known
        for instance_id, links in plan.links.items():
            booking_id = new_ids.get(instance_id, instance_id)
            self.repo.delete_addon_links(self.db, booking_id, links.addons_to_delete)
            for addon in links.addons_to_insert:
                self.repo.insert_addon_link(
                    self.db, booking_id, addon.addon_id, addon.price_at_time, addon.quantity
                )
            self.repo.delete_assignments(self.db, booking_id, links.assignments_to_delete)
            for assignment in links.assignments_to_update:
                self.repo.update_assignment_pay_rate(
                    self.db, booking_id, assignment.member_id, assignment.pay_rate
                )
            for assignment in links.assignments_to_insert:
                self.repo.insert_assignment(
                    self.db, booking_id, assignment.member_id, assignment.pay_rate
                )

        return new_ids

    def save_series(
        self, data: SeriesSaveRequest, tenant_id: Optional[str], booking_id: Optional[str] = None
    ) -> SaveResult:
        """
        Create or update a booking and its series in a single transaction.

        Any failing write rolls back every write of the save, so a series is
        never left half-updated.
        """
        tenant_id = self.require_tenant(tenant_id)

        if booking_id:
            rows = self._resolve_series_rows(booking_id, tenant_id)
            persisted, _ = self._snapshot(rows)
        else:
            persisted = PersistedSeries()

        # An empty top-level list falls back to the template for single and recurring saves alike
        assignments = data.assignments or data.template.assignments
        instances = self._visits_for_save(data, tenant_id, persisted.anchor_id, assignments)
        catalog = self.repo.get_addon_prices(self.db, tenant_id)
        mode = data.assignment_mode or self.assignment_mode

        try:
            plan = reconcile(
                instances,
                persisted,
                data.details,
                serialize_rule(data.recurrence.frequency),
                catalog,
                assignments=assignments,
                assignment_mode=mode,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        try:
            new_ids = self._apply_plan(plan, tenant_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to save booking series {plan.anchor_id}: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to save booking series: {e}")

        anchor_id = new_ids.get(plan.anchor_id, plan.anchor_id)
        created = [new_ids[w.id] for w in plan.to_insert]
        updated = [w.id for w in plan.to_update]

        if booking_id:
            message = "Booking series updated"
        elif len(instances) > 1:
            message = f"{len(instances)} bookings created"
        else:
            message = "Booking created"

        logger.info(
            f"✅ Saved booking {anchor_id}: {len(created)} created, {len(updated)} updated, "
            f"{len(plan.to_delete)} deleted"
        )
        return SaveResult(
            booking_id=anchor_id,
            created=created,
            updated=updated,
            deleted=list(plan.to_delete),
            message=message,
        )

    # ========================================================================
    # Delete
    # ========================================================================

    def delete_bookings(self, booking_ids: list[str], tenant_id: Optional[str]) -> DeleteResult:
        """Delete the selected visits; deleting an anchor removes its whole series"""
        tenant_id = self.require_tenant(tenant_id)

        try:
            parent_ids = self.repo.get_parent_ids(self.db, booking_ids, tenant_id)
            deleted_count = self.repo.delete_bookings(self.db, booking_ids, tenant_id)
            for parent_id in parent_ids - set(booking_ids):
                self.repo.refresh_recurrence_count(self.db, parent_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to delete bookings {booking_ids}: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete bookings")

        if deleted_count == 0:
            raise HTTPException(status_code=404, detail="No bookings found")

        logger.info(f"🗑️ Deleted {deleted_count} booking(s) for tenant {tenant_id}")
        return DeleteResult(
            message=f"Successfully deleted {deleted_count} booking(s)",
            deletedCount=deleted_count,
        )
