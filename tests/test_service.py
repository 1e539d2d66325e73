from datetime import date

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError

from visitseries import models
from visitseries.domain.bookings.recurrence import expand_recurrence
from visitseries.domain.bookings.repository import BookingRepository
from visitseries.domain.bookings.schemas import (
    Assignment,
    BookingDetails,
    PropagateRequest,
    SeriesPreviewRequest,
    SeriesSaveRequest,
    VisitInstance,
)
from visitseries.domain.bookings.service import BookingSeriesService

TENANT_ID = "tenant-1"


@pytest.fixture
def service(db, catalog):
    return BookingSeriesService(db)


@pytest.fixture
def created(service, weekly_spec, template):
    data = SeriesSaveRequest(
        details=BookingDetails(customer_id="cust-1"),
        recurrence=weekly_spec,
        template=template,
        assignments=template.assignments,
    )
    return service.save_series(data, TENANT_ID)


def resave_request(loaded, **overrides):
    fields = dict(
        details=loaded.details,
        recurrence=loaded.recurrence,
        template=loaded.template,
        instances=loaded.instances,
        assignments=loaded.assignments,
    )
    fields.update(overrides)
    return SeriesSaveRequest(**fields)


def booking_count(db):
    return db.query(models.Booking).count()


def test_create_recurring_series(db, created):
    assert created.message == "4 bookings created"
    assert len(created.created) == 4
    assert created.booking_id == created.created[0]

    anchor = db.get(models.Booking, created.booking_id)
    assert anchor.parent_booking_id is None
    assert anchor.recurrence_rule == "FREQ=WEEKLY"
    assert anchor.recurrence_count == 4

    children = db.query(models.Booking).filter(models.Booking.parent_booking_id == anchor.id).all()
    assert len(children) == 3
    # Stored price embeds the fridge add-on
    assert {c.price for c in children} == {125}

    links = db.query(models.BookingAddon).all()
    assert len(links) == 4
    assert {link.price_at_time for link in links} == {25}
    assert db.query(models.BookingAssignment).count() == 4


def test_create_single_booking(db, service, weekly_spec, template):
    data = SeriesSaveRequest(
        details=BookingDetails(customer_id="cust-1"),
        recurrence=weekly_spec.model_copy(update={"frequency": "none"}),
        template=template,
    )
    result = service.save_series(data, TENANT_ID)

    assert result.message == "Booking created"
    booking = db.get(models.Booking, result.booking_id)
    assert booking.recurrence_rule is None
    assert booking.recurrence_count is None
    assert booking.start_date.hour == 9
    assert [a.member_id for a in booking.assignments] == ["member-ana"]


def test_load_restores_base_prices(service, created):
    loaded = service.load_series(created.booking_id, TENANT_ID)

    assert loaded.recurrence.frequency == "weekly"
    assert loaded.recurrence.occurrence_count == 4
    assert [i.id for i in loaded.instances] == created.created
    assert all(i.is_persisted for i in loaded.instances)
    assert {i.price for i in loaded.instances} == {100}
    assert loaded.selected_addons == ["addon-fridge"]
    assert loaded.template.price == 100
    assert [a.display_name for a in loaded.assignments] == ["Ana"]
    assert loaded.pricing.total == 400 + 25 * 4


def test_load_from_any_visit_opens_the_series(service, created):
    loaded = service.load_series(created.created[2], TENANT_ID)

    assert loaded.booking_id == created.booking_id
    assert len(loaded.instances) == 4


def test_resave_without_changes_writes_nothing(service, created):
    loaded = service.load_series(created.booking_id, TENANT_ID)

    result = service.save_series(resave_request(loaded), TENANT_ID, booking_id=created.booking_id)

    assert result.created == [] and result.updated == [] and result.deleted == []
    assert result.message == "Booking series updated"


def test_remove_and_add_visits(db, service, created):
    loaded = service.load_series(created.booking_id, TENANT_ID)
    removed = loaded.instances[2].id
    extra = VisitInstance(
        id="instance-7",
        date=date(2024, 7, 1),
        time="11:00",
        service_id="svc-standard",
        price=100,
        duration_minutes=120,
        pay_rate=50,
    )
    instances = [i for i in loaded.instances if i.id != removed] + [extra]

    result = service.save_series(
        resave_request(loaded, instances=instances), TENANT_ID, booking_id=created.booking_id
    )

    assert result.deleted == [removed]
    assert len(result.created) == 1
    # Same number of visits, so the anchor row is untouched
    assert result.updated == []
    assert db.get(models.Booking, removed) is None

    new_row = db.get(models.Booking, result.created[0])
    assert new_row.parent_booking_id == created.booking_id
    assert new_row.price == 100
    assert booking_count(db) == 4


def test_removing_a_visit_updates_anchor_count(db, service, created):
    loaded = service.load_series(created.booking_id, TENANT_ID)

    result = service.save_series(
        resave_request(loaded, instances=loaded.instances[:3]),
        TENANT_ID,
        booking_id=created.booking_id,
    )

    assert result.updated == [created.booking_id]
    assert db.get(models.Booking, created.booking_id).recurrence_count == 3


def test_edit_one_visit_updates_only_that_row(db, service, created):
    loaded = service.load_series(created.booking_id, TENANT_ID)
    instances = list(loaded.instances)
    instances[1] = instances[1].model_copy(update={"price": 140, "time": "14:00"})

    result = service.save_series(
        resave_request(loaded, instances=instances), TENANT_ID, booking_id=created.booking_id
    )

    assert result.updated == [instances[1].id]
    row = db.get(models.Booking, instances[1].id)
    assert row.price == 165
    assert row.start_date.hour == 14


def test_switching_to_single_deletes_children(db, service, created):
    loaded = service.load_series(created.booking_id, TENANT_ID)
    recurrence = loaded.recurrence.model_copy(update={"frequency": "none"})

    result = service.save_series(
        resave_request(loaded, recurrence=recurrence, instances=[]),
        TENANT_ID,
        booking_id=created.booking_id,
    )

    assert sorted(result.deleted) == sorted(created.created[1:])
    assert booking_count(db) == 1
    anchor = db.get(models.Booking, created.booking_id)
    assert anchor.recurrence_rule is None
    assert anchor.recurrence_count is None


def test_regenerated_projection_keeps_stored_anchor(db, service, created):
    loaded = service.load_series(created.booking_id, TENANT_ID)
    recurrence = loaded.recurrence.model_copy(update={"occurrence_count": 2})

    # No instances sent: the series is expanded again from the template
    result = service.save_series(
        resave_request(loaded, recurrence=recurrence, instances=[]),
        TENANT_ID,
        booking_id=created.booking_id,
    )

    assert result.booking_id == created.booking_id
    assert len(result.deleted) == 3
    assert len(result.created) == 1
    assert booking_count(db) == 2


def test_per_instance_assignments(db, service, weekly_spec, template):
    instances = expand_recurrence(weekly_spec, template)
    instances[1] = instances[1].model_copy(
        update={"assignments": [Assignment(member_id="member-bruno", pay_rate=60)]}
    )
    data = SeriesSaveRequest(
        details=BookingDetails(customer_id="cust-1"),
        recurrence=weekly_spec,
        template=template,
        instances=instances,
        assignments=template.assignments,
        assignment_mode="per_instance",
    )

    result = service.save_series(data, TENANT_ID)

    second = db.get(models.Booking, result.created[1])
    assert [a.member_id for a in second.assignments] == ["member-bruno"]
    first = db.get(models.Booking, result.created[0])
    assert [a.member_id for a in first.assignments] == ["member-ana"]


def test_cascade_assignments_replace_visit_assignments(db, service, created):
    loaded = service.load_series(created.booking_id, TENANT_ID)

    service.save_series(
        resave_request(loaded, assignments=[Assignment(member_id="member-bruno", pay_rate=60)]),
        TENANT_ID,
        booking_id=created.booking_id,
    )

    links = db.query(models.BookingAssignment).all()
    assert len(links) == 4
    assert {link.member_id for link in links} == {"member-bruno"}


def test_missing_tenant_rejected_before_any_write(db, service, weekly_spec, template):
    data = SeriesSaveRequest(recurrence=weekly_spec, template=template)

    with pytest.raises(HTTPException) as exc:
        service.save_series(data, None)

    assert exc.value.status_code == 403
    assert booking_count(db) == 0


def test_other_tenant_cannot_load_series(service, created):
    with pytest.raises(HTTPException) as exc:
        service.load_series(created.booking_id, "tenant-2")

    assert exc.value.status_code == 404


def test_foreign_visit_id_is_rejected(service, created):
    loaded = service.load_series(created.booking_id, TENANT_ID)
    instances = list(loaded.instances)
    instances[1] = instances[1].model_copy(update={"id": "not-in-series"})

    with pytest.raises(HTTPException) as exc:
        service.save_series(
            resave_request(loaded, instances=instances), TENANT_ID, booking_id=created.booking_id
        )

    assert exc.value.status_code == 400


def test_failed_create_rolls_back_every_write(db, service, weekly_spec, template, monkeypatch):
    def fail(*args, **kwargs):
        raise SQLAlchemyError("link table unavailable")

    monkeypatch.setattr(BookingRepository, "insert_addon_link", staticmethod(fail))
    data = SeriesSaveRequest(
        details=BookingDetails(customer_id="cust-1"), recurrence=weekly_spec, template=template
    )

    with pytest.raises(HTTPException) as exc:
        service.save_series(data, TENANT_ID)

    assert exc.value.status_code == 500
    assert booking_count(db) == 0


def test_failed_update_leaves_series_untouched(db, service, created, monkeypatch):
    loaded = service.load_series(created.booking_id, TENANT_ID)

    def fail(*args, **kwargs):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(BookingRepository, "update_booking", staticmethod(fail))

    with pytest.raises(HTTPException):
        service.save_series(
            resave_request(loaded, instances=loaded.instances[:2]),
            TENANT_ID,
            booking_id=created.booking_id,
        )

    assert booking_count(db) == 4
    assert db.get(models.Booking, created.booking_id).recurrence_count == 4


def test_delete_candidates(service, created):
    candidates = service.delete_candidates(created.created[1], TENANT_ID)

    assert [c.id for c in candidates] == created.created
    assert {c.cleaner_name for c in candidates} == {"Ana"}
    assert candidates[0].price == 125


def test_delete_visit_refreshes_anchor_count(db, service, created):
    result = service.delete_bookings([created.created[3]], TENANT_ID)

    assert result.deletedCount == 1
    assert db.get(models.Booking, created.booking_id).recurrence_count == 3


def test_delete_anchor_removes_series(db, service, created):
    result = service.delete_bookings([created.booking_id], TENANT_ID)

    assert result.deletedCount == 4
    assert booking_count(db) == 0
    assert db.query(models.BookingAddon).count() == 0
    assert db.query(models.BookingAssignment).count() == 0


def test_delete_unknown_booking(service):
    with pytest.raises(HTTPException) as exc:
        service.delete_bookings(["missing"], TENANT_ID)

    assert exc.value.status_code == 404


def test_preview_with_split_service(service, weekly_spec, template):
    split = template.model_copy(
        update={"use_split_recurrence": True, "recurrence_service_id": "svc-maintenance"}
    )

    preview = service.preview(SeriesPreviewRequest(recurrence=weekly_spec, template=split), TENANT_ID)

    assert preview.recurrence_rule == "FREQ=WEEKLY"
    assert [i.service_id for i in preview.instances][:2] == ["svc-standard", "svc-maintenance"]
    assert preview.instances[1].price == 80
    assert preview.pricing.total == 100 + 80 * 3 + 25 * 4


def test_preview_unknown_recurrence_service(service, weekly_spec, template):
    split = template.model_copy(
        update={"use_split_recurrence": True, "recurrence_service_id": "svc-missing"}
    )

    with pytest.raises(HTTPException) as exc:
        service.preview(SeriesPreviewRequest(recurrence=weekly_spec, template=split), TENANT_ID)

    assert exc.value.status_code == 404


def test_propagate_unknown_source(service):
    with pytest.raises(HTTPException) as exc:
        service.propagate(PropagateRequest(instances=[], source_id="missing"), TENANT_ID)

    assert exc.value.status_code == 404


def test_propagate_requires_tenant(service, weekly_spec, template):
    instances = expand_recurrence(weekly_spec, template)

    with pytest.raises(HTTPException) as exc:
        service.propagate(PropagateRequest(instances=instances, source_id="instance-0"), None)

    assert exc.value.status_code == 403


def test_catalog_price_change_does_not_reprice_saved_visits(db, service, created):
    db.get(models.Addon, "addon-fridge").price = 30
    db.commit()

    for _ in range(2):
        loaded = service.load_series(created.booking_id, TENANT_ID)
        result = service.save_series(
            resave_request(loaded), TENANT_ID, booking_id=created.booking_id
        )

        assert {i.price for i in loaded.instances} == {100}
        assert result.updated == []

    assert db.get(models.Booking, created.booking_id).price == 125


def test_recurring_create_falls_back_to_template_assignments(db, service, weekly_spec, template):
    data = SeriesSaveRequest(
        details=BookingDetails(customer_id="cust-1"), recurrence=weekly_spec, template=template
    )

    result = service.save_series(data, TENANT_ID)

    for booking_id in result.created:
        booking = db.get(models.Booking, booking_id)
        assert [a.member_id for a in booking.assignments] == ["member-ana"]


def test_load_warnings_follow_assignment_mode(db, weekly_spec, template, catalog):
    instances = expand_recurrence(weekly_spec, template)
    # Bruno is off on Mondays
    instances[1] = instances[1].model_copy(
        update={"assignments": [Assignment(member_id="member-bruno", pay_rate=60)]}
    )
    data = SeriesSaveRequest(
        details=BookingDetails(customer_id="cust-1"),
        recurrence=weekly_spec,
        template=template,
        instances=instances,
        assignment_mode="per_instance",
    )
    created = BookingSeriesService(db).save_series(data, TENANT_ID)

    per_instance = BookingSeriesService(db, assignment_mode="per_instance")
    warnings = per_instance.load_series(created.booking_id, TENANT_ID).warnings
    assert [(w.instance_id, w.member_id) for w in warnings] == [
        (created.created[1], "member-bruno")
    ]

    # Cascade will write Ana to every visit on save, and she works Mondays
    cascade = BookingSeriesService(db, assignment_mode="cascade")
    assert cascade.load_series(created.booking_id, TENANT_ID).warnings == []


def test_availability_groups_staff(service):
    result = service.availability(TENANT_ID, date(2024, 6, 3), "09:00", staff_id="member-ana")

    assert [s.id for s in result.available] == ["member-ana"]
    assert [s.id for s in result.unavailable] == ["member-bruno"]
    slots = {s.time: s.available for s in result.slots}
    assert slots["09:00"] is True
    assert slots["18:00"] is False
