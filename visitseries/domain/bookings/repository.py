"""Booking repository - Database operations for bookings and their link rows"""

from typing import Any, Optional

from sqlalchemy.orm import Session

from ...models import (
    Addon,
    Booking,
    BookingAddon,
    BookingAssignment,
    Service,
    TeamAvailability,
    TeamMember,
)


class BookingRepository:
    """Repository for booking series database operations.

    Writes only flush; the caller owns the transaction.
    """

    # Series reads
    @staticmethod
    def get_booking(db: Session, booking_id: str, tenant_id: str) -> Optional[Booking]:
        return (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def get_series(db: Session, parent_id: str, tenant_id: str) -> list[Booking]:
        """Anchor plus every visit pointing at it, anchor first then by start date"""
        rows = (
            db.query(Booking)
            .filter(
                Booking.tenant_id == tenant_id,
                (Booking.id == parent_id) | (Booking.parent_booking_id == parent_id),
            )
            .order_by(Booking.start_date.asc())
            .all()
        )
        return sorted(rows, key=lambda row: row.id != parent_id)

    @staticmethod
    def get_addon_links(db: Session, booking_ids: list[str]) -> list[BookingAddon]:
        if not booking_ids:
            return []
        return db.query(BookingAddon).filter(BookingAddon.booking_id.in_(booking_ids)).all()

    @staticmethod
    def get_assignment_links(db: Session, booking_ids: list[str]) -> list[BookingAssignment]:
        if not booking_ids:
            return []
        return (
            db.query(BookingAssignment)
            .filter(BookingAssignment.booking_id.in_(booking_ids))
            .all()
        )

    # Catalog reads
    @staticmethod
    def get_addon_prices(db: Session, tenant_id: str) -> dict[str, float]:
        rows = db.query(Addon.id, Addon.price).filter(Addon.tenant_id == tenant_id).all()
        return {addon_id: price or 0 for addon_id, price in rows}

    @staticmethod
    def get_service(db: Session, service_id: str, tenant_id: str) -> Optional[Service]:
        return (
            db.query(Service)
            .filter(Service.id == service_id, Service.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def get_team_members(db: Session, tenant_id: str) -> list[TeamMember]:
        return (
            db.query(TeamMember)
            .filter(TeamMember.tenant_id == tenant_id)
            .order_by(TeamMember.name.asc())
            .all()
        )

    @staticmethod
    def get_availability_rules(db: Session, tenant_id: str) -> list[TeamAvailability]:
        return (
            db.query(TeamAvailability)
            .join(TeamMember, TeamAvailability.member_id == TeamMember.id)
            .filter(TeamMember.tenant_id == tenant_id)
            .all()
        )

    # Booking writes
    @staticmethod
    def insert_booking(db: Session, tenant_id: str, **values: Any) -> Booking:
        booking = Booking(tenant_id=tenant_id, **values)
        db.add(booking)
        db.flush()
        return booking

    @staticmethod
    def update_booking(db: Session, booking_id: str, patch: dict[str, Any]) -> None:
        if patch:
            db.query(Booking).filter(Booking.id == booking_id).update(
                patch, synchronize_session=False
            )
            db.flush()

    @staticmethod
    def delete_bookings(db: Session, booking_ids: list[str], tenant_id: str) -> int:
        """Delete rows and their link rows; children of a deleted anchor go too"""
        if not booking_ids:
            return 0

        children = (
            db.query(Booking.id)
            .filter(Booking.tenant_id == tenant_id, Booking.parent_booking_id.in_(booking_ids))
            .all()
        )
        all_ids = list(dict.fromkeys([*booking_ids, *(child.id for child in children)]))

        db.query(BookingAddon).filter(BookingAddon.booking_id.in_(all_ids)).delete(
            synchronize_session=False
        )
        db.query(BookingAssignment).filter(BookingAssignment.booking_id.in_(all_ids)).delete(
            synchronize_session=False
        )
        # Children before anchors so the self-reference never dangles
        deleted = (
            db.query(Booking)
            .filter(Booking.tenant_id == tenant_id, Booking.id.in_(all_ids))
            .filter(Booking.parent_booking_id.isnot(None))
            .delete(synchronize_session=False)
        )
        deleted += (
            db.query(Booking)
            .filter(Booking.tenant_id == tenant_id, Booking.id.in_(all_ids))
            .delete(synchronize_session=False)
        )
        db.flush()
        return deleted

    @staticmethod
    def get_parent_ids(db: Session, booking_ids: list[str], tenant_id: str) -> set[str]:
        rows = (
            db.query(Booking.parent_booking_id)
            .filter(Booking.tenant_id == tenant_id, Booking.id.in_(booking_ids))
            .filter(Booking.parent_booking_id.isnot(None))
            .all()
        )
        return {row.parent_booking_id for row in rows}

    @staticmethod
    def refresh_recurrence_count(db: Session, parent_id: str) -> None:
        """Keep the anchor's recurrence_count equal to the visits that still exist"""
        children = db.query(Booking).filter(Booking.parent_booking_id == parent_id).count()
        db.query(Booking).filter(
            Booking.id == parent_id, Booking.recurrence_rule.isnot(None)
        ).update({"recurrence_count": children + 1}, synchronize_session=False)
        db.flush()

    # Link writes
    @staticmethod
    def insert_addon_link(
        db: Session, booking_id: str, addon_id: str, price_at_time: float, quantity: int = 1
    ) -> BookingAddon:
        link = BookingAddon(
            booking_id=booking_id,
            addon_id=addon_id,
            price_at_time=price_at_time,
            quantity=quantity,
        )
        db.add(link)
        db.flush()
        return link

    @staticmethod
    def delete_addon_links(db: Session, booking_id: str, addon_ids: list[str]) -> None:
        if addon_ids:
            db.query(BookingAddon).filter(
                BookingAddon.booking_id == booking_id, BookingAddon.addon_id.in_(addon_ids)
            ).delete(synchronize_session=False)
            db.flush()

    @staticmethod
    def insert_assignment(
        db: Session, booking_id: str, member_id: str, pay_rate: float
    ) -> BookingAssignment:
        link = BookingAssignment(
            booking_id=booking_id, member_id=member_id, pay_rate=pay_rate, status="pending"
        )
        db.add(link)
        db.flush()
        return link

    @staticmethod
    def update_assignment_pay_rate(
        db: Session, booking_id: str, member_id: str, pay_rate: float
    ) -> None:
        db.query(BookingAssignment).filter(
            BookingAssignment.booking_id == booking_id, BookingAssignment.member_id == member_id
        ).update({"pay_rate": pay_rate}, synchronize_session=False)
        db.flush()

    @staticmethod
    def delete_assignments(db: Session, booking_id: str, member_ids: list[str]) -> None:
        if member_ids:
            db.query(BookingAssignment).filter(
                BookingAssignment.booking_id == booking_id,
                BookingAssignment.member_id.in_(member_ids),
            ).delete(synchronize_session=False)
            db.flush()
