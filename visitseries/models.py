"""
Booking Series Models

A recurring series is stored as one anchor row (parent_booking_id is NULL,
recurrence_rule set) plus one row per generated visit pointing back at it.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_uuid():
    """Generate a row identifier"""
    return str(uuid.uuid4())


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price_default = Column(Float, default=0, nullable=False)
    duration_minutes = Column(Integer, default=60, nullable=False)
    category_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Addon(Base):
    __tablename__ = "addons"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, default=0, nullable=False)
    category = Column(String(100), nullable=True)
    is_standalone = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class TeamMember(Base):
    """Staff member who can be assigned to visits (not the login principal)"""

    __tablename__ = "team_members"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(String(50), default="cleaner")
    pay_rate = Column(Float, default=0, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    availability = relationship(
        "TeamAvailability", back_populates="member", cascade="all, delete-orphan"
    )


class TeamAvailability(Base):
    """Weekly working-hours rule for a team member"""

    __tablename__ = "team_availability"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    member_id = Column(
        String(36), ForeignKey("team_members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)  # HH:MM
    is_available = Column(Boolean, default=True, nullable=False)

    member = relationship("TeamMember", back_populates="availability")


class Booking(Base):
    """A single service visit, optionally part of a recurring series"""

    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    customer_id = Column(String(36), nullable=True, index=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=True)

    # Series: NULL for the anchor, anchor id for generated visits
    parent_booking_id = Column(
        String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=True, index=True
    )
    recurrence_rule = Column(String(100), nullable=True)  # FREQ=WEEKLY;INTERVAL=2
    recurrence_count = Column(Integer, nullable=True)  # actual instance count at last save

    # Scheduling
    start_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, default=60, nullable=False)

    # Pricing (price includes this visit's add-ons)
    price = Column(Float, default=0, nullable=False)
    cleaner_pay_rate = Column(Float, default=0, nullable=False)

    status = Column(String(50), default="pending", nullable=False, index=True)
    color = Column(String(20), default="#6366f1")
    notes_internal = Column(Text, nullable=True)
    notes_client = Column(Text, nullable=True)
    notes_staff = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    addons = relationship("BookingAddon", back_populates="booking", cascade="all, delete-orphan")
    assignments = relationship(
        "BookingAssignment", back_populates="booking", cascade="all, delete-orphan"
    )


class BookingAddon(Base):
    __tablename__ = "booking_addons"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    booking_id = Column(
        String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    addon_id = Column(String(36), ForeignKey("addons.id"), nullable=False)
    price_at_time = Column(Float, default=0, nullable=False)  # snapshot, never corrected
    quantity = Column(Integer, default=1, nullable=False)

    booking = relationship("Booking", back_populates="addons")


class BookingAssignment(Base):
    __tablename__ = "booking_assignments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    booking_id = Column(
        String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    member_id = Column(String(36), ForeignKey("team_members.id"), nullable=False)
    pay_rate = Column(Float, default=0, nullable=False)
    status = Column(String(50), default="pending", nullable=False)

    booking = relationship("Booking", back_populates="assignments")
    member = relationship("TeamMember")
