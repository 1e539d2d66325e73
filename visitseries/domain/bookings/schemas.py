"""Booking series schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from ...config import DEFAULT_RECURRENCE_COUNT, PLACEHOLDER_ID_PREFIX
from ...shared.validators import dedupe_ids, validate_hex_color, validate_hhmm

Frequency = Literal["none", "daily", "weekly", "biweekly", "monthly"]
DiscountKind = Literal["fixed", "percent"]
ProjectionState = Literal["uninitialized", "generated", "loaded", "user_edited"]
AssignmentSyncMode = Literal["cascade", "per_instance"]


def is_placeholder_id(instance_id: str) -> bool:
    """True for in-memory ids that have never been written to storage"""
    return instance_id.startswith(PLACEHOLDER_ID_PREFIX)


class Assignment(BaseModel):
    """Staff member assigned to a visit, with that visit's payout"""

    member_id: str
    pay_rate: float = 0
    display_name: str = ""


class ServiceDefaults(BaseModel):
    """Catalog defaults of a service, used for split-service expansion"""

    id: str
    price_default: float = 0
    duration_minutes: Optional[int] = None


class AvailabilityRule(BaseModel):
    """Weekly working hours of one staff member for one weekday (0 = Sunday)"""

    member_id: str
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: str
    end_time: str
    is_available: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, v):
        return validate_hhmm(v)

    class Config:
        from_attributes = True


class VisitTemplate(BaseModel):
    """Default attributes applied to every freshly generated visit"""

    service_id: Optional[str] = None
    price: float = Field(0, ge=0)
    duration_minutes: int = Field(60, gt=0)
    pay_rate: float = Field(0, ge=0)
    start_time: str = "09:00"
    addon_ids: list[str] = Field(default_factory=list)
    assignments: list[Assignment] = Field(default_factory=list)

    # Split service: first visit uses the primary service, later visits this one
    use_split_recurrence: bool = False
    recurrence_service_id: Optional[str] = None
    recurrence_price: Optional[float] = Field(None, ge=0)

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v):
        return validate_hhmm(v)

    @field_validator("addon_ids")
    @classmethod
    def unique_addons(cls, v):
        return dedupe_ids(v)


class RecurrenceSpec(BaseModel):
    frequency: Frequency = "none"
    occurrence_count: int = Field(DEFAULT_RECURRENCE_COUNT, ge=1)
    anchor_date: Optional[date] = None
    anchor_time: Optional[str] = None

    @field_validator("anchor_time")
    @classmethod
    def validate_anchor_time(cls, v):
        return validate_hhmm(v)

    @property
    def is_recurring(self) -> bool:
        return self.frequency != "none"

    def parameters(self) -> tuple:
        """Values whose change invalidates a generated projection"""
        return (self.frequency, self.occurrence_count, self.anchor_date, self.anchor_time)


class VisitInstance(BaseModel):
    """One concrete visit of a series, editable independently of its siblings"""

    id: str
    date: date
    time: str
    service_id: Optional[str] = None
    price: float = Field(0, ge=0)
    duration_minutes: int = Field(60, gt=0)
    pay_rate: float = Field(0, ge=0)
    addon_ids: list[str] = Field(default_factory=list)
    assignments: list[Assignment] = Field(default_factory=list)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        return validate_hhmm(v)

    @field_validator("addon_ids")
    @classmethod
    def unique_addons(cls, v):
        return dedupe_ids(v)

    @computed_field
    @property
    def is_persisted(self) -> bool:
        return not is_placeholder_id(self.id)

    def start_datetime(self) -> datetime:
        hours, minutes = (int(part) for part in self.time.split(":"))
        return datetime(self.date.year, self.date.month, self.date.day, hours, minutes)


class Discount(BaseModel):
    kind: DiscountKind = "fixed"
    value: float = Field(0, ge=0)
    reason: Optional[str] = None


class BookingDetails(BaseModel):
    """Booking-level fields shared by every visit of a series"""

    customer_id: Optional[str] = None
    status: str = "pending"
    color: str = "#6366f1"
    notes_internal: Optional[str] = None
    notes_client: Optional[str] = None
    notes_staff: Optional[str] = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v):
        return validate_hex_color(v)


# ============================================================================
# REQUESTS
# ============================================================================


class SeriesPreviewRequest(BaseModel):
    recurrence: RecurrenceSpec
    template: VisitTemplate
    discount: Discount = Field(default_factory=Discount)


class PropagateRequest(BaseModel):
    instances: list[VisitInstance]
    source_id: str


class PricingRequest(BaseModel):
    instances: list[VisitInstance] = Field(default_factory=list)
    recurrence_active: bool = False
    template_price: float = 0
    selected_addons: list[str] = Field(default_factory=list)
    discount: Discount = Field(default_factory=Discount)


class SeriesSaveRequest(BaseModel):
    """Everything the booking form submits on save"""

    details: BookingDetails = Field(default_factory=BookingDetails)
    recurrence: RecurrenceSpec
    template: VisitTemplate
    # The edited projection; empty for a non-recurring booking
    instances: list[VisitInstance] = Field(default_factory=list)
    # Top-level assignment list (cascaded to every visit in "cascade" mode)
    assignments: list[Assignment] = Field(default_factory=list)
    assignment_mode: Optional[AssignmentSyncMode] = None


class DeleteBookingsRequest(BaseModel):
    booking_ids: list[str] = Field(..., min_length=1)


# ============================================================================
# RESPONSES
# ============================================================================


class PricingBreakdown(BaseModel):
    instances_total: float
    addons_per_visit: float
    count: int
    subtotal: float
    discount_amount: float
    total: float


class AvailabilityWarning(BaseModel):
    instance_id: str
    date: date
    time: str
    member_id: str
    display_name: str = ""


class SeriesPreviewResponse(BaseModel):
    recurrence_rule: Optional[str]
    instances: list[VisitInstance]
    pricing: PricingBreakdown


class PropagateResponse(BaseModel):
    instances: list[VisitInstance]
    updated_count: int
    message: str


class SeriesResponse(BaseModel):
    booking_id: str
    details: BookingDetails
    recurrence: RecurrenceSpec
    recurrence_rule: Optional[str]
    template: VisitTemplate
    instances: list[VisitInstance]
    selected_addons: list[str]
    assignments: list[Assignment]
    pricing: PricingBreakdown
    warnings: list[AvailabilityWarning] = Field(default_factory=list)


class SaveResult(BaseModel):
    booking_id: str
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    message: str


class TimeSlot(BaseModel):
    time: str
    available: bool


class StaffOption(BaseModel):
    id: str
    name: str
    pay_rate: float = 0

    class Config:
        from_attributes = True


class AvailabilityResponse(BaseModel):
    available: list[StaffOption]
    unavailable: list[StaffOption]
    slots: list[TimeSlot] = Field(default_factory=list)


class DeleteCandidate(BaseModel):
    id: str
    start_date: datetime
    price: float
    status: str
    cleaner_name: str


class DeleteResult(BaseModel):
    message: str
    deletedCount: int
