"""Booking series router - FastAPI endpoints for recurring bookings"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_tenant_id
from ...database import get_db
from .schemas import (
    AvailabilityResponse,
    DeleteBookingsRequest,
    DeleteCandidate,
    DeleteResult,
    PricingBreakdown,
    PricingRequest,
    PropagateRequest,
    PropagateResponse,
    SaveResult,
    SeriesPreviewRequest,
    SeriesPreviewResponse,
    SeriesResponse,
    SeriesSaveRequest,
)
from .service import BookingSeriesService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(db: Session = Depends(get_db)) -> BookingSeriesService:
    """Dependency injection for BookingSeriesService"""
    return BookingSeriesService(db)


# ============================================================================
# FORM HELPERS (no writes)
# ============================================================================


@router.post("/series/preview", response_model=SeriesPreviewResponse)
async def preview_series(
    data: SeriesPreviewRequest,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: BookingSeriesService = Depends(get_booking_service),
):
    """Expand a recurrence rule into dated visits with the running total"""
    return service.preview(data, tenant_id)


@router.post("/series/propagate", response_model=PropagateResponse)
async def propagate_changes(
    data: PropagateRequest,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: BookingSeriesService = Depends(get_booking_service),
):
    """Apply one visit's settings to every visit after it"""
    return service.propagate(data, tenant_id)


@router.post("/series/pricing", response_model=PricingBreakdown)
async def calculate_pricing(
    data: PricingRequest,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: BookingSeriesService = Depends(get_booking_service),
):
    """Grand total for the booking form"""
    return service.pricing(data, tenant_id)


@router.get("/availability", response_model=AvailabilityResponse)
async def staff_availability(
    on_date: Optional[date] = Query(None, alias="date", description="Visit date"),
    at_time: Optional[str] = Query(None, alias="time", description="Visit time (HH:MM)"),
    staff_id: Optional[str] = Query(None, description="Staff member for time slot labels"),
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: BookingSeriesService = Depends(get_booking_service),
):
    """Group staff by availability; advisory only"""
    return service.availability(tenant_id, on_date, at_time, staff_id)


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.post("/series", response_model=SaveResult)
async def create_series(
    data: SeriesSaveRequest,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: BookingSeriesService = Depends(get_booking_service),
):
    """Create a single booking or a recurring series"""
    return service.save_series(data, tenant_id)


@router.post("/series/delete", response_model=DeleteResult)
async def delete_bookings(
    data: DeleteBookingsRequest,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: BookingSeriesService = Depends(get_booking_service),
):
    """Delete the selected visits of a series"""
    return service.delete_bookings(data.booking_ids, tenant_id)


@router.get("/{booking_id}/series", response_model=SeriesResponse)
async def get_series(
    booking_id: str,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: BookingSeriesService = Depends(get_booking_service),
):
    """Load a booking and its series for editing"""
    return service.load_series(booking_id, tenant_id)


@router.put("/{booking_id}/series", response_model=SaveResult)
async def update_series(
    booking_id: str,
    data: SeriesSaveRequest,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: BookingSeriesService = Depends(get_booking_service),
):
    """Reconcile the edited visits against the stored series"""
    return service.save_series(data, tenant_id, booking_id=booking_id)


@router.get("/{booking_id}/series/delete-candidates", response_model=list[DeleteCandidate])
async def get_delete_candidates(
    booking_id: str,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    service: BookingSeriesService = Depends(get_booking_service),
):
    """List every visit of the series for selective deletion"""
    return service.delete_candidates(booking_id, tenant_id)
