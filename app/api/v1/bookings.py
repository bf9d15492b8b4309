from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from app.context import RequestContext
from app.database import get_core1_db, get_core2_db
from app.dependencies import require_permission
from app.models.booking import BookingStatus
from app.models.role import MANAGE_BOOKINGS, VIEW_BOOKINGS, CREATE_BOOKING, UPDATE_STATUS
from app.schemas.booking import (
    BookingCreateRequest, AssignDriverRequest, UnassignDriverRequest,
    StatusUpdateRequest, CancelBookingRequest, CompleteBookingRequest,
)
from app.schemas.common import success_response, paginated_response
from app.services.assignment_service import assignment_service
from app.services.booking_service import booking_service
from app.services.geocoding_service import Geocoder, get_geocoder

router = APIRouter(prefix="/bookings")


@router.get("", summary="List bookings (scoped to the caller)")
def list_bookings(
    page:      int                     = Query(1, ge=1),
    limit:     int                     = Query(20, ge=1, le=100),
    status:    Optional[BookingStatus] = Query(None),
    driver_id: Optional[int]           = Query(None, ge=1),
    core2:     Session                 = Depends(get_core2_db),
    ctx:       RequestContext          = Depends(require_permission(VIEW_BOOKINGS, CREATE_BOOKING, UPDATE_STATUS)),
):
    data, total = booking_service.list_bookings(core2, ctx, page, limit, status, driver_id)
    return paginated_response("Bookings retrieved successfully", data, total, page, limit)


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create a booking")
def create_booking(
    body:  BookingCreateRequest,
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(CREATE_BOOKING, MANAGE_BOOKINGS)),
):
    return success_response("Booking created successfully", booking_service.create_booking(core2, body, ctx))


@router.get("/{booking_id}", summary="Get booking by ID")
def get_booking(
    booking_id: int,
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(VIEW_BOOKINGS, CREATE_BOOKING, UPDATE_STATUS)),
):
    return success_response("Booking retrieved", booking_service.get_booking(core2, booking_id, ctx))


@router.post("/{booking_id}/assign", summary="Assign a specific driver (Dispatch)")
def assign_driver(
    booking_id: int,
    body:  AssignDriverRequest,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(MANAGE_BOOKINGS)),
):
    data = assignment_service.assign_driver(core1, core2, booking_id, body.driver_id, ctx)
    return success_response("Driver assigned successfully", data)


@router.post("/{booking_id}/assign-nearest", summary="Assign the nearest available driver (Dispatch)")
def assign_nearest(
    booking_id: int,
    core1:    Session        = Depends(get_core1_db),
    core2:    Session        = Depends(get_core2_db),
    geocoder: Geocoder       = Depends(get_geocoder),
    ctx:      RequestContext = Depends(require_permission(MANAGE_BOOKINGS)),
):
    data = assignment_service.assign_nearest(core1, core2, booking_id, ctx, geocoder)
    return success_response(
        f"Nearest driver assigned ({data['distance_km']:.2f} km, ETA {data['eta_minutes']} min)", data,
    )


@router.post("/{booking_id}/unassign", summary="Unassign the driver (Dispatch)")
def unassign_driver(
    booking_id: int,
    body:  UnassignDriverRequest,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(MANAGE_BOOKINGS)),
):
    data = assignment_service.unassign_driver(core1, core2, booking_id, body.reason, ctx)
    return success_response("Driver unassigned successfully", data)


@router.post("/{booking_id}/status", summary="Change booking status")
def update_status(
    booking_id: int,
    body:  StatusUpdateRequest,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(MANAGE_BOOKINGS, UPDATE_STATUS)),
):
    data, changed = booking_service.update_status(
        core1, core2, booking_id, body.status, body.cancellation_reason, ctx,
    )
    message = f"Booking status updated to {data['status']}" if changed \
        else f"Booking is already {data['status']}"
    return success_response(message, data)


@router.post("/{booking_id}/cancel", summary="Cancel a booking")
def cancel_booking(
    booking_id: int,
    body:  CancelBookingRequest,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(MANAGE_BOOKINGS, CREATE_BOOKING, UPDATE_STATUS)),
):
    data, changed = booking_service.cancel_booking(
        core1, core2, booking_id, body.reason, body.cancelled_by, ctx,
    )
    return success_response("Booking cancelled successfully" if changed else "Booking is already cancelled", data)


@router.post("/{booking_id}/complete", summary="Complete a booking and record payment")
def complete_booking(
    booking_id: int,
    body:  CompleteBookingRequest,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(MANAGE_BOOKINGS, UPDATE_STATUS)),
):
    data, changed = booking_service.complete_booking(core1, core2, booking_id, body, ctx)
    return success_response("Booking completed successfully" if changed else "Booking is already completed", data)
