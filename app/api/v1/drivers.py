from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from app.config import settings
from app.context import RequestContext
from app.database import get_core1_db, get_core2_db
from app.dependencies import require_permission
from app.models.driver import DriverStatus
from app.models.role import (
    MANAGE_BOOKINGS, MANAGE_DRIVERS, VIEW_DRIVERS, VIEW_DRIVER_LOCATION, UPDATE_STATUS,
)
from app.schemas.driver import LocationUpdateRequest, DriverStatusRequest
from app.schemas.common import success_response, paginated_response
from app.services.driver_service import driver_service
from app.services.location_service import location_service
from app.services.ranking_service import distance_ranker

router = APIRouter(prefix="/drivers")


@router.get("/nearest", summary="Available drivers ranked by distance")
def nearest_drivers(
    lat:          float = Query(..., ge=-90, le=90),
    lng:          float = Query(..., ge=-180, le=180),
    limit:        int   = Query(settings.DEFAULT_NEAREST_LIMIT, ge=1, le=settings.MAX_NEAREST_LIMIT),
    max_distance: float = Query(settings.DEFAULT_SEARCH_RADIUS_KM, gt=0),
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    _:     RequestContext = Depends(require_permission(VIEW_DRIVER_LOCATION, MANAGE_BOOKINGS)),
):
    data = distance_ranker.nearest(core1, core2, lat, lng, max_distance, limit)
    return success_response(f"Found {len(data)} available driver(s) within {max_distance:g} km", data)


@router.get("/locations", summary="Last known position of every active driver")
def driver_locations(
    core1: Session        = Depends(get_core1_db),
    _:     RequestContext = Depends(require_permission(VIEW_DRIVER_LOCATION)),
):
    return success_response("Driver locations retrieved", location_service.list_locations(core1))


@router.get("/available-with-vehicles", summary="On-shift drivers holding an active vehicle")
def available_with_vehicles(
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    _:     RequestContext = Depends(require_permission(VIEW_DRIVERS, MANAGE_BOOKINGS)),
):
    return success_response("Drivers retrieved", distance_ranker.available_with_vehicles(core1, core2))


@router.get("", summary="List drivers")
def list_drivers(
    page:   int                    = Query(1, ge=1),
    limit:  int                    = Query(20, ge=1, le=100),
    status: Optional[DriverStatus] = Query(None),
    core1:  Session                = Depends(get_core1_db),
    core2:  Session                = Depends(get_core2_db),
    _:      RequestContext         = Depends(require_permission(VIEW_DRIVERS, MANAGE_DRIVERS)),
):
    data, total = driver_service.list_drivers(core1, core2, page, limit, status)
    return paginated_response("Drivers retrieved successfully", data, total, page, limit)


@router.get("/{driver_id}", summary="Get driver by ID")
def get_driver(
    driver_id: int,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    _:     RequestContext = Depends(require_permission(VIEW_DRIVERS, MANAGE_DRIVERS)),
):
    return success_response("Driver retrieved", driver_service.get_driver(core1, core2, driver_id))


@router.post("/{driver_id}/location", summary="Report the driver's position")
def update_location(
    driver_id: int,
    body:  LocationUpdateRequest,
    core1: Session        = Depends(get_core1_db),
    ctx:   RequestContext = Depends(require_permission(UPDATE_STATUS, MANAGE_DRIVERS)),
):
    data = location_service.update_location(core1, driver_id, body.latitude, body.longitude, ctx)
    return success_response("Location updated successfully", data)


@router.get("/{driver_id}/location", summary="Driver's last known position")
def get_location(
    driver_id: int,
    core1: Session        = Depends(get_core1_db),
    ctx:   RequestContext = Depends(require_permission(VIEW_DRIVER_LOCATION, UPDATE_STATUS)),
):
    data = location_service.get_location(core1, driver_id, ctx)
    message = "Driver location retrieved" if data["has_location"] else "Driver has no location"
    return success_response(message, data)


@router.get("/{driver_id}/location-history", summary="Driver's recent positions")
def location_history(
    driver_id: int,
    limit: int            = Query(50, ge=1, le=500),
    core1: Session        = Depends(get_core1_db),
    _:     RequestContext = Depends(require_permission(VIEW_DRIVER_LOCATION)),
):
    return success_response("Location history retrieved", location_service.history(core1, driver_id, limit))


@router.post("/{driver_id}/status", summary="Go available / offline (Driver)")
def set_status(
    driver_id: int,
    body:  DriverStatusRequest,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(UPDATE_STATUS, MANAGE_DRIVERS)),
):
    data = driver_service.set_status(core1, core2, driver_id, body.status, ctx)
    return success_response(f"Driver is now {data['status']}", data)


@router.post("/{driver_id}/deactivate", summary="Deactivate a driver (Admin)")
def deactivate_driver(
    driver_id: int,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(MANAGE_DRIVERS)),
):
    return success_response("Driver deactivated successfully", driver_service.deactivate(core1, core2, driver_id, ctx))
