from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.context import RequestContext
from app.database import get_core1_db, get_core2_db
from app.dependencies import require_permission
from app.models.role import MANAGE_FLEET, VIEW_FLEET
from app.schemas.vehicle import AssignVehicleDriverRequest, UnassignVehicleDriverRequest
from app.schemas.common import success_response, paginated_response
from app.services.vehicle_service import vehicle_service

router = APIRouter(prefix="/vehicles")


@router.get("/{vehicle_id}", summary="Get vehicle by ID")
def get_vehicle(
    vehicle_id: int,
    core1: Session        = Depends(get_core1_db),
    _:     RequestContext = Depends(require_permission(VIEW_FLEET, MANAGE_FLEET)),
):
    return success_response("Vehicle retrieved", vehicle_service.get_vehicle(core1, vehicle_id))


@router.post("/{vehicle_id}/assign-driver", summary="Attach a driver to the vehicle (Fleet)")
def assign_driver(
    vehicle_id: int,
    body:  AssignVehicleDriverRequest,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(MANAGE_FLEET)),
):
    data = vehicle_service.assign_driver(core1, core2, vehicle_id, body.driver_id, body.notes, ctx)
    return success_response("Driver assigned to vehicle", data)


@router.post("/{vehicle_id}/unassign-driver", summary="Detach the vehicle's driver (Fleet)")
def unassign_driver(
    vehicle_id: int,
    body:  UnassignVehicleDriverRequest,
    core1: Session        = Depends(get_core1_db),
    core2: Session        = Depends(get_core2_db),
    ctx:   RequestContext = Depends(require_permission(MANAGE_FLEET)),
):
    data = vehicle_service.unassign_driver(core1, core2, vehicle_id, body.reason, ctx)
    return success_response("Driver unassigned from vehicle", data)


@router.get("/{vehicle_id}/assignment-history", summary="Vehicle/driver pairing history")
def assignment_history(
    vehicle_id: int,
    page:  int            = Query(1, ge=1),
    limit: int            = Query(20, ge=1, le=100),
    core1: Session        = Depends(get_core1_db),
    _:     RequestContext = Depends(require_permission(VIEW_FLEET, MANAGE_FLEET)),
):
    data, total = vehicle_service.assignment_history(core1, vehicle_id, page, limit)
    return paginated_response("Assignment history retrieved", data, total, page, limit)
