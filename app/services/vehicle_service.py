import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.context import RequestContext
from app.models.driver import Driver, DriverStatus
from app.models.vehicle import Vehicle, VehicleStatus
from app.models.vehicle_assignment import VehicleAssignment
from app.services import dispatch_store as store
from app.utils.audit import log_action
from app.utils.exceptions import (
    NotFoundException, DuplicateEntryException, DriverUnavailableException,
    VehicleUnavailableException, NoDriverAssignedException,
)
from app.utils.timeutil import utc_now, to_iso

logger = logging.getLogger(__name__)


def _serialize(v: Vehicle) -> dict:
    return {
        "id":                 v.id,
        "plate_number":       v.plate_number,
        "model":              v.model,
        "year":               v.year,
        "capacity":           v.capacity,
        "status":             v.status.value,
        "assigned_driver_id": v.assigned_driver_id,
    }


class VehicleService:
    """Fleet pairing of vehicles to drivers (history rows with no booking)."""

    def _load(self, core1: Session, vehicle_id: int) -> Vehicle:
        v = core1.get(Vehicle, vehicle_id, populate_existing=True)
        if not v: raise NotFoundException("Vehicle")
        return v

    def _detach_conflict(self, core1: Session, vehicle_id: int, driver_id: int) -> Exception:
        """Explain why a guarded detach matched no row."""
        v = core1.get(Vehicle, vehicle_id, populate_existing=True)
        if v is None or v.assigned_driver_id != driver_id:
            return NoDriverAssignedException("No driver is assigned to this vehicle")
        return DriverUnavailableException(
            f"Driver #{driver_id} is on a booking; the vehicle cannot be detached"
        )

    def get_vehicle(self, core1: Session, vehicle_id: int) -> dict:
        return _serialize(self._load(core1, vehicle_id))

    def assign_driver(self, core1: Session, core2: Session, vehicle_id: int, driver_id: int,
                      notes: str | None, ctx: RequestContext) -> dict:
        v = self._load(core1, vehicle_id)
        if v.status != VehicleStatus.ACTIVE:
            raise VehicleUnavailableException(f"Vehicle is {v.status.value} and cannot be assigned")

        d = core1.get(Driver, driver_id, populate_existing=True)
        if not d: raise NotFoundException("Driver")
        if d.status == DriverStatus.INACTIVE:
            raise DriverUnavailableException("Cannot assign a vehicle to an inactive driver")
        if v.assigned_driver_id == driver_id:
            return _serialize(v)
        if d.vehicle is not None:
            raise DuplicateEntryException(
                f"Driver already has vehicle {d.vehicle.plate_number}. Unassign it first.",
                field="driver_id",
            )

        previous = v.driver
        if previous is not None and previous.status == DriverStatus.BUSY:
            raise DriverUnavailableException(
                f"Vehicle's current driver #{previous.id} is on a booking and cannot be detached"
            )

        now = utc_now()
        try:
            if previous is not None:
                if not store.detach_vehicle(core1, v.id, previous.id):
                    core1.rollback()
                    raise self._detach_conflict(core1, v.id, previous.id)
                store.close_fleet_records(core1, now, f"Unassigned due to reassignment to driver #{driver_id}",
                                          vehicle_id=v.id, driver_id=previous.id)
                core1.refresh(v)
                core1.refresh(previous)
            v.driver = d
            core1.add(VehicleAssignment(
                vehicle_id=v.id,
                driver_id=d.id,
                booking_id=None,
                assigned_date=now,
                notes=notes or "Vehicle assigned",
            ))
            core1.commit()
        except SQLAlchemyError:
            core1.rollback()
            raise
        core1.refresh(v)

        description = f"Vehicle {v.plate_number} assigned to driver #{d.id}"
        if previous is not None:
            description += f" (previously driver #{previous.id})"
        log_action(core2, ctx.user_id, "ASSIGN", "Vehicle", v.id, description)
        core2.commit()
        logger.info(description)
        return _serialize(v)

    def unassign_driver(self, core1: Session, core2: Session, vehicle_id: int, reason: str | None,
                        ctx: RequestContext) -> dict:
        v = self._load(core1, vehicle_id)
        d = v.driver
        if d is None:
            raise NoDriverAssignedException("No driver is assigned to this vehicle")
        if d.status == DriverStatus.BUSY:
            raise DriverUnavailableException(
                f"Driver #{d.id} is on a booking; the vehicle cannot be detached"
            )

        reason = reason or "Vehicle unassigned"
        try:
            if not store.detach_vehicle(core1, v.id, d.id):
                core1.rollback()
                raise self._detach_conflict(core1, v.id, d.id)
            store.close_fleet_records(core1, utc_now(), reason, vehicle_id=v.id, driver_id=d.id)
            core1.commit()
        except SQLAlchemyError:
            core1.rollback()
            raise
        core1.refresh(v)
        core1.refresh(d)

        log_action(core2, ctx.user_id, "UNASSIGN", "Vehicle", v.id,
                   f"Vehicle {v.plate_number} unassigned from driver #{d.id}: {reason}")
        core2.commit()
        logger.info(f"Vehicle {v.plate_number} unassigned from driver #{d.id}")
        return _serialize(v)

    def assignment_history(self, core1: Session, vehicle_id: int, page: int, limit: int) -> tuple[list[dict], int]:
        self._load(core1, vehicle_id)
        q = core1.query(VehicleAssignment).filter(VehicleAssignment.vehicle_id == vehicle_id)\
                 .order_by(VehicleAssignment.assigned_date.desc(), VehicleAssignment.id.desc())
        total = q.count()
        items = q.offset((page - 1) * limit).limit(limit).all()
        return [{
            "id":              a.id,
            "driver_id":       a.driver_id,
            "booking_id":      a.booking_id,
            "assigned_date":   to_iso(a.assigned_date),
            "unassigned_date": to_iso(a.unassigned_date),
            "notes":           a.notes,
            "is_active":       a.unassigned_date is None,
        } for a in items], total


vehicle_service = VehicleService()
