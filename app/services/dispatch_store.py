"""
Guarded single-row writes against the two stores.

Every state-changing helper is one UPDATE whose WHERE clause carries the
precondition; the returned flag says whether the row matched. Concurrent
callers racing on the same row get exactly one winner. Nothing here commits.
"""

from datetime import datetime

from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from app.models.booking import Booking, BookingStatus
from app.models.driver import Driver, DriverStatus
from app.models.vehicle import Vehicle, VehicleStatus
from app.models.vehicle_assignment import VehicleAssignment
from app.services.booking_state import ASSIGNABLE, ACTIVE, TERMINAL


def _matched(db: Session, stmt) -> bool:
    result = db.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


def append_note(existing: str | None, note: str | None) -> str | None:
    if not note:
        return existing
    return f"{existing}\n{note}" if existing else note


# ─── core1 ────────────────────────────────────────────────────────────────────

def claim_driver(core1: Session, driver_id: int, vehicle_id: int) -> bool:
    """
    available -> busy. False if the driver was not available or no longer
    holds ``vehicle_id`` as an active vehicle.
    """
    holds_vehicle = exists(select(Vehicle.id).where(
        Vehicle.id == vehicle_id,
        Vehicle.assigned_driver_id == driver_id,
        Vehicle.status == VehicleStatus.ACTIVE,
    ))
    return _matched(core1, update(Driver).where(
        Driver.id == driver_id,
        Driver.status == DriverStatus.AVAILABLE,
        holds_vehicle,
    ).values(status=DriverStatus.BUSY))


def detach_vehicle(core1: Session, vehicle_id: int, driver_id: int) -> bool:
    """Clear the vehicle's driver unless that driver is busy on a booking."""
    driver_busy = exists(select(Driver.id).where(
        Driver.id == driver_id,
        Driver.status == DriverStatus.BUSY,
    ))
    return _matched(core1, update(Vehicle).where(
        Vehicle.id == vehicle_id,
        Vehicle.assigned_driver_id == driver_id,
        ~driver_busy,
    ).values(assigned_driver_id=None))


def free_driver(core1: Session, driver_id: int) -> bool:
    """busy -> available. Offline and inactive drivers are left alone."""
    return _matched(core1, update(Driver).where(
        Driver.id == driver_id,
        Driver.status == DriverStatus.BUSY,
    ).values(status=DriverStatus.AVAILABLE))


def move_driver(core1: Session, driver_id: int, current: DriverStatus, new: DriverStatus) -> bool:
    """current -> new, only if the driver is still in ``current``."""
    return _matched(core1, update(Driver).where(
        Driver.id == driver_id,
        Driver.status == current,
    ).values(status=new))


def open_dispatch_record(core1: Session, vehicle_id: int, driver_id: int, booking_id: int,
                         now: datetime, notes: str | None = None) -> VehicleAssignment:
    record = VehicleAssignment(
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        booking_id=booking_id,
        assigned_date=now,
        notes=notes or f"Assigned to booking #{booking_id}",
    )
    core1.add(record)
    return record


def close_dispatch_record(core1: Session, booking_id: int, driver_id: int,
                          note: str | None, now: datetime) -> int:
    open_rows = core1.query(VehicleAssignment).filter(
        VehicleAssignment.booking_id == booking_id,
        VehicleAssignment.driver_id == driver_id,
        VehicleAssignment.unassigned_date.is_(None),
    ).all()
    for row in open_rows:
        row.unassigned_date = now
        row.notes = append_note(row.notes, note)
    core1.flush()
    return len(open_rows)


def close_fleet_records(core1: Session, now: datetime, note: str | None,
                        vehicle_id: int | None = None, driver_id: int | None = None) -> int:
    """Close open vehicle/driver pairings (booking_id NULL)."""
    q = core1.query(VehicleAssignment).filter(
        VehicleAssignment.booking_id.is_(None),
        VehicleAssignment.unassigned_date.is_(None),
    )
    if vehicle_id is not None:
        q = q.filter(VehicleAssignment.vehicle_id == vehicle_id)
    if driver_id is not None:
        q = q.filter(VehicleAssignment.driver_id == driver_id)
    rows = q.all()
    for row in rows:
        row.unassigned_date = now
        row.notes = append_note(row.notes, note)
    core1.flush()
    return len(rows)


def release_driver(core1: Session, driver_id: int, booking_id: int, note: str | None, now: datetime) -> bool:
    """Free the driver and close the booking's dispatch record."""
    freed = free_driver(core1, driver_id)
    close_dispatch_record(core1, booking_id, driver_id, note, now)
    return freed


# ─── core2 ────────────────────────────────────────────────────────────────────

def bind_booking(core2: Session, booking_id: int, driver_id: int, vehicle_id: int, now: datetime) -> bool:
    """Attach driver and vehicle to an unassigned, assignable booking; status becomes confirmed."""
    return _matched(core2, update(Booking).where(
        Booking.id == booking_id,
        Booking.driver_id.is_(None),
        Booking.status.in_(list(ASSIGNABLE)),
    ).values(
        driver_id=driver_id,
        vehicle_id=vehicle_id,
        status=BookingStatus.CONFIRMED,
        assigned_at=now,
        driver_unassign_reason=None,
    ))


def unbind_booking(core2: Session, booking_id: int, driver_id: int, reason: str) -> bool:
    """Detach the driver from a non-terminal booking; status returns to pending."""
    return _matched(core2, update(Booking).where(
        Booking.id == booking_id,
        Booking.driver_id == driver_id,
        Booking.status.notin_(list(TERMINAL)),
    ).values(
        driver_id=None,
        vehicle_id=None,
        status=BookingStatus.PENDING,
        assigned_at=None,
        driver_unassign_reason=reason,
    ))


def rebind_booking(core2: Session, booking_id: int, driver_id: int, vehicle_id: int | None,
                   status: BookingStatus, assigned_at: datetime | None) -> bool:
    """Undo ``unbind_booking`` if nobody has touched the booking since."""
    return _matched(core2, update(Booking).where(
        Booking.id == booking_id,
        Booking.driver_id.is_(None),
        Booking.status == BookingStatus.PENDING,
    ).values(
        driver_id=driver_id,
        vehicle_id=vehicle_id,
        status=status,
        assigned_at=assigned_at,
        driver_unassign_reason=None,
    ))


def move_booking(core2: Session, booking_id: int, current: BookingStatus, new: BookingStatus,
                 **values) -> bool:
    """current -> new, plus any extra column values, only if still in ``current``."""
    return _matched(core2, update(Booking).where(
        Booking.id == booking_id,
        Booking.status == current,
    ).values(status=new, **values))


def active_booking_for_driver(core2: Session, driver_id: int) -> Booking | None:
    return core2.query(Booking).filter(
        Booking.driver_id == driver_id,
        Booking.status.in_(list(ACTIVE)),
    ).order_by(Booking.id.asc()).first()