"""
Driver <-> booking assignment across the two stores.

Assignment and unassignment each touch core1 (driver status, dispatch
record) and core2 (booking). There is no shared transaction: each side
commits on its own and a failure on the second side is compensated on the
first. If the compensation fails too, a CONSISTENCY_WARNING is logged and
audited and the caller gets a 500.
"""

import logging
from typing import Callable

from fastapi import status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.context import RequestContext
from app.models.booking import Booking
from app.models.driver import Driver, DriverStatus
from app.models.user import User
from app.models.vehicle import Vehicle, VehicleStatus
from app.services import dispatch_store as store
from app.services.booking_state import ASSIGNABLE, is_terminal
from app.services.geocoding_service import Geocoder
from app.services.ranking_service import distance_ranker
from app.utils.audit import log_action, record_consistency_warning
from app.utils.exceptions import (
    NotFoundException,
    BookingNotAssignableException,
    AlreadyAssignedException,
    DriverUnavailableException,
    NoVehicleException,
    NoDriverAssignedException,
    BookingClosedException,
    NoDriversNearbyException,
    ConsistencyWarningException,
)
from app.utils.timeutil import utc_now, to_iso

logger = logging.getLogger(__name__)

DEFAULT_UNASSIGN_REASON = "Unassigned by dispatch"


def _driver_summary(d: Driver, user: User | None) -> dict:
    return {
        "id":    d.id,
        "name":  user.full_name if user else None,
        "phone": user.phone if user else None,
    }


def _vehicle_summary(v: Vehicle) -> dict:
    return {
        "id":           v.id,
        "plate_number": v.plate_number,
        "model":        v.model,
    }


class AssignmentService:

    # ─── Preconditions ────────────────────────────────────────────────────────

    def _load_assignable_booking(self, core2: Session, booking_id: int) -> Booking:
        booking = core2.get(Booking, booking_id, populate_existing=True)
        if not booking:
            raise BookingNotAssignableException("Booking not found", status.HTTP_404_NOT_FOUND)
        if booking.status not in ASSIGNABLE:
            raise BookingNotAssignableException(
                f"Booking cannot be assigned while {booking.status.value}"
            )
        if booking.driver_id is not None:
            raise AlreadyAssignedException()
        return booking

    def _load_dispatchable_driver(self, core1: Session, driver_id: int) -> tuple[Driver, Vehicle]:
        driver = core1.get(Driver, driver_id, populate_existing=True)
        if not driver:
            raise DriverUnavailableException("Driver not found", status.HTTP_404_NOT_FOUND)
        if driver.status != DriverStatus.AVAILABLE:
            raise DriverUnavailableException(f"Driver is {driver.status.value}")
        vehicle = driver.vehicle
        if vehicle is None or vehicle.status != VehicleStatus.ACTIVE:
            raise NoVehicleException()
        return driver, vehicle

    def _assign_conflict(self, core2: Session, booking_id: int) -> Exception:
        """Explain a lost race on the booking row."""
        booking = core2.get(Booking, booking_id, populate_existing=True)
        if not booking:
            return BookingNotAssignableException("Booking not found", status.HTTP_404_NOT_FOUND)
        if booking.status in ASSIGNABLE and booking.driver_id is not None:
            return AlreadyAssignedException()
        return BookingNotAssignableException(
            f"Booking cannot be assigned while {booking.status.value}"
        )

    def _claim_conflict(self, core1: Session, driver_id: int, vehicle_id: int) -> Exception:
        """Explain a lost race on the driver row."""
        driver = core1.get(Driver, driver_id, populate_existing=True)
        if not driver or driver.status != DriverStatus.AVAILABLE:
            return DriverUnavailableException("Driver was assigned to another booking")
        vehicle = core1.get(Vehicle, vehicle_id, populate_existing=True)
        if vehicle is None or vehicle.assigned_driver_id != driver_id or vehicle.status != VehicleStatus.ACTIVE:
            return NoVehicleException()
        return DriverUnavailableException("Driver was assigned to another booking")

    # ─── Compensation ─────────────────────────────────────────────────────────

    def _undo_claim(self, core1: Session, core2: Session, booking_id: int, driver_id: int,
                    ctx: RequestContext, why: str) -> None:
        try:
            store.release_driver(core1, driver_id, booking_id, f"Compensated: {why}", utc_now())
            core1.commit()
            logger.warning(f"Released driver #{driver_id} after failed assignment to booking #{booking_id}: {why}")
        except SQLAlchemyError as e:
            core1.rollback()
            record_consistency_warning(
                core2, ctx.user_id, "Driver", driver_id,
                f"Driver #{driver_id} may be left busy: assignment to booking #{booking_id} failed ({why}) "
                f"and the driver could not be released ({e.__class__.__name__})",
            )
            raise ConsistencyWarningException(
                "Assignment failed and the driver could not be released. Operator follow-up required."
            ) from e

    def _undo_close(self, core2: Session, undo: Callable[[Session], bool], ctx: RequestContext,
                    entity_id: int, description: str) -> None:
        try:
            undone = undo(core2)
            core2.commit()
        except SQLAlchemyError as e:
            core2.rollback()
            undone = False
            logger.error(f"Compensation on booking #{entity_id} failed: {e}")
        if not undone:
            record_consistency_warning(core2, ctx.user_id, "Booking", entity_id, description)
            raise ConsistencyWarningException(
                "Booking was updated but the driver could not be released. Operator follow-up required."
            )

    def release_for_booking(
        self,
        core1: Session,
        core2: Session,
        booking_id: int,
        driver_id: int,
        note: str,
        ctx: RequestContext,
        undo: Callable[[Session], bool],
    ) -> None:
        """
        Second half of a core2-first operation that ends a booking's hold on
        its driver (unassign, cancel, complete). ``undo`` reverts the core2
        side if the driver cannot be released.
        """
        try:
            store.release_driver(core1, driver_id, booking_id, note, utc_now())
            core1.commit()
        except SQLAlchemyError:
            core1.rollback()
            logger.error(f"Could not release driver #{driver_id} for booking #{booking_id}; reverting booking")
            self._undo_close(
                core2, undo, ctx, booking_id,
                f"Booking #{booking_id} no longer holds driver #{driver_id} but the driver "
                f"could not be released and the booking could not be reverted",
            )
            raise

    # ─── Operations ───────────────────────────────────────────────────────────

    def assign_driver(self, core1: Session, core2: Session, booking_id: int, driver_id: int,
                      ctx: RequestContext) -> dict:
        booking = self._load_assignable_booking(core2, booking_id)
        driver, vehicle = self._load_dispatchable_driver(core1, driver_id)
        now = utc_now()

        # core1: claim the driver
        try:
            if not store.claim_driver(core1, driver.id, vehicle.id):
                core1.rollback()
                raise self._claim_conflict(core1, driver.id, vehicle.id)
            store.open_dispatch_record(core1, vehicle.id, driver.id, booking.id, now)
            core1.commit()
        except SQLAlchemyError:
            core1.rollback()
            raise

        # core2: bind the booking, or give the driver back
        try:
            bound = store.bind_booking(core2, booking.id, driver.id, vehicle.id, now)
            if bound:
                log_action(core2, ctx.user_id, "ASSIGN", "Booking", booking.id,
                           f"Driver #{driver.id} with vehicle {vehicle.plate_number} assigned to booking #{booking.id}")
                core2.commit()
        except SQLAlchemyError as e:
            core2.rollback()
            logger.error(f"Booking #{booking.id} write failed during assignment: {e}")
            self._undo_claim(core1, core2, booking.id, driver.id, ctx, "booking write failed")
            raise
        if not bound:
            core2.rollback()
            self._undo_claim(core1, core2, booking.id, driver.id, ctx, "booking changed concurrently")
            raise self._assign_conflict(core2, booking.id)

        core2.refresh(booking)
        core1.refresh(driver)
        logger.info(f"Driver #{driver.id} assigned to booking #{booking.id}")
        user = core2.get(User, driver.user_id) if driver.user_id else None
        return {
            "booking_id":  booking.id,
            "status":      booking.status.value,
            "driver_id":   driver.id,
            "vehicle_id":  vehicle.id,
            "driver":      _driver_summary(driver, user),
            "vehicle":     _vehicle_summary(vehicle),
            "assigned_at": to_iso(booking.assigned_at),
        }

    def assign_nearest(self, core1: Session, core2: Session, booking_id: int, ctx: RequestContext,
                       geocoder: Geocoder) -> dict:
        """
        Assign the closest available driver that has an active vehicle.

        Only the top-ranked candidate is attempted. If it is taken in the
        meantime the call fails with DRIVER_UNAVAILABLE and may be retried.
        """
        booking = self._load_assignable_booking(core2, booking_id)

        lat, lng = booking.pickup_lat, booking.pickup_lng
        if lat is None or lng is None:
            lat, lng = geocoder.geocode(booking.pickup_location)
            booking.pickup_lat, booking.pickup_lng = lat, lng
            core2.commit()
            logger.info(f"Geocoded booking #{booking.id} pickup to ({lat}, {lng})")

        candidates = distance_ranker.rank(core1, lat, lng, limit=1, require_vehicle=True)
        if not candidates:
            raise NoDriversNearbyException()
        top = candidates[0]

        result = self.assign_driver(core1, core2, booking.id, top.driver.id, ctx)
        result["distance_km"] = round(top.distance_km, 2)
        result["eta_minutes"] = top.eta_minutes
        result["pickup"] = {"latitude": lat, "longitude": lng}
        return result

    def unassign_driver(self, core1: Session, core2: Session, booking_id: int, reason: str | None,
                        ctx: RequestContext) -> dict:
        booking = core2.get(Booking, booking_id, populate_existing=True)
        if not booking: raise NotFoundException("Booking")
        if is_terminal(booking.status):
            raise BookingClosedException(booking.status.value)
        if booking.driver_id is None:
            raise NoDriverAssignedException()

        reason = reason or DEFAULT_UNASSIGN_REASON
        driver_id, vehicle_id = booking.driver_id, booking.vehicle_id
        previous_status, assigned_at = booking.status, booking.assigned_at

        # core2: detach the booking
        try:
            if not store.unbind_booking(core2, booking.id, driver_id, reason):
                core2.rollback()
                current = core2.get(Booking, booking_id, populate_existing=True)
                if current and is_terminal(current.status):
                    raise BookingClosedException(current.status.value)
                raise NoDriverAssignedException()
            log_action(core2, ctx.user_id, "UNASSIGN", "Booking", booking.id,
                       f"Driver #{driver_id} unassigned from booking #{booking.id}: {reason}")
            core2.commit()
        except SQLAlchemyError:
            core2.rollback()
            raise

        # core1: free the driver, or put the booking back
        self.release_for_booking(
            core1, core2, booking.id, driver_id, reason, ctx,
            undo=lambda db: store.rebind_booking(db, booking_id, driver_id, vehicle_id,
                                                 previous_status, assigned_at),
        )

        core2.refresh(booking)
        logger.info(f"Driver #{driver_id} unassigned from booking #{booking.id}")
        return {
            "booking_id":     booking.id,
            "status":         booking.status.value,
            "driver_id":      None,
            "vehicle_id":     None,
            "released_driver_id": driver_id,
            "reason":         reason,
        }


assignment_service = AssignmentService()
