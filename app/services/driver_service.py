import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.context import RequestContext
from app.models.driver import Driver, DriverStatus
from app.models.role import MANAGE_DRIVERS
from app.services import dispatch_store as store
from app.services.ranking_service import users_by_id
from app.utils.audit import log_action
from app.utils.exceptions import NotFoundException, ForbiddenException, DriverUnavailableException
from app.utils.timeutil import utc_now, to_iso, seconds_since

logger = logging.getLogger(__name__)

DEACTIVATION_NOTE = "Unassigned due to driver deactivation"


def _serialize(d: Driver, user=None) -> dict:
    v = d.vehicle
    return {
        "id":                   d.id,
        "user_id":              d.user_id,
        "name":                 user.full_name if user else None,
        "email":                user.email if user else None,
        "phone":                user.phone if user else None,
        "license_number":       d.license_number,
        "license_expiry":       d.license_expiry.isoformat() if d.license_expiry else None,
        "rating":               float(d.rating) if d.rating is not None else None,
        "status":               d.status.value,
        "latitude":             d.latitude,
        "longitude":            d.longitude,
        "location_updated_at":  to_iso(d.location_updated_at),
        "location_age_seconds": seconds_since(d.location_updated_at),
        "vehicle": {
            "id":           v.id,
            "plate_number": v.plate_number,
            "model":        v.model,
            "status":       v.status.value,
        } if v else None,
    }


class DriverService:

    def _serialize_with_user(self, core2: Session, d: Driver) -> dict:
        return _serialize(d, users_by_id(core2, [d.user_id]).get(d.user_id))

    def list_drivers(self, core1: Session, core2: Session, page: int, limit: int,
                     status: DriverStatus | None) -> tuple[list[dict], int]:
        q = core1.query(Driver)
        if status is not None:
            q = q.filter(Driver.status == status)
        total = q.count()
        items = q.order_by(Driver.id.asc()).offset((page - 1) * limit).limit(limit).all()
        users = users_by_id(core2, (d.user_id for d in items))
        return [_serialize(d, users.get(d.user_id)) for d in items], total

    def get_driver(self, core1: Session, core2: Session, driver_id: int) -> dict:
        d = core1.get(Driver, driver_id, populate_existing=True)
        if not d: raise NotFoundException("Driver")
        return self._serialize_with_user(core2, d)

    def set_status(self, core1: Session, core2: Session, driver_id: int, new_status: DriverStatus,
                   ctx: RequestContext) -> dict:
        """
        Driver self-service: go available or offline. Busy and inactive are
        owned by dispatch and administration respectively.
        """
        if ctx.driver_id != driver_id and not ctx.has_permission(MANAGE_DRIVERS):
            raise ForbiddenException("Drivers can only change their own status")
        d = core1.get(Driver, driver_id, populate_existing=True)
        if not d: raise NotFoundException("Driver")

        current = d.status
        if current == DriverStatus.INACTIVE:
            raise DriverUnavailableException("Driver is inactive")
        if current == new_status:
            return self._serialize_with_user(core2, d)
        if current == DriverStatus.BUSY:
            active = store.active_booking_for_driver(core2, driver_id)
            if active is not None:
                raise DriverUnavailableException(
                    f"Driver is busy with booking #{active.id}; finish or unassign it first"
                )

        if not store.move_driver(core1, driver_id, current, new_status):
            core1.rollback()
            raise DriverUnavailableException("Driver status changed concurrently, retry")
        core1.commit()
        core1.refresh(d)
        logger.info(f"Driver #{driver_id} {current.value} -> {new_status.value}")
        return self._serialize_with_user(core2, d)

    def deactivate(self, core1: Session, core2: Session, driver_id: int, ctx: RequestContext) -> dict:
        d = core1.get(Driver, driver_id, populate_existing=True)
        if not d: raise NotFoundException("Driver")
        if d.status == DriverStatus.INACTIVE:
            return self._serialize_with_user(core2, d)

        active = store.active_booking_for_driver(core2, driver_id)
        if active is not None:
            raise DriverUnavailableException(
                f"Driver has an active booking (#{active.id}); unassign it before deactivating"
            )

        now = utc_now()
        released_vehicle = d.vehicle.plate_number if d.vehicle else None
        try:
            if not store.move_driver(core1, driver_id, d.status, DriverStatus.INACTIVE):
                core1.rollback()
                raise DriverUnavailableException("Driver status changed concurrently, retry")
            if d.vehicle is not None:
                d.vehicle = None
            store.close_fleet_records(core1, now, DEACTIVATION_NOTE, driver_id=driver_id)
            core1.commit()
        except SQLAlchemyError:
            core1.rollback()
            raise
        core1.refresh(d)

        description = f"Driver #{driver_id} deactivated"
        if released_vehicle:
            description += f", vehicle {released_vehicle} unassigned"
        log_action(core2, ctx.user_id, "DEACTIVATE", "Driver", driver_id, description)
        core2.commit()
        logger.info(description)
        return self._serialize_with_user(core2, d)


driver_service = DriverService()
