import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from app.context import RequestContext
from app.models.driver import Driver, DriverStatus
from app.models.driver_location import DriverLocation
from app.models.role import VIEW_DRIVER_LOCATION, MANAGE_DRIVERS
from app.utils.exceptions import NotFoundException, ForbiddenException, InvalidCoordinatesException
from app.utils.geo import is_valid_coordinate
from app.utils.timeutil import utc_now, ensure_utc, to_iso, seconds_since

logger = logging.getLogger(__name__)


def _serialize(d: Driver) -> dict:
    has_location = d.has_location
    return {
        "driver_id":            d.id,
        "status":               d.status.value,
        "latitude":             d.latitude if has_location else None,
        "longitude":            d.longitude if has_location else None,
        "last_updated":         to_iso(d.location_updated_at) if has_location else None,
        "location_age_seconds": seconds_since(d.location_updated_at) if has_location else None,
        "has_location":         has_location,
    }


class LocationService:
    """Latest known position and status per driver, plus the position log."""

    def update_location(self, core1: Session, driver_id: int, lat: float, lng: float,
                        ctx: RequestContext) -> dict:
        if not is_valid_coordinate(lat, lng):
            raise InvalidCoordinatesException()
        if ctx.driver_id != driver_id and not ctx.has_permission(MANAGE_DRIVERS):
            raise ForbiddenException("Drivers can only update their own location")

        d = core1.get(Driver, driver_id, populate_existing=True)
        if not d: raise NotFoundException("Driver")

        # Timestamps never go backwards, even if the clock does
        now = utc_now()
        previous = ensure_utc(d.location_updated_at)
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)

        d.latitude = lat
        d.longitude = lng
        d.location_updated_at = now
        core1.add(DriverLocation(driver_id=d.id, latitude=lat, longitude=lng, recorded_at=now))
        core1.commit()
        core1.refresh(d)
        logger.debug(f"Driver #{d.id} location -> ({lat}, {lng})")
        return _serialize(d)

    def get_location(self, core1: Session, driver_id: int, ctx: RequestContext) -> dict:
        if ctx.driver_id != driver_id and not ctx.has_permission(VIEW_DRIVER_LOCATION):
            raise ForbiddenException("You cannot view this driver's location")
        d = core1.get(Driver, driver_id, populate_existing=True)
        if not d: raise NotFoundException("Driver")
        return _serialize(d)

    def list_locations(self, core1: Session) -> list[dict]:
        """Every non-inactive driver that has reported a position (map view)."""
        drivers = core1.query(Driver).filter(
            Driver.status != DriverStatus.INACTIVE,
            Driver.latitude.isnot(None),
            Driver.longitude.isnot(None),
            Driver.latitude != 0,
            Driver.longitude != 0,
        ).order_by(Driver.id.asc()).all()
        return [_serialize(d) for d in drivers]

    def history(self, core1: Session, driver_id: int, limit: int) -> list[dict]:
        if not core1.get(Driver, driver_id, populate_existing=True): raise NotFoundException("Driver")
        rows = core1.query(DriverLocation).filter(DriverLocation.driver_id == driver_id)\
                    .order_by(DriverLocation.recorded_at.desc(), DriverLocation.id.desc())\
                    .limit(limit).all()
        return [{
            "latitude":    r.latitude,
            "longitude":   r.longitude,
            "recorded_at": to_iso(r.recorded_at),
        } for r in rows]


location_service = LocationService()
