"""
Distance ranking of dispatchable drivers.

Eligibility is decided in SQL (status, non-null/non-zero position, and for
assignment queries an active vehicle); great-circle distance, radius cut-off
and ordering are computed here so the result is identical on every backend.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from app.config import settings
from app.models.driver import Driver, DriverStatus
from app.models.user import User
from app.models.vehicle import Vehicle, VehicleStatus
from app.utils.exceptions import InvalidCoordinatesException, ValidationException
from app.utils.geo import haversine_km, estimate_eta_minutes, is_valid_coordinate
from app.utils.timeutil import to_iso, seconds_since

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedDriver:
    driver:      Driver
    vehicle:     Optional[Vehicle]
    distance_km: float

    @property
    def eta_minutes(self) -> int:
        return estimate_eta_minutes(self.distance_km)


def _vehicle_summary(v: Vehicle | None) -> dict | None:
    if v is None:
        return None
    return {
        "id":           v.id,
        "plate_number": v.plate_number,
        "model":        v.model,
        "year":         v.year,
        "capacity":     v.capacity,
        "status":       v.status.value,
    }


def _user_summary(u: User | None) -> dict:
    if u is None:
        return {"name": None, "phone": None}
    return {"name": u.full_name, "phone": u.phone}


def serialize_candidate(r: RankedDriver, user: User | None = None) -> dict:
    d = r.driver
    return {
        "driver_id":            d.id,
        "user_id":              d.user_id,
        **_user_summary(user),
        "license_number":       d.license_number,
        "rating":               float(d.rating) if d.rating is not None else None,
        "status":               d.status.value,
        "latitude":             d.latitude,
        "longitude":            d.longitude,
        "location_updated_at":  to_iso(d.location_updated_at),
        "location_age_seconds": seconds_since(d.location_updated_at),
        "distance_km":          round(r.distance_km, 2),
        "eta_minutes":          r.eta_minutes,
        "vehicle":              _vehicle_summary(r.vehicle),
    }


def users_by_id(core2: Session, user_ids) -> dict[int, User]:
    ids = {i for i in user_ids if i is not None}
    if not ids:
        return {}
    return {u.id: u for u in core2.query(User).filter(User.id.in_(ids)).all()}


class DistanceRanker:

    def rank(
        self,
        core1: Session,
        lat: float,
        lng: float,
        max_distance_km: float | None = None,
        limit: int | None = None,
        require_vehicle: bool = False,
    ) -> list[RankedDriver]:
        """
        Available drivers within ``max_distance_km`` of (lat, lng), nearest
        first, ties broken by driver id. With ``require_vehicle`` only drivers
        holding an active vehicle qualify.
        """
        if not is_valid_coordinate(lat, lng):
            raise InvalidCoordinatesException()
        if max_distance_km is None:
            max_distance_km = settings.DEFAULT_SEARCH_RADIUS_KM
        if limit is None:
            limit = settings.DEFAULT_NEAREST_LIMIT
        if max_distance_km <= 0:
            raise ValidationException("max_distance must be greater than zero", field="max_distance")
        if not (1 <= limit <= settings.MAX_NEAREST_LIMIT):
            raise ValidationException(
                f"limit must be between 1 and {settings.MAX_NEAREST_LIMIT}", field="limit",
            )

        q = core1.query(Driver, Vehicle).populate_existing()
        if require_vehicle:
            q = q.join(Vehicle, Vehicle.assigned_driver_id == Driver.id)\
                 .filter(Vehicle.status == VehicleStatus.ACTIVE)
        else:
            q = q.outerjoin(Vehicle, Vehicle.assigned_driver_id == Driver.id)
        rows = q.filter(
            Driver.status == DriverStatus.AVAILABLE,
            Driver.latitude.isnot(None),
            Driver.longitude.isnot(None),
            Driver.latitude != 0,
            Driver.longitude != 0,
        ).all()

        ranked = []
        for driver, vehicle in rows:
            distance = haversine_km((lat, lng), (driver.latitude, driver.longitude))
            if distance <= max_distance_km:
                ranked.append(RankedDriver(driver, vehicle, distance))

        ranked.sort(key=lambda r: (r.distance_km, r.driver.id))
        return ranked[:limit]

    def nearest(
        self,
        core1: Session,
        core2: Session,
        lat: float,
        lng: float,
        max_distance_km: float | None = None,
        limit: int | None = None,
        require_vehicle: bool = False,
    ) -> list[dict]:
        ranked = self.rank(core1, lat, lng, max_distance_km, limit, require_vehicle)
        users = users_by_id(core2, (r.driver.user_id for r in ranked))
        return [serialize_candidate(r, users.get(r.driver.user_id)) for r in ranked]

    def available_with_vehicles(self, core1: Session, core2: Session) -> list[dict]:
        """
        Drivers on shift (not offline/inactive) holding an active vehicle:
        available first, then busy, then by driver id.
        """
        status_order = case(
            (Driver.status == DriverStatus.AVAILABLE, 0),
            (Driver.status == DriverStatus.BUSY, 1),
            else_=2,
        )
        rows = core1.query(Driver, Vehicle)\
            .join(Vehicle, Vehicle.assigned_driver_id == Driver.id)\
            .filter(
                Driver.status.notin_([DriverStatus.OFFLINE, DriverStatus.INACTIVE]),
                Vehicle.status == VehicleStatus.ACTIVE,
            )\
            .order_by(status_order, Driver.id.asc()).all()
        users = users_by_id(core2, (d.user_id for d, _ in rows))
        result = []
        for d, v in rows:
            result.append({
                "driver_id":            d.id,
                "user_id":              d.user_id,
                **_user_summary(users.get(d.user_id)),
                "status":               d.status.value,
                "rating":               float(d.rating) if d.rating is not None else None,
                "latitude":             d.latitude,
                "longitude":            d.longitude,
                "location_age_seconds": seconds_since(d.location_updated_at),
                "vehicle":              _vehicle_summary(v),
            })
        return result


distance_ranker = DistanceRanker()
