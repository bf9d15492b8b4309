import pytest

from app.models.driver import DriverStatus
from app.models.role import RoleName
from app.models.vehicle import VehicleStatus
from app.services.ranking_service import distance_ranker
from app.utils.exceptions import InvalidCoordinatesException, ValidationException

PICKUP = (14.60, 120.98)


def test_orders_by_distance(core1, make_driver):
    far = make_driver(location=(14.70, 120.98))
    near = make_driver(location=(14.60, 120.98))

    ranked = distance_ranker.rank(core1, *PICKUP)

    assert [r.driver.id for r in ranked] == [near.id, far.id]
    assert ranked[0].distance_km == pytest.approx(0.0, abs=0.1)
    assert ranked[1].distance_km == pytest.approx(11.1, abs=0.1)


def test_excludes_drivers_beyond_radius(core1, make_driver):
    make_driver(location=(15.14, 120.98))   # ~60 km north
    inside = make_driver(location=(14.65, 120.98))

    ranked = distance_ranker.rank(core1, *PICKUP, max_distance_km=50)

    assert [r.driver.id for r in ranked] == [inside.id]


def test_ties_broken_by_driver_id(core1, make_driver):
    first = make_driver(location=(14.61, 120.98))
    second = make_driver(location=(14.61, 120.98))

    ranked = distance_ranker.rank(core1, *PICKUP)

    assert [r.driver.id for r in ranked] == sorted([first.id, second.id])


def test_only_available_drivers_with_a_position(core1, make_driver):
    make_driver(status=DriverStatus.BUSY)
    make_driver(status=DriverStatus.OFFLINE)
    make_driver(status=DriverStatus.INACTIVE)
    make_driver(location=None)
    make_driver(location=(0.0, 0.0))
    eligible = make_driver()

    ranked = distance_ranker.rank(core1, *PICKUP)

    assert [r.driver.id for r in ranked] == [eligible.id]


def test_carries_vehicle_unless_required(core1, make_driver):
    no_vehicle = make_driver(location=(14.601, 120.98), vehicle=False)
    in_shop = make_driver(location=(14.602, 120.98), vehicle_status=VehicleStatus.MAINTENANCE)
    ready = make_driver(location=(14.603, 120.98))

    everyone = distance_ranker.rank(core1, *PICKUP)
    assert [r.driver.id for r in everyone] == [no_vehicle.id, in_shop.id, ready.id]
    assert everyone[0].vehicle is None
    assert everyone[1].vehicle.status == VehicleStatus.MAINTENANCE

    dispatchable = distance_ranker.rank(core1, *PICKUP, require_vehicle=True)
    assert [r.driver.id for r in dispatchable] == [ready.id]


def test_limit(core1, make_driver):
    for i in range(5):
        make_driver(location=(14.60 + i * 0.01, 120.98))
    assert len(distance_ranker.rank(core1, *PICKUP, limit=3)) == 3


def test_rejects_bad_input(core1):
    with pytest.raises(InvalidCoordinatesException):
        distance_ranker.rank(core1, 91, 0)
    with pytest.raises(ValidationException):
        distance_ranker.rank(core1, *PICKUP, max_distance_km=0)
    with pytest.raises(ValidationException):
        distance_ranker.rank(core1, *PICKUP, limit=0)


# ─── HTTP ─────────────────────────────────────────────────────────────────────

def test_nearest_endpoint(client, dispatch_headers, make_driver):
    far = make_driver(location=(14.70, 120.98))
    near = make_driver(location=(14.60, 120.98))
    make_driver(location=(15.20, 120.98))

    res = client.get("/api/v1/drivers/nearest",
                     params={"lat": 14.60, "lng": 120.98, "limit": 10, "max_distance": 50},
                     headers=dispatch_headers)

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    data = body["data"]
    assert [d["driver_id"] for d in data] == [near.id, far.id]
    assert data[0]["distance_km"] == 0.0
    assert data[1]["distance_km"] == pytest.approx(11.12, abs=0.1)
    assert data[1]["eta_minutes"] == 23
    assert data[0]["vehicle"]["plate_number"] == f"ABC-{near.id:04d}"
    assert data[0]["name"] is not None
    assert data[0]["location_age_seconds"] >= 0


def test_nearest_endpoint_validates_query(client, dispatch_headers):
    res = client.get("/api/v1/drivers/nearest", params={"lat": 95, "lng": 120.98}, headers=dispatch_headers)
    assert res.status_code == 422
    assert res.json()["error_code"] == "VALIDATION_ERROR"


def test_nearest_endpoint_requires_permission(client, make_user, auth_headers):
    customer = make_user(RoleName.CUSTOMER)
    res = client.get("/api/v1/drivers/nearest", params={"lat": 14.6, "lng": 120.98},
                     headers=auth_headers(customer))
    assert res.status_code == 403
    assert res.json()["error_code"] == "FORBIDDEN"


def test_available_with_vehicles(client, dispatch_headers, make_driver):
    busy = make_driver(status=DriverStatus.BUSY)
    available = make_driver()
    make_driver(status=DriverStatus.OFFLINE)
    make_driver(vehicle=False)
    make_driver(vehicle_status=VehicleStatus.INACTIVE)

    res = client.get("/api/v1/drivers/available-with-vehicles", headers=dispatch_headers)

    assert res.status_code == 200
    assert [d["driver_id"] for d in res.json()["data"]] == [available.id, busy.id]
