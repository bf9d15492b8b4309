import pytest
from sqlalchemy.exc import OperationalError

from app.database import Core1Session, Core2Session
from app.models.audit_log import AuditLog
from app.models.booking import Booking, BookingStatus
from app.models.driver import Driver, DriverStatus
from app.models.vehicle import Vehicle, VehicleStatus
from app.models.vehicle_assignment import VehicleAssignment
from app.services import dispatch_store as store
from app.services.assignment_service import assignment_service
from app.services.vehicle_service import vehicle_service
from app.utils.exceptions import (
    AlreadyAssignedException, BookingNotAssignableException, DriverUnavailableException,
    NoVehicleException, NoDriverAssignedException, BookingClosedException,
    NoDriversNearbyException, GeocodingFailedException, ConsistencyWarningException,
)
from app.utils.timeutil import utc_now


def _booking(core2, booking_id) -> Booking:
    core2.expire_all()
    return core2.get(Booking, booking_id)


def _driver(core1, driver_id) -> Driver:
    core1.expire_all()
    return core1.get(Driver, driver_id)


def _open_records(core1, driver_id):
    core1.expire_all()
    return core1.query(VehicleAssignment).filter(
        VehicleAssignment.driver_id == driver_id,
        VehicleAssignment.booking_id.isnot(None),
        VehicleAssignment.unassigned_date.is_(None),
    ).all()


def _oops(*args, **kwargs):
    raise OperationalError("UPDATE", {}, Exception("store unreachable"))


# ─── Assign ───────────────────────────────────────────────────────────────────

def test_assign_binds_driver_vehicle_and_booking(core1, core2, ctx, make_driver, make_booking):
    d = make_driver()
    b = make_booking()

    result = assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)

    assert result["driver_id"] == d.id
    assert result["vehicle_id"] == d.vehicle.id
    assert result["status"] == "confirmed"
    booking = _booking(core2, b.id)
    assert (booking.driver_id, booking.vehicle_id) == (d.id, d.vehicle.id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.assigned_at is not None
    assert _driver(core1, d.id).status == DriverStatus.BUSY
    records = _open_records(core1, d.id)
    assert len(records) == 1 and records[0].booking_id == b.id
    assert core2.query(AuditLog).filter(AuditLog.action == "ASSIGN").count() == 1


def test_second_assign_to_same_booking_fails(core1, core2, ctx, make_driver, make_booking):
    first, second = make_driver(), make_driver()
    b = make_booking()
    assignment_service.assign_driver(core1, core2, b.id, first.id, ctx)

    with pytest.raises(AlreadyAssignedException):
        assignment_service.assign_driver(core1, core2, b.id, second.id, ctx)

    assert _booking(core2, b.id).driver_id == first.id
    assert _driver(core1, second.id).status == DriverStatus.AVAILABLE


def test_busy_driver_cannot_take_a_second_booking(core1, core2, ctx, make_driver, make_booking):
    d = make_driver()
    b1, b2 = make_booking(), make_booking()
    assignment_service.assign_driver(core1, core2, b1.id, d.id, ctx)

    with pytest.raises(DriverUnavailableException):
        assignment_service.assign_driver(core1, core2, b2.id, d.id, ctx)

    assert _booking(core2, b2.id).driver_id is None
    active = core2.query(Booking).filter(
        Booking.driver_id == d.id,
        Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS]),
    ).count()
    assert active == 1


def test_driver_claim_has_a_single_winner(make_driver):
    d = make_driver()
    vehicle_id = d.vehicle.id
    with Core1Session() as a, Core1Session() as b:
        assert store.claim_driver(a, d.id, vehicle_id) is True
        a.commit()
        assert store.claim_driver(b, d.id, vehicle_id) is False
        b.rollback()


def test_driver_claim_requires_the_vehicle_to_still_be_held(core1, make_driver):
    d = make_driver()
    vehicle_id = d.vehicle.id
    with Core1Session() as other:
        assert store.detach_vehicle(other, vehicle_id, d.id) is True
        other.commit()

    assert store.claim_driver(core1, d.id, vehicle_id) is False
    core1.rollback()
    assert _driver(core1, d.id).status == DriverStatus.AVAILABLE


def test_vehicle_detach_refused_while_driver_is_busy(core1, make_driver):
    d = make_driver()
    vehicle_id = d.vehicle.id
    with Core1Session() as other:
        assert store.claim_driver(other, d.id, vehicle_id) is True
        other.commit()

    assert store.detach_vehicle(core1, vehicle_id, d.id) is False
    core1.rollback()
    assert _driver(core1, d.id).vehicle.id == vehicle_id


def test_booking_bind_has_a_single_winner(make_booking):
    booking = make_booking()
    with Core2Session() as a, Core2Session() as b:
        assert store.bind_booking(a, booking.id, 1, 1, utc_now()) is True
        a.commit()
        assert store.bind_booking(b, booking.id, 2, 2, utc_now()) is False
        b.rollback()


@pytest.mark.parametrize("status", [BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, BookingStatus.CANCELLED])
def test_booking_must_be_assignable(core1, core2, ctx, make_driver, make_booking, status):
    d = make_driver()
    b = make_booking(status=status)
    with pytest.raises(BookingNotAssignableException) as exc:
        assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)
    assert exc.value.status_code == 409
    assert _driver(core1, d.id).status == DriverStatus.AVAILABLE


def test_missing_booking(core1, core2, ctx, make_driver):
    d = make_driver()
    with pytest.raises(BookingNotAssignableException) as exc:
        assignment_service.assign_driver(core1, core2, 404, d.id, ctx)
    assert exc.value.status_code == 404


@pytest.mark.parametrize("status", [DriverStatus.BUSY, DriverStatus.OFFLINE, DriverStatus.INACTIVE])
def test_driver_must_be_available(core1, core2, ctx, make_driver, make_booking, status):
    d = make_driver(status=status)
    b = make_booking()
    with pytest.raises(DriverUnavailableException):
        assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)
    assert _booking(core2, b.id).status == BookingStatus.PENDING


def test_missing_driver(core1, core2, ctx, make_booking):
    b = make_booking()
    with pytest.raises(DriverUnavailableException) as exc:
        assignment_service.assign_driver(core1, core2, b.id, 404, ctx)
    assert exc.value.status_code == 404


@pytest.mark.parametrize("kwargs", [
    {"vehicle": False},
    {"vehicle_status": VehicleStatus.MAINTENANCE},
    {"vehicle_status": VehicleStatus.INACTIVE},
])
def test_driver_needs_an_active_vehicle(core1, core2, ctx, make_driver, make_booking, kwargs):
    d = make_driver(**kwargs)
    b = make_booking()
    with pytest.raises(NoVehicleException):
        assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)
    assert _driver(core1, d.id).status == DriverStatus.AVAILABLE
    assert _open_records(core1, d.id) == []


def test_preconditions_are_checked_in_order(core1, core2, ctx, make_driver, make_booking):
    # Booking not assignable wins over a busy driver without a vehicle
    d = make_driver(status=DriverStatus.BUSY, vehicle=False)
    b = make_booking(status=BookingStatus.IN_PROGRESS)
    with pytest.raises(BookingNotAssignableException):
        assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)

    # Already assigned wins over driver checks
    assigned = make_booking(status=BookingStatus.CONFIRMED, driver_id=77, vehicle_id=77)
    with pytest.raises(AlreadyAssignedException):
        assignment_service.assign_driver(core1, core2, assigned.id, d.id, ctx)

    # Driver unavailable wins over missing vehicle
    with pytest.raises(DriverUnavailableException):
        assignment_service.assign_driver(core1, core2, make_booking().id, d.id, ctx)


# ─── Partial failure ──────────────────────────────────────────────────────────

def test_lost_race_on_booking_releases_claimed_driver(core1, core2, ctx, make_driver, make_booking, monkeypatch):
    d, rival = make_driver(), make_driver()
    rival_vehicle_id = rival.vehicle.id
    b = make_booking()
    real_claim = store.claim_driver

    def claim_while_rival_binds(db, driver_id, vehicle_id):
        claimed = real_claim(db, driver_id, vehicle_id)
        with Core2Session() as other:
            store.bind_booking(other, b.id, rival.id, rival_vehicle_id, utc_now())
            other.commit()
        return claimed

    monkeypatch.setattr(store, "claim_driver", claim_while_rival_binds)

    with pytest.raises(AlreadyAssignedException):
        assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)

    assert _driver(core1, d.id).status == DriverStatus.AVAILABLE
    assert _open_records(core1, d.id) == []
    closed = core1.query(VehicleAssignment).filter(VehicleAssignment.driver_id == d.id).one()
    assert "Compensated" in closed.notes
    assert _booking(core2, b.id).driver_id == rival.id


def test_vehicle_detached_mid_assignment_is_not_dispatched(core1, core2, ctx, make_driver, make_booking, monkeypatch):
    d = make_driver()
    vehicle_id = d.vehicle.id
    b = make_booking()
    real_claim = store.claim_driver

    def claim_after_fleet_detach(db, driver_id, vehicle_id):
        with Core1Session() as fleet1, Core2Session() as fleet2:
            vehicle_service.unassign_driver(fleet1, fleet2, vehicle_id, "Sent to the shop", ctx)
        return real_claim(db, driver_id, vehicle_id)

    monkeypatch.setattr(store, "claim_driver", claim_after_fleet_detach)

    with pytest.raises(NoVehicleException):
        assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)

    driver = _driver(core1, d.id)
    assert driver.status == DriverStatus.AVAILABLE
    assert driver.vehicle is None
    assert _open_records(core1, d.id) == []
    booking = _booking(core2, b.id)
    assert (booking.driver_id, booking.vehicle_id) == (None, None)
    assert core1.get(Vehicle, vehicle_id).assigned_driver_id is None


def test_booking_store_failure_is_compensated(
core1, core2, ctx, make_driver, make_booking, monkeypatch):
    d = make_driver()
    b = make_booking()
    monkeypatch.setattr(store, "bind_booking", _oops)

    with pytest.raises(OperationalError):
        assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)

    assert _driver(core1, d.id).status == DriverStatus.AVAILABLE
    assert _open_records(core1, d.id) == []
    assert _booking(core2, b.id).driver_id is None


def test_failed_compensation_raises_consistency_warning(core1, core2, ctx, make_driver, make_booking, monkeypatch):
    d = make_driver()
    b = make_booking()
    monkeypatch.setattr(store, "bind_booking", _oops)
    monkeypatch.setattr(store, "release_driver", _oops)

    with pytest.raises(ConsistencyWarningException) as exc:
        assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)

    assert exc.value.status_code == 500
    assert exc.value.error_code == "CONSISTENCY_WARNING"
    warning = core2.query(AuditLog).filter(AuditLog.action == "CONSISTENCY_WARNING").one()
    assert warning.entity_type == "Driver" and warning.entity_id == d.id


# ─── Unassign ─────────────────────────────────────────────────────────────────

def test_unassign_releases_driver_and_closes_history(core1, core2, ctx, make_driver, make_booking):
    d = make_driver()
    b = make_booking()
    assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)

    result = assignment_service.unassign_driver(core1, core2, b.id, "Customer asked for a bigger car", ctx)

    assert result["status"] == "pending"
    booking = _booking(core2, b.id)
    assert (booking.driver_id, booking.vehicle_id) == (None, None)
    assert booking.status == BookingStatus.PENDING
    assert booking.driver_unassign_reason == "Customer asked for a bigger car"
    assert _driver(core1, d.id).status == DriverStatus.AVAILABLE
    record = core1.query(VehicleAssignment).filter(VehicleAssignment.booking_id == b.id).one()
    assert record.unassigned_date is not None
    assert "bigger car" in record.notes


def test_unassign_requires_a_driver(core1, core2, ctx, make_booking):
    b = make_booking()
    with pytest.raises(NoDriverAssignedException):
        assignment_service.unassign_driver(core1, core2, b.id, None, ctx)


@pytest.mark.parametrize("status", [BookingStatus.COMPLETED, BookingStatus.CANCELLED])
def test_unassign_refused_on_closed_booking(core1, core2, ctx, make_booking, status):
    b = make_booking(status=status, driver_id=5, vehicle_id=5)
    with pytest.raises(BookingClosedException):
        assignment_service.unassign_driver(core1, core2, b.id, None, ctx)
    assert _booking(core2, b.id).driver_id == 5


def test_unassign_reverts_booking_when_driver_cannot_be_freed(core1, core2, ctx, make_driver, make_booking, monkeypatch):
    d = make_driver()
    b = make_booking()
    assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)
    monkeypatch.setattr(store, "release_driver", _oops)

    with pytest.raises(OperationalError):
        assignment_service.unassign_driver(core1, core2, b.id, None, ctx)

    booking = _booking(core2, b.id)
    assert booking.driver_id == d.id
    assert booking.status == BookingStatus.CONFIRMED
    assert _driver(core1, d.id).status == DriverStatus.BUSY


def test_reassign_after_unassign(core1, core2, ctx, make_driver, make_booking):
    d = make_driver()
    b = make_booking()
    assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)
    assignment_service.unassign_driver(core1, core2, b.id, None, ctx)

    assignment_service.assign_driver(core1, core2, b.id, d.id, ctx)

    assert _booking(core2, b.id).driver_id == d.id
    assert len(_open_records(core1, d.id)) == 1


# ─── Assign nearest ───────────────────────────────────────────────────────────

def test_assign_nearest_picks_closest_dispatchable_driver(core1, core2, ctx, make_driver, make_booking, geocoder):
    make_driver(location=(14.60, 120.98), vehicle=False)
    closest = make_driver(location=(14.61, 120.98))
    make_driver(location=(14.70, 120.98))
    b = make_booking(pickup=(14.60, 120.98))

    result = assignment_service.assign_nearest(core1, core2, b.id, ctx, geocoder)

    assert result["driver_id"] == closest.id
    assert result["distance_km"] == pytest.approx(1.11, abs=0.01)
    assert result["eta_minutes"] == 3
    assert geocoder.calls == []


def test_assign_nearest_geocodes_missing_pickup(core1, core2, ctx, make_driver, make_booking, geocoder):
    d = make_driver()
    b = make_booking(pickup=None)

    assignment_service.assign_nearest(core1, core2, b.id, ctx, geocoder)

    assert geocoder.calls == ["Rizal Park, Manila"]
    booking = _booking(core2, b.id)
    assert (booking.pickup_lat, booking.pickup_lng) == (14.60, 120.98)
    assert booking.driver_id == d.id


def test_assign_nearest_keeps_a_zero_pickup_coordinate(core1, core2, ctx, make_driver, make_booking, geocoder):
    make_driver()
    b = make_booking(pickup=(0.0, 0.0))
    with pytest.raises(NoDriversNearbyException):
        assignment_service.assign_nearest(core1, core2, b.id, ctx, geocoder)
    assert geocoder.calls == []
    booking = _booking(core2, b.id)
    assert (booking.pickup_lat, booking.pickup_lng) == (0.0, 0.0)


def test_assign_nearest_geocoding_failure(
core1, core2, ctx, make_driver, make_booking, geocoder):
    make_driver()
    b = make_booking(pickup=None)
    geocoder.result = None
    with pytest.raises(GeocodingFailedException):
        assignment_service.assign_nearest(core1, core2, b.id, ctx, geocoder)
    assert _booking(core2, b.id).driver_id is None


def test_assign_nearest_with_nobody_around(core1, core2, ctx, make_driver, make_booking, geocoder):
    make_driver(location=(16.0, 120.98))
    b = make_booking()
    with pytest.raises(NoDriversNearbyException):
        assignment_service.assign_nearest(core1, core2, b.id, ctx, geocoder)


def test_assign_nearest_does_not_fall_back(core1, core2, ctx, make_driver, make_booking, geocoder, monkeypatch):
    top = make_driver(location=(14.60, 120.98))
    runner_up = make_driver(location=(14.62, 120.98))
    b = make_booking()
    real_claim = store.claim_driver

    def raced(db, driver_id, vehicle_id):
        if driver_id == top.id:
            return False
        return real_claim(db, driver_id, vehicle_id)

    monkeypatch.setattr(store, "claim_driver", raced)

    with pytest.raises(DriverUnavailableException):
        assignment_service.assign_nearest(core1, core2, b.id, ctx, geocoder)
    assert _driver(core1, runner_up.id).status == DriverStatus.AVAILABLE
    assert _booking(core2, b.id).driver_id is None


# ─── HTTP ─────────────────────────────────────────────────────────────────────

def test_assign_endpoint(client, dispatch_headers, make_driver, make_booking):
    d = make_driver()
    b = make_booking()

    res = client.post(f"/api/v1/bookings/{b.id}/assign", json={"driver_id": d.id}, headers=dispatch_headers)

    assert res.status_code == 200
    data = res.json()["data"]
    assert (data["booking_id"], data["driver_id"]) == (b.id, d.id)
    assert data["vehicle_id"] is not None

    again = client.post(f"/api/v1/bookings/{b.id}/assign", json={"driver_id": d.id}, headers=dispatch_headers)
    assert again.status_code == 409
    body = again.json()
    assert body["success"] is False
    assert body["error_code"] == "ALREADY_ASSIGNED"
    assert body["error"]["code"] == "ALREADY_ASSIGNED"


def test_assign_endpoint_reports_store_outage(client, dispatch_headers, make_driver, make_booking, monkeypatch):
    d = make_driver()
    b = make_booking()
    monkeypatch.setattr(store, "bind_booking", _oops)

    res = client.post(f"/api/v1/bookings/{b.id}/assign", json={"driver_id": d.id}, headers=dispatch_headers)

    assert res.status_code == 503
    assert res.json()["error_code"] == "SERVICE_UNAVAILABLE"
    assert "UPDATE" not in res.json()["message"]


def test_assign_endpoint_reports_consistency_warning(client, dispatch_headers, make_driver, make_booking, monkeypatch):
    d = make_driver()
    b = make_booking()
    monkeypatch.setattr(store, "bind_booking", _oops)
    monkeypatch.setattr(store, "release_driver", _oops)

    res = client.post(f"/api/v1/bookings/{b.id}/assign", json={"driver_id": d.id}, headers=dispatch_headers)

    assert res.status_code == 500
    assert res.json()["error_code"] == "CONSISTENCY_WARNING"


def test_assign_nearest_endpoint(client, dispatch_headers, make_driver, make_booking, geocoder):
    d = make_driver(location=(14.70, 120.98))
    b = make_booking()

    res = client.post(f"/api/v1/bookings/{b.id}/assign-nearest", headers=dispatch_headers)

    assert res.status_code == 200
    data = res.json()["data"]
    assert data["driver"]["id"] == d.id
    assert data["vehicle"]["plate_number"] == f"ABC-{d.id:04d}"
    assert data["distance_km"] == pytest.approx(11.12, abs=0.05)
    assert data["eta_minutes"] == 23


def test_unassign_endpoint(client, dispatch_headers, make_driver, make_booking):
    d = make_driver()
    b = make_booking()
    client.post(f"/api/v1/bookings/{b.id}/assign", json={"driver_id": d.id}, headers=dispatch_headers)

    res = client.post(f"/api/v1/bookings/{b.id}/unassign", json={"reason": "Driver stuck in traffic"},
                      headers=dispatch_headers)

    assert res.status_code == 200
    assert res.json()["data"]["status"] == "pending"
    again = client.post(f"/api/v1/bookings/{b.id}/unassign", json={}, headers=dispatch_headers)
    assert again.status_code == 409
    assert again.json()["error_code"] == "NO_DRIVER_ASSIGNED"


def test_drivers_cannot_dispatch(client, make_driver, make_booking, driver_headers):
    d = make_driver()
    b = make_booking()
    res = client.post(f"/api/v1/bookings/{b.id}/assign", json={"driver_id": d.id}, headers=driver_headers(d))
    assert res.status_code == 403
