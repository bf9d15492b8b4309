"""
Shared fixtures.

core1 and core2 are two SQLite files in a temp directory; tables are
created before and dropped after every test.
"""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="movers-dispatch-tests-")
os.environ["CORE1_DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'core1.db')}"
os.environ["CORE2_DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'core2.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["GEOCODING_API_KEY"] = ""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import app.models  # noqa: F401
from app.context import RequestContext
from app.database import Core1Base, Core2Base, Core1Session, Core2Session, core1_engine, core2_engine
from app.main import app as fastapi_app
from app.models.booking import Booking, BookingStatus
from app.models.driver import Driver, DriverStatus
from app.models.role import RoleName
from app.models.user import User
from app.models.vehicle import Vehicle, VehicleStatus
from app.services.geocoding_service import get_geocoder
from app.utils.exceptions import GeocodingFailedException
from app.utils.security import create_access_token
from app.utils.timeutil import utc_now

MANILA = (14.60, 120.98)


@pytest.fixture(autouse=True)
def setup_database():
    Core1Base.metadata.create_all(bind=core1_engine)
    Core2Base.metadata.create_all(bind=core2_engine)
    yield
    fastapi_app.dependency_overrides.clear()
    Core1Base.metadata.drop_all(bind=core1_engine)
    Core2Base.metadata.drop_all(bind=core2_engine)


@pytest.fixture
def core1():
    db = Core1Session()
    yield db
    db.close()


@pytest.fixture
def core2():
    db = Core2Session()
    yield db
    db.close()


@pytest.fixture
def client():
    return TestClient(fastapi_app)


# ─── Factories ────────────────────────────────────────────────────────────────

@pytest.fixture
def make_user(core2):
    counter = {"n": 0}

    def _make(role: RoleName = RoleName.CUSTOMER, password: str = "not-a-real-hash", **kwargs) -> User:
        counter["n"] += 1
        user = User(
            firstname=kwargs.pop("firstname", role.value.title()),
            lastname=kwargs.pop("lastname", f"User{counter['n']}"),
            email=kwargs.pop("email", f"{role.value}{counter['n']}@moverstaxi.ph"),
            phone=kwargs.pop("phone", f"0917000{counter['n']:04d}"),
            password=password,
            role=role,
            is_active=kwargs.pop("is_active", True),
        )
        core2.add(user)
        core2.commit()
        return user
    return _make


@pytest.fixture
def make_driver(core1, make_user):
    def _make(location=MANILA, status: DriverStatus = DriverStatus.AVAILABLE,
              vehicle: bool = True, vehicle_status: VehicleStatus = VehicleStatus.ACTIVE,
              with_user: bool = True) -> Driver:
        user = make_user(RoleName.DRIVER) if with_user else None
        driver = Driver(
            user_id=user.id if user else None,
            license_number=f"LIC-{utc_now().timestamp()}",
            rating=4.5,
            status=status,
            latitude=location[0] if location else None,
            longitude=location[1] if location else None,
            location_updated_at=utc_now() - timedelta(seconds=30) if location else None,
        )
        core1.add(driver)
        core1.flush()
        if vehicle:
            core1.add(Vehicle(
                plate_number=f"ABC-{driver.id:04d}",
                model="Toyota Vios",
                year=2022,
                capacity=4,
                status=vehicle_status,
                assigned_driver_id=driver.id,
            ))
        core1.commit()
        core1.refresh(driver)
        return driver
    return _make


@pytest.fixture
def make_booking(core2, make_user):
    def _make(status: BookingStatus = BookingStatus.PENDING, pickup=MANILA, customer: User | None = None,
              **kwargs) -> Booking:
        customer = customer or make_user(RoleName.CUSTOMER)
        booking = Booking(
            customer_id=customer.id,
            pickup_location=kwargs.pop("pickup_location", "Rizal Park, Manila"),
            dropoff_location=kwargs.pop("dropoff_location", "SM Mall of Asia, Pasay"),
            pickup_lat=pickup[0] if pickup else None,
            pickup_lng=pickup[1] if pickup else None,
            pickup_datetime=utc_now() + timedelta(hours=1),
            status=status,
            fare_estimate=kwargs.pop("fare_estimate", 250),
            **kwargs,
        )
        core2.add(booking)
        core2.commit()
        return booking
    return _make


# ─── Auth ─────────────────────────────────────────────────────────────────────

def headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}


@pytest.fixture
def dispatcher(make_user) -> User:
    return make_user(RoleName.DISPATCH)


@pytest.fixture
def dispatch_headers(dispatcher) -> dict:
    return headers_for(dispatcher)


@pytest.fixture
def admin_headers(make_user) -> dict:
    return headers_for(make_user(RoleName.ADMIN))


@pytest.fixture
def ctx(dispatcher) -> RequestContext:
    return RequestContext.for_role(dispatcher.id, RoleName.DISPATCH)


# ─── Geocoder ─────────────────────────────────────────────────────────────────

class FakeGeocoder:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    def geocode(self, address: str):
        self.calls.append(address)
        if self.result is None:
            raise GeocodingFailedException()
        return self.result


@pytest.fixture
def geocoder():
    fake = FakeGeocoder(result=MANILA)
    fastapi_app.dependency_overrides[get_geocoder] = lambda: fake
    return fake


@pytest.fixture
def auth_headers():
    return headers_for


@pytest.fixture
def driver_headers(core2):
    """Bearer headers for the user behind a driver row."""
    def _headers(driver: Driver) -> dict:
        return headers_for(core2.get(User, driver.user_id))
    return _headers
