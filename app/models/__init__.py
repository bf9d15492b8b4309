"""
Import all models here so that:
1. ``init_db`` creates every table on the right store
2. Relationships between models resolve correctly

core1 models register on ``Core1Base.metadata``; core2 models on
``Core2Base.metadata``. Order matters: parent tables before child tables.
"""

# ─── core1 ────────────────────────────────────────────────────────────────────
from app.models.driver import Driver, DriverStatus
from app.models.vehicle import Vehicle, VehicleStatus
from app.models.vehicle_assignment import VehicleAssignment
from app.models.driver_location import DriverLocation

# ─── core2 ────────────────────────────────────────────────────────────────────
from app.models.role import RoleName
from app.models.user import User
from app.models.booking import Booking, BookingStatus
from app.models.booking_cancellation import BookingCancellation, CancelledBy
from app.models.payment import Payment, PaymentMethod
from app.models.audit_log import AuditLog

__all__ = [
    "Driver",
    "DriverStatus",
    "Vehicle",
    "VehicleStatus",
    "VehicleAssignment",
    "DriverLocation",
    "RoleName",
    "User",
    "Booking",
    "BookingStatus",
    "BookingCancellation",
    "CancelledBy",
    "Payment",
    "PaymentMethod",
    "AuditLog",
]
