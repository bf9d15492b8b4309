import enum
from sqlalchemy import Column, Integer, String, Float, Numeric, Date, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database import Core1Base
from app.models._types import enum_column_type
from app.utils.timeutil import utc_now


class DriverStatus(str, enum.Enum):
    AVAILABLE = "available"
    BUSY      = "busy"
    OFFLINE   = "offline"
    INACTIVE  = "inactive"


class Driver(Core1Base):
    __tablename__ = "drivers"

    id                = Column(Integer, primary_key=True, index=True)
    user_id           = Column(Integer, nullable=True, index=True)   # core2 users.id
    license_number    = Column(String(100), nullable=False)
    license_expiry    = Column(Date, nullable=True)
    rating            = Column(Numeric(3, 2), nullable=True)
    status            = Column(enum_column_type(DriverStatus, "driver_status"),
                               default=DriverStatus.OFFLINE, nullable=False, index=True)
    latitude          = Column(Float, nullable=True)
    longitude         = Column(Float, nullable=True)
    location_updated_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at        = Column(TIMESTAMP(timezone=True), default=utc_now, nullable=False)
    updated_at        = Column(TIMESTAMP(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    vehicle           = relationship("Vehicle", back_populates="driver", uselist=False)
    assignments       = relationship("VehicleAssignment", back_populates="driver")
    location_history  = relationship("DriverLocation", back_populates="driver")

    @property
    def has_location(self) -> bool:
        # Zero is the source system's "never reported" marker
        return bool(self.latitude) and bool(self.longitude)

    def __repr__(self):
        return f"<Driver id={self.id} status={self.status}>"
