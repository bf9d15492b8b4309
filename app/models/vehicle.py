import enum
from sqlalchemy import Column, Integer, String, ForeignKey, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database import Core1Base
from app.models._types import enum_column_type
from app.utils.timeutil import utc_now


class VehicleStatus(str, enum.Enum):
    ACTIVE      = "active"
    MAINTENANCE = "maintenance"
    INACTIVE    = "inactive"


class Vehicle(Core1Base):
    __tablename__ = "vehicles"

    id                 = Column(Integer, primary_key=True, index=True)
    plate_number       = Column(String(20), unique=True, nullable=False, index=True)
    model              = Column(String(100), nullable=False)
    year               = Column(Integer, nullable=True)
    capacity           = Column(Integer, default=4, nullable=False)
    status             = Column(enum_column_type(VehicleStatus, "vehicle_status"),
                                default=VehicleStatus.ACTIVE, nullable=False)
    # One vehicle per driver: enforced by the unique constraint
    assigned_driver_id = Column(Integer, ForeignKey("drivers.id"), unique=True, nullable=True)
    created_at         = Column(TIMESTAMP(timezone=True), default=utc_now, nullable=False)
    updated_at         = Column(TIMESTAMP(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    driver      = relationship("Driver", back_populates="vehicle")
    assignments = relationship("VehicleAssignment", back_populates="vehicle")

    def __repr__(self):
        return f"<Vehicle id={self.id} plate={self.plate_number}>"
