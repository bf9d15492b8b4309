from sqlalchemy import Column, Integer, Text, ForeignKey, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database import Core1Base


class VehicleAssignment(Core1Base):
    """Append-only ledger of vehicle/driver pairings."""
    __tablename__ = "vehicle_assignment_history"

    id              = Column(Integer, primary_key=True, index=True)
    vehicle_id      = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    driver_id       = Column(Integer, ForeignKey("drivers.id"), nullable=False, index=True)
    booking_id      = Column(Integer, nullable=True, index=True)  # core2 bookings.id, NULL = fleet pairing
    assigned_date   = Column(TIMESTAMP(timezone=True), nullable=False)
    unassigned_date = Column(TIMESTAMP(timezone=True), nullable=True)  # NULL = still open
    notes           = Column(Text, nullable=True)

    # ─── Relationships ─────────────────────────────────────────────────────────
    driver  = relationship("Driver", back_populates="assignments")
    vehicle = relationship("Vehicle", back_populates="assignments")

    def __repr__(self):
        return (f"<VehicleAssignment id={self.id} vehicle={self.vehicle_id} "
                f"driver={self.driver_id} booking={self.booking_id}>")
