from sqlalchemy import Column, Integer, Float, ForeignKey, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database import Core1Base


class DriverLocation(Core1Base):
    __tablename__ = "driver_location_history"

    id          = Column(Integer, primary_key=True, index=True)
    driver_id   = Column(Integer, ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False, index=True)
    latitude    = Column(Float, nullable=False)
    longitude   = Column(Float, nullable=False)
    recorded_at = Column(TIMESTAMP(timezone=True), nullable=False)

    driver = relationship("Driver", back_populates="location_history")

    def __repr__(self):
        return f"<DriverLocation driver={self.driver_id} ({self.latitude}, {self.longitude})>"
