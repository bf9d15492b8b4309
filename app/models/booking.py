import enum
from sqlalchemy import Column, Integer, String, Text, Float, Numeric, ForeignKey, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database import Core2Base
from app.models._types import enum_column_type
from app.utils.timeutil import utc_now


class BookingStatus(str, enum.Enum):
    PENDING     = "pending"
    CONFIRMED   = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED   = "completed"
    CANCELLED   = "cancelled"


class Booking(Core2Base):
    __tablename__ = "bookings"

    id                 = Column(Integer, primary_key=True, index=True)
    customer_id        = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    pickup_location    = Column(String(255), nullable=False)
    dropoff_location   = Column(String(255), nullable=False)
    pickup_lat         = Column(Float, nullable=True)
    pickup_lng         = Column(Float, nullable=True)
    dropoff_lat        = Column(Float, nullable=True)
    dropoff_lng        = Column(Float, nullable=True)
    pickup_datetime    = Column(TIMESTAMP(timezone=True), nullable=False)
    status             = Column(enum_column_type(BookingStatus, "booking_status"),
                                default=BookingStatus.PENDING, nullable=False, index=True)
    # core1 references, set and cleared together
    driver_id          = Column(Integer, nullable=True, index=True)
    vehicle_id         = Column(Integer, nullable=True)
    fare_estimate      = Column(Numeric(10, 2), nullable=True)
    distance_km        = Column(Numeric(10, 2), nullable=True)
    duration_minutes   = Column(Integer, nullable=True)
    actual_fare        = Column(Numeric(10, 2), nullable=True)
    cancellation_reason    = Column(Text, nullable=True)
    driver_unassign_reason = Column(Text, nullable=True)
    notes              = Column(Text, nullable=True)
    assigned_at        = Column(TIMESTAMP(timezone=True), nullable=True)
    cancelled_at       = Column(TIMESTAMP(timezone=True), nullable=True)
    completed_at       = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at         = Column(TIMESTAMP(timezone=True), default=utc_now, nullable=False)
    updated_at         = Column(TIMESTAMP(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    customer      = relationship("User", back_populates="bookings")
    payments      = relationship("Payment", back_populates="booking", cascade="all, delete-orphan")
    cancellations = relationship("BookingCancellation", back_populates="booking",
                                 cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Booking id={self.id} status={self.status} driver={self.driver_id}>"
