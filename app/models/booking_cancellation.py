import enum
from sqlalchemy import Column, Integer, Text, ForeignKey, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database import Core2Base
from app.models._types import enum_column_type


class CancelledBy(str, enum.Enum):
    ADMIN    = "admin"
    DRIVER   = "driver"
    CUSTOMER = "customer"
    SYSTEM   = "system"


class BookingCancellation(Core2Base):
    __tablename__ = "booking_cancellations"

    id           = Column(Integer, primary_key=True, index=True)
    booking_id   = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    cancelled_by = Column(enum_column_type(CancelledBy, "cancelled_by"), nullable=False)
    reason       = Column(Text, nullable=False)
    cancelled_at = Column(TIMESTAMP(timezone=True), nullable=False)

    booking = relationship("Booking", back_populates="cancellations")

    def __repr__(self):
        return f"<BookingCancellation booking={self.booking_id} by={self.cancelled_by}>"
