import enum
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database import Core2Base
from app.models._types import enum_column_type


class PaymentMethod(str, enum.Enum):
    CASH           = "cash"
    CREDIT_CARD    = "credit_card"
    DEBIT_CARD     = "debit_card"
    MOBILE_PAYMENT = "mobile_payment"
    PREPAID        = "prepaid"


class Payment(Core2Base):
    __tablename__ = "payments"

    id             = Column(Integer, primary_key=True, index=True)
    booking_id     = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    amount         = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(enum_column_type(PaymentMethod, "payment_method"), nullable=False)
    status         = Column(String(20), default="completed", nullable=False)
    payment_date   = Column(TIMESTAMP(timezone=True), nullable=False)

    booking = relationship("Booking", back_populates="payments")

    def __repr__(self):
        return f"<Payment id={self.id} booking={self.booking_id} amount={self.amount}>"
