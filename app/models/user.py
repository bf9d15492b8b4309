from sqlalchemy import Column, Integer, String, Boolean, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database import Core2Base
from app.models._types import enum_column_type
from app.models.role import RoleName
from app.utils.timeutil import utc_now


class User(Core2Base):
    __tablename__ = "users"

    id         = Column(Integer, primary_key=True, index=True)
    firstname  = Column(String(100), nullable=False)
    lastname   = Column(String(100), nullable=False)
    email      = Column(String(255), unique=True, nullable=False, index=True)
    phone      = Column(String(30), nullable=True)
    password   = Column(String(255), nullable=False)
    role       = Column(enum_column_type(RoleName, "user_role"), nullable=False)
    is_active  = Column(Boolean, default=True, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    bookings   = relationship("Booking", back_populates="customer")
    audit_logs = relationship("AuditLog", back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}"

    def __repr__(self):
        return f"<User id={self.id} email={self.email} role={self.role}>"
