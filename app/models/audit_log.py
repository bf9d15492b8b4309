from sqlalchemy import Column, Integer, String, Text, ForeignKey, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database import Core2Base
from app.utils.timeutil import utc_now


class AuditLog(Core2Base):
    __tablename__ = "audit_logs"

    id          = Column(Integer, primary_key=True, index=True)
    user_id     = Column(Integer, ForeignKey("users.id"), nullable=True)  # NULL = system action
    action      = Column(String(100), nullable=False)       # e.g. ASSIGN, UNASSIGN, STATUS_CHANGE
    entity_type = Column(String(100), nullable=False)       # e.g. Booking, Driver, Vehicle
    entity_id   = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    created_at  = Column(TIMESTAMP(timezone=True), default=utc_now, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    user = relationship("User", back_populates="audit_logs")

    def __repr__(self):
        return f"<AuditLog id={self.id} action={self.action} entity={self.entity_type}:{self.entity_id}>"
