import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def log_action(
    db: Session,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    description: str | None = None,
) -> None:
    """
    Write an audit log entry to core2.

    Args:
        db:          Active core2 session (caller commits)
        user_id:     ID of user performing the action (None = system action)
        action:      Verb: ASSIGN, UNASSIGN, STATUS_CHANGE, CANCEL, COMPLETE, etc.
        entity_type: Model name: "Booking", "Driver", "Vehicle", etc.
        entity_id:   Primary key of the affected record
        description: Human-readable description

    Usage:
        log_action(core2, ctx.user_id, "ASSIGN", "Booking", booking.id,
                   f"Driver #{driver.id} assigned to booking #{booking.id}")
        core2.commit()
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=description,
    )
    db.add(entry)
    # caller commits


def record_consistency_warning(
    db: Session,
    user_id: int | None,
    entity_type: str,
    entity_id: int | None,
    description: str,
) -> None:
    """
    Flag a cross-store inconsistency for operator follow-up.

    Always logged; persisted to the audit log in its own transaction when
    core2 is reachable. Never raises.
    """
    logger.error(f"CONSISTENCY_WARNING {entity_type}#{entity_id}: {description}")
    try:
        db.rollback()
        log_action(db, user_id, "CONSISTENCY_WARNING", entity_type, entity_id, description)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"CONSISTENCY_WARNING could not be persisted for {entity_type}#{entity_id}: {e}")
