"""
Booking lifecycle.

    pending     -> confirmed, cancelled
    confirmed   -> in_progress, cancelled
    in_progress -> completed, cancelled
    completed, cancelled: terminal
"""

from app.models.booking import BookingStatus
from app.utils.exceptions import InvalidTransitionException

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING:     frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED:   frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED:   frozenset(),
    BookingStatus.CANCELLED:   frozenset(),
}

TERMINAL   = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})
ASSIGNABLE = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})
# A driver on one of these is not free for another booking
ACTIVE     = frozenset({BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS})


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL


def can_transition(current: BookingStatus, new: BookingStatus) -> bool:
    return new == current or new in TRANSITIONS[current]


def check_transition(current: BookingStatus, new: BookingStatus) -> bool:
    """
    Validate ``current -> new``.

    Returns True when the request is a same-state no-op, False when it is a
    real transition. Raises InvalidTransitionException otherwise.
    """
    if new == current:
        return True
    if not can_transition(current, new):
        raise InvalidTransitionException(current.value, new.value)
    return False
