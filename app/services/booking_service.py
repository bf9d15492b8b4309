import logging
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.context import RequestContext
from app.models.booking import Booking, BookingStatus
from app.models.booking_cancellation import BookingCancellation, CancelledBy
from app.models.payment import Payment, PaymentMethod
from app.models.role import RoleName, MANAGE_BOOKINGS, VIEW_BOOKINGS
from app.models.user import User
from app.schemas.booking import BookingCreateRequest, CompleteBookingRequest
from app.schemas.common import money
from app.services import dispatch_store as store
from app.services.assignment_service import assignment_service
from app.services.booking_state import check_transition, is_terminal
from app.utils.audit import log_action
from app.utils.exceptions import (
    NotFoundException, ForbiddenException, ValidationException,
    BookingClosedException, InvalidTransitionException,
)
from app.utils.timeutil import utc_now, ensure_utc, to_iso

logger = logging.getLogger(__name__)


def serialize_booking(b: Booking) -> dict:
    return {
        "id":                     b.id,
        "customer_id":            b.customer_id,
        "status":                 b.status.value,
        "pickup_location":        b.pickup_location,
        "dropoff_location":       b.dropoff_location,
        "pickup_lat":             b.pickup_lat,
        "pickup_lng":             b.pickup_lng,
        "dropoff_lat":            b.dropoff_lat,
        "dropoff_lng":            b.dropoff_lng,
        "pickup_datetime":        to_iso(b.pickup_datetime),
        "driver_id":              b.driver_id,
        "vehicle_id":             b.vehicle_id,
        "fare_estimate":          money(b.fare_estimate),
        "distance_km":            money(b.distance_km),
        "duration_minutes":       b.duration_minutes,
        "actual_fare":            money(b.actual_fare),
        "cancellation_reason":    b.cancellation_reason,
        "driver_unassign_reason": b.driver_unassign_reason,
        "notes":                  b.notes,
        "assigned_at":            to_iso(b.assigned_at),
        "cancelled_at":           to_iso(b.cancelled_at),
        "completed_at":           to_iso(b.completed_at),
        "created_at":             to_iso(b.created_at),
        "updated_at":             to_iso(b.updated_at),
    }


def _cancelled_by_for(ctx: RequestContext) -> CancelledBy:
    if ctx.role == RoleName.CUSTOMER: return CancelledBy.CUSTOMER
    if ctx.role == RoleName.DRIVER:   return CancelledBy.DRIVER
    if ctx.user_id is None:           return CancelledBy.SYSTEM
    return CancelledBy.ADMIN


class BookingService:

    # ─── Visibility ───────────────────────────────────────────────────────────

    def _can_view(self, b: Booking, ctx: RequestContext) -> bool:
        if ctx.has_any(VIEW_BOOKINGS, MANAGE_BOOKINGS):
            return True
        if ctx.role == RoleName.CUSTOMER:
            return b.customer_id == ctx.user_id
        if ctx.role == RoleName.DRIVER:
            return ctx.driver_id is not None and b.driver_id == ctx.driver_id
        return False

    def _check_can_modify(self, b: Booking, ctx: RequestContext) -> None:
        """Dispatch may change any booking; drivers and customers only their own."""
        if ctx.has_permission(MANAGE_BOOKINGS):
            return
        if ctx.role == RoleName.DRIVER and ctx.driver_id is not None and b.driver_id == ctx.driver_id:
            return
        if ctx.role == RoleName.CUSTOMER and b.customer_id == ctx.user_id:
            return
        raise ForbiddenException("You cannot modify this booking")

    def _load(self, core2: Session, booking_id: int) -> Booking:
        b = core2.get(Booking, booking_id, populate_existing=True)
        if not b: raise NotFoundException("Booking")
        return b

    def _status_conflict(self, core2: Session, booking_id: int, requested: BookingStatus) -> Exception:
        """The row changed between read and guarded write."""
        current = self._load(core2, booking_id)
        if is_terminal(current.status):
            return BookingClosedException(current.status.value)
        return InvalidTransitionException(current.status.value, requested.value)

    # ─── Queries ──────────────────────────────────────────────────────────────

    def list_bookings(self, core2: Session, ctx: RequestContext, page: int, limit: int,
                      status: BookingStatus | None, driver_id: int | None) -> tuple[list[dict], int]:
        q = core2.query(Booking)

        if not ctx.has_any(VIEW_BOOKINGS, MANAGE_BOOKINGS):
            if ctx.role == RoleName.CUSTOMER:
                q = q.filter(Booking.customer_id == ctx.user_id)
            elif ctx.role == RoleName.DRIVER and ctx.driver_id is not None:
                q = q.filter(Booking.driver_id == ctx.driver_id)
            else:
                q = q.filter(Booking.id == -1)  # no results

        if status:    q = q.filter(Booking.status == status)
        if driver_id: q = q.filter(Booking.driver_id == driver_id)

        total = q.count()
        items = q.order_by(Booking.created_at.desc(), Booking.id.desc())\
                 .offset((page - 1) * limit).limit(limit).all()
        return [serialize_booking(b) for b in items], total

    def get_booking(self, core2: Session, booking_id: int, ctx: RequestContext) -> dict:
        b = self._load(core2, booking_id)
        if not self._can_view(b, ctx):
            raise ForbiddenException("You can only view your own bookings")
        data = serialize_booking(b)
        data["payments"] = [{
            "id":             p.id,
            "amount":         money(p.amount),
            "payment_method": p.payment_method.value,
            "status":         p.status,
            "payment_date":   to_iso(p.payment_date),
        } for p in b.payments]
        data["cancellations"] = [{
            "cancelled_by": c.cancelled_by.value,
            "reason":       c.reason,
            "cancelled_at": to_iso(c.cancelled_at),
        } for c in b.cancellations]
        return data

    # ─── Create ───────────────────────────────────────────────────────────────

    def create_booking(self, core2: Session, data: BookingCreateRequest, ctx: RequestContext) -> dict:
        if ctx.role == RoleName.CUSTOMER:
            if data.customer_id is not None and data.customer_id != ctx.user_id:
                raise ForbiddenException("Customers can only book for themselves")
            customer_id = ctx.user_id
        else:
            if data.customer_id is None:
                raise ValidationException("customer_id is required", field="customer_id")
            customer_id = data.customer_id
        if not core2.get(User, customer_id):
            raise NotFoundException("Customer")

        b = Booking(
            customer_id=customer_id,
            pickup_location=data.pickup_location,
            dropoff_location=data.dropoff_location,
            pickup_lat=data.pickup_lat,
            pickup_lng=data.pickup_lng,
            dropoff_lat=data.dropoff_lat,
            dropoff_lng=data.dropoff_lng,
            pickup_datetime=ensure_utc(data.pickup_datetime),
            status=BookingStatus.PENDING,
            fare_estimate=data.fare_estimate,
            distance_km=data.distance_km,
            duration_minutes=data.duration_minutes,
            notes=data.notes,
        )
        core2.add(b)
        core2.flush()
        log_action(core2, ctx.user_id, "CREATE", "Booking", b.id,
                   f"Booking #{b.id} created: {b.pickup_location} -> {b.dropoff_location}")
        core2.commit()
        core2.refresh(b)
        logger.info(f"Booking #{b.id} created for customer #{customer_id}")
        return serialize_booking(b)

    # ─── Transitions ──────────────────────────────────────────────────────────

    def update_status(self, core1: Session, core2: Session, booking_id: int, new_status: BookingStatus,
                      cancellation_reason: str | None, ctx: RequestContext) -> tuple[dict, bool]:
        """Returns (booking, changed). A same-state request is a no-op."""
        b = self._load(core2, booking_id)
        self._check_can_modify(b, ctx)
        if check_transition(b.status, new_status):
            return serialize_booking(b), False

        if new_status == BookingStatus.CANCELLED:
            reason = (cancellation_reason or "").strip() or "Cancelled via status update"
            return self._cancel(core1, core2, b, reason, _cancelled_by_for(ctx), ctx), True
        if new_status == BookingStatus.COMPLETED:
            raise ValidationException(
                f"Complete a booking through POST /bookings/{b.id}/complete with the fare and payment method",
                field="status",
            )

        current = b.status
        try:
            if not store.move_booking(core2, b.id, current, new_status):
                core2.rollback()
                raise self._status_conflict(core2, booking_id, new_status)
            log_action(core2, ctx.user_id, "STATUS_CHANGE", "Booking", b.id,
                       f"Booking #{b.id} {current.value} -> {new_status.value}")
            core2.commit()
        except SQLAlchemyError:
            core2.rollback()
            raise
        core2.refresh(b)
        logger.info(f"Booking #{b.id} {current.value} -> {new_status.value}")
        return serialize_booking(b), True

    def cancel_booking(self, core1: Session, core2: Session, booking_id: int, reason: str,
                       cancelled_by: CancelledBy, ctx: RequestContext) -> tuple[dict, bool]:
        b = self._load(core2, booking_id)
        self._check_can_modify(b, ctx)
        if check_transition(b.status, BookingStatus.CANCELLED):
            return serialize_booking(b), False
        if not ctx.has_permission(MANAGE_BOOKINGS):
            cancelled_by = _cancelled_by_for(ctx)
        return self._cancel(core1, core2, b, reason, cancelled_by, ctx), True

    def complete_booking(self, core1: Session, core2: Session, booking_id: int,
                         data: CompleteBookingRequest, ctx: RequestContext) -> tuple[dict, bool]:
        b = self._load(core2, booking_id)
        self._check_can_modify(b, ctx)
        if check_transition(b.status, BookingStatus.COMPLETED):
            return serialize_booking(b), False
        return self._complete(core1, core2, b, data.fare_amount, data.payment_method, data.notes, ctx), True

    # ─── Terminal transitions (release the driver) ────────────────────────────

    def _cancel(self, core1: Session, core2: Session, b: Booking, reason: str,
                cancelled_by: CancelledBy, ctx: RequestContext) -> dict:
        previous, driver_id, booking_id = b.status, b.driver_id, b.id
        now = utc_now()

        try:
            if not store.move_booking(core2, booking_id, previous, BookingStatus.CANCELLED,
                                      cancellation_reason=reason, cancelled_at=now):
                core2.rollback()
                raise self._status_conflict(core2, booking_id, BookingStatus.CANCELLED)
            record = BookingCancellation(booking_id=booking_id, cancelled_by=cancelled_by,
                                         reason=reason, cancelled_at=now)
            core2.add(record)
            log_action(core2, ctx.user_id, "CANCEL", "Booking", booking_id,
                       f"Booking #{booking_id} cancelled by {cancelled_by.value}: {reason}")
            core2.commit()
        except SQLAlchemyError:
            core2.rollback()
            raise
        record_id = record.id

        if driver_id is not None:
            def undo(db: Session) -> bool:
                db.query(BookingCancellation).filter(BookingCancellation.id == record_id).delete()
                return store.move_booking(db, booking_id, BookingStatus.CANCELLED, previous,
                                          cancellation_reason=None, cancelled_at=None)

            assignment_service.release_for_booking(
                core1, core2, booking_id, driver_id, f"Booking cancelled: {reason}", ctx, undo,
            )
            logger.info(f"Driver #{driver_id} released by cancellation of booking #{booking_id}")

        core2.refresh(b)
        logger.info(f"Booking #{booking_id} cancelled ({previous.value} -> cancelled)")
        return serialize_booking(b)

    def _complete(self, core1: Session, core2: Session, b: Booking, fare: Decimal,
                  method: PaymentMethod, notes: str | None, ctx: RequestContext) -> dict:
        driver_id, booking_id = b.driver_id, b.id
        previous_fare, previous_notes = b.actual_fare, b.notes
        now = utc_now()

        values = {"completed_at": now, "actual_fare": fare}
        if notes and notes.strip():
            values["notes"] = store.append_note(previous_notes, f"Completion notes: {notes.strip()}")

        try:
            if not store.move_booking(core2, booking_id, BookingStatus.IN_PROGRESS,
                                      BookingStatus.COMPLETED, **values):
                core2.rollback()
                raise self._status_conflict(core2, booking_id, BookingStatus.COMPLETED)
            payment = Payment(booking_id=booking_id, amount=fare, payment_method=method,
                              status="completed", payment_date=now)
            core2.add(payment)
            log_action(core2, ctx.user_id, "COMPLETE", "Booking", booking_id,
                       f"Booking #{booking_id} completed, fare {money(fare):.2f} ({method.value})")
            core2.commit()
        except SQLAlchemyError:
            core2.rollback()
            raise
        payment_id = payment.id

        if driver_id is not None:
            def undo(db: Session) -> bool:
                db.query(Payment).filter(Payment.id == payment_id).delete()
                return store.move_booking(db, booking_id, BookingStatus.COMPLETED, BookingStatus.IN_PROGRESS,
                                          completed_at=None, actual_fare=previous_fare, notes=previous_notes)

            assignment_service.release_for_booking(
                core1, core2, booking_id, driver_id, "Booking completed", ctx, undo,
            )
            logger.info(f"Driver #{driver_id} released by completion of booking #{booking_id}")

        core2.refresh(b)
        logger.info(f"Booking #{booking_id} completed")
        return serialize_booking(b)


booking_service = BookingService()
