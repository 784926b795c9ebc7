"""Appointment booking and lifecycle rules."""
from __future__ import annotations

from datetime import date, datetime, timezone

from flask import current_app
from werkzeug.exceptions import BadRequest, Conflict, Forbidden, NotFound

from .auth import ADMIN, HOST, USER
from .extensions import db
from .income import create_income
from .models import (APPOINTMENT_STATUSES, HOLDING_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES,
                     TERMINAL_STATUSES, Appointment, Income, Salon, Service, User, utc_now)
from .notifications import send_notification
from .scheduling import (as_utc, cancellation_deadline, format_minutes, intervals_overlap,
                         local_now, local_start, resolve_hours, salon_zone, to_minutes,
                         within_window)
from .slots import adjust_slot_count, is_available, release_slot, reserve_slot, run_reserving
from .validation import parse_choice, parse_date, parse_hhmm, parse_positive_int, require_fields

# Completed, cancelled and no-show may go back to confirmed as a host correction.
ALLOWED_TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("completed", "cancelled", "no-show"),
    "cancelled": ("confirmed",),
    "completed": ("confirmed",),
    "no-show": ("confirmed",),
}


def get_appointment_or_404(appointment_id: int) -> Appointment:
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFound("Appointment not found")
    return appointment


def _owns_salon(actor: User, salon: Salon) -> bool:
    return actor.role == ADMIN or (actor.role == HOST and salon.host_id == actor.user_id)


def _can_view(actor: User, appointment: Appointment) -> bool:
    return appointment.user_id == actor.user_id or _owns_salon(actor, appointment.salon)


def _validate_slot_time(salon: Salon, day: date, start_time: str, duration_minutes: int) -> str:
    """Check the requested start is in the future and inside business hours.

    Returns the ``HH:MM`` end time.
    """
    zone = salon_zone(salon)
    if local_start(day, start_time, zone) <= local_now(zone):
        raise BadRequest("Cannot create appointments in the past or for current time")

    window = resolve_hours(salon, day)
    if window is None:
        raise BadRequest("Salon is closed on this day")

    start = to_minutes(start_time)
    end = start + duration_minutes
    if not within_window(window, start, end):
        raise BadRequest("Appointment time is outside business hours")
    return format_minutes(end)


def _check_overlap(
    salon_id: int,
    service: Service,
    day: date,
    start_time: str,
    duration_minutes: int,
    exclude_id: int | None = None,
) -> None:
    query = Appointment.query.filter(
        Appointment.salon_id == salon_id,
        Appointment.appointment_date == day,
        Appointment.status.in_(HOLDING_STATUSES),
    )
    if exclude_id is not None:
        query = query.filter(Appointment.appointment_id != exclude_id)

    start = to_minutes(start_time)
    end = start + duration_minutes
    overlapping = 0
    for other in query.all():
        other_start = to_minutes(other.start_time)
        if intervals_overlap(start, end, other_start, other_start + other.duration_minutes):
            overlapping += 1

    if overlapping >= service.max_appointments_per_slot:
        raise BadRequest("This time slot is already fully booked")


def _deadline_for(appointment: Appointment) -> datetime:
    return cancellation_deadline(
        appointment.appointment_date,
        appointment.start_time,
        salon_zone(appointment.salon),
        current_app.config.get("CANCELLATION_WINDOW_HOURS", 24),
    )


def is_within_cancellation_window(appointment: Appointment) -> bool:
    deadline = appointment.cancellation_deadline or _deadline_for(appointment)
    return datetime.now(timezone.utc) < as_utc(deadline)


def create_appointment(user: User, payload: dict) -> Appointment:
    """Book a slot for ``user``; the appointment starts pending with a pending payment."""
    require_fields(payload, "service_id", "appointment_date", "start_time")
    service_id = parse_positive_int(payload["service_id"], "service_id")
    day = parse_date(payload["appointment_date"], "appointment_date")
    start_time = parse_hhmm(payload["start_time"])
    method = parse_choice(payload.get("payment_method") or "cash", PAYMENT_METHODS, "payment_method")
    notes = (payload.get("notes") or "").strip() or None
    requested_salon = payload.get("salon_id")

    def book() -> Appointment:
        service = db.session.get(Service, service_id)
        if service is None:
            raise NotFound("Service not found")
        salon = service.salon
        if requested_salon is not None and parse_positive_int(requested_salon, "salon_id") != salon.salon_id:
            raise BadRequest("Service does not belong to this salon")
        if service.status != "active":
            raise BadRequest("Service is not available for booking")
        if salon.status != "active":
            raise BadRequest("Salon is not accepting bookings")

        end_time = _validate_slot_time(salon, day, start_time, service.duration_minutes)
        _check_overlap(salon.salon_id, service, day, start_time, service.duration_minutes)
        if not is_available(salon.salon_id, service, day, start_time):
            raise BadRequest("This time slot is fully booked")

        appointment = Appointment(
            user_id=user.user_id,
            service_id=service.service_id,
            salon_id=salon.salon_id,
            appointment_date=day,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=service.duration_minutes,
            price_cents=service.price_cents,
            status="pending",
            last_status_update=utc_now(),
            reschedule_count=0,
            notes=notes,
            payment_method=method,
            payment_status="pending",
            payment_amount_cents=service.price_cents,
            payment_currency="USD",
        )
        appointment.salon = salon
        appointment.cancellation_deadline = _deadline_for(appointment)
        db.session.add(appointment)
        db.session.flush()
        reserve_slot(appointment, service)
        return appointment

    appointment = run_reserving(book)
    current_app.logger.info(
        "Appointment %s booked for %s %s", appointment.appointment_id, day.isoformat(), start_time
    )
    send_notification(
        "HOST",
        f"New booking for {appointment.service.name} on {day.isoformat()} at {start_time}",
        receiver_id=appointment.salon.host_id,
        metadata={"appointment_id": appointment.appointment_id},
    )
    return appointment


def get_user_appointments(user: User, filters: dict) -> list[Appointment]:
    query = Appointment.query.filter(Appointment.user_id == user.user_id)

    status = filters.get("status")
    if status:
        query = query.filter(Appointment.status == parse_choice(status, APPOINTMENT_STATUSES, "status"))
    if filters.get("date"):
        query = query.filter(Appointment.appointment_date == parse_date(filters["date"]))
    if str(filters.get("upcoming", "")).lower() == "true":
        query = query.filter(
            Appointment.appointment_date >= datetime.now(timezone.utc).date(),
            Appointment.status.in_(HOLDING_STATUSES),
        )

    return query.order_by(Appointment.appointment_date.asc(), Appointment.start_time.asc()).all()


def get_salon_appointments(salon_id: int, actor: User, filters: dict) -> list[Appointment]:
    salon = db.session.get(Salon, salon_id)
    if salon is None:
        raise NotFound("Salon not found")
    if not _owns_salon(actor, salon):
        raise Forbidden("You can only view appointments of your own salon")

    query = Appointment.query.filter(Appointment.salon_id == salon_id)
    status = filters.get("status")
    if status:
        query = query.filter(Appointment.status == parse_choice(status, APPOINTMENT_STATUSES, "status"))
    if filters.get("date"):
        query = query.filter(Appointment.appointment_date == parse_date(filters["date"]))
    if filters.get("service_id"):
        query = query.filter(Appointment.service_id == parse_positive_int(filters["service_id"], "service_id"))

    return query.order_by(Appointment.appointment_date.asc(), Appointment.start_time.asc()).all()


def get_appointment(appointment_id: int, actor: User) -> Appointment:
    appointment = get_appointment_or_404(appointment_id)
    if not _can_view(actor, appointment):
        raise Forbidden("You are not allowed to view this appointment")
    return appointment


def _record_service_income(
    appointment: Appointment,
    remarks: str,
    confirmed_by: User | None = None,
) -> None:
    existing = Income.query.filter_by(
        appointment_id=appointment.appointment_id, type="service", status="paid"
    ).first()
    if existing is None:
        create_income(appointment, appointment.payment_method, remarks, confirmed_by=confirmed_by)


def transition(appointment: Appointment, new_status: str, enforce_window: bool = True) -> None:
    """Move ``appointment`` to ``new_status`` and adjust its slot hold.

    Leaving pending/confirmed for a terminal state releases the slot;
    returning to confirmed from a terminal state reserves it again.
    """
    current = appointment.status
    if new_status == current:
        return
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise BadRequest(f"Cannot change status from '{current}' to '{new_status}'")

    if new_status == "cancelled" and enforce_window and not is_within_cancellation_window(appointment):
        hours = current_app.config.get("CANCELLATION_WINDOW_HOURS", 24)
        raise BadRequest(f"Cancellation window has expired ({hours} hours before appointment)")

    if current in HOLDING_STATUSES and new_status in TERMINAL_STATUSES:
        adjust_slot_count(appointment, appointment.service, increment=False)
    elif current in TERMINAL_STATUSES and new_status == "confirmed":
        adjust_slot_count(appointment, appointment.service, increment=True)

    if new_status == "completed" and appointment.payment_method == "cash" and appointment.payment_status != "paid":
        appointment.payment_status = "paid"
        appointment.payment_date = utc_now()
        _record_service_income(appointment, "Cash payment collected on completion")

    appointment.status = new_status
    appointment.last_status_update = utc_now()


def _assign_transaction_id(appointment: Appointment, transaction_id: str) -> None:
    taken = Appointment.query.filter(
        Appointment.transaction_id == transaction_id,
        Appointment.appointment_id != appointment.appointment_id,
    ).first()
    if taken is not None:
        raise Conflict("This transaction id is already recorded on another appointment")
    appointment.transaction_id = transaction_id


def apply_payment_status(
    appointment: Appointment,
    payment_status: str,
    remarks: str = "Service payment completed",
    confirmed_by: User | None = None,
) -> None:
    """Set the payment status and its knock-on appointment status.

    Paid confirms the appointment (a completed one stays completed) and
    books the income; refunded cancels it regardless of the cancellation
    window and voids the income.
    """
    if payment_status == appointment.payment_status:
        return
    appointment.payment_status = payment_status

    if payment_status == "paid":
        appointment.payment_date = utc_now()
        if appointment.status != "completed":
            transition(appointment, "confirmed")
        _record_service_income(appointment, remarks, confirmed_by=confirmed_by)
    elif payment_status == "refunded":
        if appointment.status != "cancelled":
            if appointment.status in HOLDING_STATUSES:
                release_slot(appointment)
            appointment.status = "cancelled"
            appointment.last_status_update = utc_now()
        Income.query.filter_by(appointment_id=appointment.appointment_id, status="paid").update(
            {"status": "cancelled"}, synchronize_session="fetch"
        )


def update_status(appointment_id: int, actor: User, payload: dict) -> Appointment:
    new_status = payload.get("status")
    payment = payload.get("payment") if isinstance(payload.get("payment"), dict) else {}
    payment_status = payment.get("status")

    if new_status is None and payment_status is None:
        raise BadRequest("status is required")
    if new_status is not None:
        parse_choice(new_status, APPOINTMENT_STATUSES, "status")
    if payment_status is not None:
        parse_choice(payment_status, PAYMENT_STATUSES, "payment.status")
    reason = (payload.get("cancellation_reason") or "").strip() or None
    notes = payload.get("notes")
    previous: dict[str, str] = {}

    def apply() -> Appointment:
        appointment = get_appointment_or_404(appointment_id)
        if actor.role == USER:
            if appointment.user_id != actor.user_id:
                raise Forbidden("You can only cancel your own appointments")
            if new_status != "cancelled" or payment_status is not None:
                raise Forbidden("Users may only cancel their appointments")
        elif not _owns_salon(actor, appointment.salon):
            raise Forbidden("You can only manage appointments of your own salon")

        previous["status"] = appointment.status
        if new_status is not None:
            transition(appointment, new_status)
        if payment_status is not None:
            if payment.get("transaction_id"):
                _assign_transaction_id(appointment, str(payment["transaction_id"]))
            apply_payment_status(appointment, payment_status)
        if reason:
            appointment.cancellation_reason = reason
        if notes is not None:
            appointment.notes = (notes or "").strip() or None
        return appointment

    appointment = run_reserving(apply)

    if appointment.status != previous["status"]:
        current_app.logger.info(
            "Appointment %s status %s -> %s", appointment.appointment_id, previous["status"], appointment.status
        )
        if actor.user_id == appointment.user_id:
            receiver, type_ = appointment.salon.host_id, "HOST"
        else:
            receiver, type_ = appointment.user_id, "USER"
        send_notification(
            type_,
            f"Appointment on {appointment.appointment_date.isoformat()} at {appointment.start_time} "
            f"is now {appointment.status}",
            receiver_id=receiver,
            metadata={"appointment_id": appointment.appointment_id, "status": appointment.status},
        )
    return appointment


def reschedule(appointment_id: int, actor: User, payload: dict) -> Appointment:
    require_fields(payload, "appointment_date", "start_time")
    day = parse_date(payload["appointment_date"], "appointment_date")
    start_time = parse_hhmm(payload["start_time"])
    limit = current_app.config.get("MAX_RESCHEDULES", 2)

    def move() -> Appointment:
        appointment = get_appointment_or_404(appointment_id)
        if actor.role != ADMIN and appointment.user_id != actor.user_id:
            raise Forbidden("You can only reschedule your own appointments")
        if appointment.status in TERMINAL_STATUSES:
            raise BadRequest(f"Cannot reschedule an appointment with status '{appointment.status}'")
        if appointment.reschedule_count >= limit:
            raise BadRequest("Maximum reschedule limit reached")

        service = appointment.service
        salon = appointment.salon
        end_time = _validate_slot_time(salon, day, start_time, appointment.duration_minutes)
        _check_overlap(
            salon.salon_id, service, day, start_time, appointment.duration_minutes,
            exclude_id=appointment.appointment_id,
        )
        same_slot = appointment.appointment_date == day and appointment.start_time == start_time
        if not same_slot and not is_available(salon.salon_id, service, day, start_time):
            raise BadRequest("New time slot is not available")

        # Both steps share one transaction, so a failed reservation keeps the old hold.
        release_slot(appointment)
        appointment.appointment_date = day
        appointment.start_time = start_time
        appointment.end_time = end_time
        appointment.cancellation_deadline = _deadline_for(appointment)
        reserve_slot(appointment, service)
        appointment.reschedule_count += 1
        return appointment

    appointment = run_reserving(move)
    current_app.logger.info(
        "Appointment %s rescheduled to %s %s (%s/%s)",
        appointment.appointment_id, day.isoformat(), start_time, appointment.reschedule_count, limit,
    )
    send_notification(
        "HOST",
        f"Appointment {appointment.appointment_id} moved to {day.isoformat()} at {start_time}",
        receiver_id=appointment.salon.host_id,
        metadata={"appointment_id": appointment.appointment_id},
    )
    return appointment
