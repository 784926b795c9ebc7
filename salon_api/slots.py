"""Slot occupancy: availability checks and capacity reservations.

A slot is a (salon, service, date, start time) tuple. Every pending or
confirmed appointment holds exactly one ``SlotReservation`` row for its slot,
so occupancy is a row count and the unique ``slot_index`` key caps it at the
service's ``max_appointments_per_slot`` inside the database itself.
"""
from __future__ import annotations

import random
import time
from datetime import date
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from werkzeug.exceptions import BadRequest, NotFound

from .extensions import db
from .models import Appointment, Salon, Service, SlotReservation
from .scheduling import enumerate_slots, local_now, resolve_hours, salon_zone, slot_end, to_minutes

T = TypeVar("T")

# Postgres serialization failure and deadlock
RETRYABLE_PGCODES = ("40001", "40P01")


def _slot_query(salon_id: int, service_id: int, day: date, start_time: str):
    return SlotReservation.query.filter(
        SlotReservation.salon_id == salon_id,
        SlotReservation.service_id == service_id,
        SlotReservation.slot_date == day,
        SlotReservation.start_time == start_time,
    )


def occupancy(salon_id: int, service_id: int, day: date, start_time: str) -> int:
    return _slot_query(salon_id, service_id, day, start_time).count()


def is_available(salon_id: int, service: Service, day: date, start_time: str) -> bool:
    return occupancy(salon_id, service.service_id, day, start_time) < service.max_appointments_per_slot


def get_available_slots(salon_id: int, service_id: int, day: date) -> list[dict[str, object]]:
    """Bookable slots of a service on ``day`` with their remaining capacity."""
    service = db.session.get(Service, service_id)
    if service is None or service.salon_id != salon_id:
        raise NotFound("Service not found")
    salon = db.session.get(Salon, salon_id)
    if salon is None:
        raise NotFound("Salon not found")

    now = local_now(salon_zone(salon))
    if day < now.date():
        return []

    window = resolve_hours(salon, day)
    if window is None:
        return []

    counts = dict(
        db.session.query(SlotReservation.start_time, func.count(SlotReservation.reservation_id))
        .filter(
            SlotReservation.salon_id == salon_id,
            SlotReservation.service_id == service_id,
            SlotReservation.slot_date == day,
        )
        .group_by(SlotReservation.start_time)
        .all()
    )

    slots = []
    for start_time in enumerate_slots(window, service.duration_minutes):
        if day == now.date() and to_minutes(start_time) <= now.hour * 60 + now.minute:
            continue
        remaining = service.max_appointments_per_slot - counts.get(start_time, 0)
        if remaining <= 0:
            continue
        slots.append(
            {
                "start_time": start_time,
                "end_time": slot_end(start_time, service.duration_minutes),
                "available": True,
                "remaining_slots": remaining,
            }
        )
    return slots


def reserve_slot(appointment: Appointment, service: Service) -> SlotReservation:
    """Hold one unit of capacity for the appointment's current slot.

    The appointment must already be flushed. Raises ``BadRequest`` when every
    index is taken; a concurrent writer that grabbed the same index surfaces
    as ``IntegrityError`` on flush and is retried by ``run_reserving``.
    """
    taken = {
        index
        for (index,) in db.session.query(SlotReservation.slot_index).filter(
            SlotReservation.salon_id == appointment.salon_id,
            SlotReservation.service_id == appointment.service_id,
            SlotReservation.slot_date == appointment.appointment_date,
            SlotReservation.start_time == appointment.start_time,
        )
    }
    capacity = service.max_appointments_per_slot
    if len(taken) >= capacity:
        raise BadRequest("Maximum appointments reached for this time slot")
    slot_index = next(index for index in range(capacity) if index not in taken)

    reservation = SlotReservation(
        appointment_id=appointment.appointment_id,
        salon_id=appointment.salon_id,
        service_id=appointment.service_id,
        slot_date=appointment.appointment_date,
        start_time=appointment.start_time,
        slot_index=slot_index,
    )
    db.session.add(reservation)
    db.session.flush()
    return reservation


def release_slot(appointment: Appointment) -> None:
    reservation = SlotReservation.query.filter_by(appointment_id=appointment.appointment_id).first()
    if reservation is None:
        raise BadRequest("No appointments found for this time slot")
    db.session.delete(reservation)
    db.session.flush()


def adjust_slot_count(appointment: Appointment, service: Service, increment: bool) -> None:
    if increment:
        reserve_slot(appointment, service)
    else:
        release_slot(appointment)


def is_slot_conflict(exc: IntegrityError | OperationalError) -> bool:
    """Whether ``exc`` is a lost race for slot capacity rather than a real failure."""
    if isinstance(exc, OperationalError):
        code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
        return code in RETRYABLE_PGCODES
    message = str(exc.orig)
    return SlotReservation.__tablename__ in message or "uq_slot_reservation_index" in message


def run_reserving(unit_of_work: Callable[[], T]) -> T:
    """Run and commit a unit of work that reserves slot capacity.

    A lost race on the reservation key or a database serialisation failure
    rolls the whole unit back and runs it again against fresh state. Any other
    integrity or operational error is rolled back and re-raised, and
    ``HTTPException``s raised by the unit propagate untouched.
    """
    attempts = max(1, int(current_app.config.get("SLOT_RESERVATION_RETRIES", 5)))
    for attempt in range(1, attempts + 1):
        try:
            result = unit_of_work()
            db.session.commit()
            return result
        except (IntegrityError, OperationalError) as exc:
            db.session.rollback()
            if not is_slot_conflict(exc):
                raise
            current_app.logger.info(
                "Slot reservation conflict (attempt %s/%s): %s", attempt, attempts, exc.orig
            )
            time.sleep(random.uniform(0.01, 0.05) * attempt)
    raise BadRequest("This time slot is fully booked")
